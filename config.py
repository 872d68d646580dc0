"""
Configuration management for the Visit Logger platform
"""

import pulumi
from typing import Dict, List

DELIVERY_MODES = ("pulumi", "argocd")


class Config:
    """Centralized configuration management for the EKS deployment"""

    def __init__(self):
        self.config = pulumi.Config()

        # AWS Configuration
        self.aws_region = pulumi.Config("aws").get("region") or "eu-west-1"

        # Cluster Configuration
        self.cluster_name = self.config.get("cluster_name") or "visit-logger"
        self.cluster_version = self.config.get("cluster_version") or "1.31"
        self.endpoint_public_access_cidrs = self.config.get_object("endpoint_public_access_cidrs") or ["0.0.0.0/0"]

        # Node Configuration
        self.node_instance_types = self.config.get_object("node_instance_types") or ["t3.medium"]
        self.node_desired_size = self.config.get_int("node_desired_size") or 2
        self.node_max_size = self.config.get_int("node_max_size") or 4
        self.node_min_size = self.config.get_int("node_min_size") or 1
        self.node_disk_size = self.config.get_int("node_disk_size") or 30
        self.enable_spot_instances = self.config.get_bool("enable_spot_instances") or False

        # VPC Configuration
        self.vpc_cidr = self.config.get("vpc_cidr") or "10.0.0.0/16"
        self.public_subnet_cidrs = self.config.get_object("public_subnet_cidrs") or ["10.0.1.0/24", "10.0.2.0/24"]
        self.private_subnet_cidrs = self.config.get_object("private_subnet_cidrs") or ["10.0.101.0/24", "10.0.102.0/24"]

        # Logging Configuration
        self.cluster_enabled_log_types = self.config.get_object("cluster_enabled_log_types") or ["api", "audit", "authenticator"]
        self.cloudwatch_log_group_retention_in_days = self.config.get_int("cloudwatch_log_group_retention_in_days") or 30
        self.existing_kms_key_arn = self.config.get("existing_kms_key_arn") or ""

        # IAM
        self.existing_cluster_role_arn = self.config.get("existing_cluster_role_arn") or ""
        self.existing_node_role_arn = self.config.get("existing_node_role_arn") or ""

        # Cluster add-ons
        self.enable_metrics_server = _flag(self.config, "enable_metrics_server", True)
        self.enable_cluster_autoscaler = _flag(self.config, "enable_cluster_autoscaler", True)
        self.enable_traefik = _flag(self.config, "enable_traefik", True)
        self.enable_trivy_operator = _flag(self.config, "enable_trivy_operator", True)
        self.enable_external_secrets = _flag(self.config, "enable_external_secrets", True)
        self.enable_monitoring = _flag(self.config, "enable_monitoring", True)
        self.enable_argocd = _flag(self.config, "enable_argocd", True)
        self.enable_state_storage = _flag(self.config, "enable_state_storage", False)

        # Application
        self.app_name = self.config.get("app_name") or "visit-logger"
        self.app_namespace = self.config.get("app_namespace") or "visit-logger"
        self.app_env = self.config.get("app_env") or "production"
        self.image_repository = self.config.get("image_repository") or "ghcr.io/visit-logger/visit-logger"
        self.image_tag = self.config.get("image_tag") or "latest"
        self.app_port = self.config.get_int("app_port") or 3000
        self.app_replicas = self.config.get_int("app_replicas") or 2
        self.hpa_min_replicas = self.config.get_int("hpa_min_replicas") or 2
        self.hpa_max_replicas = self.config.get_int("hpa_max_replicas") or 6
        self.hpa_cpu_target = self.config.get_int("hpa_cpu_target") or 70
        self.app_resources = self.config.get_object("app_resources") or {
            "requests": {"cpu": "100m", "memory": "128Mi"},
            "limits": {"cpu": "500m", "memory": "256Mi"},
        }
        self.ingress_host = self.config.get("ingress_host") or ""

        # MongoDB
        self.mongo_image = self.config.get("mongo_image") or "mongo:7.0"
        self.mongo_storage_size = self.config.get("mongo_storage_size") or "5Gi"
        self.mongo_database = self.config.get("mongo_database") or "tech_challenge"
        self.mongo_username = self.config.get("mongo_username") or "visit_logger"
        self.mongo_password = self.config.require_secret("mongo_password")
        self.secrets_manager_secret_name = self.config.get("secrets_manager_secret_name") or f"{self.cluster_name}/mongodb"

        # GitOps
        self.delivery_mode = self.config.get("delivery_mode") or "pulumi"
        self.gitops_repo_url = self.config.get("gitops_repo_url") or ""
        self.gitops_revision = self.config.get("gitops_revision") or "HEAD"
        self.gitops_path = self.config.get("gitops_path") or "deploy/k8s"

        # Alerting thresholds
        self.alert_error_ratio = self.config.get_float("alert_error_ratio") or 0.05
        self.alert_latency_p95_seconds = self.config.get_float("alert_latency_p95_seconds") or 0.5
        self.alert_restart_count = self.config.get_int("alert_restart_count") or 3

        # Quota for the application namespace
        self.namespace_quota = self.config.get_object("namespace_quota") or {
            "requests.cpu": "4",
            "requests.memory": "4Gi",
            "limits.cpu": "8",
            "limits.memory": "8Gi",
            "pods": "20",
            "persistentvolumeclaims": "4",
        }

        # Additional tags
        self.additional_tags = self.config.get_object("tags") or {}

        self.validate()

    def validate(self) -> None:
        """Reject settings the AWS and Kubernetes APIs would refuse later"""
        if not self.node_min_size <= self.node_desired_size <= self.node_max_size:
            raise ValueError(
                "node sizes must satisfy min <= desired <= max, got "
                f"{self.node_min_size}/{self.node_desired_size}/{self.node_max_size}"
            )
        if self.hpa_min_replicas > self.hpa_max_replicas:
            raise ValueError(
                f"hpa_min_replicas ({self.hpa_min_replicas}) exceeds hpa_max_replicas ({self.hpa_max_replicas})"
            )
        if not 1 <= self.hpa_cpu_target <= 100:
            raise ValueError(f"hpa_cpu_target must be within 1..100, got {self.hpa_cpu_target}")
        if self.delivery_mode not in DELIVERY_MODES:
            raise ValueError(f"delivery_mode must be one of {DELIVERY_MODES}, got {self.delivery_mode!r}")
        if self.delivery_mode == "argocd" and not (self.enable_argocd and self.gitops_repo_url):
            raise ValueError("delivery_mode 'argocd' requires enable_argocd and gitops_repo_url")
        if len(self.private_subnet_cidrs) < 2:
            raise ValueError("EKS needs private subnets in at least two availability zones")

    @property
    def common_tags(self) -> Dict[str, str]:
        """Get common tags for all resources"""
        base_tags = {
            "Environment": self.app_env,
            "Project": "visit-logger",
            "ManagedBy": "pulumi",
        }
        base_tags.update(self.additional_tags)
        return base_tags

    @property
    def capacity_type(self) -> str:
        """Get node group capacity type based on spot instance configuration"""
        return "SPOT" if self.enable_spot_instances else "ON_DEMAND"

    @property
    def app_image(self) -> str:
        return f"{self.image_repository}:{self.image_tag}"

    @property
    def enabled_addons(self) -> List[str]:
        flags = {
            "metrics-server": self.enable_metrics_server,
            "cluster-autoscaler": self.enable_cluster_autoscaler,
            "traefik": self.enable_traefik,
            "trivy-operator": self.enable_trivy_operator,
            "external-secrets": self.enable_external_secrets,
            "kube-prometheus-stack": self.enable_monitoring,
            "argocd": self.enable_argocd,
        }
        return [name for name, enabled in flags.items() if enabled]


def _flag(config: pulumi.Config, key: str, default: bool) -> bool:
    # get_bool(...) or True would never allow turning a default-on flag off
    value = config.get_bool(key)
    return default if value is None else value


def get_config() -> Config:
    """Get the global configuration instance"""
    return Config()
