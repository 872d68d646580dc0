"""
Visit Logger Platform
VPC, EKS and cluster add-ons, then the visit logger delivered either by
Pulumi directly or by Argo CD from the manifests repository
"""
import pulumi

from config import get_config
from modules.vpc import create_vpc_resources
from modules.iam import create_iam_resources
from modules.eks import create_eks_resources
from modules.addons import create_addons_resources
from modules.addons.functions import create_kubernetes_provider
from modules.secrets import create_secrets_resources
from modules.observability import create_observability_resources
from modules.observability.functions import MONITORING_NAMESPACE
from modules.workload import create_namespace, create_workload_resources
from modules.gitops import create_gitops_resources
from modules.state_storage import create_state_storage_resources

config = get_config()
tags = config.common_tags

# 0. Optional state backend
if config.enable_state_storage:
    state_storage = create_state_storage_resources(config.cluster_name, config.aws_region, tags)
    pulumi.export("state_bucket_name", state_storage["bucket_name"])
    pulumi.export("state_lock_table_name", state_storage["lock_table_name"])
    pulumi.export("backend_configuration_commands", state_storage["configuration_commands"])

# 1. Network
vpc = create_vpc_resources(
    cluster_name=config.cluster_name,
    vpc_cidr=config.vpc_cidr,
    public_subnet_cidrs=config.public_subnet_cidrs,
    private_subnet_cidrs=config.private_subnet_cidrs,
    tags=tags
)

# 2. IAM roles
iam = create_iam_resources(
    config.cluster_name,
    tags,
    existing_cluster_role_arn=config.existing_cluster_role_arn,
    existing_node_role_arn=config.existing_node_role_arn
)

# 3. EKS cluster, node group, managed add-ons and OIDC provider
eks = create_eks_resources(
    cluster_name=config.cluster_name,
    cluster_version=config.cluster_version,
    iam_resources=iam,
    vpc_resources=vpc,
    node_instance_types=config.node_instance_types,
    node_desired_size=config.node_desired_size,
    node_max_size=config.node_max_size,
    node_min_size=config.node_min_size,
    node_disk_size=config.node_disk_size,
    capacity_type=config.capacity_type,
    cluster_enabled_log_types=config.cluster_enabled_log_types,
    cloudwatch_log_group_retention_in_days=config.cloudwatch_log_group_retention_in_days,
    existing_kms_key_arn=config.existing_kms_key_arn,
    public_access_cidrs=config.endpoint_public_access_cidrs,
    tags=tags
)

provider = create_kubernetes_provider(
    config.cluster_name,
    eks["cluster_endpoint"],
    eks["cluster_certificate_authority_data"],
    depends_on=[eks["_node_group"]]
)

# 4. Cluster add-ons
addons = create_addons_resources(
    cluster_name=config.cluster_name,
    aws_region=config.aws_region,
    provider=provider,
    oidc_provider_arn=eks["oidc_provider_arn"],
    oidc_issuer=eks["oidc_issuer"],
    enable_metrics_server=config.enable_metrics_server,
    enable_cluster_autoscaler=config.enable_cluster_autoscaler,
    enable_traefik=config.enable_traefik,
    enable_trivy_operator=config.enable_trivy_operator,
    tags=tags
)

# 5. Application namespace and credentials
app_namespace = create_namespace(config.cluster_name, config.app_namespace, config.namespace_quota, provider)

secrets = create_secrets_resources(
    cluster_name=config.cluster_name,
    aws_region=config.aws_region,
    app_name=config.app_name,
    namespace=config.app_namespace,
    secret_name=config.secrets_manager_secret_name,
    mongo_username=config.mongo_username,
    mongo_password=config.mongo_password,
    provider=provider,
    oidc_provider_arn=eks["oidc_provider_arn"],
    oidc_issuer=eks["oidc_issuer"],
    enable_external_secrets=config.enable_external_secrets,
    depends_on=[app_namespace["namespace"]],
    tags=tags
)
credentials = secrets.get("_external_secret") or secrets.get("_k8s_secret")

# 6. Monitoring
if config.enable_monitoring:
    observability = create_observability_resources(
        cluster_name=config.cluster_name,
        app_name=config.app_name,
        namespace=config.app_namespace,
        provider=provider,
        error_ratio=config.alert_error_ratio,
        latency_p95_seconds=config.alert_latency_p95_seconds,
        restart_count=config.alert_restart_count,
        depends_on=[app_namespace["namespace"]]
    )
    addons["addons_status"]["kube_prometheus_stack"] = observability["status"]
else:
    addons["addons_status"]["kube_prometheus_stack"] = "❌ Disabled"

# 7. Delivery
pulumi.log.info(f"Delivering {config.app_name} with {config.delivery_mode}")

if config.delivery_mode == "argocd":
    gitops = create_gitops_resources(
        cluster_name=config.cluster_name,
        app_name=config.app_name,
        namespace=config.app_namespace,
        repo_url=config.gitops_repo_url,
        revision=config.gitops_revision,
        path=config.gitops_path,
        provider=provider,
        depends_on=[app_namespace["namespace"], credentials]
    )
    addons["addons_status"]["argocd"] = gitops["status"]
    pulumi.export("argocd_application", gitops["application_name"])
else:
    if config.enable_argocd:
        pulumi.log.info("Argo CD is only installed in argocd delivery mode")
    allowed_namespaces = []
    if addons["ingress_namespace"]:
        allowed_namespaces.append(addons["ingress_namespace"])
    if config.enable_monitoring:
        allowed_namespaces.append(MONITORING_NAMESPACE)
    workload = create_workload_resources(
        cluster_name=config.cluster_name,
        app_name=config.app_name,
        namespace=config.app_namespace,
        namespace_resource=app_namespace["namespace"],
        image=config.app_image,
        image_tag=config.image_tag,
        app_env=config.app_env,
        port=config.app_port,
        replicas=config.app_replicas,
        hpa_min_replicas=config.hpa_min_replicas,
        hpa_max_replicas=config.hpa_max_replicas,
        hpa_cpu_target=config.hpa_cpu_target,
        resources=config.app_resources,
        mongo_image=config.mongo_image,
        mongo_storage_size=config.mongo_storage_size,
        mongo_database=config.mongo_database,
        storage_class=addons["storage_class_name"],
        credentials_secret=secrets["k8s_secret_name"],
        provider=provider,
        ingress_class=addons["ingress_class"],
        ingress_host=config.ingress_host,
        allowed_namespaces=allowed_namespaces,
        depends_on=[credentials, addons["_storage_class"]]
    )
    pulumi.export("mongodb_host", workload["mongodb_host"])

# Exports
pulumi.export("cluster_name", eks["cluster_name"])
pulumi.export("cluster_endpoint", eks["cluster_endpoint"])
pulumi.export("oidc_provider_arn", eks["oidc_provider_arn"])
pulumi.export("vpc_id", vpc["vpc_id"])
pulumi.export("public_subnet_ids", vpc["public_subnet_ids"])
pulumi.export("private_subnet_ids", vpc["private_subnet_ids"])
pulumi.export("kubeconfig_command",
    pulumi.Output.concat(
        f"aws eks update-kubeconfig --region {config.aws_region} --name ",
        eks["cluster_name"]
    ))
pulumi.export("app_image", config.app_image)
pulumi.export("app_namespace", config.app_namespace)
pulumi.export("delivery_mode", config.delivery_mode)
pulumi.export("addons_installed", addons["addons_status"])
