"""
Addons Module Functions
Cluster-wide Kubernetes add-ons: metrics-server, Cluster Autoscaler, Traefik,
the default gp3 StorageClass and the Trivy vulnerability scanner
"""

import json
import pulumi
import pulumi_kubernetes as k8s
from typing import Dict

from modules.iam.functions import create_irsa_role

METRICS_SERVER_VERSION = "3.12.2"
CLUSTER_AUTOSCALER_VERSION = "9.43.2"
TRAEFIK_VERSION = "33.2.1"
TRIVY_OPERATOR_VERSION = "0.24.1"

INGRESS_NAMESPACE = "traefik"


def create_kubernetes_provider(name: str, cluster_endpoint: 'pulumi.Output[str]',
                               cluster_ca_data: 'pulumi.Output[str]', depends_on=None) -> k8s.Provider:
    """
    Create Kubernetes provider for EKS cluster

    Args:
        name: Cluster name, used for the token request
        cluster_endpoint: EKS cluster endpoint
        cluster_ca_data: EKS cluster CA certificate data (base64)
        depends_on: Resources that must exist before the API is usable

    Returns:
        Kubernetes provider instance
    """
    kubeconfig = pulumi.Output.all(cluster_endpoint, cluster_ca_data).apply(
        lambda args: render_kubeconfig(name, args[0], args[1])
    )

    return k8s.Provider(
        f"{name}-k8s-provider",
        kubeconfig=kubeconfig,
        enable_server_side_apply=True,
        opts=pulumi.ResourceOptions(depends_on=depends_on or [])
    )


def render_kubeconfig(cluster_name: str, endpoint: str, ca_data: str) -> str:
    """Kubeconfig that authenticates through `aws eks get-token`"""
    return json.dumps({
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{
            "name": cluster_name,
            "cluster": {"server": endpoint, "certificate-authority-data": ca_data},
        }],
        "contexts": [{
            "name": cluster_name,
            "context": {"cluster": cluster_name, "user": cluster_name},
        }],
        "current-context": cluster_name,
        "users": [{
            "name": cluster_name,
            "user": {
                "exec": {
                    "apiVersion": "client.authentication.k8s.io/v1beta1",
                    "command": "aws",
                    "args": ["eks", "get-token", "--cluster-name", cluster_name],
                }
            },
        }],
    })


def deploy_metrics_server(name: str, provider: k8s.Provider) -> Dict[str, any]:
    """
    Deploy metrics server using Helm

    The HPA reads CPU utilisation from the metrics API this serves.
    """
    metrics_server = k8s.helm.v3.Release(
        f"{name}-metrics-server",
        repository_opts=k8s.helm.v3.RepositoryOptsArgs(
            repo="https://kubernetes-sigs.github.io/metrics-server/"
        ),
        chart="metrics-server",
        version=METRICS_SERVER_VERSION,
        name="metrics-server",
        namespace="kube-system",
        values={
            "args": [
                "--kubelet-preferred-address-types=InternalIP",
                "--metric-resolution=15s"
            ]
        },
        opts=pulumi.ResourceOptions(provider=provider)
    )

    return {
        "metrics_server": metrics_server,
        "status": "✅ Enabled"
    }


def cluster_autoscaler_policy() -> str:
    """IAM policy for Cluster Autoscaler with auto-discovery"""
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Action": [
                "autoscaling:DescribeAutoScalingGroups",
                "autoscaling:DescribeAutoScalingInstances",
                "autoscaling:DescribeLaunchConfigurations",
                "autoscaling:DescribeScalingActivities",
                "autoscaling:DescribeTags",
                "ec2:DescribeImages",
                "ec2:DescribeInstanceTypes",
                "ec2:DescribeLaunchTemplateVersions",
                "ec2:GetInstanceTypesFromInstanceRequirements",
                "eks:DescribeNodegroup"
            ],
            "Resource": "*"
        }, {
            "Effect": "Allow",
            "Action": [
                "autoscaling:SetDesiredCapacity",
                "autoscaling:TerminateInstanceInAutoScalingGroup"
            ],
            "Resource": "*"
        }]
    })


def deploy_cluster_autoscaler(name: str, aws_region: str, oidc_provider_arn: 'pulumi.Output[str]',
                              oidc_issuer: 'pulumi.Output[str]', provider: k8s.Provider,
                              tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Deploy Cluster Autoscaler with an IRSA role

    Node groups are discovered by the k8s.io/cluster-autoscaler tags set in
    the eks module.
    """
    role_result = create_irsa_role(
        f"{name}-cluster-autoscaler",
        oidc_provider_arn,
        oidc_issuer,
        namespace="kube-system",
        service_account="cluster-autoscaler",
        policy_document=cluster_autoscaler_policy(),
        tags=tags
    )

    release = k8s.helm.v3.Release(
        f"{name}-cluster-autoscaler",
        repository_opts=k8s.helm.v3.RepositoryOptsArgs(
            repo="https://kubernetes.github.io/autoscaler"
        ),
        chart="cluster-autoscaler",
        version=CLUSTER_AUTOSCALER_VERSION,
        name="cluster-autoscaler",
        namespace="kube-system",
        values={
            "autoDiscovery": {"clusterName": name},
            "awsRegion": aws_region,
            "rbac": {
                "serviceAccount": {
                    "name": "cluster-autoscaler",
                    "annotations": {"eks.amazonaws.com/role-arn": role_result["role_arn"]},
                }
            },
            "extraArgs": {
                "balance-similar-node-groups": True,
                "skip-nodes-with-system-pods": False,
                "scale-down-unneeded-time": "5m",
            },
        },
        opts=pulumi.ResourceOptions(provider=provider)
    )

    return {
        "release": release,
        "role_arn": role_result["role_arn"],
        "status": "✅ Enabled"
    }


def deploy_traefik(name: str, provider: k8s.Provider) -> Dict[str, any]:
    """
    Deploy Traefik as the cluster ingress controller behind an AWS NLB

    Args:
        name: Release name prefix
        provider: Kubernetes provider

    Returns:
        Dict with the release and ingress class name
    """
    namespace = k8s.core.v1.Namespace(
        f"{name}-traefik-namespace",
        metadata=k8s.meta.v1.ObjectMetaArgs(
            name=INGRESS_NAMESPACE,
            labels={"name": INGRESS_NAMESPACE, "managed-by": "pulumi"}
        ),
        opts=pulumi.ResourceOptions(provider=provider)
    )

    release = k8s.helm.v3.Release(
        f"{name}-traefik",
        repository_opts=k8s.helm.v3.RepositoryOptsArgs(
            repo="https://traefik.github.io/charts"
        ),
        chart="traefik",
        version=TRAEFIK_VERSION,
        name="traefik",
        namespace=namespace.metadata.name,
        values={
            "ingressClass": {"enabled": True, "isDefaultClass": True, "name": "traefik"},
            "service": {
                "annotations": {
                    "service.beta.kubernetes.io/aws-load-balancer-type": "nlb",
                    "service.beta.kubernetes.io/aws-load-balancer-scheme": "internet-facing",
                }
            },
            "metrics": {"prometheus": {"serviceMonitor": {"enabled": False}}},
            "resources": {
                "requests": {"cpu": "100m", "memory": "64Mi"},
                "limits": {"cpu": "300m", "memory": "128Mi"},
            },
        },
        opts=pulumi.ResourceOptions(provider=provider, depends_on=[namespace])
    )

    return {
        "namespace": namespace,
        "release": release,
        "ingress_class": "traefik",
        "status": "✅ Enabled"
    }


def create_gp3_storage_class(name: str, provider: k8s.Provider) -> Dict[str, any]:
    """Default StorageClass backed by the EBS CSI driver"""
    storage_class = k8s.storage.v1.StorageClass(
        f"{name}-gp3",
        metadata=k8s.meta.v1.ObjectMetaArgs(
            name="gp3",
            annotations={"storageclass.kubernetes.io/is-default-class": "true"}
        ),
        provisioner="ebs.csi.aws.com",
        parameters={"type": "gp3", "encrypted": "true"},
        reclaim_policy="Retain",
        volume_binding_mode="WaitForFirstConsumer",
        allow_volume_expansion=True,
        opts=pulumi.ResourceOptions(provider=provider)
    )

    return {
        "storage_class": storage_class,
        "storage_class_name": "gp3"
    }


def deploy_trivy_operator(name: str, provider: k8s.Provider) -> Dict[str, any]:
    """
    Deploy Trivy Operator to scan running workloads for vulnerabilities

    Reports are re-scanned daily and metrics exposed for Prometheus.
    """
    namespace = k8s.core.v1.Namespace(
        f"{name}-trivy-namespace",
        metadata=k8s.meta.v1.ObjectMetaArgs(name="trivy-system"),
        opts=pulumi.ResourceOptions(provider=provider)
    )

    release = k8s.helm.v3.Release(
        f"{name}-trivy-operator",
        repository_opts=k8s.helm.v3.RepositoryOptsArgs(
            repo="https://aquasecurity.github.io/helm-charts/"
        ),
        chart="trivy-operator",
        version=TRIVY_OPERATOR_VERSION,
        name="trivy-operator",
        namespace=namespace.metadata.name,
        values={
            "operator": {
                "scanJobsConcurrentLimit": 2,
                "scanJobTTL": "60s",
                "scannerReportTTL": "24h",
                "sbomGenerationEnabled": False,
            },
            "serviceMonitor": {"enabled": False},
            "trivy": {"severity": "HIGH,CRITICAL"},
        },
        opts=pulumi.ResourceOptions(provider=provider, depends_on=[namespace])
    )

    return {
        "namespace": namespace,
        "release": release,
        "status": "✅ Enabled"
    }


def create_addons_resources(cluster_name: str,
                            aws_region: str,
                            provider: k8s.Provider,
                            oidc_provider_arn: 'pulumi.Output[str]',
                            oidc_issuer: 'pulumi.Output[str]',
                            enable_metrics_server: bool = True,
                            enable_cluster_autoscaler: bool = True,
                            enable_traefik: bool = True,
                            enable_trivy_operator: bool = True,
                            tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create Kubernetes addons for EKS cluster

    Args:
        cluster_name: EKS cluster name
        aws_region: Region the autoscaler talks to
        provider: Kubernetes provider for the cluster
        oidc_provider_arn: Cluster OIDC provider ARN
        oidc_issuer: Cluster OIDC issuer URL
        enable_metrics_server: Deploy metrics server
        enable_cluster_autoscaler: Deploy Cluster Autoscaler
        enable_traefik: Deploy Traefik ingress controller
        enable_trivy_operator: Deploy Trivy Operator
        tags: Additional tags

    Returns:
        Dict with all addon resources and status
    """
    tags = tags or {}
    addons_status = {}

    storage_result = create_gp3_storage_class(cluster_name, provider)

    metrics_server_result = None
    if enable_metrics_server:
        metrics_server_result = deploy_metrics_server(cluster_name, provider)
        addons_status["metrics_server"] = metrics_server_result["status"]
    else:
        addons_status["metrics_server"] = "❌ Disabled"

    autoscaler_result = None
    if enable_cluster_autoscaler:
        autoscaler_result = deploy_cluster_autoscaler(
            cluster_name, aws_region, oidc_provider_arn, oidc_issuer, provider, tags
        )
        addons_status["cluster_autoscaler"] = autoscaler_result["status"]
    else:
        addons_status["cluster_autoscaler"] = "❌ Disabled"

    traefik_result = None
    if enable_traefik:
        traefik_result = deploy_traefik(cluster_name, provider)
        addons_status["traefik"] = traefik_result["status"]
    else:
        addons_status["traefik"] = "❌ Disabled"

    trivy_result = None
    if enable_trivy_operator:
        trivy_result = deploy_trivy_operator(cluster_name, provider)
        addons_status["trivy_operator"] = trivy_result["status"]
    else:
        addons_status["trivy_operator"] = "❌ Disabled"

    return {
        "addons_status": addons_status,
        "storage_class_name": storage_result["storage_class_name"],
        "ingress_class": traefik_result["ingress_class"] if traefik_result else None,
        "ingress_namespace": INGRESS_NAMESPACE if traefik_result else None,
        # Keep references to resources for dependencies
        "_storage_class": storage_result["storage_class"],
        "_metrics_server": metrics_server_result["metrics_server"] if metrics_server_result else None,
        "_cluster_autoscaler": autoscaler_result["release"] if autoscaler_result else None,
        "_traefik": traefik_result["release"] if traefik_result else None,
        "_trivy_operator": trivy_result["release"] if trivy_result else None
    }
