"""
EKS Module Functions
Creates the EKS cluster, managed node group, managed add-ons and the IAM OIDC
provider that IRSA roles federate through
"""

import pulumi
import pulumi_aws as aws
from typing import Dict, List

from modules.iam.functions import create_irsa_role

# Root CA thumbprint of the EKS OIDC endpoints, identical in every region
EKS_OIDC_THUMBPRINT = "9e99a48a9960b14926bb7f3b02e22da2b0ab7280"


def create_cloudwatch_log_group(name: str, retention_days: int = 30, tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create CloudWatch log group for EKS cluster

    The name must match what EKS writes to, otherwise the control plane
    creates its own group with infinite retention.
    """
    tags = tags or {}

    log_group = aws.cloudwatch.LogGroup(
        f"{name}-eks-log-group",
        name=f"/aws/eks/{name}/cluster",
        retention_in_days=retention_days,
        tags={
            **tags,
            "Name": f"{name}-eks-log-group",
            "Module": "eks"
        }
    )

    return {
        "log_group": log_group,
        "log_group_name": log_group.name
    }


def create_kms_key(name: str, existing_key_arn: str = "", tags: Dict[str, str] = None) -> pulumi.Input[str]:
    """
    Create or use existing KMS key for EKS secret encryption

    Args:
        name: Cluster name
        existing_key_arn: ARN of existing KMS key
        tags: Additional tags

    Returns:
        KMS key ARN
    """
    if existing_key_arn:
        return existing_key_arn

    tags = tags or {}

    kms_key = aws.kms.Key(
        f"{name}-eks-kms-key",
        description=f"EKS Secret Encryption Key for {name}",
        enable_key_rotation=True,
        tags={
            **tags,
            "Name": f"{name}-eks-kms-key",
            "Module": "eks"
        }
    )

    aws.kms.Alias(
        f"{name}-eks-kms-alias",
        name=f"alias/{name}-eks",
        target_key_id=kms_key.key_id
    )

    return kms_key.arn


def create_eks_cluster(name: str, version: str, role_arn: pulumi.Output[str],
                       subnet_ids: List[pulumi.Output[str]], security_group_ids: List[pulumi.Output[str]],
                       kms_key_arn: pulumi.Input[str], log_group,
                       enabled_log_types: List[str] = None,
                       public_access_cidrs: List[str] = None,
                       depends_on: List[pulumi.Resource] = None,
                       tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create EKS cluster

    Args:
        name: Cluster name
        version: Kubernetes version
        role_arn: IAM role ARN for cluster
        subnet_ids: Public and private subnet IDs
        security_group_ids: List of security group IDs
        kms_key_arn: KMS key ARN for secret encryption
        log_group: CloudWatch log group the control plane writes to
        enabled_log_types: List of enabled log types
        public_access_cidrs: List of CIDRs allowed to reach the public endpoint
        depends_on: Extra dependencies (role policy attachments)
        tags: Additional tags

    Returns:
        Dict with cluster resource and outputs
    """
    tags = tags or {}
    enabled_log_types = enabled_log_types or ["api", "audit", "authenticator"]
    public_access_cidrs = public_access_cidrs or ["0.0.0.0/0"]

    cluster = aws.eks.Cluster(
        f"{name}-cluster",
        name=name,
        version=version,
        role_arn=role_arn,
        vpc_config=aws.eks.ClusterVpcConfigArgs(
            subnet_ids=subnet_ids,
            endpoint_private_access=True,
            endpoint_public_access=True,
            public_access_cidrs=public_access_cidrs,
            security_group_ids=security_group_ids
        ),
        access_config=aws.eks.ClusterAccessConfigArgs(
            authentication_mode="API_AND_CONFIG_MAP",
            bootstrap_cluster_creator_admin_permissions=True
        ),
        enabled_cluster_log_types=enabled_log_types,
        encryption_config=aws.eks.ClusterEncryptionConfigArgs(
            provider=aws.eks.ClusterEncryptionConfigProviderArgs(
                key_arn=kms_key_arn
            ),
            resources=["secrets"]
        ),
        tags={
            **tags,
            "Name": f"{name}-cluster",
            "Module": "eks"
        },
        opts=pulumi.ResourceOptions(depends_on=[log_group, *(depends_on or [])])
    )

    return {
        "cluster": cluster,
        "cluster_id": cluster.id,
        "cluster_arn": cluster.arn,
        "cluster_endpoint": cluster.endpoint,
        "cluster_version": cluster.version,
        "cluster_certificate_authority_data": cluster.certificate_authority.data
    }


def create_oidc_provider(name: str, cluster) -> Dict[str, any]:
    """
    Register the cluster's OIDC issuer in IAM

    EKS publishes an issuer URL but does not register it; IRSA roles cannot
    be assumed until this provider exists.
    """
    oidc_issuer = cluster.identities.apply(lambda identities: identities[0].oidcs[0].issuer)

    provider = aws.iam.OpenIdConnectProvider(
        f"{name}-oidc-provider",
        client_id_lists=["sts.amazonaws.com"],
        thumbprint_lists=[EKS_OIDC_THUMBPRINT],
        url=oidc_issuer
    )

    return {
        "oidc_provider": provider,
        "oidc_provider_arn": provider.arn,
        "oidc_issuer": oidc_issuer
    }


def create_node_group(name: str, cluster_name: pulumi.Output[str], role_arn: pulumi.Output[str],
                      subnet_ids: List[pulumi.Output[str]],
                      instance_types: List[str], desired_size: int, max_size: int, min_size: int,
                      disk_size: int, capacity_type: str = "ON_DEMAND",
                      depends_on: List[pulumi.Resource] = None,
                      tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create EKS managed node group

    Args:
        name: Node group name prefix
        cluster_name: EKS cluster name
        role_arn: IAM role ARN for node group
        subnet_ids: Private subnet IDs
        instance_types: List of EC2 instance types
        desired_size: Desired number of nodes
        max_size: Maximum number of nodes
        min_size: Minimum number of nodes
        disk_size: EBS volume size in GB
        capacity_type: Capacity type (ON_DEMAND or SPOT)
        depends_on: Node role policy attachments
        tags: Additional tags

    Returns:
        Dict with node group resource and outputs
    """
    tags = tags or {}

    node_group = aws.eks.NodeGroup(
        f"{name}-node-group",
        cluster_name=cluster_name,
        node_group_name=f"{name}-nodes",
        node_role_arn=role_arn,
        subnet_ids=subnet_ids,
        capacity_type=capacity_type,
        instance_types=instance_types,
        disk_size=disk_size,
        scaling_config=aws.eks.NodeGroupScalingConfigArgs(
            desired_size=desired_size,
            max_size=max_size,
            min_size=min_size
        ),
        update_config=aws.eks.NodeGroupUpdateConfigArgs(
            max_unavailable_percentage=25
        ),
        tags={
            **tags,
            "Name": f"{name}-node-group",
            # Cluster Autoscaler auto-discovery
            "k8s.io/cluster-autoscaler/enabled": "true",
            f"k8s.io/cluster-autoscaler/{name}": "owned",
            "Module": "eks"
        },
        # The autoscaler owns desired_size once running
        opts=pulumi.ResourceOptions(
            depends_on=depends_on or [],
            ignore_changes=["scalingConfig.desiredSize"]
        )
    )

    return {
        "node_group": node_group,
        "node_group_arn": node_group.arn,
        "node_group_status": node_group.status
    }


def create_eks_addons(name: str, cluster_name: pulumi.Output[str],
                      oidc_provider_arn: pulumi.Output[str], oidc_issuer: pulumi.Output[str],
                      node_group=None,
                      tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create EKS managed add-ons

    CoreDNS and the EBS CSI driver schedule pods, so they wait for nodes.

    Args:
        name: Cluster name
        cluster_name: EKS cluster name
        oidc_provider_arn: OIDC provider for the EBS CSI driver role
        oidc_issuer: OIDC issuer URL
        node_group: Node group dependency
        tags: Additional tags

    Returns:
        Dict with addon resources
    """
    tags = tags or {}
    addons = {}
    after_nodes = pulumi.ResourceOptions(depends_on=[node_group] if node_group else [])

    for key, addon_name in (("vpc_cni", "vpc-cni"), ("kube_proxy", "kube-proxy")):
        addons[key] = aws.eks.Addon(
            f"{name}-{addon_name}-addon",
            cluster_name=cluster_name,
            addon_name=addon_name,
            resolve_conflicts_on_create="OVERWRITE",
            resolve_conflicts_on_update="OVERWRITE",
            tags={**tags, "Name": f"{name}-{addon_name}-addon", "Module": "eks"}
        )

    addons["coredns"] = aws.eks.Addon(
        f"{name}-coredns-addon",
        cluster_name=cluster_name,
        addon_name="coredns",
        resolve_conflicts_on_create="OVERWRITE",
        resolve_conflicts_on_update="OVERWRITE",
        tags={**tags, "Name": f"{name}-coredns-addon", "Module": "eks"},
        opts=after_nodes
    )

    ebs_csi_role = create_irsa_role(
        f"{name}-ebs-csi",
        oidc_provider_arn,
        oidc_issuer,
        namespace="kube-system",
        service_account="ebs-csi-controller-sa",
        managed_policy_arns=["arn:aws:iam::aws:policy/service-role/AmazonEBSCSIDriverPolicy"],
        tags=tags
    )

    addons["ebs_csi"] = aws.eks.Addon(
        f"{name}-ebs-csi-addon",
        cluster_name=cluster_name,
        addon_name="aws-ebs-csi-driver",
        service_account_role_arn=ebs_csi_role["role_arn"],
        resolve_conflicts_on_create="OVERWRITE",
        resolve_conflicts_on_update="OVERWRITE",
        tags={**tags, "Name": f"{name}-ebs-csi-addon", "Module": "eks"},
        opts=after_nodes
    )

    return {"addons": addons, "ebs_csi_role_arn": ebs_csi_role["role_arn"]}


def create_eks_resources(cluster_name: str, cluster_version: str, iam_resources: Dict[str, any],
                         vpc_resources: Dict[str, any],
                         node_instance_types: List[str],
                         node_desired_size: int, node_max_size: int, node_min_size: int,
                         node_disk_size: int, capacity_type: str = "ON_DEMAND",
                         cluster_enabled_log_types: List[str] = None,
                         cloudwatch_log_group_retention_in_days: int = 30,
                         existing_kms_key_arn: str = "",
                         public_access_cidrs: List[str] = None,
                         tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create complete EKS infrastructure

    Args:
        cluster_name: EKS cluster name
        cluster_version: Kubernetes version
        iam_resources: Result of create_iam_resources
        vpc_resources: Result of create_vpc_resources
        node_instance_types: List of EC2 instance types
        node_desired_size: Desired number of nodes
        node_max_size: Maximum number of nodes
        node_min_size: Minimum number of nodes
        node_disk_size: EBS volume size in GB
        capacity_type: Capacity type (ON_DEMAND or SPOT)
        cluster_enabled_log_types: List of enabled log types
        cloudwatch_log_group_retention_in_days: Log retention in days
        existing_kms_key_arn: Reuse this KMS key instead of creating one
        public_access_cidrs: CIDRs allowed to reach the public API endpoint
        tags: Additional tags

    Returns:
        Dict with all EKS resources and outputs
    """
    tags = tags or {}

    log_group_result = create_cloudwatch_log_group(
        cluster_name,
        cloudwatch_log_group_retention_in_days,
        tags
    )

    kms_key_arn = create_kms_key(cluster_name, existing_kms_key_arn, tags)

    cluster_result = create_eks_cluster(
        name=cluster_name,
        version=cluster_version,
        role_arn=iam_resources["cluster_role_arn"],
        subnet_ids=vpc_resources["public_subnet_ids"] + vpc_resources["private_subnet_ids"],
        security_group_ids=[vpc_resources["cluster_security_group_id"]],
        kms_key_arn=kms_key_arn,
        log_group=log_group_result["log_group"],
        enabled_log_types=cluster_enabled_log_types,
        public_access_cidrs=public_access_cidrs,
        depends_on=[iam_resources["_cluster_policy_attachment"]] if iam_resources["_cluster_policy_attachment"] else [],
        tags=tags
    )

    oidc_result = create_oidc_provider(cluster_name, cluster_result["cluster"])

    node_group_result = create_node_group(
        name=cluster_name,
        cluster_name=cluster_result["cluster"].name,
        role_arn=iam_resources["node_group_role_arn"],
        subnet_ids=vpc_resources["private_subnet_ids"],
        instance_types=node_instance_types,
        desired_size=node_desired_size,
        max_size=node_max_size,
        min_size=node_min_size,
        disk_size=node_disk_size,
        capacity_type=capacity_type,
        depends_on=list(iam_resources["_node_policy_attachments"].values()),
        tags=tags
    )

    addons_result = create_eks_addons(
        name=cluster_name,
        cluster_name=cluster_result["cluster"].name,
        oidc_provider_arn=oidc_result["oidc_provider_arn"],
        oidc_issuer=oidc_result["oidc_issuer"],
        node_group=node_group_result["node_group"],
        tags=tags
    )

    return {
        "cluster_id": cluster_result["cluster_id"],
        "cluster_name": cluster_result["cluster"].name,
        "cluster_arn": cluster_result["cluster_arn"],
        "cluster_endpoint": cluster_result["cluster_endpoint"],
        "cluster_version_output": cluster_result["cluster_version"],
        "cluster_certificate_authority_data": cluster_result["cluster_certificate_authority_data"],
        "oidc_provider_arn": oidc_result["oidc_provider_arn"],
        "oidc_issuer": oidc_result["oidc_issuer"],
        "node_group_arn": node_group_result["node_group_arn"],
        "node_group_status": node_group_result["node_group_status"],
        # Keep references to resources for dependencies
        "_log_group": log_group_result["log_group"],
        "_cluster": cluster_result["cluster"],
        "_node_group": node_group_result["node_group"],
        "_addons": addons_result["addons"]
    }
