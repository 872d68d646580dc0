"""
IAM Module Functions
Roles for the EKS control plane and nodes, plus IAM Roles for Service
Accounts (IRSA) used by in-cluster controllers
"""

import json
import pulumi
import pulumi_aws as aws
from typing import Dict, List, Optional


def service_trust_policy(service: str) -> str:
    """Trust policy letting an AWS service principal assume the role"""
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Action": "sts:AssumeRole",
            "Effect": "Allow",
            "Principal": {"Service": service}
        }]
    })


def irsa_trust_policy(oidc_provider_arn: str, oidc_issuer: str, namespace: str, service_account: str) -> str:
    """
    Trust policy for a Kubernetes service account federated through the cluster OIDC provider

    Args:
        oidc_provider_arn: ARN of the IAM OIDC provider
        oidc_issuer: Issuer URL, with or without the https:// scheme
        namespace: Namespace of the service account
        service_account: Service account name

    Returns:
        JSON policy document
    """
    issuer_host = oidc_issuer.replace("https://", "")
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Principal": {"Federated": oidc_provider_arn},
            "Action": "sts:AssumeRoleWithWebIdentity",
            "Condition": {
                "StringEquals": {
                    f"{issuer_host}:sub": f"system:serviceaccount:{namespace}:{service_account}",
                    f"{issuer_host}:aud": "sts.amazonaws.com"
                }
            }
        }]
    })


def create_cluster_role(name: str, tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create IAM role for EKS cluster

    Args:
        name: Role name
        tags: Additional tags

    Returns:
        Dict with role resource and outputs
    """
    tags = tags or {}

    role = aws.iam.Role(
        f"{name}-cluster-role",
        name=f"{name}-cluster-role",
        assume_role_policy=service_trust_policy("eks.amazonaws.com"),
        tags={
            **tags,
            "Name": f"{name}-cluster-role",
            "Module": "iam"
        }
    )

    policy_attachment = aws.iam.RolePolicyAttachment(
        f"{name}-cluster-policy",
        policy_arn="arn:aws:iam::aws:policy/AmazonEKSClusterPolicy",
        role=role.name
    )

    return {
        "role": role,
        "policy_attachment": policy_attachment,
        "role_arn": role.arn,
        "role_name": role.name
    }


NODE_POLICIES = [
    ("worker", "arn:aws:iam::aws:policy/AmazonEKSWorkerNodePolicy"),
    ("cni", "arn:aws:iam::aws:policy/AmazonEKS_CNI_Policy"),
    ("registry", "arn:aws:iam::aws:policy/AmazonEC2ContainerRegistryReadOnly"),
    ("ssm", "arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore")
]


def create_node_group_role(name: str, tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create IAM role for EKS node group

    Args:
        name: Role name prefix
        tags: Additional tags

    Returns:
        Dict with role resource and outputs
    """
    tags = tags or {}

    role = aws.iam.Role(
        f"{name}-ng-role",
        name=f"{name}-ng-role",
        assume_role_policy=service_trust_policy("ec2.amazonaws.com"),
        tags={
            **tags,
            "Name": f"{name}-node-group-role",
            "Module": "iam"
        }
    )

    policy_attachments = {}
    for policy_name, policy_arn in NODE_POLICIES:
        attachment = aws.iam.RolePolicyAttachment(
            f"{name}-node-{policy_name}-policy",
            policy_arn=policy_arn,
            role=role.name
        )
        policy_attachments[f"{policy_name}_policy"] = attachment

    return {
        "role": role,
        "policy_attachments": policy_attachments,
        "role_arn": role.arn,
        "role_name": role.name
    }


def create_irsa_role(name: str, oidc_provider_arn: pulumi.Output[str], oidc_issuer: pulumi.Output[str],
                     namespace: str, service_account: str,
                     policy_document: Optional[pulumi.Input[str]] = None,
                     managed_policy_arns: List[str] = None,
                     tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create an IAM role assumable by one Kubernetes service account

    Args:
        name: Resource name prefix
        oidc_provider_arn: Cluster OIDC provider ARN
        oidc_issuer: Cluster OIDC issuer URL
        namespace: Service account namespace
        service_account: Service account name
        policy_document: Inline policy JSON
        managed_policy_arns: AWS managed policies to attach
        tags: Additional tags

    Returns:
        Dict with role resource and outputs
    """
    tags = tags or {}

    role = aws.iam.Role(
        f"{name}-irsa-role",
        assume_role_policy=pulumi.Output.all(oidc_provider_arn, oidc_issuer).apply(
            lambda args: irsa_trust_policy(args[0], args[1], namespace, service_account)
        ),
        tags={
            **tags,
            "Name": f"{name}-irsa-role",
            "ServiceAccount": f"{namespace}/{service_account}",
            "Module": "iam"
        }
    )

    inline_policy = None
    if policy_document is not None:
        inline_policy = aws.iam.RolePolicy(
            f"{name}-irsa-policy",
            role=role.id,
            policy=policy_document
        )

    attachments = []
    for i, policy_arn in enumerate(managed_policy_arns or []):
        attachments.append(aws.iam.RolePolicyAttachment(
            f"{name}-irsa-attachment-{i+1}",
            role=role.name,
            policy_arn=policy_arn
        ))

    return {
        "role": role,
        "inline_policy": inline_policy,
        "attachments": attachments,
        "role_arn": role.arn
    }


def role_name_from_arn(role_arn: str) -> str:
    # arn:aws:iam::<account>:role/<optional/path/>name
    return role_arn.rsplit("/", 1)[-1]


def existing_role(role_arn: str) -> Dict[str, any]:
    """Result shape of the create_* role functions for a role managed elsewhere"""
    return {
        "role": None,
        "policy_attachment": None,
        "policy_attachments": {},
        "role_arn": role_arn,
        "role_name": role_name_from_arn(role_arn)
    }


def create_iam_resources(cluster_name: str, tags: Dict[str, str] = None,
                         existing_cluster_role_arn: str = "",
                         existing_node_role_arn: str = "") -> Dict[str, any]:
    """
    Create IAM roles for the EKS control plane and node group

    Args:
        cluster_name: EKS cluster name
        tags: Additional tags
        existing_cluster_role_arn: Use this cluster role instead of creating one
        existing_node_role_arn: Use this node role instead of creating one

    Returns:
        Dict with all IAM resources and outputs
    """
    tags = tags or {}

    if existing_cluster_role_arn:
        cluster_role_result = existing_role(existing_cluster_role_arn)
    else:
        cluster_role_result = create_cluster_role(cluster_name, tags)

    if existing_node_role_arn:
        node_role_result = existing_role(existing_node_role_arn)
    else:
        node_role_result = create_node_group_role(cluster_name, tags)

    return {
        "cluster_role_arn": cluster_role_result["role_arn"],
        "cluster_role_name": cluster_role_result["role_name"],
        "node_group_role_arn": node_role_result["role_arn"],
        "node_group_role_name": node_role_result["role_name"],
        # Keep references to resources for dependencies
        "_cluster_role": cluster_role_result["role"],
        "_node_role": node_role_result["role"],
        "_cluster_policy_attachment": cluster_role_result["policy_attachment"],
        "_node_policy_attachments": node_role_result["policy_attachments"]
    }
