"""
Secrets Module Functions
MongoDB credentials live in AWS Secrets Manager and are synced into the
application namespace by External Secrets Operator
"""

import json
import pulumi
import pulumi_aws as aws
import pulumi_kubernetes as k8s
from typing import Dict, List

from modules.iam.functions import create_irsa_role

EXTERNAL_SECRETS_VERSION = "0.10.7"
EXTERNAL_SECRETS_NAMESPACE = "external-secrets"
EXTERNAL_SECRETS_SERVICE_ACCOUNT = "external-secrets"
CLUSTER_SECRET_STORE = "aws-secrets-manager"

# Secrets Manager JSON property -> key in the Kubernetes Secret
CREDENTIAL_KEYS = {
    "username": "MONGO_USERNAME",
    "password": "MONGO_PASSWORD",
}


def create_credentials_secret(name: str, secret_name: str, username: str,
                              password: 'pulumi.Output[str]', tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Store MongoDB credentials in AWS Secrets Manager

    Args:
        name: Resource name prefix
        secret_name: Secrets Manager secret name
        username: MongoDB user
        password: MongoDB password (Pulumi secret)
        tags: Additional tags

    Returns:
        Dict with secret resources and outputs
    """
    tags = tags or {}

    secret = aws.secretsmanager.Secret(
        f"{name}-mongodb-credentials",
        name=secret_name,
        description="MongoDB credentials for the visit logger",
        recovery_window_in_days=7,
        tags={
            **tags,
            "Name": secret_name,
            "Module": "secrets"
        }
    )

    version = aws.secretsmanager.SecretVersion(
        f"{name}-mongodb-credentials-version",
        secret_id=secret.id,
        secret_string=pulumi.Output.secret(password).apply(
            lambda value: json.dumps({"username": username, "password": value})
        )
    )

    return {
        "secret": secret,
        "version": version,
        "secret_arn": secret.arn,
        "secret_name": secret_name
    }


def secret_read_policy(secret_arn: str) -> str:
    """IAM policy allowing reads of a single secret"""
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Action": [
                "secretsmanager:GetSecretValue",
                "secretsmanager:DescribeSecret"
            ],
            "Resource": [secret_arn]
        }]
    })


def cluster_secret_store_spec(aws_region: str) -> Dict[str, any]:
    """ClusterSecretStore backed by Secrets Manager, authenticated with the operator's IRSA role"""
    return {
        "provider": {
            "aws": {
                "service": "SecretsManager",
                "region": aws_region,
                "auth": {
                    "jwt": {
                        "serviceAccountRef": {
                            "name": EXTERNAL_SECRETS_SERVICE_ACCOUNT,
                            "namespace": EXTERNAL_SECRETS_NAMESPACE,
                        }
                    }
                },
            }
        }
    }


def external_secret_spec(remote_secret_name: str, target_secret_name: str,
                         refresh_interval: str = "1h") -> Dict[str, any]:
    """
    ExternalSecret materialising the MongoDB credentials as a native Secret

    Args:
        remote_secret_name: Secrets Manager secret name
        target_secret_name: Kubernetes Secret to create
        refresh_interval: How often the operator re-reads the remote secret

    Returns:
        ExternalSecret spec
    """
    data: List[Dict[str, any]] = [
        {
            "secretKey": secret_key,
            "remoteRef": {"key": remote_secret_name, "property": remote_property},
        }
        for remote_property, secret_key in CREDENTIAL_KEYS.items()
    ]
    return {
        "refreshInterval": refresh_interval,
        "secretStoreRef": {"name": CLUSTER_SECRET_STORE, "kind": "ClusterSecretStore"},
        "target": {"name": target_secret_name, "creationPolicy": "Owner"},
        "data": data,
    }


def deploy_external_secrets_operator(name: str, oidc_provider_arn: 'pulumi.Output[str]',
                                     oidc_issuer: 'pulumi.Output[str]', secret_arn: 'pulumi.Output[str]',
                                     provider: k8s.Provider, tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Deploy External Secrets Operator with read access to the credentials secret

    Args:
        name: Resource name prefix
        oidc_provider_arn: Cluster OIDC provider ARN
        oidc_issuer: Cluster OIDC issuer URL
        secret_arn: The only secret the operator may read
        provider: Kubernetes provider
        tags: Additional tags

    Returns:
        Dict with the release and IRSA role
    """
    role_result = create_irsa_role(
        f"{name}-external-secrets",
        oidc_provider_arn,
        oidc_issuer,
        namespace=EXTERNAL_SECRETS_NAMESPACE,
        service_account=EXTERNAL_SECRETS_SERVICE_ACCOUNT,
        policy_document=pulumi.Output.from_input(secret_arn).apply(secret_read_policy),
        tags=tags
    )

    release = k8s.helm.v3.Release(
        f"{name}-external-secrets",
        repository_opts=k8s.helm.v3.RepositoryOptsArgs(
            repo="https://charts.external-secrets.io"
        ),
        chart="external-secrets",
        version=EXTERNAL_SECRETS_VERSION,
        name="external-secrets",
        namespace=EXTERNAL_SECRETS_NAMESPACE,
        create_namespace=True,
        values={
            "installCRDs": True,
            "serviceAccount": {
                "name": EXTERNAL_SECRETS_SERVICE_ACCOUNT,
                "annotations": {"eks.amazonaws.com/role-arn": role_result["role_arn"]},
            },
        },
        opts=pulumi.ResourceOptions(provider=provider)
    )

    return {
        "release": release,
        "role_arn": role_result["role_arn"]
    }


def create_secrets_resources(cluster_name: str, aws_region: str, app_name: str, namespace: str,
                             secret_name: str, mongo_username: str,
                             mongo_password: 'pulumi.Output[str]',
                             provider: k8s.Provider,
                             oidc_provider_arn: 'pulumi.Output[str]' = None,
                             oidc_issuer: 'pulumi.Output[str]' = None,
                             enable_external_secrets: bool = True,
                             depends_on: List[pulumi.Resource] = None,
                             tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Make MongoDB credentials available to the application namespace

    With External Secrets Operator enabled the Kubernetes Secret is owned by
    an ExternalSecret; otherwise Pulumi writes the Secret directly.

    Args:
        cluster_name: EKS cluster name
        aws_region: Secrets Manager region
        app_name: Application name, prefixes the Kubernetes Secret
        namespace: Application namespace
        secret_name: Secrets Manager secret name
        mongo_username: MongoDB user
        mongo_password: MongoDB password (Pulumi secret)
        provider: Kubernetes provider
        oidc_provider_arn: Cluster OIDC provider ARN
        oidc_issuer: Cluster OIDC issuer URL
        enable_external_secrets: Use External Secrets Operator
        depends_on: Namespace and other prerequisites
        tags: Additional tags

    Returns:
        Dict with the Kubernetes Secret name and resources
    """
    tags = tags or {}
    k8s_secret_name = f"{app_name}-mongodb"
    opts = pulumi.ResourceOptions(provider=provider, depends_on=depends_on or [])

    if not enable_external_secrets:
        pulumi.log.info("External Secrets Operator disabled, writing MongoDB credentials as a plain Secret")
        secret = k8s.core.v1.Secret(
            f"{cluster_name}-{app_name}-mongodb-secret",
            metadata=k8s.meta.v1.ObjectMetaArgs(name=k8s_secret_name, namespace=namespace),
            string_data={
                CREDENTIAL_KEYS["username"]: mongo_username,
                CREDENTIAL_KEYS["password"]: mongo_password,
            },
            opts=opts
        )
        return {
            "k8s_secret_name": k8s_secret_name,
            "secret_arn": None,
            "_k8s_secret": secret
        }

    credentials_result = create_credentials_secret(
        cluster_name, secret_name, mongo_username, mongo_password, tags
    )

    operator_result = deploy_external_secrets_operator(
        cluster_name, oidc_provider_arn, oidc_issuer, credentials_result["secret_arn"], provider, tags
    )

    store = k8s.apiextensions.CustomResource(
        f"{cluster_name}-cluster-secret-store",
        api_version="external-secrets.io/v1beta1",
        kind="ClusterSecretStore",
        metadata=k8s.meta.v1.ObjectMetaArgs(name=CLUSTER_SECRET_STORE),
        spec=cluster_secret_store_spec(aws_region),
        opts=pulumi.ResourceOptions(provider=provider, depends_on=[operator_result["release"]])
    )

    external_secret = k8s.apiextensions.CustomResource(
        f"{cluster_name}-{app_name}-mongodb-external-secret",
        api_version="external-secrets.io/v1beta1",
        kind="ExternalSecret",
        metadata=k8s.meta.v1.ObjectMetaArgs(name=k8s_secret_name, namespace=namespace),
        spec=external_secret_spec(secret_name, k8s_secret_name),
        opts=pulumi.ResourceOptions(
            provider=provider,
            depends_on=[store, credentials_result["version"], *(depends_on or [])]
        )
    )

    return {
        "k8s_secret_name": k8s_secret_name,
        "secret_arn": credentials_result["secret_arn"],
        "external_secrets_role_arn": operator_result["role_arn"],
        "_secret": credentials_result["secret"],
        "_operator": operator_result["release"],
        "_cluster_secret_store": store,
        "_external_secret": external_secret
    }
