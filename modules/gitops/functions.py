"""
GitOps Module Functions
ArgoCD and the Application that keeps the visit logger manifests in sync
with the deployment repository
"""

import pulumi
import pulumi_kubernetes as k8s
from typing import Dict, List

ARGOCD_VERSION = "7.7.11"
ARGOCD_NAMESPACE = "argocd"


def app_project_spec(project: str, repo_url: str, namespace: str) -> Dict[str, any]:
    """
    AppProject limited to one source repository and one destination namespace

    Cluster-scoped kinds are not permitted; the namespace itself is created by Pulumi.
    """
    return {
        "description": f"{project} workloads",
        "sourceRepos": [repo_url],
        "destinations": [{
            "server": "https://kubernetes.default.svc",
            "namespace": namespace,
        }],
        "clusterResourceWhitelist": [],
        "namespaceResourceWhitelist": [{"group": "*", "kind": "*"}],
    }


def application_spec(project: str, repo_url: str, revision: str, path: str,
                     namespace: str, self_heal: bool = True, prune: bool = True) -> Dict[str, any]:
    """
    Application with automated sync

    Args:
        project: AppProject name
        repo_url: Git repository holding the manifests
        revision: Branch, tag or commit to track
        path: Directory within the repository
        namespace: Destination namespace
        self_heal: Revert drift made outside Git
        prune: Delete resources removed from Git

    Returns:
        Application spec
    """
    return {
        "project": project,
        "source": {
            "repoURL": repo_url,
            "targetRevision": revision,
            "path": path,
        },
        "destination": {
            "server": "https://kubernetes.default.svc",
            "namespace": namespace,
        },
        "syncPolicy": {
            "automated": {"prune": prune, "selfHeal": self_heal},
            "syncOptions": ["CreateNamespace=false", "ApplyOutOfSyncOnly=true"],
            "retry": {
                "limit": 5,
                "backoff": {"duration": "10s", "factor": 2, "maxDuration": "3m"},
            },
        },
        # HPA owns the replica count
        "ignoreDifferences": [{
            "group": "apps",
            "kind": "Deployment",
            "jsonPointers": ["/spec/replicas"],
        }],
    }


def deploy_argocd(name: str, provider: k8s.Provider) -> Dict[str, any]:
    """Deploy ArgoCD with a ClusterIP server and without Dex or notifications"""
    release = k8s.helm.v3.Release(
        f"{name}-argocd",
        repository_opts=k8s.helm.v3.RepositoryOptsArgs(
            repo="https://argoproj.github.io/argo-helm"
        ),
        chart="argo-cd",
        version=ARGOCD_VERSION,
        name="argocd",
        namespace=ARGOCD_NAMESPACE,
        create_namespace=True,
        values={
            "server": {
                "service": {"type": "ClusterIP"},
                "ingress": {"enabled": False},
            },
            "dex": {"enabled": False},
            "notifications": {"enabled": False},
            "configs": {
                "cm": {"timeout.reconciliation": "180s"},
            },
            "controller": {"metrics": {"enabled": True}},
        },
        opts=pulumi.ResourceOptions(provider=provider)
    )

    return {
        "release": release,
        "namespace": ARGOCD_NAMESPACE,
        "status": "✅ Enabled"
    }


def create_gitops_resources(cluster_name: str, app_name: str, namespace: str,
                            repo_url: str, revision: str, path: str,
                            provider: k8s.Provider,
                            depends_on: List[pulumi.Resource] = None) -> Dict[str, any]:
    """
    Install ArgoCD and register the visit logger Application

    Args:
        cluster_name: EKS cluster name
        app_name: Application and AppProject name
        namespace: Destination namespace
        repo_url: Git repository with the manifests
        revision: Revision to track
        path: Manifest directory
        provider: Kubernetes provider
        depends_on: Namespace, credentials Secret and other prerequisites

    Returns:
        Dict with gitops outputs and resources
    """
    argocd_result = deploy_argocd(cluster_name, provider)
    crd_opts = pulumi.ResourceOptions(
        provider=provider,
        depends_on=[argocd_result["release"], *(depends_on or [])]
    )

    project = k8s.apiextensions.CustomResource(
        f"{cluster_name}-{app_name}-app-project",
        api_version="argoproj.io/v1alpha1",
        kind="AppProject",
        metadata=k8s.meta.v1.ObjectMetaArgs(name=app_name, namespace=ARGOCD_NAMESPACE),
        spec=app_project_spec(app_name, repo_url, namespace),
        opts=crd_opts
    )

    application = k8s.apiextensions.CustomResource(
        f"{cluster_name}-{app_name}-application",
        api_version="argoproj.io/v1alpha1",
        kind="Application",
        metadata=k8s.meta.v1.ObjectMetaArgs(
            name=app_name,
            namespace=ARGOCD_NAMESPACE,
            finalizers=["resources-finalizer.argocd.argoproj.io"]
        ),
        spec=application_spec(app_name, repo_url, revision, path, namespace),
        opts=pulumi.ResourceOptions(provider=provider, depends_on=[project, *(depends_on or [])])
    )

    return {
        "argocd_namespace": argocd_result["namespace"],
        "application_name": app_name,
        "status": argocd_result["status"],
        "_release": argocd_result["release"],
        "_project": project,
        "_application": application
    }
