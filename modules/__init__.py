"""
Pulumi modules for the visit logger platform
Each module exposes a create_* function returning public outputs and
underscore-prefixed resource references
"""

from .vpc import create_vpc_resources
from .iam import create_iam_resources
from .eks import create_eks_resources
from .addons import create_addons_resources
from .secrets import create_secrets_resources
from .observability import create_observability_resources
from .workload import create_namespace, create_workload_resources
from .gitops import create_gitops_resources
from .state_storage import create_state_storage_resources

__all__ = [
    "create_vpc_resources",
    "create_iam_resources",
    "create_eks_resources",
    "create_addons_resources",
    "create_secrets_resources",
    "create_observability_resources",
    "create_namespace",
    "create_workload_resources",
    "create_gitops_resources",
    "create_state_storage_resources"
]
