"""
GitOps Module
"""

from .functions import create_gitops_resources

__all__ = ["create_gitops_resources"]
