"""
Workload Module
"""

from .functions import create_namespace, create_workload_resources

__all__ = ["create_namespace", "create_workload_resources"]
