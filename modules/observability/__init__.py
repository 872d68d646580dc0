"""
Observability Module
"""

from .functions import create_observability_resources

__all__ = ["create_observability_resources"]
