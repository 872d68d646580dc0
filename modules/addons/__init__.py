"""
Cluster Add-ons Module
"""

from .functions import create_addons_resources

__all__ = ["create_addons_resources"]
