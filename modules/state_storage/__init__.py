"""
State Storage Module
"""

from .functions import create_state_storage_resources

__all__ = ["create_state_storage_resources"]
