"""
Secrets Module
"""

from .functions import create_secrets_resources

__all__ = ["create_secrets_resources"]
