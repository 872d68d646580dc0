"""
IAM Module
"""

from .functions import create_iam_resources

__all__ = ["create_iam_resources"]
