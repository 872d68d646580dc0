"""
Visit Logger
Small HTTP service that records visits in MongoDB and exposes health and metrics
"""

__version__ = "0.1.0"
