"""
Agreement services.

Services:
    LifecycleService: Single entry point for agreement and milestone operations
"""

from agreements.services.lifecycle import LifecycleService

__all__ = [
    "LifecycleService",
]
