"""
platform_api package: outbound calls from the connector to the Things platform.

Public exports:
- PlatformClient: creates Things, updates property values and reports action status.
"""

from .client import PlatformClient

__all__ = ["PlatformClient"]
