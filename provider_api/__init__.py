"""
provider_api package: providers that produce device data for the connector.

The connector service speaks to a provider through a small contract (register and remove
installations and instances, request actions, drain update events). Provider specific details
such as which external API is called, and how often, stay behind that boundary.

Included modules:
- base: the abstract `Provider` interface.
- default_provider: staged registry, bounded action queue and event channel, action worker.
- giphy_provider: the Giphy specialisation (random GIF polling loop, search action).

Public exports:
- Provider
- DefaultProvider
- GiphyProvider
"""

from .base import Provider
from .default_provider import DefaultProvider
from .giphy_provider import GiphyProvider

__all__ = [
    "Provider",
    "DefaultProvider",
    "GiphyProvider",
]
