"""
gif_api package: clients for the external GIF search service.

Included modules:
- base: the abstract `GifClient` contract used by the provider (random GIF, keyword search).
- giphy_client: the real client talking to the Giphy REST API with `urllib.request`.
- mock_client: a deterministic, offline client for local runs and tests.

`create_gif_client()` selects the implementation from the `giphy.client` configuration value.
"""

from .base import GifClient
from .giphy_client import GiphyClient
from .mock_client import MockGifClient


def create_gif_client(kind: str = "giphy", **kwargs) -> GifClient:
    """Build the configured GIF client; `kind` is "giphy" or "mock"."""
    if kind == "mock":
        return MockGifClient(**kwargs)
    if kind == "giphy":
        return GiphyClient(**kwargs)
    raise ValueError(f"Unknown GIF client: {kind}")


__all__ = [
    "GifClient",
    "GiphyClient",
    "MockGifClient",
    "create_gif_client",
]
