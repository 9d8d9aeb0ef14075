"""
Client interface for the GIF search service.

The provider only needs two capabilities from the service: a random GIF for the periodic
property update and a keyword search for the search action. Both return plain URLs so the
provider never depends on the service's response schema.

Clients are stateful: `api_key` and `limit` are plain attributes that the provider sets right
before a call. Callers that share one client between installations must serialize access (the
Giphy provider does this with its credentialed context manager).
"""

from abc import ABC, abstractmethod
from typing import List, Optional


class GifClient(ABC):
    """
    Abstract GIF client.

    Attributes:
        api_key (str): Credential used for the next call; empty until the provider sets it.
        limit (int): Maximum number of search results requested per search.
    """

    def __init__(self, api_key: str = "", limit: int = 1):
        self.api_key = api_key
        self.limit = limit

    @abstractmethod
    def random(self, tags: Optional[List[str]] = None) -> str:
        """
        Return the URL of a random GIF.

        Raises:
            GifApiError: On transport, HTTP or payload failures.
        """
        raise NotImplementedError

    @abstractmethod
    def search(self, keyword: str) -> List[str]:
        """
        Return the URLs of at most `limit` GIFs matching `keyword`, best match first.

        An empty list means the search succeeded without results.

        Raises:
            GifApiError: On transport, HTTP or payload failures.
        """
        raise NotImplementedError
