"""
Deterministic mock GIF client for local runs, demos, and tests.

The mock needs no API key validation beyond "is set" and no network access. Random GIFs cycle
through a fixed list; searches return URLs derived from the keyword, except for the keyword
`"nothing"`, which yields no results so the empty-search path can be exercised end to end.
"""

import itertools
import threading
from typing import List, Optional

from shared.errors import GifApiError

from .base import GifClient

MOCK_RANDOM_URLS = [
    "https://giphy.com/gifs/mock-random-1",
    "https://giphy.com/gifs/mock-random-2",
    "https://giphy.com/gifs/mock-random-3",
]

EMPTY_KEYWORD = "nothing"


class MockGifClient(GifClient):
    """
    In-memory GIF client with stable outputs.

    Calls are recorded in `calls` as `(operation, api_key, argument)` tuples so tests can check
    which credential each call used.
    """

    def __init__(self, api_key: str = "", limit: int = 1, **_ignored):
        super().__init__(api_key=api_key, limit=limit)
        self._cycle = itertools.cycle(MOCK_RANDOM_URLS)
        self._lock = threading.Lock()
        self.calls: List[tuple] = []

    def random(self, tags: Optional[List[str]] = None) -> str:
        self._require_key()
        with self._lock:
            self.calls.append(("random", self.api_key, tags))
            return next(self._cycle)

    def search(self, keyword: str) -> List[str]:
        self._require_key()
        with self._lock:
            self.calls.append(("search", self.api_key, keyword))
        if keyword == EMPTY_KEYWORD:
            return []
        slug = keyword.strip().lower().replace(" ", "-")
        return [f"https://giphy.com/gifs/mock-{slug}-{i}" for i in range(1, max(self.limit, 1) + 1)]

    def _require_key(self) -> None:
        if not self.api_key:
            raise GifApiError("giphy api key is not set")
