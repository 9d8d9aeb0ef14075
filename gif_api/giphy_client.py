"""
Giphy REST API client (stdlib-only).

Talks to `https://api.giphy.com/v1/gifs` with `urllib.request`:

- `GET /random?api_key=...&tag=...` returns `{"data": {"url": ...}}`
- `GET /search?api_key=...&q=...&limit=...` returns `{"data": [{"url": ...}, ...]}`

Every call carries an explicit timeout. Any failure (network error, timeout, non-200 status,
unexpected payload) is raised as `GifApiError` with a short message that is safe to forward to
the platform as an action error; the API key is part of the query string, so neither the URL
nor the underlying exception text ever goes into a message.
"""

import http.client
import json
import logging
import socket
from typing import Any, Dict, List, Optional
from urllib import error as urlerror
from urllib import parse as urlparse
from urllib import request as urlrequest

from monitoring.metrics import GIF_API_REQUEST_TIME, track_latency
from shared.errors import GifApiError

from .base import GifClient

DEFAULT_BASE_URL = "https://api.giphy.com/v1/gifs"
DEFAULT_TIMEOUT_SECONDS = 10.0


class GiphyClient(GifClient):
    def __init__(
        self,
        api_key: str = "",
        limit: int = 1,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        rating: str = "g",
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(api_key=api_key, limit=limit)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.rating = rating
        self._logger = logger or logging.getLogger(__name__)

    @track_latency(GIF_API_REQUEST_TIME, labels=lambda self: {"endpoint": "random"})
    def random(self, tags: Optional[List[str]] = None) -> str:
        params = {"rating": self.rating}
        if tags:
            params["tag"] = " ".join(tags)
        payload = self._get("random", params)
        data = payload.get("data")
        # Giphy answers an empty list instead of an object when nothing matches the tag.
        if not isinstance(data, dict) or not data.get("url"):
            raise GifApiError("giphy returned no random gif")
        return data["url"]

    @track_latency(GIF_API_REQUEST_TIME, labels=lambda self: {"endpoint": "search"})
    def search(self, keyword: str) -> List[str]:
        payload = self._get("search", {"q": keyword, "limit": int(self.limit), "rating": self.rating})
        data = payload.get("data")
        if not isinstance(data, list):
            raise GifApiError("giphy returned an invalid search payload")
        return [item["url"] for item in data if isinstance(item, dict) and item.get("url")]

    def _get(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        GET `{base_url}/{endpoint}` and return the decoded JSON object.

        Raises:
            GifApiError: If no key is set, on timeouts and network errors, on non-200
                responses and when the body is not a JSON object.
        """
        if not self.api_key:
            raise GifApiError("giphy api key is not set")

        query = urlparse.urlencode({"api_key": self.api_key, **params})
        req = urlrequest.Request(f"{self.base_url}/{endpoint}?{query}", method="GET")
        req.add_header("Accept", "application/json")

        try:
            with urlrequest.urlopen(req, timeout=self.timeout) as resp:
                status = getattr(resp, "status", 200)
                body = resp.read().decode("utf-8", errors="replace")
        except urlerror.HTTPError as exc:
            self._logger.warning("Giphy %s returned HTTP %s", endpoint, exc.code)
            raise GifApiError(f"giphy {endpoint} request failed with status {exc.code}") from exc
        except socket.timeout as exc:
            raise GifApiError(f"giphy {endpoint} request timed out") from exc
        except urlerror.URLError as exc:
            # URLError may wrap socket.timeout
            if isinstance(exc.reason, socket.timeout):
                raise GifApiError(f"giphy {endpoint} request timed out") from exc
            raise GifApiError(f"giphy {endpoint} request failed: network error") from exc
        except (http.client.HTTPException, OSError) as exc:
            # Failures while reading the response are not wrapped in URLError
            self._logger.warning("Giphy %s connection failed: %s", endpoint, type(exc).__name__)
            raise GifApiError(f"giphy {endpoint} request failed: network error") from exc

        if status != 200:
            self._logger.warning("Giphy %s returned HTTP %s", endpoint, status)
            raise GifApiError(f"giphy {endpoint} request failed with status {status}")

        try:
            payload = json.loads(body)
        except json.JSONDecodeError as exc:
            raise GifApiError(f"giphy {endpoint} returned invalid json") from exc
        if not isinstance(payload, dict):
            raise GifApiError(f"giphy {endpoint} returned an unexpected payload")
        return payload
