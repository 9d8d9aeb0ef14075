"""
HTTP client for the Things platform API (stdlib-only).

The connector calls back into the platform for three things:

- `create_thing`: register a Thing for a freshly created instance (`POST /things`); the platform
  assigns the Thing ID and returns it in the response body.
- `update_property`: push a new property value
  (`PUT /things/{thing}/components/{component}/properties/{property}`).
- `update_action_status`: report the terminal status of an asynchronously executed action
  (`PUT /actions/requests/{id}`).

Each call is authenticated with the bearer token of the installation or instance it acts for.
Requests carry an explicit timeout; every failure (network error, timeout, non-2xx status,
missing Thing ID in the response) raises `PlatformClientError`. Error messages include the
HTTP status but never the token.
"""

import datetime as _dt
import http.client
import json
import logging
import socket
from typing import Any, Dict, Optional
from urllib import error as urlerror
from urllib import parse as urlparse
from urllib import request as urlrequest

from monitoring.metrics import PLATFORM_REQUEST_TIME, track_errors, track_latency
from shared.errors import PlatformClientError
from shared.models import ActionRequestStatus
from shared.utils import safe_json_loads, truncate_message_for_logging

DEFAULT_BASE_URL = "https://api.connctd.io/api/v1"
DEFAULT_TIMEOUT_SECONDS = 10.0


def _segment(value: str) -> str:
    """Escape a single URL path segment; ids must not introduce extra segments."""
    return urlparse.quote(value, safe="")


class PlatformClient:
    """
    Thin `urllib.request` wrapper around the platform endpoints used by the connector.

    Args:
        base_url (str): API root, e.g. "https://api.connctd.io/api/v1".
        timeout (float): Per-request timeout in seconds.
        logger (logging.Logger, optional): Logger; defaults to the module logger.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        logger: Optional[logging.Logger] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._logger = logger or logging.getLogger(__name__)

    @track_errors("platform", "create_thing")
    @track_latency(PLATFORM_REQUEST_TIME, labels=lambda self: {"endpoint": "create_thing"})
    def create_thing(self, token: str, thing: Dict[str, Any]) -> str:
        """
        Create a Thing on behalf of an instance.

        Args:
            token (str): Instance token.
            thing (Dict[str, Any]): Thing document without an id.

        Returns:
            str: The Thing ID assigned by the platform.
        """
        created = safe_json_loads(self._request("POST", "/things", token, thing))
        thing_id = created.get("id")
        if not thing_id:
            raise PlatformClientError("platform did not return a thing id")
        self._logger.info("Created thing %s", thing_id)
        return thing_id

    @track_errors("platform", "update_property")
    @track_latency(PLATFORM_REQUEST_TIME, labels=lambda self: {"endpoint": "update_property"})
    def update_property(
        self,
        token: str,
        thing_id: str,
        component_id: str,
        property_id: str,
        value: str,
        last_update: Optional[_dt.datetime] = None,
    ) -> None:
        last_update = last_update or _dt.datetime.now(_dt.timezone.utc)
        path = "/things/{}/components/{}/properties/{}".format(
            _segment(thing_id), _segment(component_id), _segment(property_id)
        )
        self._request("PUT", path, token, {"value": value, "lastUpdate": last_update.isoformat()})

    @track_errors("platform", "update_action_status")
    @track_latency(PLATFORM_REQUEST_TIME, labels=lambda self: {"endpoint": "update_action_status"})
    def update_action_status(self, token: str, request_id: str, status: ActionRequestStatus, error: str = "") -> None:
        body = {"status": ActionRequestStatus(status).value, "error": error}
        self._request("PUT", f"/actions/requests/{_segment(request_id)}", token, body)

    def _request(self, method: str, path: str, token: str, body: Dict[str, Any]) -> str:
        """Send a JSON request and return the response body as text."""
        req = urlrequest.Request(
            f"{self.base_url}{path}",
            data=json.dumps(body).encode("utf-8"),
            method=method,
        )
        req.add_header("Authorization", f"Bearer {token}")
        req.add_header("Content-Type", "application/json")
        req.add_header("Accept", "application/json")

        try:
            with urlrequest.urlopen(req, timeout=self.timeout) as resp:
                status = getattr(resp, "status", 200)
                text = resp.read().decode("utf-8", errors="replace")
        except urlerror.HTTPError as exc:
            raise PlatformClientError(f"{method} {path} returned HTTP {exc.code}: {exc.reason}") from exc
        except socket.timeout as exc:
            raise PlatformClientError(f"{method} {path} timed out after {self.timeout}s") from exc
        except urlerror.URLError as exc:
            if isinstance(exc.reason, socket.timeout):
                raise PlatformClientError(f"{method} {path} timed out after {self.timeout}s") from exc
            raise PlatformClientError(f"{method} {path} failed: {exc.reason}") from exc
        except (http.client.HTTPException, OSError) as exc:
            raise PlatformClientError(f"{method} {path} failed: {type(exc).__name__}") from exc

        if not 200 <= status < 300:
            raise PlatformClientError(
                f"{method} {path} returned HTTP {status}: {truncate_message_for_logging(text, 200)}"
            )
        return text
