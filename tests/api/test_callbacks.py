"""
Tests for the signed platform callbacks in `api/callbacks.py`.

Focus:
- Signature verification (missing/invalid signature, missing Date header, forwarded host).
- Body decoding errors and their protocol error codes.
- Status mapping of install/instantiate/remove/action outcomes.

The connector service is a MagicMock: these tests cover the HTTP contract only. Requests are
signed with the throwaway platform key from conftest exactly like the platform signs them, over
`https://<host><path>`.
"""

import base64
import json
from email.utils import formatdate
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from starlette.requests import ClientDisconnect

from main import create_app
from shared.errors import (
    ActionNotSupportedError,
    ActionQueueFullError,
    InstallationNotFoundError,
    InstanceNotFoundError,
)
from shared.models import (
    ActionRequestStatus,
    ActionResponse,
    InstallationRequest,
    InstallationResponse,
    InstantiationRequest,
    Step,
    StepType,
)
from shared.signing import sign, signable_payload

PREFIX = "/callbacks"


@pytest.fixture
def service():
    return MagicMock()


@pytest.fixture
def client(service, platform_public_key):
    app = create_app(
        connector_service=service,
        public_key=platform_public_key,
        migrate_on_startup=False,
    )
    return TestClient(app)


@pytest.fixture
def signed(client, platform_private_key):
    """Send a request signed for the given host (default: the TestClient host)."""

    def send(method, path, body=None, host="testserver", headers=None, content_type="application/json"):
        raw = b"" if body is None else (body if isinstance(body, bytes) else json.dumps(body).encode("utf-8"))
        request_headers = {"Date": formatdate(usegmt=True)}
        if content_type:
            request_headers["Content-Type"] = content_type
        request_headers.update(headers or {})
        payload = signable_payload(method, "https", host, PREFIX + path, request_headers, raw)
        request_headers["Signature"] = base64.b64encode(sign(platform_private_key, payload)).decode("ascii")
        return client.request(method, PREFIX + path, content=raw, headers=request_headers)

    return send


INSTALLATION = {"id": "inst-1", "token": "installation-token", "configuration": [{"id": "giphy_api_key", "value": "k"}]}
INSTANTIATION = {"id": "i-1", "installationId": "inst-1", "token": "instance-token"}
ACTION = {"id": "a-1", "thingId": "thing-1", "componentId": "search", "actionId": "search", "parameters": {"keyword": "cats"}}


# --- signature ---

def test_unsigned_request_is_rejected(client, service):
    response = client.post(
        PREFIX + "/installations",
        content=json.dumps(INSTALLATION),
        headers={"Content-Type": "application/json", "Date": formatdate(usegmt=True)},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "BAD_SIGNATURE", "description": "Signature seems to be invalid", "status": 400}
    service.add_installation.assert_not_called()


def test_tampered_body_is_rejected(client, platform_private_key, service):
    date = formatdate(usegmt=True)
    payload = signable_payload(
        "POST", "https", "testserver", PREFIX + "/installations", {"Date": date}, json.dumps(INSTALLATION).encode()
    )
    signature = base64.b64encode(sign(platform_private_key, payload)).decode()
    tampered = dict(INSTALLATION, token="stolen")

    response = client.post(
        PREFIX + "/installations",
        content=json.dumps(tampered),
        headers={"Content-Type": "application/json", "Date": date, "Signature": signature},
    )

    assert response.json()["error"] == "BAD_SIGNATURE"
    service.add_installation.assert_not_called()


def test_disconnect_before_body_is_read(client):
    with patch("starlette.requests.Request.body", side_effect=ClientDisconnect()):
        response = client.post(PREFIX + "/installations", content=b"{}", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_BODY"


def test_missing_date_header(client):
    response = client.post(
        PREFIX + "/installations",
        content=json.dumps(INSTALLATION),
        headers={"Content-Type": "application/json", "Signature": "c2ln"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "MISSING_HEADER"


def test_forwarded_host_is_used_for_verification(signed, service):
    service.add_installation.return_value = None
    response = signed(
        "POST", "/installations", INSTALLATION,
        host="connector.example.com",
        headers={"X-Forwarded-Host": "connector.example.com", "X-Forwarded-Proto": "https"},
    )
    assert response.status_code == 201


def test_fixed_callback_host(service, platform_public_key, platform_private_key):
    app = create_app(
        connector_service=service,
        public_key=platform_public_key,
        callback_host="connector.example.com",
        migrate_on_startup=False,
    )
    service.remove_instance.return_value = None
    date = formatdate(usegmt=True)
    payload = signable_payload("DELETE", "https", "connector.example.com", PREFIX + "/instantiations/i-1", {"Date": date}, b"")
    signature = base64.b64encode(sign(platform_private_key, payload)).decode()

    response = TestClient(app).delete(PREFIX + "/instantiations/i-1", headers={"Date": date, "Signature": signature})

    assert response.status_code == 204


# --- decoding ---

@pytest.mark.parametrize("body, content_type, code", [
    (INSTALLATION, "text/plain", "BAD_CONTENT_TYPE"),
    (None, "application/json", "BAD_REQUEST_BODY"),
    (b"{not json", "application/json", "INVALID_JSON_BODY"),
    ({"token": "missing id"}, "application/json", "BAD_REQUEST_BODY"),
    (
        {"id": "inst-1", "token": "t", "configuration": [{"id": "giphy_api_key", "value": "a"}, {"id": "giphy_api_key", "value": "b"}]},
        "application/json",
        "BAD_REQUEST_BODY",
    ),
])
def test_body_errors(signed, service, body, content_type, code):
    response = signed("POST", "/installations", body, content_type=content_type)
    assert response.status_code == 400
    assert response.json()["error"] == code
    service.add_installation.assert_not_called()


def test_content_type_with_charset_is_accepted(signed, service):
    service.add_installation.return_value = None
    response = signed("POST", "/installations", INSTALLATION, content_type="application/json; charset=utf-8")
    assert response.status_code == 201


# --- installations ---

def test_add_installation_created(signed, service):
    service.add_installation.return_value = None

    response = signed("POST", "/installations", INSTALLATION)

    assert response.status_code == 201
    assert response.content == b""
    request = service.add_installation.call_args[0][0]
    assert isinstance(request, InstallationRequest)
    assert request.configuration[0].value == "k"


def test_add_installation_with_further_steps(signed, service):
    service.add_installation.return_value = InstallationResponse(
        further_step=Step(type=StepType.MARKDOWN, content="# Almost done")
    )

    response = signed("POST", "/installations", INSTALLATION)

    assert response.status_code == 202
    assert response.json() == {"furtherStep": {"type": 2, "content": "# Almost done"}}


def test_add_installation_internal_error_hides_details(signed, service):
    service.add_installation.side_effect = RuntimeError("database is locked at /secret/path")

    response = signed("POST", "/installations", INSTALLATION)

    assert response.status_code == 500
    assert response.json() == {"error": "INTERNAL_SERVER_ERROR", "description": "Internal server error", "status": 500}


def test_remove_installation(signed, service):
    response = signed("DELETE", "/installations/inst-1", content_type=None)
    assert response.status_code == 204
    service.remove_installation.assert_called_once_with("inst-1")


def test_remove_unknown_installation_fails(signed, service):
    service.remove_installation.side_effect = InstallationNotFoundError()
    response = signed("DELETE", "/installations/inst-1", content_type=None)
    assert response.status_code == 404
    assert response.json()["error"] == "INSTALLATION_NOT_FOUND"


# --- instantiations ---

@pytest.mark.parametrize("path", ["/instantiations", "/instances"])
def test_add_instance_created(signed, service, path):
    service.add_instance.return_value = None

    response = signed("POST", path, INSTANTIATION)

    assert response.status_code == 201
    request = service.add_instance.call_args[0][0]
    assert isinstance(request, InstantiationRequest)
    assert request.installation_id == "inst-1"


def test_add_instance_failure(signed, service):
    service.add_instance.side_effect = RuntimeError("platform unavailable")
    response = signed("POST", "/instantiations", INSTANTIATION)
    assert response.status_code == 500


@pytest.mark.parametrize("path", ["/instantiations/i-1", "/instances/i-1"])
def test_remove_instance(signed, service, path):
    response = signed("DELETE", path, content_type=None)
    assert response.status_code == 204
    service.remove_instance.assert_called_once_with("i-1")


def test_remove_unknown_instance_fails(signed, service):
    service.remove_instance.side_effect = InstanceNotFoundError()
    response = signed("DELETE", "/instantiations/i-1", content_type=None)
    assert response.status_code == 404
    assert response.json()["error"] == "INSTANCE_NOT_FOUND"


# --- actions ---

def test_action_pending(signed, service):
    service.perform_action.return_value = ActionResponse(id="a-1", status=ActionRequestStatus.PENDING)

    response = signed("POST", "/actions", ACTION)

    assert response.status_code == 200
    assert response.json() == {"id": "a-1", "status": "PENDING", "error": ""}
    request = service.perform_action.call_args[0][0]
    assert request.thing_id == "thing-1"
    assert request.parameters == {"keyword": "cats"}


def test_action_completed_has_no_body(signed, service):
    service.perform_action.return_value = None
    response = signed("POST", "/actions", ACTION)
    assert response.status_code == 204
    assert response.content == b""


def test_action_unknown_thing(signed, service):
    service.perform_action.return_value = ActionResponse(
        id="a-1", status=ActionRequestStatus.FAILED, error="thing ID was not found at connector"
    )
    response = signed("POST", "/actions", ACTION)
    assert response.status_code == 200
    assert response.json()["status"] == "FAILED"
    assert response.json()["error"] == "thing ID was not found at connector"


@pytest.mark.parametrize("error, status, message", [
    (ActionNotSupportedError(), 400, "action not supported"),
    (ActionQueueFullError(), 503, "too many pending actions, retry later"),
    (RuntimeError("boom"), 500, "Internal server error"),
])
def test_action_rejections_carry_action_response(signed, service, error, status, message):
    service.perform_action.side_effect = error

    response = signed("POST", "/actions", ACTION)

    assert response.status_code == status
    assert response.json() == {"id": "a-1", "status": "FAILED", "error": message}


def test_action_missing_thing_id(signed, service):
    response = signed("POST", "/actions", {"id": "a-1", "actionId": "search"})
    assert response.json()["error"] == "BAD_REQUEST_BODY"
    service.perform_action.assert_not_called()
