""" api/callbacks.py: lifecycle and action callbacks sent by the Things platform.

Every route below is protected by `verified_body`, which checks the request's Ed25519 signature
before the endpoint runs. The endpoints then decode the JSON body into the protocol models,
delegate to the connector service stored on `app.state.connector_service` and map the outcome to
the HTTP status codes the platform expects:

- POST   /installations        201 (no body) or 202 (further installation steps)
- DELETE /installations/{id}   204
- POST   /instantiations       201 (no body) or 202 (further instantiation steps)
- DELETE /instantiations/{id}  204
- POST   /actions              204 (completed), 200 with an action response (pending or failed)

`/instances` is accepted as an alias of `/instantiations`.

Protocol errors are raised as `ConnectorError` and rendered by the handler registered in
main.py. Unexpected exceptions from the service are logged and replaced by the generic internal
error so no internal detail reaches the platform.
"""

import json
import logging
from contextlib import contextmanager
from typing import Type, TypeVar

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError
from starlette.requests import ClientDisconnect

from config.logging_config import get_logger
from monitoring.metrics import ERROR_COUNT
from shared.errors import (
    BadContentTypeError,
    BadRequestBodyError,
    BadSignatureError,
    ConnectorError,
    InternalServerError,
    InvalidBodyError,
    InvalidJsonBodyError,
    MissingInstallationIdError,
    MissingInstanceIdError,
)
from shared.models import (
    ActionRequest,
    ActionRequestStatus,
    ActionResponse,
    InstallationRequest,
    InstantiationRequest,
)
from shared.signing import (
    SIGNATURE_HEADER,
    auto_proxy_parameters,
    decode_signature,
    fixed_host_parameters,
    signable_payload,
    verify,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


# --- Signature validation ---

async def verified_body(request: Request) -> bytes:
    """
    FastAPI dependency returning the raw body once the request signature has been verified.

    The verification key is read from `app.state.public_key`. When `app.state.callback_host`
    is set the signed URL is rebuilt from that host, otherwise from the forwarded headers.

    Raises:
        InvalidBodyError: If the client disconnects before the body is read.
        MissingHeaderError: If the Date header is missing.
        BadSignatureError: If the Signature header is absent, undecodable or invalid.
    """
    try:
        body = await request.body()
    except ClientDisconnect:
        raise InvalidBodyError()

    request_uri = request.url.path
    if request.url.query:
        request_uri = f"{request_uri}?{request.url.query}"

    fixed_host = getattr(request.app.state, "callback_host", None)
    if fixed_host:
        params = fixed_host_parameters(fixed_host, request_uri)
    else:
        params = auto_proxy_parameters(request.headers, request_uri)

    payload = signable_payload(request.method, params.scheme, params.host, params.request_uri, request.headers, body)

    signature = decode_signature(request.headers.get(SIGNATURE_HEADER))
    if signature is None or not verify(request.app.state.public_key, payload, signature):
        logger.warning("Rejected callback %s %s: invalid signature", request.method, request_uri)
        ERROR_COUNT.labels(type="http", location="signature").inc()
        raise BadSignatureError()
    return body


router = APIRouter(dependencies=[Depends(verified_body)])


# --- Decoding ---

def decode_body(request: Request, body: bytes, model: Type[ModelT]) -> ModelT:
    """
    Decode a JSON request body into a protocol model.

    Raises:
        BadContentTypeError: If the content type is not application/json.
        BadRequestBodyError: If the body is empty or does not match the model.
        InvalidJsonBodyError: If the body is not valid JSON.
    """
    content_type = request.headers.get("Content-Type", "")
    if content_type.split(";")[0].strip().lower() != "application/json":
        raise BadContentTypeError()
    if not body.strip():
        raise BadRequestBodyError()
    try:
        data = json.loads(body)
    except ValueError:
        raise InvalidJsonBodyError()
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.info("Rejected %s body: %d validation errors", model.__name__, e.error_count())
        raise BadRequestBodyError()


@contextmanager
def internal_errors(operation: str):
    """Let protocol errors through and turn anything else into the generic internal error."""
    try:
        yield
    except ConnectorError:
        raise
    except Exception as e:
        logger.exception("%s failed", operation)
        ERROR_COUNT.labels(type="http", location=operation).inc()
        raise InternalServerError() from e


def _service(request: Request):
    return request.app.state.connector_service


# --- Installations ---

@router.post("/installations")
def add_installation(request: Request, body: bytes = Depends(verified_body)):
    installation = decode_body(request, body, InstallationRequest)
    with internal_errors("add_installation"):
        response = _service(request).add_installation(installation)
    if response is None:
        return Response(status_code=201)
    return JSONResponse(status_code=202, content=response.model_dump(mode="json", by_alias=True, exclude_none=True))


@router.delete("/installations/{installation_id}")
def remove_installation(installation_id: str, request: Request):
    if not installation_id.strip():
        raise MissingInstallationIdError()
    with internal_errors("remove_installation"):
        _service(request).remove_installation(installation_id)
    return Response(status_code=204)


# --- Instantiations ---

@router.post("/instantiations")
@router.post("/instances", include_in_schema=False)
def add_instance(request: Request, body: bytes = Depends(verified_body)):
    instantiation = decode_body(request, body, InstantiationRequest)
    with internal_errors("add_instance"):
        response = _service(request).add_instance(instantiation)
    if response is None:
        return Response(status_code=201)
    return JSONResponse(status_code=202, content=response.model_dump(mode="json", by_alias=True, exclude_none=True))


@router.delete("/instantiations/{instance_id}")
@router.delete("/instances/{instance_id}", include_in_schema=False)
def remove_instance(instance_id: str, request: Request):
    if not instance_id.strip():
        raise MissingInstanceIdError()
    with internal_errors("remove_instance"):
        _service(request).remove_instance(instance_id)
    return Response(status_code=204)


# --- Actions ---

@router.post("/actions")
def perform_action(request: Request, body: bytes = Depends(verified_body)):
    action = decode_body(request, body, ActionRequest)
    action_logger = get_logger(__name__, action_id=action.id)

    try:
        with internal_errors("perform_action"):
            response = _service(request).perform_action(action)
    except ConnectorError as e:
        action_logger.warning("Action %s (%s) failed: %s", action.id, action.action_id, e.description)
        failed = ActionResponse(id=action.id, status=ActionRequestStatus.FAILED, error=e.description)
        return JSONResponse(status_code=e.status, content=failed.model_dump(mode="json"))

    if response is None:
        return Response(status_code=204)
    action_logger.info("Action %s answered with status %s", action.id, response.status.value)
    return JSONResponse(status_code=200, content=response.model_dump(mode="json"))
