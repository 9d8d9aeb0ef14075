"""
shared/errors.py

Error types shared by the callback protocol, the provider and the persistence layer.

Two families live here. `ConnectorError` subclasses carry a protocol error code, a human readable
description and the HTTP status the callback handler must answer with; together they form the
catalogue the platform knows about. The remaining exceptions are domain errors raised by
background components (registry, provider, clients). They never reach the platform verbatim:
the HTTP layer either maps them to a catalogue entry or to the generic internal error.
"""

from typing import Any, Dict, Optional


class ConnectorError(Exception):
    """
    Protocol-level error with a stable code, a description and an HTTP status.

    The JSON shape written to the platform is `{"error": code, "description": text, "status": int}`.
    Subclasses set the three class attributes; a custom description may be passed per raise.
    """
    code = "INTERNAL_SERVER_ERROR"
    description = "Internal server error"
    status = 500

    def __init__(self, description: Optional[str] = None):
        if description is not None:
            self.description = description
        super().__init__(self.description)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "description": self.description,
            "status": self.status,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.code!r}, status={self.status})"


# Request decoding and lookup errors

class BadContentTypeError(ConnectorError):
    code, description, status = "BAD_CONTENT_TYPE", "Expected content type to be application/json", 400


class MissingInstanceIdError(ConnectorError):
    code, description, status = "MISSING_INSTANCE_ID", "Instance ID is missing", 400


class MissingInstallationIdError(ConnectorError):
    code, description, status = "MISSING_INSTALLATION_ID", "Installation ID is missing", 400


class BadRequestBodyError(ConnectorError):
    code, description, status = "BAD_REQUEST_BODY", "Empty or malformed request body", 400


class InvalidJsonBodyError(ConnectorError):
    code, description, status = "INVALID_JSON_BODY", "Request body does not contain valid json", 400


class InstallationNotFoundError(ConnectorError):
    code, description, status = "INSTALLATION_NOT_FOUND", "Installation not found", 404


class InstanceNotFoundError(ConnectorError):
    code, description, status = "INSTANCE_NOT_FOUND", "Instance not found", 404


class InternalServerError(ConnectorError):
    pass


# Signature validation errors

class MissingHeaderError(ConnectorError):
    code = "MISSING_HEADER"
    description = "Signable payload can not be generated since a relevant header is missing"
    status = 400


class BadSignatureError(ConnectorError):
    code, description, status = "BAD_SIGNATURE", "Signature seems to be invalid", 400


class InvalidBodyError(ConnectorError):
    code, description, status = "INVALID_BODY", "Unable to read message body", 400


# Action admission errors

class ActionNotSupportedError(ConnectorError):
    code, description, status = "ACTION_NOT_SUPPORTED", "action not supported", 400


class ActionQueueFullError(ConnectorError):
    code, description, status = "ACTION_QUEUE_FULL", "too many pending actions, retry later", 503


# Reserved protocol codes. They complete the catalogue shared with the platform; callbacks are
# authenticated by signature only and the connector never signs, so nothing here raises them.

class ForbiddenError(ConnectorError):
    code, description, status = "FORBIDDEN", "Insufficient rights", 403


class UnauthorizedError(ConnectorError):
    code, description, status = "NOT_AUTHORIZED", "Not authorized", 401


class SigningFailedError(ConnectorError):
    code, description, status = "SIGNING_FAILED", "Failed to sign the request", 400


# Domain errors

class NotFoundError(LookupError):
    """Raised when an installation, instance or thing is unknown to the registry or the database."""


class CredentialNotFoundError(LookupError):
    """
    Raised when no API credential can be resolved for an installation.

    Either the installation is not registered with the provider or its configuration has no
    `giphy_api_key` entry.
    """


class GifApiError(Exception):
    """Raised by GIF API clients for transport, HTTP and payload failures."""


class PlatformClientError(Exception):
    """Raised by the platform client when the Things API rejects or fails a call."""


class ChannelClosedError(Exception):
    """Raised when publishing to, or enqueueing on, a channel that was closed during shutdown."""
