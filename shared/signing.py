"""
shared/signing.py

Canonical request representation and Ed25519 signature verification for platform callbacks.

Every callback sent by the platform carries a `Signature` header: a base64 encoded Ed25519
signature over a canonical representation of the request. The representation concatenates
labelled fragments separated by CRLF:

    (method):POST\r\n
    (url):https://connector.example.com/callbacks/installations\r\n
    (Date):Wed, 07 Oct 2020 10:00:00 GMT\r\n
    (body):{"id": "..."}

The public key used for verification is obtained out-of-band when the connector is published
and is fixed for the lifetime of the process.
"""

import base64
import binascii
from dataclasses import dataclass
from typing import Mapping, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from shared.errors import MissingHeaderError

SIGNATURE_HEADER = "Signature"

# Headers included in the signed payload, in payload order.
SIGNED_HEADERS = ("Date",)

FRAGMENT_DELIMITER = b"\r\n"
KEY_VALUE_SEPARATOR = b":"


@dataclass(frozen=True)
class ValidationParameters:
    """Scheme, host and request URI used to rebuild the URL the platform signed."""
    scheme: str
    host: str
    request_uri: str


def auto_proxy_parameters(headers: Mapping[str, str], request_uri: str) -> ValidationParameters:
    """
    Rebuild scheme and host from `X-Forwarded-Proto` / `X-Forwarded-Host`, falling back to
    "https" and the `Host` header when the request did not pass through a proxy.
    """
    scheme = headers.get("X-Forwarded-Proto") or "https"
    host = headers.get("X-Forwarded-Host") or headers.get("Host") or ""
    return ValidationParameters(scheme=scheme, host=host, request_uri=request_uri)


def fixed_host_parameters(host: str, request_uri: str) -> ValidationParameters:
    """Use a configured external host for proxies that do not forward the original host."""
    return ValidationParameters(scheme="https", host=host, request_uri=request_uri)


def signable_payload(
    method: str,
    scheme: str,
    host: str,
    request_uri: str,
    headers: Mapping[str, str],
    body: bytes,
) -> bytes:
    """
    Build the canonical byte payload covered by the request signature.

    Args:
        method (str): HTTP method, e.g. "POST".
        scheme (str): URL scheme the platform used, normally "https".
        host (str): Host (and optional port) the platform addressed.
        request_uri (str): Path plus query string.
        headers (Mapping[str, str]): Request headers; lookups must be case-insensitive.
        body (bytes): Raw request body, possibly empty.

    Returns:
        bytes: The payload to verify.

    Raises:
        MissingHeaderError: If one of `SIGNED_HEADERS` is missing or empty.
    """
    parts = [
        b"(method)" + KEY_VALUE_SEPARATOR + method.encode("utf-8"),
        b"(url)" + KEY_VALUE_SEPARATOR + f"{scheme}://{host}{request_uri}".encode("utf-8"),
    ]
    for name in SIGNED_HEADERS:
        value = headers.get(name)
        if not value:
            raise MissingHeaderError()
        parts.append(f"({name})".encode("utf-8") + KEY_VALUE_SEPARATOR + value.encode("utf-8"))
    parts.append(b"(body)" + KEY_VALUE_SEPARATOR + body)
    return FRAGMENT_DELIMITER.join(parts)


def decode_signature(header_value: Optional[str]) -> Optional[bytes]:
    """Decode the base64 `Signature` header; returns None when absent or not valid base64."""
    if not header_value:
        return None
    try:
        return base64.b64decode(header_value, validate=True)
    except (binascii.Error, ValueError):
        return None


def load_public_key(encoded_key: str) -> Ed25519PublicKey:
    """
    Load the raw 32 byte Ed25519 public key from its base64 form.

    Raises:
        ValueError: If the value is not valid base64 or not a valid Ed25519 key.
    """
    try:
        raw = base64.b64decode(encoded_key, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid public key: {exc}") from exc
    return Ed25519PublicKey.from_public_bytes(raw)


def verify(public_key: Ed25519PublicKey, payload: bytes, signature: bytes) -> bool:
    """Report whether `signature` is a valid signature of `payload` under `public_key`."""
    try:
        public_key.verify(signature, payload)
    except InvalidSignature:
        return False
    return True


def sign(private_key: Ed25519PrivateKey, payload: bytes) -> bytes:
    """Sign a canonical payload. Used by tests and local tooling that impersonate the platform."""
    return private_key.sign(payload)
