"""
Tests for `shared/signing.py`: canonical payload layout and Ed25519 verification.
"""

import base64

import pytest

from shared.errors import MissingHeaderError
from shared.signing import (
    auto_proxy_parameters,
    decode_signature,
    fixed_host_parameters,
    load_public_key,
    sign,
    signable_payload,
    verify,
)

DATE = "Wed, 07 Oct 2020 10:00:00 GMT"


def test_payload_layout():
    payload = signable_payload(
        "POST", "https", "connector.example.com", "/callbacks/installations",
        {"Date": DATE}, b'{"id":"abc"}',
    )
    assert payload == (
        b"(method):POST\r\n"
        b"(url):https://connector.example.com/callbacks/installations\r\n"
        b"(Date):Wed, 07 Oct 2020 10:00:00 GMT\r\n"
        b'(body):{"id":"abc"}'
    )


def test_payload_with_empty_body_keeps_body_fragment():
    payload = signable_payload("DELETE", "https", "h", "/callbacks/installations/1", {"Date": DATE}, b"")
    assert payload.endswith(b"\r\n(body):")


def test_missing_date_header_raises():
    with pytest.raises(MissingHeaderError):
        signable_payload("POST", "https", "h", "/", {}, b"")


def test_auto_proxy_parameters_prefer_forwarded_headers():
    params = auto_proxy_parameters(
        {"X-Forwarded-Proto": "http", "X-Forwarded-Host": "public.example.com", "Host": "internal:8080"},
        "/callbacks/actions",
    )
    assert (params.scheme, params.host, params.request_uri) == ("http", "public.example.com", "/callbacks/actions")


def test_auto_proxy_parameters_fall_back_to_host_and_https():
    params = auto_proxy_parameters({"Host": "internal:8080"}, "/x?y=1")
    assert (params.scheme, params.host, params.request_uri) == ("https", "internal:8080", "/x?y=1")


def test_fixed_host_parameters_always_https():
    params = fixed_host_parameters("connector.example.com", "/callbacks/actions")
    assert params.scheme == "https"
    assert params.host == "connector.example.com"


def test_sign_and_verify(platform_private_key, platform_public_key):
    payload = signable_payload("POST", "https", "h", "/p", {"Date": DATE}, b"{}")
    signature = sign(platform_private_key, payload)

    assert verify(platform_public_key, payload, signature)
    assert not verify(platform_public_key, payload + b" ", signature)


def test_decode_signature():
    assert decode_signature(None) is None
    assert decode_signature("") is None
    assert decode_signature("not base64!") is None
    assert decode_signature(base64.b64encode(b"sig").decode()) == b"sig"


def test_load_public_key_round_trips_configured_key(platform_public_key, platform_public_key_b64):
    key = load_public_key(platform_public_key_b64)
    payload = b"payload"
    # Configured key is the platform key
    assert key.public_bytes_raw() == platform_public_key.public_bytes_raw()
    assert verify(key, payload, b"\x00" * 64) is False


def test_load_public_key_rejects_garbage():
    with pytest.raises(ValueError):
        load_public_key("%%%")
    with pytest.raises(ValueError):
        load_public_key(base64.b64encode(b"short").decode())
