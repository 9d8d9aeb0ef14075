"""
conftest.py – central pytest configuration and test bootstrap.

Pytest imports this module before it collects any test files, which lets us prepare the
environment the application's configuration layer reads at import time:

1) Extend `sys.path` with the project root so absolute imports like `from core ...` and
   `from shared ...` resolve without an editable install.
2) Generate a throwaway Ed25519 key pair and export its public half as
   `GIPHY_CONNECTOR_PUBLIC_KEY`, which `config` requires. The private half is exposed through
   fixtures so API tests can sign callbacks the way the platform does.
3) Disable file logging and point the database at a scratch location.
"""

import base64
import os
import sys
from email.utils import formatdate
from pathlib import Path

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

# Ensure project root is on sys.path for direct imports like `core`, `shared`, etc.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

PLATFORM_PRIVATE_KEY = Ed25519PrivateKey.generate()
PLATFORM_PUBLIC_KEY_B64 = base64.b64encode(
    PLATFORM_PRIVATE_KEY.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
).decode("ascii")

# Provide required environment defaults for tests
os.environ["GIPHY_CONNECTOR_PUBLIC_KEY"] = PLATFORM_PUBLIC_KEY_B64
os.environ["LOG_FILE_PATH"] = ""
os.environ.setdefault("GIPHY_CLIENT", "mock")
os.environ.setdefault("DATABASE_PATH", str(PROJECT_ROOT / ".pytest_data" / "giphy_connector.db"))


@pytest.fixture
def platform_private_key():
    return PLATFORM_PRIVATE_KEY


@pytest.fixture
def platform_public_key():
    return PLATFORM_PRIVATE_KEY.public_key()


@pytest.fixture
def http_date():
    return formatdate(usegmt=True)


@pytest.fixture
def platform_public_key_b64():
    return PLATFORM_PUBLIC_KEY_B64
