"""
shared/__init__.py

Shared building blocks used across the connector.

This package contains functionality used by several layers:
- models: protocol messages and domain records
- errors: protocol error catalogue and domain exceptions
- signing: canonical request payload and Ed25519 signature verification
- utils: small helpers for logging and JSON handling
"""
