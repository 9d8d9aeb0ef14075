"""
shared/utils.py

Shared utility functions used across multiple modules.

Helpers here are deliberately dependency-free so that models, clients and services can all
import them without creating import cycles.
"""

import json
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def mask_secret(secret: Optional[str], visible: int = 4) -> str:
    """
    Mask a token or API key for logging.

    Only the first `visible` characters are kept, the rest is replaced by a fixed marker, so
    log lines can still be correlated without ever carrying a usable credential.

    Args:
        secret (Optional[str]): Token or key to mask.
        visible (int): Number of leading characters to keep (default: 4).

    Returns:
        str: The masked representation, or an empty string for empty input.
    """
    if not secret:
        return ""
    if len(secret) <= visible:
        return "***"
    return secret[:visible] + "...(truncated)"


def truncate_message_for_logging(message: str, max_length: int = 100) -> str:
    """
    Truncate long messages for logging purposes.

    Args:
        message (str): Message to truncate
        max_length (int): Maximum length before truncation (default: 100)

    Returns:
        str: Truncated message with ellipsis if needed
    """
    if len(message) <= max_length:
        return message
    return message[:max_length] + "..."


def safe_json_loads(json_string: str, fallback: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Safely parse a JSON object string with fallback handling.

    Used when reading optional JSON payloads returned by external APIs, where a malformed body
    should degrade to an empty mapping instead of an exception.
    """
    try:
        parsed = json.loads(json_string)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse JSON: {e}. Using fallback value.")
        return fallback or {}
    if not isinstance(parsed, dict):
        return fallback or {}
    return parsed
