"""Environment helpers for webhook and internal services."""

import logging
import os
from typing import List, Optional

from crm_delivery.constants import DEFAULT_MAX_BATCH_SIZE

logger = logging.getLogger(__name__)


def _get_stripped(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def get_webhook_secret() -> Optional[str]:
    """
    Get the shared secret Gupshup sends in ``X-Gupshup-Signature``.

    Returns:
        The secret or None if not set.
    """
    return _get_stripped("GUPSHUP_WEBHOOK_SECRET")


def get_internal_token() -> Optional[str]:
    """
    Get the bearer token guarding the internal maintenance endpoints.

    Returns:
        The token value or None if not set.
    """
    return _get_stripped("INTERNAL_API_TOKEN")


def is_internal_token_configured() -> bool:
    """
    Check if the internal API token is configured.

    Returns:
        True if INTERNAL_API_TOKEN is set to a non-blank value, False otherwise.
    """
    return get_internal_token() is not None


def get_max_batch_size() -> int:
    """Largest number of reports accepted in one batched DLR callback."""
    raw = _get_stripped("DLR_MAX_BATCH_SIZE")
    if raw is None:
        return DEFAULT_MAX_BATCH_SIZE
    try:
        value = int(raw)
    except ValueError:
        logger.warning("DLR_MAX_BATCH_SIZE must be an integer; ignoring value: %s", raw)
        return DEFAULT_MAX_BATCH_SIZE
    if value < 1:
        logger.warning("DLR_MAX_BATCH_SIZE must be positive; ignoring value: %s", raw)
        return DEFAULT_MAX_BATCH_SIZE
    return value


def get_cors_origins() -> List[str]:
    """Comma separated CORS_ALLOW_ORIGINS, defaulting to every origin."""
    raw = _get_stripped("CORS_ALLOW_ORIGINS")
    if raw is None:
        return ["*"]
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def get_log_level() -> str:
    return (_get_stripped("LOG_LEVEL") or "INFO").upper()
