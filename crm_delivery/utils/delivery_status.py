"""Delivery status normalization helpers.

Gupshup delivery reports carry a ``(status, cause, errCode)`` triple. All of
them are mapped to one of the internal message statuses: ``delivered`` or
``failed``. The mapping is fail-closed: anything we do not recognize as a
delivery is reported as ``failed``, never ``sent`` or ``read``.
"""
from __future__ import annotations

from typing import Optional

from crm_delivery.constants import (
    DELIVERED_FAMILY,
    FAILED_FAMILY,
    STATUS_DELIVERED,
    STATUS_FAILED,
)

_SUCCESS_MARKER = ("SUCCESS", "000")

# (cause, errCode, human readable reason) as published in the vendor DLR docs.
_FAILURE_CAUSES = (
    ("ABSENT_SUBSCRIBER", "001", "Absent subscriber"),
    ("CALL_BARRED", "002", "Call barred by operator"),
    ("UNKNOWN_SUBSCRIBER", "003", "Unknown subscriber"),
    ("SERVICE_DOWN", "004", "Service down"),
    ("SYSTEM_FAILURE", "005", "System failure"),
    ("DND_FAIL", "006", "Number is registered for DND"),
    ("BLOCKED", "007", "Number blocked"),
    ("DND_TIMEOUT", "008", "DND check timed out"),
    ("OUTSIDE_WORKING_HOURS", "009", "Outside working hours"),
    ("OTHER", "00a", "Other error"),
    ("BLOCKED_MASK", "00b", "Sender mask blocked"),
)

_STATUS_TABLE: dict[tuple[str, str, str], str] = {}

for _status in DELIVERED_FAMILY:
    _STATUS_TABLE[(_status, "SUCCESS", "000")] = STATUS_DELIVERED

for _status in ("FAILED", "FAILURE", "UNDELIV"):
    for _cause, _code, _ in _FAILURE_CAUSES:
        _STATUS_TABLE[(_status, _cause, _code)] = STATUS_FAILED

_STATUS_TABLE.update(
    {
        ("EXPIRED", "SMSCTIMEDOUT", "00c"): STATUS_FAILED,
        ("FAILED", "CANCEL_CAUSEID", "00d"): STATUS_FAILED,
        ("FAILED", "CANCEL_SCHEDULE", "00e"): STATUS_FAILED,
        ("FAILED", "DEFERRED", "010"): STATUS_FAILED,
        ("UNDELIV", "INBOXFULL", "011"): STATUS_FAILED,
        ("UNDELIV", "CONGESTION", "012"): STATUS_FAILED,
        ("EXPIRED", "NO_ACK_FROM_OPERATOR", "013"): STATUS_FAILED,
        ("FAILED", "MSG_DOES_NOT_MATCH_TEMPLATE", "038"): STATUS_FAILED,
    }
)

_CAUSE_DESCRIPTIONS: dict[str, str] = {cause: text for cause, _, text in _FAILURE_CAUSES}
_CAUSE_DESCRIPTIONS.update(
    {
        "SUCCESS": "Delivered",
        "SMSCTIMEDOUT": "SMSC timed out",
        "CANCEL_CAUSEID": "Cancelled",
        "CANCEL_SCHEDULE": "Scheduled message cancelled",
        "DEFERRED": "Deferred",
        "INBOXFULL": "Recipient inbox full",
        "CONGESTION": "Network congestion",
        "NO_ACK_FROM_OPERATOR": "No acknowledgement from operator",
        "MSG_DOES_NOT_MATCH_TEMPLATE": "Message does not match the registered template",
    }
)


def normalize_error_code(error_code: Optional[str]) -> str:
    """Return the comparable form of a vendor error code.

    Codes are lower-cased tokens; bare decimal codes are zero-padded to three
    characters so ``"3"`` and ``"003"`` compare equal.
    """

    code = str(error_code or "").strip().lower()
    if code.isdigit() and len(code) < 3:
        code = code.zfill(3)
    return code


def normalize_delivery_status(
    status: Optional[str],
    cause: Optional[str] = None,
    error_code: Optional[str] = None,
) -> str:
    """Map a vendor ``(status, cause, errCode)`` triple to an internal status.

    Lookup precedence:

    1. the exact triple from the vendor table;
    2. a ``DELIVERED``/``SUCCESS`` status is ``delivered``;
    3. a ``FAILED``/``FAILURE``/``UNDELIV``/``EXPIRED`` status is ``failed``
       unless the cause/code pair is the ``SUCCESS``/``000`` marker;
    4. everything else is ``failed``.

    Never raises.
    """

    status_key = str(status or "").strip().upper()
    cause_key = str(cause or "").strip().upper()
    code_key = normalize_error_code(error_code)

    mapped = _STATUS_TABLE.get((status_key, cause_key, code_key))
    if mapped is not None:
        return mapped

    if status_key in DELIVERED_FAMILY:
        return STATUS_DELIVERED

    if status_key in FAILED_FAMILY and (cause_key, code_key) == _SUCCESS_MARKER:
        return STATUS_DELIVERED

    return STATUS_FAILED


def describe_cause(cause: Optional[str], error_code: Optional[str] = None) -> str:
    """Human readable reason for a DLR cause, falling back to the raw cause."""

    cause_key = str(cause or "").strip().upper()
    if cause_key in _CAUSE_DESCRIPTIONS:
        return _CAUSE_DESCRIPTIONS[cause_key]
    code = normalize_error_code(error_code)
    if cause_key and code:
        return f"{cause_key} ({code})"
    return cause_key or "Unknown"


def status_table() -> dict[tuple[str, str, str], str]:
    """Copy of the explicit vendor mapping, keyed by normalized triple."""

    return dict(_STATUS_TABLE)
