"""Shared constants for message statuses and vendor delivery-report vocabulary."""

from __future__ import annotations

# Internal message statuses stored on messages.status.
STATUS_SENT = "sent"
STATUS_DELIVERED = "delivered"
STATUS_READ = "read"
STATUS_FAILED = "failed"

INTERNAL_STATUSES: tuple[str, ...] = (
    STATUS_SENT,
    STATUS_DELIVERED,
    STATUS_READ,
    STATUS_FAILED,
)

# Vendor status families as they appear in Gupshup DLRs.
DELIVERED_FAMILY: frozenset[str] = frozenset({"DELIVERED", "SUCCESS"})
FAILED_FAMILY: frozenset[str] = frozenset({"FAILED", "FAILURE", "UNDELIV", "EXPIRED"})

# Gupshup caps a batched DLR callback at 20 reports.
DEFAULT_MAX_BATCH_SIZE = 20

# Real-time event emitted when a message status changes.
EVENT_MESSAGE_STATUS_UPDATED = "message-status-updated"
