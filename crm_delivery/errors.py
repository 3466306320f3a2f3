"""Exception types shared by the delivery-status webhook, store and routers."""

from __future__ import annotations


class DeliveryReportValidationError(ValueError):
    """Raised when a webhook payload has no recognizable report shape."""


class MessageNotFoundError(LookupError):
    """Raised when a delivery report references an unknown external id."""

    def __init__(self, external_id: str):
        super().__init__(f"Message not found for externalId {external_id!r}")
        self.external_id = external_id


class MessageStoreError(RuntimeError):
    """Raised when the message store cannot be read or written."""


class SchemaMissingError(RuntimeError):
    """Raised when a required database table is missing."""
