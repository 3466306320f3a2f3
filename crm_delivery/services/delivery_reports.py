"""Delivery report history: per-message timelines, per-phone listing, stats, retention."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

from crm_delivery.constants import INTERNAL_STATUSES, STATUS_DELIVERED, STATUS_READ
from crm_delivery.errors import MessageNotFoundError
from crm_delivery.repositories import DeliveryReportRepository, MessageRepository
from crm_delivery.schemas import DeliveryReportOut, DeliveryStats
from crm_delivery.time_utils import now_utc, to_iso
from crm_delivery.utils.delivery_status import describe_cause
from crm_delivery.utils.phone import normalize_phone_number

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 90


def serialize_report(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert a delivery_reports row to the camelCase shape the UI expects."""

    out = DeliveryReportOut(
        id=row["id"],
        message_id=row["message_id"],
        src_addr=row.get("src_addr"),
        dest_addr=row.get("dest_addr"),
        channel=row.get("channel"),
        event_type=row["event_type"],
        cause=row.get("cause"),
        cause_description=describe_cause(row.get("cause"), row.get("error_code")) if row.get("cause") else None,
        error_code=row.get("error_code"),
        event_ts=to_iso(row.get("event_ts")),
        no_of_frags=row.get("no_of_frags"),
        internal_status=row["internal_status"],
        processed_at=to_iso(row.get("processed_at")),
    )
    return out.model_dump(by_alias=True)


class DeliveryReportService:
    def __init__(
        self,
        report_repo: DeliveryReportRepository,
        message_repo: Optional[MessageRepository] = None,
    ):
        self.report_repo = report_repo
        self.message_repo = message_repo

    def get_message_timeline(self, message_id: str) -> Dict[str, Any]:
        """
        Delivery timeline for one message.

        Raises:
            MessageNotFoundError: if the message is unknown.
        """
        current_status = None
        if self.message_repo is not None:
            message = self.message_repo.get_message_by_external_id(message_id)
            if message is None:
                raise MessageNotFoundError(message_id)
            current_status = message.get("status")

        reports = [serialize_report(row) for row in self.report_repo.list_for_message(message_id)]
        latest = self.report_repo.latest_for_message(message_id) if reports else None
        return {
            "messageId": message_id,
            "currentStatus": current_status,
            "deliveryReports": reports,
            "latestReport": serialize_report(latest) if latest else None,
        }

    def list_for_phone(self, phone: str, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        rows = self.report_repo.list_for_phone(self._phone_key(phone), limit=limit, offset=offset)
        return [serialize_report(row) for row in rows]

    def get_stats(self, phone: Optional[str] = None) -> Dict[str, Any]:
        """Counts per internal status plus the share delivered or read, in percent."""
        phone_key = self._phone_key(phone) if phone is not None else None
        counts = self.report_repo.count_by_status(phone_key)

        stats = DeliveryStats()
        for status in INTERNAL_STATUSES:
            setattr(stats, status, counts.get(status, 0))
        stats.total = sum(counts.values())
        if stats.total > 0:
            stats.success_rate = (
                (counts.get(STATUS_DELIVERED, 0) + counts.get(STATUS_READ, 0)) / stats.total * 100
            )
        return stats.model_dump(by_alias=True)

    def cleanup_old_reports(self, days_old: int = DEFAULT_RETENTION_DAYS) -> int:
        cutoff = now_utc() - timedelta(days=days_old)
        deleted = self.report_repo.delete_older_than(cutoff)
        logger.info("Deleted old delivery reports", extra={"deleted": deleted, "days_old": days_old})
        return deleted

    @staticmethod
    def _phone_key(phone: str) -> str:
        # dest_addr is stored normalized, e.g. +919892488888
        return normalize_phone_number(phone)
