# repositories.py
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from .appdb import get_session
from .errors import MessageStoreError
from .models import DeliveryReportRecord, Message
from .schemas import DeliveryReport
from .time_utils import now_utc
from .utils.phone import normalize_phone_number

logger = logging.getLogger(__name__)

_messages = Message.__table__
_reports = DeliveryReportRecord.__table__


class MessageRepository:
    """Owns the messages table: lookup by external id and status write-back."""

    def create_message(
        self,
        message_id: str,
        conversation_id: str,
        body: Optional[str] = None,
        contact_id: Optional[str] = None,
        sender_id: Optional[str] = None,
        direction: str = "outbound",
        type: str = "text",
        status: str = "sent",
        timestamp: Optional[datetime] = None,
    ) -> int:
        """Insert a message as it is handed to the vendor; returns the row id."""
        now = now_utc()
        try:
            with get_session() as session:
                message = Message(
                    message_id=message_id,
                    conversation_id=conversation_id,
                    contact_id=contact_id,
                    sender_id=sender_id,
                    direction=direction,
                    type=type,
                    body=body,
                    status=status,
                    timestamp=timestamp or now,
                    created_at=now,
                )
                session.add(message)
                session.flush()
                return message.id
        except SQLAlchemyError as exc:
            raise MessageStoreError(f"Failed to create message {message_id}") from exc

    def get_message_by_external_id(self, external_id: str) -> Optional[Dict[str, Any]]:
        """
        Find a message by the id we sent to the vendor.
        Returns the message row as a dict, or None.
        """
        query = select(_messages).where(_messages.c.message_id == external_id).limit(1)
        try:
            with get_session() as session:
                row = session.execute(query).mappings().first()
        except SQLAlchemyError as exc:
            raise MessageStoreError(f"Failed to load message {external_id}") from exc
        return dict(row) if row else None

    def update_status(
        self, external_id: str, status: str, occurred_at: Optional[datetime] = None
    ) -> bool:
        """
        Overwrite the message status when it differs from the stored one.
        Returns True if a row changed, False if the status was already set or
        no message exists for external_id.
        """
        query = (
            update(_messages)
            .where(_messages.c.message_id == external_id)
            .where(_messages.c.status != status)
            .values(status=status, status_updated_at=occurred_at or now_utc())
        )
        try:
            with get_session() as session:
                result = session.execute(query)
                return (result.rowcount or 0) > 0
        except SQLAlchemyError as exc:
            raise MessageStoreError(f"Failed to update status for {external_id}") from exc


class DeliveryReportRepository:
    """Owns the delivery_reports table: one row per vendor DLR received."""

    def create_report(self, report: DeliveryReport, internal_status: str) -> int:
        """Insert a delivery report row and return its id."""
        record = DeliveryReportRecord(
            message_id=report.external_id,
            src_addr=report.src_addr or None,
            dest_addr=normalize_phone_number(report.dest_addr) or None,
            channel=report.channel or None,
            event_type=(report.event_type or "UNKNOWN").upper(),
            cause=report.cause or None,
            error_code=report.error_code or None,
            event_ts=report.event_ts or now_utc(),
            no_of_frags=report.no_of_frags,
            internal_status=internal_status,
            provider_payload=report.raw or None,
            processed_at=now_utc(),
        )
        try:
            with get_session() as session:
                session.add(record)
                session.flush()
                return record.id
        except SQLAlchemyError as exc:
            raise MessageStoreError(
                f"Failed to record delivery report for {report.external_id}"
            ) from exc

    def report_exists(self, message_id: str, event_type: str, event_ts: datetime) -> bool:
        """True if the same report (message, event type, vendor timestamp) was stored."""
        query = (
            select(_reports.c.id)
            .where(_reports.c.message_id == message_id)
            .where(_reports.c.event_type == (event_type or "UNKNOWN").upper())
            .where(_reports.c.event_ts == event_ts)
            .limit(1)
        )
        try:
            with get_session() as session:
                return session.execute(query).first() is not None
        except SQLAlchemyError as exc:
            raise MessageStoreError(f"Failed to check delivery reports for {message_id}") from exc

    def list_for_message(self, message_id: str) -> List[Dict[str, Any]]:
        """All reports for a message, oldest first to show a timeline."""
        query = (
            select(_reports)
            .where(_reports.c.message_id == message_id)
            .order_by(_reports.c.event_ts.asc(), _reports.c.id.asc())
        )
        return self._fetch_all(query, f"message {message_id}")

    def latest_for_message(self, message_id: str) -> Optional[Dict[str, Any]]:
        query = (
            select(_reports)
            .where(_reports.c.message_id == message_id)
            .order_by(_reports.c.event_ts.desc(), _reports.c.id.desc())
            .limit(1)
        )
        rows = self._fetch_all(query, f"message {message_id}")
        return rows[0] if rows else None

    def list_for_phone(self, phone: str, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """Reports sent to a destination address, newest first."""
        query = (
            select(_reports)
            .where(_reports.c.dest_addr == phone)
            .order_by(_reports.c.event_ts.desc(), _reports.c.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return self._fetch_all(query, f"phone {phone}")

    def count_by_status(self, phone: Optional[str] = None) -> Dict[str, int]:
        """Report counts grouped by internal status, optionally for one phone."""
        query = select(_reports.c.internal_status, func.count()).group_by(_reports.c.internal_status)
        if phone is not None:
            query = query.where(_reports.c.dest_addr == phone)
        try:
            with get_session() as session:
                return {status: count for status, count in session.execute(query).all()}
        except SQLAlchemyError as exc:
            raise MessageStoreError("Failed to aggregate delivery reports") from exc

    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete reports created before cutoff; returns how many were removed."""
        query = delete(_reports).where(_reports.c.created_at < cutoff)
        try:
            with get_session() as session:
                result = session.execute(query)
                return result.rowcount or 0
        except SQLAlchemyError as exc:
            raise MessageStoreError("Failed to clean up delivery reports") from exc

    def _fetch_all(self, query, label: str) -> List[Dict[str, Any]]:
        try:
            with get_session() as session:
                return [dict(row) for row in session.execute(query).mappings().all()]
        except SQLAlchemyError as exc:
            raise MessageStoreError(f"Failed to load delivery reports for {label}") from exc
