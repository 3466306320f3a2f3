"""SQLAlchemy ORM models for messages and their delivery reports."""
from __future__ import annotations

from sqlalchemy import JSON, BigInteger, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from .time_utils import now_utc

Base = declarative_base()

# SQLite only autoincrements INTEGER primary keys
_PK = BigInteger().with_variant(Integer, "sqlite")
_PAYLOAD = JSON().with_variant(JSONB, "postgresql")


class Message(Base):
    __tablename__ = "messages"

    id = Column(_PK, primary_key=True, autoincrement=True)
    # Generated at send time and echoed back by the vendor as externalId
    message_id = Column(String, nullable=False, unique=True, index=True)
    conversation_id = Column(String, nullable=False, index=True)
    contact_id = Column(String)
    sender_id = Column(String)
    direction = Column(String, nullable=False, default="outbound")
    type = Column(String, nullable=False, default="text")
    body = Column(Text)
    status = Column(String, nullable=False, default="sent")
    status_updated_at = Column(DateTime(timezone=True))
    timestamp = Column(DateTime(timezone=True), default=now_utc, nullable=False)
    created_at = Column(DateTime(timezone=True), default=now_utc, nullable=False)


class DeliveryReportRecord(Base):
    __tablename__ = "delivery_reports"
    __table_args__ = (
        Index("idx_delivery_reports_message_event_ts", "message_id", "event_ts"),
        Index("idx_delivery_reports_dest_event_ts", "dest_addr", "event_ts"),
    )

    id = Column(_PK, primary_key=True, autoincrement=True)
    message_id = Column(String, nullable=False)
    src_addr = Column(String)
    dest_addr = Column(String)
    channel = Column(String)
    event_type = Column(String, nullable=False)
    cause = Column(String)
    error_code = Column(String)
    event_ts = Column(DateTime(timezone=True), nullable=False)
    no_of_frags = Column(Integer)
    internal_status = Column(String, nullable=False)
    provider_payload = Column(_PAYLOAD)
    processed_at = Column(DateTime(timezone=True), default=now_utc, nullable=False)
    created_at = Column(DateTime(timezone=True), default=now_utc, nullable=False)
