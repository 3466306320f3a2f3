"""Pydantic models for delivery-report webhooks.

Gupshup sends the same report in three shapes: query parameters on a GET, a
flat JSON object on a POST, or a ``{"response": [...]}`` batch on a POST.
Each shape has its own input model; all of them are turned into
:class:`DeliveryReport` before any processing happens.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from crm_delivery.errors import DeliveryReportValidationError
from crm_delivery.time_utils import from_epoch_millis

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str:
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class DeliveryReport(BaseModel):
    """Internal report shape, independent of how the vendor delivered it."""

    external_id: str
    event_type: str = ""
    cause: str = ""
    error_code: str = ""
    dest_addr: str = ""
    src_addr: str = ""
    channel: str = ""
    no_of_frags: Optional[int] = None
    event_ts: Optional[datetime] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class _VendorReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    external_id: str = Field(default="", alias="externalId")
    cause: str = ""
    err_code: str = Field(default="", alias="errCode")
    no_of_frags: Optional[int] = Field(default=None, alias="noOfFrags")

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_scalars(cls, value, info):
        if info.field_name == "no_of_frags":
            return _as_int(value)
        return _as_text(value)


class QueryStringReport(_VendorReport):
    """Single report delivered as GET query parameters."""

    kind: ClassVar[str] = "query"
    delivered_ts: str = Field(default="", alias="deliveredTS")
    status: str = ""
    phone_no: str = Field(default="", alias="phoneNo")
    mask: str = ""

    def to_report(self) -> DeliveryReport:
        return DeliveryReport(
            external_id=self.external_id,
            event_type=self.status,
            cause=self.cause,
            error_code=self.err_code,
            dest_addr=self.phone_no,
            src_addr=self.mask,
            channel="SMS",
            no_of_frags=self.no_of_frags,
            event_ts=from_epoch_millis(self.delivered_ts),
            raw=self.model_dump(by_alias=True),
        )


class PostedReport(_VendorReport):
    """Single report delivered as a flat JSON object."""

    kind: ClassVar[str] = "single"
    event_type: str = Field(default="", alias="eventType")
    event_ts: str = Field(default="", alias="eventTs")
    dest_addr: str = Field(default="", alias="destAddr")
    src_addr: str = Field(default="", alias="srcAddr")
    channel: str = ""
    # Some accounts post the GET-style ``status`` key instead of eventType
    status: str = ""

    def to_report(self) -> DeliveryReport:
        return DeliveryReport(
            external_id=self.external_id,
            event_type=self.event_type or self.status,
            cause=self.cause,
            error_code=self.err_code,
            dest_addr=self.dest_addr,
            src_addr=self.src_addr,
            channel=self.channel,
            no_of_frags=self.no_of_frags,
            event_ts=from_epoch_millis(self.event_ts),
            raw=self.model_dump(by_alias=True),
        )


class PostedReportBatch(BaseModel):
    """Batch of reports delivered as ``{"response": [...]}``."""

    kind: ClassVar[str] = "batch"
    response: List[Any]

    def to_reports(self) -> List[DeliveryReport]:
        reports: List[DeliveryReport] = []
        for item in self.response:
            try:
                reports.append(PostedReport.model_validate(item).to_report())
            except ValidationError:
                # Counted as a per-item failure downstream
                logger.warning("Unparseable report in DLR batch", extra={"item": item})
                reports.append(DeliveryReport(external_id="", raw={"item": item}))
        return reports


DeliveryPayload = Union[QueryStringReport, PostedReport, PostedReportBatch]


def _validate(model, data: Any):
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise DeliveryReportValidationError(
            f"Invalid delivery report: {exc.error_count()} field error(s)"
        ) from exc


def detect_payload(
    method: str,
    query: Optional[Mapping[str, Any]] = None,
    body: Any = None,
) -> DeliveryPayload:
    """Classify a raw webhook request into one of the payload variants.

    Raises:
        DeliveryReportValidationError: when neither a single report (an
            ``externalId``) nor a non-empty ``response`` array is present.
    """

    if method.upper() == "GET":
        params = dict(query or {})
        if not _as_text(params.get("externalId")):
            raise DeliveryReportValidationError("Missing required query parameter: externalId")
        return _validate(QueryStringReport, params)

    if not isinstance(body, dict):
        raise DeliveryReportValidationError(
            "Body must be a delivery report object or {response: [...]}"
        )

    if "response" in body:
        items = body.get("response")
        if not isinstance(items, list) or not items:
            raise DeliveryReportValidationError("'response' must be a non-empty array of reports")
        return _validate(PostedReportBatch, {"response": items})

    if not _as_text(body.get("externalId")):
        raise DeliveryReportValidationError(
            "Missing required field: externalId (or a 'response' array)"
        )
    return _validate(PostedReport, body)


def payload_reports(payload: DeliveryPayload) -> List[DeliveryReport]:
    if isinstance(payload, PostedReportBatch):
        return payload.to_reports()
    return [payload.to_report()]


def parse_delivery_payload(
    method: str,
    query: Optional[Mapping[str, Any]] = None,
    body: Any = None,
    max_batch_size: Optional[int] = None,
) -> List[DeliveryReport]:
    """Detect the payload variant and return the internal reports it carries."""

    payload = detect_payload(method, query=query, body=body)
    if (
        max_batch_size is not None
        and isinstance(payload, PostedReportBatch)
        and len(payload.response) > max_batch_size
    ):
        raise DeliveryReportValidationError(
            f"Batch of {len(payload.response)} reports exceeds the limit of {max_batch_size}"
        )
    return payload_reports(payload)


class StatusUpdateRequest(BaseModel):
    """Body of the simple ``/status`` webhook."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    message_id: Optional[str] = Field(default=None, alias="messageId")
    status: Optional[str] = None
    timestamp: Optional[Union[int, float, str]] = None
    reason: Optional[str] = None


class DeliveryReportOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    message_id: str = Field(serialization_alias="messageId")
    src_addr: Optional[str] = Field(default=None, serialization_alias="srcAddr")
    dest_addr: Optional[str] = Field(default=None, serialization_alias="destAddr")
    channel: Optional[str] = None
    event_type: str = Field(serialization_alias="eventType")
    cause: Optional[str] = None
    cause_description: Optional[str] = Field(default=None, serialization_alias="causeDescription")
    error_code: Optional[str] = Field(default=None, serialization_alias="errorCode")
    event_ts: Optional[str] = Field(default=None, serialization_alias="eventTs")
    no_of_frags: Optional[int] = Field(default=None, serialization_alias="noOfFrags")
    internal_status: str = Field(serialization_alias="internalStatus")
    processed_at: Optional[str] = Field(default=None, serialization_alias="processedAt")


class DeliveryStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int = 0
    sent: int = 0
    delivered: int = 0
    read: int = 0
    failed: int = 0
    success_rate: float = Field(default=0.0, serialization_alias="successRate")
