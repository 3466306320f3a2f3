"""Delivery-report ingress: apply vendor DLRs to stored messages.

Each report in a request is handled on its own: a missing message or a store
error on one report is counted as a failure and never aborts the rest of the
batch. Only when every report failed on the store itself is the request as a
whole considered failed, so the vendor retries it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from fastapi.concurrency import run_in_threadpool

from crm_delivery.errors import MessageNotFoundError, MessageStoreError
from crm_delivery.repositories import DeliveryReportRepository, MessageRepository
from crm_delivery.schemas import DeliveryReport
from crm_delivery.services.notifier import StatusNotifier, notify_status_change
from crm_delivery.time_utils import now_utc
from crm_delivery.utils.delivery_status import normalize_delivery_status

logger = logging.getLogger(__name__)

OUTCOME_PROCESSED = "processed"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_INVALID = "invalid"
OUTCOME_STORE_ERROR = "store_error"


@dataclass
class ReportOutcome:
    external_id: str
    outcome: str
    status: Optional[str] = None
    changed: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == OUTCOME_PROCESSED


@dataclass
class IngressResult:
    outcomes: List[ReportOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def processed(self) -> int:
        return sum(1 for item in self.outcomes if item.ok)

    @property
    def failed(self) -> int:
        return self.total - self.processed

    def as_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Delivery report processed",
            "processed": self.processed,
            "failed": self.failed,
            "total": self.total,
        }


class DeliveryReportIngress:
    """Normalizes DLRs, writes message statuses and fans out status changes."""

    def __init__(
        self,
        message_repo: MessageRepository,
        report_repo: Optional[DeliveryReportRepository] = None,
        notifier: Optional[StatusNotifier] = None,
    ):
        self.message_repo = message_repo
        self.report_repo = report_repo
        self.notifier = notifier

    async def process_reports(self, reports: Sequence[DeliveryReport]) -> IngressResult:
        """Apply every report concurrently and return the per-item outcomes.

        Raises:
            MessageStoreError: if every report failed with a store error.
        """

        outcomes = await asyncio.gather(*[self._process_one(report) for report in reports])
        result = IngressResult(outcomes=list(outcomes))

        if result.total and all(item.outcome == OUTCOME_STORE_ERROR for item in result.outcomes):
            raise MessageStoreError(result.outcomes[0].error or "Message store unavailable")

        logger.info(
            "Delivery reports applied",
            extra={"processed": result.processed, "failed": result.failed, "total": result.total},
        )
        return result

    async def apply_status(self, external_id: str, status: str) -> ReportOutcome:
        """Write an already-internal status for one message (``/status`` webhook).

        Raises:
            MessageNotFoundError: if no message exists for external_id.
            MessageStoreError: if the store fails.
        """

        message = await run_in_threadpool(self.message_repo.get_message_by_external_id, external_id)
        if message is None:
            raise MessageNotFoundError(external_id)
        return await self._write_status(message, status)

    async def _process_one(self, report: DeliveryReport) -> ReportOutcome:
        external_id = report.external_id
        if not external_id:
            logger.warning("Delivery report without externalId", extra={"payload": report.raw})
            return ReportOutcome(external_id="", outcome=OUTCOME_INVALID, error="Missing externalId")

        status = normalize_delivery_status(report.event_type, report.cause, report.error_code)

        try:
            message = await run_in_threadpool(self.message_repo.get_message_by_external_id, external_id)
            if message is None:
                raise MessageNotFoundError(external_id)
            outcome = await self._write_status(message, status)
        except MessageNotFoundError as exc:
            logger.info("Message not found for delivery report", extra={"external_id": external_id})
            return ReportOutcome(external_id, OUTCOME_NOT_FOUND, status=status, error=str(exc))
        except MessageStoreError as exc:
            logger.error(
                "Failed to apply delivery report",
                exc_info=exc,
                extra={"external_id": external_id, "status": status},
            )
            return ReportOutcome(external_id, OUTCOME_STORE_ERROR, status=status, error=str(exc))

        await self._record_report(report, status)
        return outcome

    async def _write_status(self, message: Dict[str, Any], status: str) -> ReportOutcome:
        external_id = message["message_id"]
        changed = False
        if message.get("status") != status:
            changed = await run_in_threadpool(
                self.message_repo.update_status, external_id, status, now_utc()
            )

        if changed:
            logger.info(
                "Message status updated",
                extra={"external_id": external_id, "from_status": message.get("status"), "to_status": status},
            )
            await notify_status_change(self.notifier, message, status)

        return ReportOutcome(external_id, OUTCOME_PROCESSED, status=status, changed=changed)

    async def _record_report(self, report: DeliveryReport, status: str) -> None:
        """Append the report to the delivery log, skipping exact redeliveries."""

        if self.report_repo is None:
            return

        try:
            if report.event_ts is not None and await run_in_threadpool(
                self.report_repo.report_exists, report.external_id, report.event_type, report.event_ts
            ):
                logger.info(
                    "Duplicate delivery report ignored",
                    extra={"external_id": report.external_id, "event_type": report.event_type},
                )
                return
            await run_in_threadpool(self.report_repo.create_report, report, status)
        except MessageStoreError as exc:
            # The status write already succeeded; the history row is best effort
            logger.warning(
                "Failed to record delivery report",
                exc_info=exc,
                extra={"external_id": report.external_id},
            )
