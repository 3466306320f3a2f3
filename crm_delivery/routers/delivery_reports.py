"""Read API for delivery reports: per-message timeline, per-phone history, stats."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from crm_delivery.dependencies import get_delivery_report_service
from crm_delivery.errors import MessageNotFoundError, MessageStoreError
from crm_delivery.services.delivery_reports import DeliveryReportService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["delivery_reports"])


@router.get("/conversations/messages/{message_id}/delivery-reports")
def get_message_delivery_reports(
    message_id: str,
    service: DeliveryReportService = Depends(get_delivery_report_service),
):
    """
    Delivery timeline for one message.

    Returns:
        - messageId
        - currentStatus: status stored on the message
        - deliveryReports: every report received, oldest first
        - latestReport: the most recent report, or null
    """
    try:
        data = service.get_message_timeline(message_id)
    except MessageNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MessageStoreError as e:
        logger.exception("Failed to load delivery timeline")
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "data": data}


@router.get("/delivery-reports")
def list_delivery_reports_for_phone(
    phone: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: DeliveryReportService = Depends(get_delivery_report_service),
):
    """Reports sent to one destination number, newest first."""
    try:
        reports = service.list_for_phone(phone, limit=limit, offset=offset)
    except MessageStoreError as e:
        logger.exception("Failed to list delivery reports")
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "data": {"deliveryReports": reports, "limit": limit, "offset": offset}}


@router.get("/delivery-reports/stats")
def get_delivery_stats(
    phone: Optional[str] = Query(None),
    service: DeliveryReportService = Depends(get_delivery_report_service),
):
    """Counts per status and successRate ((delivered + read) / total, in percent)."""
    try:
        stats = service.get_stats(phone)
    except MessageStoreError as e:
        logger.exception("Failed to compute delivery stats")
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "data": stats}
