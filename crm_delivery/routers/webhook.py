import hmac
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from crm_delivery.constants import INTERNAL_STATUSES
from crm_delivery.dependencies import get_delivery_ingress
from crm_delivery.errors import (
    DeliveryReportValidationError,
    MessageNotFoundError,
    MessageStoreError,
)
from crm_delivery.schemas import StatusUpdateRequest, parse_delivery_payload
from crm_delivery.services.delivery_ingress import DeliveryReportIngress
from crm_delivery.time_utils import now_utc
from crm_delivery.utils.env import get_max_batch_size, get_webhook_secret

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks/gupshup", tags=["webhooks"])

SIGNATURE_HEADER = "x-gupshup-signature"


def _error(status_code: int, message: str, error: Optional[str] = None) -> JSONResponse:
    content: dict = {"success": False, "message": message}
    if error is not None:
        content["error"] = error
    return JSONResponse(content, status_code=status_code)


def _check_signature(request: Request) -> Optional[JSONResponse]:
    """Reject requests whose X-Gupshup-Signature does not match the shared secret.

    Requests without the header are accepted, as are all requests when no
    secret is configured.
    """

    secret = get_webhook_secret()
    signature = request.headers.get(SIGNATURE_HEADER)
    if not secret or signature is None:
        return None

    if hmac.compare_digest(signature.strip().encode(), secret.encode()):
        return None

    logger.warning("Rejected Gupshup webhook with invalid signature", extra={"path": request.url.path})
    return _error(401, "Invalid webhook signature")


async def _read_body(request: Request) -> Any:
    """Return the POST payload as JSON, or as a dict for form-encoded bodies."""

    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form_data = await request.form()
        return dict(form_data)

    raw_body = await request.body()
    if not raw_body.strip():
        return None

    try:
        return await request.json()
    except ValueError:
        logger.warning("Delivery report body is not valid JSON")
        return None


async def _handle_delivery_report(
    request: Request, ingress: DeliveryReportIngress, method: str
) -> JSONResponse:
    rejected = _check_signature(request)
    if rejected is not None:
        return rejected

    query = dict(request.query_params)
    body = await _read_body(request) if method == "POST" else None

    # A POST with an empty body but report fields in the query string is
    # handled like the GET flavour
    if method == "POST" and body is None and query.get("externalId"):
        method = "GET"

    try:
        reports = parse_delivery_payload(
            method, query=query, body=body, max_batch_size=get_max_batch_size()
        )
    except DeliveryReportValidationError as exc:
        logger.warning("Malformed delivery report", extra={"reason": str(exc), "payload": body or query})
        return _error(400, str(exc))

    logger.info("Delivery report received", extra={"method": method, "reports": len(reports)})

    try:
        result = await ingress.process_reports(reports)
    except MessageStoreError as exc:
        logger.error("Delivery report batch failed", exc_info=exc)
        return _error(500, "Error processing delivery report", error=str(exc))

    return JSONResponse(result.as_response(), status_code=200)


@router.get("/delivery-report")
async def delivery_report_get(
    request: Request,
    ingress: DeliveryReportIngress = Depends(get_delivery_ingress),
):
    """
    Gupshup delivery report callback, single report in the query string.

    Query parameters: externalId, deliveredTS, status, cause, phoneNo,
    errCode, noOfFrags, mask.
    """
    return await _handle_delivery_report(request, ingress, method="GET")


@router.post("/delivery-report")
async def delivery_report_post(
    request: Request,
    ingress: DeliveryReportIngress = Depends(get_delivery_ingress),
):
    """
    Gupshup delivery report callback with a JSON body.

    The body is either one flat report or ``{"response": [report, ...]}``
    with at most DLR_MAX_BATCH_SIZE reports. The response is always 200 once
    the payload is understood, even if some reports failed, so the vendor
    does not resend reports that were already applied.
    """
    return await _handle_delivery_report(request, ingress, method="POST")


@router.post("/status")
async def status_update(
    request: Request,
    ingress: DeliveryReportIngress = Depends(get_delivery_ingress),
):
    """Message status webhook carrying an internal status value directly."""

    rejected = _check_signature(request)
    if rejected is not None:
        return rejected

    body = await _read_body(request)
    try:
        payload = StatusUpdateRequest.model_validate(body if isinstance(body, dict) else {})
    except ValidationError as exc:
        return _error(400, "Invalid status payload", error=str(exc))

    if not payload.message_id or not payload.status:
        return _error(400, "Missing required fields: messageId, status")

    status = payload.status.strip().lower()
    if status not in INTERNAL_STATUSES:
        logger.warning("Unknown status received", extra={"status": payload.status})
        return JSONResponse({"success": True, "message": "Unknown status, ignored"})

    try:
        outcome = await ingress.apply_status(payload.message_id, status)
    except MessageNotFoundError:
        logger.info("Status update for unknown message", extra={"external_id": payload.message_id})
        return JSONResponse(
            {"success": True, "message": "Message not found, ignored", "updated": False}
        )
    except MessageStoreError as exc:
        logger.error("Error updating message status", exc_info=exc)
        return _error(500, "Error updating message status", error=str(exc))

    logger.info(
        "Message status webhook applied",
        extra={"external_id": payload.message_id, "status": status, "reason": payload.reason},
    )
    return JSONResponse(
        {"success": True, "message": "Status updated successfully", "updated": outcome.changed}
    )


@router.get("/test")
def webhook_test():
    return {
        "success": True,
        "message": "Webhook endpoints are working",
        "timestamp": now_utc().isoformat(),
        "endpoints": {
            "deliveryReportGet": f"GET {router.prefix}/delivery-report",
            "deliveryReportPost": f"POST {router.prefix}/delivery-report",
            "status": f"POST {router.prefix}/status",
        },
    }
