"""Internal API endpoints."""

import hmac
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from crm_delivery.appdb import engine
from crm_delivery.db_schema import REQUIRED_TABLES, database_label
from crm_delivery.dependencies import get_delivery_report_service
from crm_delivery.errors import MessageStoreError
from crm_delivery.services.delivery_reports import DEFAULT_RETENTION_DAYS, DeliveryReportService
from crm_delivery.utils.env import get_internal_token, is_internal_token_configured

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", tags=["internal"])


def verify_internal_token(authorization: Annotated[str, Header()] = None):
    """
    Verify the internal API token from Authorization header.

    Raises:
        HTTPException: 500 if token not configured, 401 if invalid/missing.
    """
    if not is_internal_token_configured():
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal API token not configured"
        )

    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header"
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Expected 'Bearer <token>'"
        )

    if not hmac.compare_digest(parts[1].encode(), get_internal_token().encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )

    return True


@router.post("/cleanup-delivery-reports")
def cleanup_delivery_reports(
    _verified: bool = Depends(verify_internal_token),
    days: int = Query(DEFAULT_RETENTION_DAYS, ge=1, description="Delete reports older than this many days"),
    service: DeliveryReportService = Depends(get_delivery_report_service),
):
    """
    Purge delivery reports older than ``days``.

    Example:
        curl -X POST -H "Authorization: Bearer <token>" \\
             "https://<host>/internal/cleanup-delivery-reports?days=90"
    """
    try:
        deleted = service.cleanup_old_reports(days)
    except MessageStoreError as e:
        logger.error(f"Delivery report cleanup failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return JSONResponse({"deleted": deleted, "days": days})


@router.get("/diagnostics/database")
def database_diagnostics(_verified: bool = Depends(verify_internal_token)):
    """Report which database is configured and whether the messaging tables exist."""
    try:
        existing = set(inspect(engine).get_table_names())
    except SQLAlchemyError as e:
        logger.error(f"Database diagnostics failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Diagnostics execution failed: {str(e)}"
        )

    return {
        "database": database_label(),
        "dialect": engine.dialect.name,
        "tables": {name: name in existing for name in REQUIRED_TABLES},
    }
