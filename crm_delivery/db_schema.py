"""Utilities to ensure the messaging tables exist before serving webhooks."""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import inspect
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError

from crm_delivery.appdb import DATABASE_URL, engine
from crm_delivery.errors import SchemaMissingError
from crm_delivery.models import Base

logger = logging.getLogger(__name__)

REQUIRED_TABLES: tuple[str, ...] = ("messages", "delivery_reports")


def database_label() -> str:
    """Return a safe, credential-free label for the configured database."""

    url = make_url(DATABASE_URL)
    host = url.host or "localhost"
    name = url.database or ""
    return f"{host}/{name}" if name else host


def _missing_tables(names: Iterable[str]) -> list[str]:
    existing = set(inspect(engine).get_table_names())
    return [name for name in names if name not in existing]


def ensure_schema() -> None:
    """Create any missing messaging tables and verify they are present.

    ``create_all`` only issues CREATE statements for absent tables and
    indexes, so this is safe to run on every startup. If a table is still
    missing afterwards, raise :class:`SchemaMissingError` so the app fails
    early with a clear message.
    """

    missing = _missing_tables(REQUIRED_TABLES)
    if missing:
        logger.info("Creating missing tables %s on %s", ", ".join(missing), database_label())
        try:
            Base.metadata.create_all(bind=engine, checkfirst=True)
        except SQLAlchemyError:
            logger.exception("Failed to create messaging tables")

    missing = _missing_tables(REQUIRED_TABLES)
    if missing:
        raise SchemaMissingError(
            f"DB schema missing {', '.join(missing)}; run migrations for {database_label()}"
        )
