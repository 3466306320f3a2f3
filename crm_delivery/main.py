import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crm_delivery.db_schema import ensure_schema
from crm_delivery.errors import SchemaMissingError
from crm_delivery.routers import delivery_reports, internal, notifications, webhook
from crm_delivery.utils.env import get_cors_origins, get_log_level

logging.basicConfig(
    level=get_log_level(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

try:
    ensure_schema()
except SchemaMissingError as exc:
    raise RuntimeError(str(exc)) from exc
except Exception as exc:
    raise RuntimeError(f"Failed to validate database schema: {exc}") from exc

app = FastAPI(title="Messaging CRM delivery service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(delivery_reports.router)
app.include_router(notifications.router)
app.include_router(internal.router)


@app.get("/health")
def health():
    return {"ok": True}
