# crm_delivery/appdb.py
import os
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

DATABASE_URL = os.environ.get("DATABASE_URL")

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set in environment variables")

# Webhook batches fan out to worker threads, so SQLite connections must be
# shareable across threads.
_connect_args = {}
if make_url(DATABASE_URL).get_backend_name() == "sqlite":
    _connect_args["check_same_thread"] = False

# One engine for the whole process
engine = create_engine(
    DATABASE_URL,
    future=True,
    pool_pre_ping=True,
    connect_args=_connect_args,
)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)


@contextmanager
def get_session():
    """Session scope that commits on success and rolls back on error:

    with get_session() as session:
        session.execute(...)
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
