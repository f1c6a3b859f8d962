"""Service health routes."""

from __future__ import annotations

from typing import Optional, Tuple

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

import database

router = APIRouter(prefix="/health", tags=["Health"])


def ping_database() -> Tuple[bool, Optional[str]]:
    """Return database connectivity status and optional error message."""
    db = database.SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return True, None
    except SQLAlchemyError as exc:
        return False, str(exc)
    finally:
        db.close()


@router.get("/status", summary="Service runtime status")
def read_service_status():
    db_ok, db_error = ping_database()
    payload = {"status": "ok" if db_ok else "degraded", "database": {"ok": db_ok}}
    if db_error:
        payload["database"]["error"] = db_error
    return payload
