"""FastAPI application for the clinic subscription engine."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from core.env import load_dotenv_if_available
from core.logging import get_logger
from web import routers

load_dotenv_if_available()
logger = get_logger(__name__)

app = FastAPI(
    title="Clinic Subscription API",
    description="Subscription, trial and entitlement lifecycle for veterinary clinics.",
    version="0.1.0",
)


@app.middleware("http")
async def attach_tenant_id(request: Request, call_next):
    """Expose the tenant identifier on request.state for downstream dependencies."""
    tenant_id = request.headers.get("x-tenant-id")
    request.state.tenant_id = tenant_id.strip() if tenant_id else None
    return await call_next(request)


@app.get("/", summary="Health Check", tags=["Default"])
def health_check():
    """Liveness probe."""
    return {"status": "ok", "message": "Clinic subscription API is running."}


@app.get("/healthz", include_in_schema=False)
def readiness_check():
    db_ok, db_error = routers.health.ping_database()
    payload = {"status": "ok" if db_ok else "unhealthy", "database": {"ok": db_ok}}
    if db_error:
        payload["database"]["error"] = db_error
    status_code = status.HTTP_200_OK if db_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=payload)


app.include_router(routers.health.router, prefix="/api/v1")
app.include_router(routers.subscription.router, prefix="/api/v1")
app.include_router(routers.reports.router, prefix="/api/v1")
