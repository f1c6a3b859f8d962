import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generator, Iterator, List, Optional

import httpx
import pytest

os.environ.setdefault("DATABASE_ALLOW_NON_POSTGRES", "1")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("DATABASE_URL", os.getenv("DATABASE_URL", os.environ["TEST_DATABASE_URL"]))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.dialects.postgresql import UUID  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import database as database_module  # noqa: E402
import models  # noqa: E402,F401
from database import IS_POSTGRES, Base  # noqa: E402
from models.tenant import Tenant  # noqa: E402
from services.entitlements import clear_feature_matrix_cache  # noqa: E402
from services.payments.stripe_billing import StripeBillingClient  # noqa: E402

# PostgreSQL-only column types fall back to TEXT on SQLite.
if not IS_POSTGRES:

    @compiles(UUID, "sqlite")  # type: ignore[misc]
    def _compile_uuid_sqlite(_element, _compiler, **_kw):  # pragma: no cover - sqlite compat
        return "TEXT"


FIXED_NOW = datetime(2025, 12, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    test_engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    original_session_local = database_module.SessionLocal
    original_engine = database_module.engine
    database_module.SessionLocal = sessionmaker(bind=test_engine, autoflush=False, expire_on_commit=False)
    database_module.engine = test_engine
    try:
        yield test_engine
    finally:
        database_module.SessionLocal = original_session_local
        database_module.engine = original_engine
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Generator[Session, None, None]:
    session = database_module.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _isolate_plan_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for key in ("PLAN_FEATURES_FILE", "TRIAL_ENDING_SOON_DAYS", "SUBSCRIPTION_SETTINGS_URL"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("APP_BASE_URL", "https://app.example.test")
    monkeypatch.setenv("SUBSCRIPTION_API_BASE_URL", "https://api.example.test")
    clear_feature_matrix_cache()
    try:
        yield
    finally:
        clear_feature_matrix_cache()


@pytest.fixture()
def price_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for plan in ("PROFESIONAL", "CLINICA", "EMPRESA"):
        for interval in ("MONTHLY", "ANNUAL"):
            monkeypatch.setenv(f"STRIPE_PRICE_{plan}_{interval}", f"price_{plan.lower()}_{interval.lower()}")


@pytest.fixture()
def make_tenant(db_session: Session) -> Callable[..., Tenant]:
    def _make(tenant_id: str = "clinic-1", **fields: Any) -> Tenant:
        defaults: Dict[str, Any] = {
            "name": "Clínica Veterinaria Patitas",
            "plan_type": "PROFESIONAL",
            "plan_name": "Plan Profesional",
            "subscription_status": "ACTIVE",
            "is_trial_period": False,
        }
        defaults.update(fields)
        tenant = Tenant(id=tenant_id, **defaults)
        db_session.add(tenant)
        db_session.commit()
        return tenant

    return _make


class FakeStripe:
    """Records Stripe API calls and answers from a route table."""

    def __init__(self) -> None:
        self.calls: List[httpx.Request] = []
        self.routes: Dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}

    def on(self, method: str, path: str, *, status_code: int = 200, json: Optional[dict] = None) -> None:
        self.routes[(method, path)] = lambda _request: httpx.Response(status_code, json=json or {})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": {"message": f"No route for {request.url.path}"}})
        return route(request)

    def client(self) -> StripeBillingClient:
        return StripeBillingClient(
            secret_key="sk_test_123",
            base_url="https://stripe.test",
            transport=httpx.MockTransport(self.handler),
        )

    def paths(self) -> List[str]:
        return [f"{request.method} {request.url.path}" for request in self.calls]


@pytest.fixture()
def fake_stripe() -> FakeStripe:
    return FakeStripe()
