"""Shared test configuration and fixtures for backend tests.

Key principles:
- All HTTP calls go through the local ASGI app via httpx.AsyncClient.
- Every test gets its own in-process Mongo double (mongomock-motor), so no
  server is needed and nothing leaks between tests.
- AnyIO is the single async runner (@pytest.mark.anyio).
"""

from typing import Any, AsyncGenerator, Callable, Dict

import sys
from datetime import timedelta
from pathlib import Path

import httpx
import pytest
from httpx import ASGITransport
from mongomock_motor import AsyncMongoMockClient

# Ensure backend root is on sys.path so that `server` module is importable
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from server import app
from travel_window.auth import create_access_token
from travel_window.db import get_db
from travel_window.indexes.booking_indexes import ensure_booking_indexes
from travel_window.schemas.actors import Actor
from travel_window.schemas.suppliers import SupplierCreate
from travel_window.repositories.supplier_repository import SupplierRepository
from travel_window.utils import now_utc


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Force pytest-anyio to use asyncio event loop."""

    return "asyncio"


@pytest.fixture(scope="function")
async def test_db() -> AsyncGenerator[Any, None]:
    """Function-scoped isolated database with the production indexes."""

    client = AsyncMongoMockClient()
    db = client["travel_window_test"]
    await ensure_booking_indexes(db)
    yield db


@pytest.fixture(scope="function")
async def app_with_overrides(test_db) -> AsyncGenerator[Any, None]:
    """FastAPI app instance whose get_db dependency points to test_db."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield app
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def async_client(app_with_overrides) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app instance."""

    transport = ASGITransport(app=app_with_overrides)
    async with httpx.AsyncClient(transport=transport, base_url="http://test", timeout=30.0) as client:
        yield client


# ---------------------------------------------------------------------------
# Actors & tokens
# ---------------------------------------------------------------------------

ACTORS: Dict[str, Actor] = {
    "AGENT1": Actor(id="u_agent1", name="Asha Agent", role="AGENT1"),
    "AGENT2": Actor(id="u_agent2", name="Bilal Agent", role="AGENT2"),
    "ACCOUNT": Actor(id="u_account", name="Chen Account", role="ACCOUNT"),
    "ADMIN": Actor(id="u_admin", name="Dana Admin", role="ADMIN"),
}


@pytest.fixture
def actors() -> Dict[str, Actor]:
    return ACTORS


@pytest.fixture
def auth_headers() -> Callable[[str], Dict[str, str]]:
    """Return a function building bearer headers for a role."""

    def _headers(role: str) -> Dict[str, str]:
        actor = ACTORS[role]
        token = create_access_token(subject=actor.id, name=actor.name, role=actor.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ---------------------------------------------------------------------------
# Domain seed helpers
# ---------------------------------------------------------------------------


@pytest.fixture
async def suppliers(test_db) -> Dict[str, str]:
    """Two suppliers: a regular one and the outsourced channel."""

    repo = SupplierRepository(test_db)
    direct = await repo.create(SupplierCreate(name="SkyDirect"))
    outsourced = await repo.create(SupplierCreate(name="Agent2"))
    return {"direct": direct.id, "outsourced": outsourced.id}


def _iso(dt) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


@pytest.fixture
def booking_payload() -> Callable[..., Dict[str, Any]]:
    """Build a valid create-booking body; keyword arguments override fields."""

    def _payload(**overrides: Any) -> Dict[str, Any]:
        travel = now_utc() + timedelta(days=30)
        body: Dict[str, Any] = {
            "paxName": "john doe",
            "contactPerson": "Jane Doe",
            "contactNumber": "9876543210",
            "pnr": "ab123",
            "sectorType": "One Way",
            "travelDate": _iso(travel),
            "from": "delhi",
            "to": "mumbai",
            "airline": "IndiGo",
            "ourCost": 800,
            "salePrice": 1000,
            "payments": [],
        }
        body.update(overrides)
        return body

    return _payload
