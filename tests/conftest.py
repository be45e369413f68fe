"""
Pytest Configuration and Fixtures

Provides fixtures for:
- An in-memory Supabase client (tables, filters, rpc, auth)
- Mock external services (routing, OneSignal)
- Test data factories
"""
import uuid
from copy import deepcopy
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient, Response
from postgrest.exceptions import APIError

from app.config.config import settings
from app.database.supabase import get_supabase_admin_client, get_supabase_client
from app.main import app


# ============================================================================
# In-memory Supabase
# ============================================================================

UNIQUE_CONSTRAINTS = {
    "rider_payments": [("order_id",), ("rider_request_id",)],
    "push_device_tokens": [("user_id", "device_token")],
}


def _same(stored: Any, expected: Any) -> bool:
    if isinstance(stored, bool) or isinstance(expected, bool):
        return stored is expected
    if stored is None or expected is None:
        return stored is None and expected is None
    return str(stored) == str(expected)


class FakeQuery:
    """Records a PostgREST style call chain and runs it against FakeSupabase."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.on_conflict: Optional[str] = None
        self.filters: list[Callable[[dict], bool]] = []
        self.order_by: Optional[tuple[str, bool]] = None
        self.max_rows: Optional[int] = None
        self.single_mode: Optional[str] = None

    # -- operations ---------------------------------------------------------
    def select(self, *_columns, **_kwargs):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def upsert(self, payload, on_conflict: Optional[str] = None, **_kwargs):
        self.op, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def delete(self):
        self.op = "delete"
        return self

    # -- filters ------------------------------------------------------------
    def eq(self, column: str, value):
        self.filters.append(lambda row: _same(row.get(column), value))
        return self

    def neq(self, column: str, value):
        self.filters.append(lambda row: not _same(row.get(column), value))
        return self

    def in_(self, column: str, values):
        self.filters.append(lambda row: any(_same(row.get(column), v) for v in values))
        return self

    def is_(self, column: str, value):
        if value in ("null", None):
            self.filters.append(lambda row: row.get(column) is None)
        else:
            self.filters.append(lambda row: _same(row.get(column), value))
        return self

    def order(self, column: str, desc: bool = False, **_kwargs):
        self.order_by = (column, desc)
        return self

    def limit(self, count: int):
        self.max_rows = count
        return self

    def single(self):
        self.single_mode = "single"
        return self

    def maybe_single(self):
        self.single_mode = "maybe_single"
        return self

    # -- execution ----------------------------------------------------------
    def _matches(self) -> list[dict]:
        rows = self.db.tables.setdefault(self.table, [])
        return [row for row in rows if all(f(row) for f in self.filters)]

    async def execute(self):
        self.db.calls.append((self.table, self.op))
        failure = self.db.failures.get((self.table, self.op))
        if failure:
            raise failure

        if self.op == "insert":
            return SimpleNamespace(data=self.db._insert(self.table, self.payload))
        if self.op == "upsert":
            return SimpleNamespace(
                data=self.db._upsert(self.table, self.payload, self.on_conflict)
            )
        if self.op == "update":
            for hook in self.db.before_update.pop(self.table, []):
                hook(self.db)
            rows = self._matches()
            for row in rows:
                row.update(deepcopy(self.payload))
            return SimpleNamespace(data=deepcopy(rows))
        if self.op == "delete":
            rows = self._matches()
            self.db.tables[self.table] = [
                r for r in self.db.tables[self.table] if r not in rows
            ]
            return SimpleNamespace(data=deepcopy(rows))

        rows = self._matches()
        if self.order_by:
            column, desc = self.order_by
            rows = sorted(rows, key=lambda r: str(r.get(column) or ""), reverse=desc)
        if self.max_rows is not None:
            rows = rows[: self.max_rows]
        rows = deepcopy(rows)

        if self.single_mode == "maybe_single":
            return SimpleNamespace(data=rows[0]) if rows else None
        if self.single_mode == "single":
            if len(rows) != 1:
                raise APIError({"code": "PGRST116", "message": "Expected one row"})
            return SimpleNamespace(data=rows[0])
        return SimpleNamespace(data=rows)


class FakeAuth:
    def __init__(self, db: "FakeSupabase"):
        self.db = db

    async def get_user(self, token: str):
        user_id = self.db.tokens.get(token)
        if not user_id:
            return None
        return SimpleNamespace(user=SimpleNamespace(id=user_id))


class FakeRpc:
    def __init__(self, result):
        self.result = result

    async def execute(self):
        return SimpleNamespace(data=self.result)


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.before_update: dict[str, list[Callable]] = {}
        self.calls: list[tuple[str, str]] = []
        self.tokens: dict[str, str] = {}
        self.roles: dict[str, set[str]] = {}
        self.auth = FakeAuth(self)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict) -> FakeRpc:
        if name == "has_role":
            return FakeRpc(params["_role"] in self.roles.get(params["_user_id"], set()))
        raise APIError({"code": "PGRST202", "message": f"Unknown function {name}"})

    def rows(self, table: str) -> list[dict]:
        return self.tables.get(table, [])

    def _check_unique(self, table: str, row: dict, ignore: Optional[dict] = None):
        for columns in UNIQUE_CONSTRAINTS.get(table, []):
            values = [row.get(c) for c in columns]
            if any(v is None for v in values):
                continue
            for existing in self.tables.get(table, []):
                if existing is ignore:
                    continue
                if all(_same(existing.get(c), v) for c, v in zip(columns, values)):
                    raise APIError(
                        {
                            "code": "23505",
                            "message": f"duplicate key value violates unique constraint on {table}",
                        }
                    )

    def _insert(self, table: str, payload) -> list[dict]:
        items = payload if isinstance(payload, list) else [payload]
        inserted = []
        for item in items:
            row = {
                "id": str(uuid.uuid4()),
                "created_at": datetime.now(timezone.utc).isoformat(),
                **deepcopy(item),
            }
            self._check_unique(table, row)
            self.tables.setdefault(table, []).append(row)
            inserted.append(deepcopy(row))
        return inserted

    def _upsert(self, table: str, payload, on_conflict: Optional[str]) -> list[dict]:
        columns = [c.strip() for c in (on_conflict or "id").split(",")]
        for existing in self.tables.get(table, []):
            if all(_same(existing.get(c), payload.get(c)) for c in columns):
                existing.update(deepcopy(payload))
                return [deepcopy(existing)]
        return self._insert(table, payload)

    def seed(self, table: str, **row) -> dict:
        return self._insert(table, row)[0]


@pytest.fixture
def fake_db() -> FakeSupabase:
    db = FakeSupabase()
    db.seed(
        "rider_payment_settings",
        base_fee=80,
        per_km_rate=30,
        min_payment=100,
        rider_base_earning=50,
        is_active=True,
    )
    return db


# ============================================================================
# Ambient services
# ============================================================================

@pytest.fixture(autouse=True)
def memory_cache():
    """Replace the Redis backed distance cache with a dict."""
    store: dict[str, dict] = {}

    async def _get(key):
        return store.get(key)

    async def _set(key, data, expire=86400):
        store[key] = data

    with patch("app.services.distance_service.get_cached_json", side_effect=_get), patch(
        "app.services.distance_service.cache_json", side_effect=_set
    ):
        yield store


@pytest.fixture(autouse=True)
def push_unconfigured(monkeypatch):
    monkeypatch.setattr(settings, "ONESIGNAL_APP_ID", None)
    monkeypatch.setattr(settings, "ONESIGNAL_REST_API_KEY", None)


@pytest.fixture
def push_configured(monkeypatch):
    monkeypatch.setattr(settings, "ONESIGNAL_APP_ID", "test-app-id")
    monkeypatch.setattr(settings, "ONESIGNAL_REST_API_KEY", "test-rest-key")


def _mock_http_client(method: str, payload, status_code: int = 200):
    mock_response = MagicMock(spec=Response)
    mock_response.status_code = status_code
    mock_response.is_success = 200 <= status_code < 300
    mock_response.json.return_value = payload

    mock_instance = AsyncMock()
    setattr(mock_instance, method, AsyncMock(return_value=mock_response))
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
    mock_instance.__aexit__ = AsyncMock(return_value=None)
    return mock_instance


@pytest.fixture
def mock_onesignal(push_configured):
    """Mock OneSignal API responses"""
    with patch("httpx.AsyncClient") as mock_client:
        mock_instance = _mock_http_client(
            "post", {"id": "notification-1", "recipients": 1}
        )
        mock_client.return_value = mock_instance
        yield mock_instance


@pytest.fixture
def mock_routing():
    """Mock routing service responses"""
    with patch("httpx.AsyncClient") as mock_client:
        mock_instance = _mock_http_client(
            "get",
            {"code": "Ok", "routes": [{"distance": 5234.0, "duration": 754.0}]},
        )
        mock_client.return_value = mock_instance
        yield mock_instance


@pytest.fixture
def routing_down():
    """Routing service unreachable: every request fails to connect."""
    import httpx

    with patch("httpx.AsyncClient") as mock_client:
        mock_instance = AsyncMock()
        mock_instance.get = AsyncMock(side_effect=httpx.ConnectError("unreachable"))
        mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
        mock_instance.__aexit__ = AsyncMock(return_value=None)
        mock_client.return_value = mock_instance
        yield mock_instance


# ============================================================================
# API client
# ============================================================================

@pytest.fixture
async def test_client(fake_db: FakeSupabase):
    """Create test client with Supabase override"""
    app.dependency_overrides[get_supabase_client] = lambda: fake_db
    app.dependency_overrides[get_supabase_admin_client] = lambda: fake_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(fake_db: FakeSupabase):
    """Bearer headers for a user, registering the token and roles."""

    def _headers(user_id: str, *roles: str) -> dict:
        token = f"token-{user_id}"
        fake_db.tokens[token] = user_id
        fake_db.roles.setdefault(user_id, set()).update(roles)
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def rider_factory(fake_db: FakeSupabase):
    def _create_rider(
        name: str = "Ali Rider",
        user_id: Optional[str] = None,
        is_active: bool = True,
        is_blocked: bool = False,
        is_online: bool = True,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> dict:
        return fake_db.seed(
            "riders",
            user_id=user_id or str(uuid.uuid4()),
            name=name,
            phone="03001234567",
            is_active=is_active,
            is_blocked=is_blocked,
            is_online=is_online,
            current_location_lat=lat,
            current_location_lng=lng,
        )

    return _create_rider


@pytest.fixture
def business_factory(fake_db: FakeSupabase):
    def _create_business(type: str = "restaurant", owner_user_id: Optional[str] = None) -> dict:
        return fake_db.seed(
            "businesses",
            name="Karachi Biryani House",
            type=type,
            owner_user_id=owner_user_id or str(uuid.uuid4()),
        )

    return _create_business


@pytest.fixture
def order_factory(fake_db: FakeSupabase, business_factory):
    def _create_order(
        status: str = "placed",
        rider_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        business: Optional[dict] = None,
        total: float = 1250,
    ) -> dict:
        business = business or business_factory()
        return fake_db.seed(
            "orders",
            customer_id=customer_id or str(uuid.uuid4()),
            business_id=business["id"],
            items=[],
            subtotal=total - 100,
            delivery_fee=100,
            total=total,
            delivery_address="House 12, Street 4, Gulshan",
            delivery_lat=24.9200,
            delivery_lng=67.0900,
            pickup_address="Karachi Biryani House, Saddar",
            pickup_lat=24.8600,
            pickup_lng=67.0100,
            status=status,
            eta="25-35 min",
            rider_id=rider_id,
        )

    return _create_order


@pytest.fixture
def rider_request_factory(fake_db: FakeSupabase):
    def _create_rider_request(
        status: str = "placed",
        rider_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        category: Optional[str] = None,
    ) -> dict:
        return fake_db.seed(
            "rider_requests",
            customer_id=customer_id or str(uuid.uuid4()),
            pickup_address="Clifton Block 5",
            pickup_lat=24.8138,
            pickup_lng=67.0300,
            dropoff_address="DHA Phase 6",
            dropoff_lat=24.7950,
            dropoff_lng=67.0600,
            item_description="Documents",
            total=300,
            status=status,
            rider_id=rider_id,
            category=category,
        )

    return _create_rider_request
