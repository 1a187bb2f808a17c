"""
Pytest configuration and fixtures.

Store fixtures are parametrized over the backends: `memory` always runs,
`sql` runs against a throwaway SQLite file, `redis` only when REDIS_URL
points at a disposable database (it gets FLUSHDB'd).
"""
import os
from typing import Any, AsyncGenerator, Dict, Optional

import httpx
import pytest
import pytest_asyncio
import redis.asyncio as redis

from nassrcards.infra.sql import open_sql
from nassrcards.model import order as order_store
from nassrcards.model import redeem as redeem_store
from nassrcards.model.catalog import Catalog
from nassrcards.model.records import seed_codes
from nassrcards.nowpayments import PaymentGateway
from nassrcards.server import (
    app, get_catalog, get_codes, get_gateway, get_orders,
)

BACKENDS = ["memory", "sql", "redis"]


class FakeGateway(PaymentGateway):
    """Canned answers per endpoint; an Exception value is raised instead."""

    def __init__(self, ipn_secret: Optional[str] = None) -> None:
        self.ipn_secret = ipn_secret
        self.responses: Dict[str, Any] = {}
        self.calls: list = []

    async def call(self, endpoint, method="GET", body=None, params=None):
        self.calls.append((method, endpoint, body, params))
        r = self.responses.get(endpoint)
        if isinstance(r, Exception):
            raise r
        return {} if r is None else r


@pytest.fixture
def catalog() -> Catalog:
    return Catalog()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway(ipn_secret="test-ipn-secret")


@pytest_asyncio.fixture(params=BACKENDS)
async def backend_resources(request, tmp_path) -> AsyncGenerator[dict, Any]:
    """kwargs for new_store(...) for the backend named by request.param."""
    backend = request.param
    if backend == "memory":
        yield {"backend": "memory"}
    elif backend == "sql":
        sql = open_sql(f"sqlite:///{tmp_path / 'nassr.db'}")
        await sql.create_schema()
        yield {"backend": "pg", "sessions": sql.sessions, "gated": sql.gated}
        await sql.dispose()
    else:
        url = os.getenv("REDIS_URL")
        if not url:
            pytest.skip("REDIS_URL not set")
        r = redis.from_url(url, decode_responses=True)
        await r.flushdb()
        yield {"backend": "redis", "r": r}
        await r.flushdb()
        await r.aclose()


@pytest_asyncio.fixture
async def codes(backend_resources):
    store = redeem_store.new_store(**backend_resources)
    await store.seed(seed_codes())
    return store


@pytest_asyncio.fixture
async def orders(backend_resources, catalog):
    return order_store.new_store(catalog=catalog, **backend_resources)


@pytest.fixture
def app_orders(catalog):
    return order_store.new_store(catalog=catalog, backend="memory")


@pytest_asyncio.fixture
async def app_codes():
    store = redeem_store.new_store(backend="memory")
    await store.seed(seed_codes())
    return store


@pytest_asyncio.fixture
async def client(
    catalog, gateway, app_orders, app_codes
) -> AsyncGenerator[httpx.AsyncClient, Any]:
    """HTTP client against the app with in-memory stores and a fake
    gateway wired in through dependency overrides."""

    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_orders] = lambda: app_orders
    app.dependency_overrides[get_codes] = lambda: app_codes

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport, base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
