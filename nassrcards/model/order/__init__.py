# model/order/__init__.py
import os
from typing import AsyncContextManager, Callable, Optional

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..catalog import Catalog
from ._base import OrderStore
from ._memory import OrderStore as MemoryOrderStore
from ._postgres import OrderStore as SqlOrderStore
from ._redis import OrderStore as RedisOrderStore

Gated = Callable[[], AsyncContextManager[None]]

BACKEND = os.getenv("STORE_BACKEND", "memory").lower()  # memory|redis|pg


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, catalog: Catalog,
              backend: Optional[str] = None,
              r: Optional[redis.Redis] = None,
              sessions: Optional[async_sessionmaker[AsyncSession]] = None,
              gated: Optional[Gated] = None) -> OrderStore:
    backend = (backend or BACKEND).lower()
    if backend == "pg":
        if sessions is None or gated is None:
            raise RuntimeError(
                "OrderStore(pg) requires sessions=async_sessionmaker "
                "and gated=Gated"
            )
        return SqlOrderStore(catalog, sessions=sessions, gated=gated)
    if backend == "redis":
        if r is None:
            raise RuntimeError("OrderStore(redis) requires r=redis.Redis")
        return RedisOrderStore(catalog, r)
    if backend == "memory":
        return MemoryOrderStore(catalog)
    raise RuntimeError(f"unknown STORE_BACKEND: {backend!r}")


__all__ = ["OrderStore", "new_store", "BACKEND"]
