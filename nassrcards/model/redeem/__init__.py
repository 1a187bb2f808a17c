# model/redeem/__init__.py
import os
from typing import AsyncContextManager, Callable, Optional

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ._base import RedeemCodeStore
from ._memory import RedeemCodeStore as MemoryRedeemCodeStore
from ._postgres import RedeemCodeStore as SqlRedeemCodeStore
from ._redis import RedeemCodeStore as RedisRedeemCodeStore

Gated = Callable[[], AsyncContextManager[None]]

BACKEND = os.getenv("STORE_BACKEND", "memory").lower()  # memory|redis|pg


def new_store(*, backend: Optional[str] = None,
              r: Optional[redis.Redis] = None,
              sessions: Optional[async_sessionmaker[AsyncSession]] = None,
              gated: Optional[Gated] = None) -> RedeemCodeStore:
    backend = (backend or BACKEND).lower()
    if backend == "pg":
        if sessions is None or gated is None:
            raise RuntimeError(
                "RedeemCodeStore(pg) requires sessions=async_sessionmaker "
                "and gated=Gated"
            )
        return SqlRedeemCodeStore(sessions=sessions, gated=gated)
    if backend == "redis":
        if r is None:
            raise RuntimeError(
                "RedeemCodeStore(redis) requires r=redis.Redis"
            )
        return RedisRedeemCodeStore(r)
    if backend == "memory":
        return MemoryRedeemCodeStore()
    raise RuntimeError(f"unknown STORE_BACKEND: {backend!r}")


__all__ = ["RedeemCodeStore", "new_store", "BACKEND"]
