from __future__ import annotations
from typing import Any, Dict, Optional

import orjson
import redis.asyncio as redis

from ...helpers import now_ts
from ..catalog import Catalog
from ..records import Order
from ._base import OrderStore as _OrderStore


# ---- keys
def k_order(oid: str) -> str: return f"order:{oid}"


IDX_CREATED = "idx:orders:created"

# status + actually_paid live in their own hash fields so a webhook
# update is a single HSET; everything else is one frozen JSON blob
MUTABLE = ("status", "actually_paid")


def _encode(order: Order) -> Dict[str, str]:
    row = order.to_row()
    mutable = {k: row.pop(k) for k in MUTABLE}
    return {
        "data": orjson.dumps(row).decode(),
        "status": mutable["status"],
        "actually_paid": orjson.dumps(mutable["actually_paid"]).decode(),
    }


def _decode(h: Dict[str, str]) -> Order:
    row = orjson.loads(h["data"])
    row["status"] = h["status"]
    row["actually_paid"] = orjson.loads(h.get("actually_paid", "null"))
    return Order.from_row(row)


class OrderStore(_OrderStore):
    def __init__(self, catalog: Catalog, r: redis.Redis) -> None:
        super().__init__(catalog)
        self.r = r

    async def _put(self, order: Order) -> None:
        pipe = self.r.pipeline(transaction=True)
        pipe.hset(k_order(order.order_id), mapping=_encode(order))
        pipe.zadd(IDX_CREATED, {order.order_id: now_ts()})
        await pipe.execute()

    async def get_order(self, order_id: str) -> Optional[Order]:
        h = await self.r.hgetall(k_order(order_id))
        return _decode(h) if h else None

    async def _overwrite_status(
        self, order_id: str, status: str, actually_paid: Any
    ) -> Optional[Order]:
        # orders are never deleted, so once the key exists it stays
        if not await self.r.exists(k_order(order_id)):
            return None
        pipe = self.r.pipeline(transaction=True)
        pipe.hset(k_order(order_id), mapping={
            "status": status,
            "actually_paid": orjson.dumps(actually_paid).decode(),
        })
        pipe.hgetall(k_order(order_id))
        _, h = await pipe.execute()
        return _decode(h)

    async def count(self) -> int:
        return int(await self.r.zcard(IDX_CREATED))
