from __future__ import annotations
from typing import Any, AsyncContextManager, Callable, Dict, Optional

import orjson
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..catalog import Catalog
from ..records import Order
from ._base import OrderStore as _OrderStore

Gated = Callable[[], AsyncContextManager[None]]

COLUMNS = ("order_id", "player_id", "player_name", "price_amount",
           "status", "created_at")


def _encode(order: Order) -> Dict[str, Any]:
    row = order.to_row()
    params = {k: row.pop(k) for k in COLUMNS}
    params["actually_paid"] = orjson.dumps(row.pop("actually_paid")).decode()
    params["data"] = orjson.dumps(row).decode()
    return params


def _decode(m) -> Order:
    row = orjson.loads(m["data"])
    for k in COLUMNS:
        row[k] = m[k]
    row["actually_paid"] = orjson.loads(m["actually_paid"] or "null")
    return Order.from_row(row)


class OrderStore(_OrderStore):
    def __init__(
        self, catalog: Catalog, *,
        sessions: async_sessionmaker[AsyncSession], gated: Gated,
    ) -> None:
        super().__init__(catalog)
        self.sessions = sessions
        self.gated = gated

    async def _put(self, order: Order) -> None:
        async with self.gated():
            async with self.sessions() as db, db.begin():
                await db.execute(text("""
                  INSERT INTO orders(
                    order_id, player_id, player_name, price_amount, status,
                    created_at, data, actually_paid
                  ) VALUES (
                    :order_id, :player_id, :player_name, :price_amount,
                    :status, :created_at, :data, :actually_paid
                  )
                  ON CONFLICT (order_id) DO UPDATE SET
                    player_id=EXCLUDED.player_id,
                    player_name=EXCLUDED.player_name,
                    price_amount=EXCLUDED.price_amount,
                    status=EXCLUDED.status,
                    created_at=EXCLUDED.created_at,
                    data=EXCLUDED.data,
                    actually_paid=EXCLUDED.actually_paid
                """), _encode(order))

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self.gated():
            async with self.sessions() as db, db.begin():
                row = (await db.execute(text("""
                  SELECT * FROM orders WHERE order_id=:id
                """), {"id": order_id})).mappings().first()
        return _decode(row) if row else None

    async def _overwrite_status(
        self, order_id: str, status: str, actually_paid: Any
    ) -> Optional[Order]:
        async with self.gated():
            async with self.sessions() as db, db.begin():
                row = (await db.execute(text("""
                  UPDATE orders
                  SET status=:status, actually_paid=:paid
                  WHERE order_id=:id
                  RETURNING *
                """), {
                    "id": order_id,
                    "status": status,
                    "paid": orjson.dumps(actually_paid).decode(),
                })).mappings().first()
        return _decode(row) if row else None

    async def count(self) -> int:
        async with self.gated():
            async with self.sessions() as db, db.begin():
                n = (await db.execute(
                    text("SELECT COUNT(*) FROM orders")
                )).scalar_one()
        return int(n)
