from __future__ import annotations
import asyncio
from typing import Any, Dict, Optional

from ..catalog import Catalog
from ..records import Order
from ._base import OrderStore as _OrderStore


class OrderStore(_OrderStore):
    """Process-local orders. Lost on restart."""

    def __init__(self, catalog: Catalog) -> None:
        super().__init__(catalog)
        self._orders: Dict[str, Order] = {}
        self._lock = asyncio.Lock()

    async def _put(self, order: Order) -> None:
        async with self._lock:
            self._orders[order.order_id] = order.copy()

    async def get_order(self, order_id: str) -> Optional[Order]:
        o = self._orders.get(order_id)
        return o.copy() if o is not None else None

    async def _overwrite_status(
        self, order_id: str, status: str, actually_paid: Any
    ) -> Optional[Order]:
        async with self._lock:
            o = self._orders.get(order_id)
            if o is None:
                return None
            o.status = status
            o.actually_paid = actually_paid
            return o.copy()

    async def count(self) -> int:
        return len(self._orders)
