from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ...helpers import new_order_id, now_ts, to_iso
from ...logging_config import get_logger
from ..catalog import Catalog
from ..records import TERMINAL_SUCCESS, Order

log = get_logger(__name__)


class OrderStore(ABC):
    """Owns every Order. Callers only ever see copies.

    Backends implement three primitives (`_put`, `get_order`,
    `_overwrite_status`); the order rules live here so every backend
    behaves the same.
    """

    def __init__(self, catalog: Catalog) -> None:
        self.catalog = catalog

    # ---- backend primitives
    @abstractmethod
    async def _put(self, order: Order) -> None: ...

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]: ...

    # set status + actually_paid on an existing order in one step;
    # returns the updated copy or None when the order is unknown
    @abstractmethod
    async def _overwrite_status(
        self, order_id: str, status: str, actually_paid: Any
    ) -> Optional[Order]: ...

    @abstractmethod
    async def count(self) -> int: ...

    # ---- operations
    async def create_order(
        self, fields: Dict[str, Any], order_id: Optional[str] = None
    ) -> Order:
        """Store a new order and return a copy of it.

        `fields` holds everything except `order_id` and `created_at`.
        The id is `NASSR-<epoch ms>-<player>`; pass `order_id` when it had
        to be handed to the gateway before the order existed. Two orders
        for the same card in the same millisecond share an id and the
        later one replaces the earlier.
        """
        order = Order(
            order_id=order_id or new_order_id(fields["player_id"]),
            created_at=to_iso(now_ts()),
            **fields,
        )
        await self._put(order)
        return order.copy()

    async def apply_webhook_update(
        self, order_id: str, status: str, actually_paid: Any = None
    ) -> Optional[Order]:
        # last delivery wins: no sequence or timestamp comparison
        order = await self._overwrite_status(order_id, status, actually_paid)
        if order is None:
            log.warning("ipn_unknown_order", order_id=order_id, status=status)
            return None

        if status in TERMINAL_SUCCESS:
            # idempotent; a later failed/expired never un-sells the card
            if self.catalog.mark_sold(order.player_id):
                log.info("card_sold", player_id=order.player_id,
                         player_name=order.player_name, order_id=order_id)
        return order
