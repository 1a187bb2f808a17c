from __future__ import annotations
import asyncio
from dataclasses import replace
from typing import Dict, Iterable, Optional, Tuple

from ..records import RedeemCode
from ._base import RedeemCodeStore as _RedeemCodeStore


class RedeemCodeStore(_RedeemCodeStore):
    """Process-local codes. A restart re-seeds them as unredeemed."""

    def __init__(self) -> None:
        self._codes: Dict[str, RedeemCode] = {}
        self._lock = asyncio.Lock()

    async def seed(self, codes: Iterable[RedeemCode]) -> None:
        async with self._lock:
            for c in codes:
                self._codes.setdefault(c.code, c.copy())

    async def _get(self, code: str) -> Optional[RedeemCode]:
        rec = self._codes.get(code)
        return rec.copy() if rec is not None else None

    async def _compare_and_set(
        self, code: str, *, redeemed_at: str, redeemed_to: str,
        tx_id: str, email: Optional[str],
    ) -> Tuple[bool, Optional[RedeemCode]]:
        # check and set under one lock: two callers never both see
        # redeemed == False
        async with self._lock:
            rec = self._codes.get(code)
            if rec is None:
                return False, None
            if rec.redeemed:
                return False, rec.copy()
            rec = replace(
                rec, redeemed=True, redeemed_at=redeemed_at,
                redeemed_to=redeemed_to, tx_id=tx_id, email=email,
            )
            self._codes[code] = rec
            return True, rec.copy()
