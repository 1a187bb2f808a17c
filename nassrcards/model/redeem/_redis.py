from __future__ import annotations
from typing import Dict, Iterable, Optional, Tuple

import redis.asyncio as redis

from ..records import RedeemCode
from ._base import RedeemCodeStore as _RedeemCodeStore


# ---- keys
def k_code(code: str) -> str: return f"redeem:{code}"
def k_gate(code: str) -> str: return f"redeem:gate:{code}"


def _encode(rec: RedeemCode) -> Dict[str, str]:
    return {
        "code": rec.code,
        "player_id": str(rec.player_id),
        "player_name": rec.player_name,
        "player_name_en": rec.player_name_en,
        "sats": str(rec.sats),
        "redeemed": "1" if rec.redeemed else "0",
        "redeemed_at": rec.redeemed_at or "",
        "redeemed_to": rec.redeemed_to or "",
        "tx_id": rec.tx_id or "",
        "email": rec.email or "",
    }


def _decode(h: Dict[str, str]) -> RedeemCode:
    return RedeemCode(
        code=h["code"],
        player_id=int(h["player_id"]),
        player_name=h["player_name"],
        player_name_en=h["player_name_en"],
        sats=int(h["sats"]),
        redeemed=(h.get("redeemed") == "1"),
        redeemed_at=h.get("redeemed_at") or None,
        redeemed_to=h.get("redeemed_to") or None,
        tx_id=h.get("tx_id") or None,
        email=h.get("email") or None,
    )


class RedeemCodeStore(_RedeemCodeStore):
    """Codes as hashes, plus one NX gate key per code.

    The gate decides the winner; the winner then writes all receipt
    fields in one MULTI/EXEC, so readers of the hash never see a
    half-redeemed record.
    """

    def __init__(self, r: redis.Redis) -> None:
        self.r = r

    async def seed(self, codes: Iterable[RedeemCode]) -> None:
        pipe = self.r.pipeline(transaction=True)
        for c in codes:
            # HSETNX per field: an existing hash keeps every value
            for field, value in _encode(c).items():
                pipe.hsetnx(k_code(c.code), field, value)
        await pipe.execute()

    async def _get(self, code: str) -> Optional[RedeemCode]:
        h = await self.r.hgetall(k_code(code))
        return _decode(h) if h else None

    async def _compare_and_set(
        self, code: str, *, redeemed_at: str, redeemed_to: str,
        tx_id: str, email: Optional[str],
    ) -> Tuple[bool, Optional[RedeemCode]]:
        h = await self.r.hgetall(k_code(code))
        if not h:
            return False, None
        rec = _decode(h)
        if rec.redeemed:
            return False, rec

        # the gate value is the winner's timestamp, so a loser can report
        # it even before the winner's hash write lands
        won = await self.r.set(k_gate(code), redeemed_at, nx=True)
        if not won:
            first_at = await self.r.get(k_gate(code))
            h = await self.r.hgetall(k_code(code))
            rec = _decode(h)
            rec.redeemed = True
            rec.redeemed_at = rec.redeemed_at or first_at
            return False, rec

        pipe = self.r.pipeline(transaction=True)
        pipe.hset(k_code(code), mapping={
            "redeemed": "1",
            "redeemed_at": redeemed_at,
            "redeemed_to": redeemed_to,
            "tx_id": tx_id,
            "email": email or "",
        })
        pipe.hgetall(k_code(code))
        _, h = await pipe.execute()
        return True, _decode(h)
