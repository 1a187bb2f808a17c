from __future__ import annotations
from typing import AsyncContextManager, Callable, Iterable, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..records import RedeemCode
from ._base import RedeemCodeStore as _RedeemCodeStore

Gated = Callable[[], AsyncContextManager[None]]


def _decode(m) -> RedeemCode:
    row = dict(m)
    # SQLite hands booleans back as 0/1
    row["redeemed"] = bool(row["redeemed"])
    row["sats"] = int(row["sats"])
    return RedeemCode.from_row(row)


class RedeemCodeStore(_RedeemCodeStore):
    def __init__(
        self, *, sessions: async_sessionmaker[AsyncSession], gated: Gated,
    ) -> None:
        self.sessions = sessions
        self.gated = gated

    async def seed(self, codes: Iterable[RedeemCode]) -> None:
        async with self.gated():
            async with self.sessions() as db, db.begin():
                for c in codes:
                    await db.execute(text("""
                      INSERT INTO redeem_codes(
                        code, player_id, player_name, player_name_en, sats,
                        redeemed
                      ) VALUES (
                        :code, :player_id, :player_name, :player_name_en,
                        :sats, :redeemed
                      )
                      ON CONFLICT (code) DO NOTHING
                    """), {
                        "code": c.code,
                        "player_id": c.player_id,
                        "player_name": c.player_name,
                        "player_name_en": c.player_name_en,
                        "sats": c.sats,
                        "redeemed": c.redeemed,
                    })

    async def _get(self, code: str) -> Optional[RedeemCode]:
        async with self.gated():
            async with self.sessions() as db, db.begin():
                row = (await db.execute(text("""
                  SELECT * FROM redeem_codes WHERE code=:code
                """), {"code": code})).mappings().first()
        return _decode(row) if row else None

    async def _compare_and_set(
        self, code: str, *, redeemed_at: str, redeemed_to: str,
        tx_id: str, email: Optional[str],
    ) -> Tuple[bool, Optional[RedeemCode]]:
        async with self.gated():
            async with self.sessions() as db, db.begin():
                # the WHERE on `redeemed` is the compare; a concurrent
                # winner leaves us with zero rows
                row = (await db.execute(text("""
                  UPDATE redeem_codes
                  SET redeemed=TRUE, redeemed_at=:at, redeemed_to=:to,
                      tx_id=:tx, email=:email
                  WHERE code=:code AND redeemed=FALSE
                  RETURNING *
                """), {
                    "code": code,
                    "at": redeemed_at,
                    "to": redeemed_to,
                    "tx": tx_id,
                    "email": email,
                })).mappings().first()
                if row is not None:
                    return True, _decode(row)

                row = (await db.execute(text("""
                  SELECT * FROM redeem_codes WHERE code=:code
                """), {"code": code})).mappings().first()
        return False, (_decode(row) if row else None)
