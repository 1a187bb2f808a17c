from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Tuple

from ...errors import AlreadyRedeemed, NotFound
from ...helpers import new_tx_id, normalize_code, now_ts, to_iso
from ...logging_config import get_logger
from ..records import RedeemCode, RedeemOutcome

log = get_logger(__name__)


class RedeemCodeStore(ABC):
    """Pre-issued satoshi codes, each redeemable exactly once.

    Backends provide `_compare_and_set`, the one atomic step: flip
    `redeemed` from false to true and write the receipt fields with it,
    or report who got there first.
    """

    @abstractmethod
    async def seed(self, codes: Iterable[RedeemCode]) -> None:
        """Insert codes that are not present yet. Existing rows win."""

    @abstractmethod
    async def _get(self, code: str) -> Optional[RedeemCode]: ...

    # (True, record)   -> this call redeemed it
    # (False, record)  -> already redeemed, record shows by whom/when
    # (False, None)    -> no such code
    @abstractmethod
    async def _compare_and_set(
        self, code: str, *, redeemed_at: str, redeemed_to: str,
        tx_id: str, email: Optional[str],
    ) -> Tuple[bool, Optional[RedeemCode]]: ...

    async def lookup(self, code: str) -> Optional[RedeemCode]:
        return await self._get(normalize_code(code))

    async def redeem(
        self, code: str, destination: str, email: Optional[str] = None
    ) -> RedeemOutcome:
        norm = normalize_code(code)
        won, rec = await self._compare_and_set(
            norm,
            redeemed_at=to_iso(now_ts()),
            redeemed_to=destination,
            # placeholder receipt until Lightning payouts exist
            tx_id=new_tx_id(),
            email=email or None,
        )
        if rec is None:
            log.info("redeem_rejected", code=norm, reason="unknown_code")
            raise NotFound(
                "رمز الاسترداد غير صالح. تأكد من كتابة الرمز بشكل صحيح."
            )
        if not won:
            log.info("redeem_rejected", code=norm, reason="already_redeemed",
                     redeemed_at=rec.redeemed_at)
            raise AlreadyRedeemed(
                f"تم استرداد هذا الرمز بتاريخ {(rec.redeemed_at or '')[:10]}."
                " كل رمز صالح للاستخدام مرة واحدة فقط.",
                redeemed_at=rec.redeemed_at,
            )

        log.info("redeem_succeeded", code=norm, sats=rec.sats,
                 destination=destination, tx_id=rec.tx_id)
        return RedeemOutcome(
            code=norm,
            tx_id=rec.tx_id,
            sats=rec.sats,
            player_name=rec.player_name,
            lightning_address=destination,
            redeemed_at=rec.redeemed_at,
        )
