"""
Redeem code store tests, run against every backend.

The one invariant that matters: a code pays out at most once, no matter
how many requests arrive for it at the same time.
"""
import asyncio

import pytest

from nassrcards.errors import AlreadyRedeemed, NotFound
from nassrcards.model.records import RedeemCode, seed_codes

GOLD = "NASSR-R7CR-GOLD-2025"


class TestLookup:

    @pytest.mark.asyncio
    async def test_seeded_codes_are_unredeemed(self, codes) -> None:
        for c in seed_codes():
            rec = await codes.lookup(c.code)
            assert rec is not None
            assert rec.sats == c.sats
            assert rec.redeemed is False
            assert rec.redeemed_at is None

    @pytest.mark.asyncio
    async def test_lookup_normalizes_case_and_whitespace(self, codes) -> None:
        rec = await codes.lookup("  nassr-r7cr-gold-2025 ")
        assert rec is not None
        assert rec.code == GOLD
        assert rec.player_name_en == "Cristiano Ronaldo"

    @pytest.mark.asyncio
    async def test_lookup_unknown_code(self, codes) -> None:
        assert await codes.lookup("NASSR-XXXX-NONE-2025") is None


class TestRedeem:

    @pytest.mark.asyncio
    async def test_redeem_once_then_rejected(self, codes) -> None:
        out = await codes.redeem(GOLD, "fan@getalby.com", "fan@example.com")
        assert out.code == GOLD
        assert out.sats == 5_200_000
        assert out.player_name == "كريستيانو رونالدو"
        assert out.lightning_address == "fan@getalby.com"
        assert out.tx_id.startswith("LN-")
        assert out.redeemed_at.endswith("Z")

        with pytest.raises(AlreadyRedeemed) as exc_info:
            await codes.redeem(GOLD, "other@getalby.com")
        assert exc_info.value.redeemed_at == out.redeemed_at
        assert out.redeemed_at[:10] in exc_info.value.message

    @pytest.mark.asyncio
    async def test_receipt_fields_written_with_flag(self, codes) -> None:
        out = await codes.redeem(GOLD.lower(), "fan@getalby.com",
                                 "fan@example.com")
        rec = await codes.lookup(GOLD)
        assert rec.redeemed is True
        assert rec.redeemed_at == out.redeemed_at
        assert rec.redeemed_to == "fan@getalby.com"
        assert rec.tx_id == out.tx_id
        assert rec.email == "fan@example.com"

    @pytest.mark.asyncio
    async def test_unknown_code_raises_not_found(self, codes) -> None:
        with pytest.raises(NotFound):
            await codes.redeem("NASSR-XXXX-NONE-2025", "fan@getalby.com")

    @pytest.mark.asyncio
    async def test_other_codes_unaffected(self, codes) -> None:
        await codes.redeem(GOLD, "fan@getalby.com")
        rec = await codes.lookup("NASSR-MANE-STAR-2025")
        assert rec.redeemed is False

    @pytest.mark.asyncio
    async def test_reseed_keeps_redeemed_state(self, codes) -> None:
        out = await codes.redeem(GOLD, "fan@getalby.com")
        await codes.seed(seed_codes())
        rec = await codes.lookup(GOLD)
        assert rec.redeemed is True
        assert rec.tx_id == out.tx_id

    @pytest.mark.asyncio
    async def test_seed_adds_new_codes(self, codes) -> None:
        await codes.seed([
            RedeemCode("NASSR-TEST-EXTR-2025", 1, "كريستيانو رونالدو",
                       "Cristiano Ronaldo", 1000),
        ])
        out = await codes.redeem("nassr-test-extr-2025", "fan@getalby.com")
        assert out.sats == 1000


class TestRedeemRace:

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_redeems_single_winner(self, codes) -> None:
        """
        Many simultaneous redemptions of one code.

        Exactly one succeeds; every other caller sees AlreadyRedeemed
        carrying the winner's timestamp.
        """
        n = 20
        results = await asyncio.gather(
            *(codes.redeem(GOLD, f"fan{i}@getalby.com") for i in range(n)),
            return_exceptions=True,
        )

        wins = [r for r in results if not isinstance(r, Exception)]
        losses = [r for r in results if isinstance(r, AlreadyRedeemed)]
        assert len(wins) == 1
        assert len(losses) == n - 1
        assert {e.redeemed_at for e in losses} == {wins[0].redeemed_at}

        rec = await codes.lookup(GOLD)
        assert rec.redeemed_to == wins[0].lightning_address
        assert rec.tx_id == wins[0].tx_id

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_redeems_distinct_codes(self, codes) -> None:
        all_codes = [c.code for c in seed_codes()]
        results = await asyncio.gather(
            *(codes.redeem(c, "fan@getalby.com") for c in all_codes)
        )
        assert sorted(r.code for r in results) == sorted(all_codes)
