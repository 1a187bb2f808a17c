from __future__ import annotations
from copy import deepcopy
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, Optional


# ----------------------------
# Records
# ----------------------------
# Stores hand out copies of these (dataclasses.replace), never the instance
# they keep internally.

TERMINAL_SUCCESS = frozenset({"confirmed", "finished"})


@dataclass
class Order:
    order_id: str
    player_id: int
    player_name: str
    price_amount: int
    status: str
    created_at: str
    customer: Dict[str, Any] = field(default_factory=dict)
    redeem_option: Optional[str] = None
    # payment flow
    pay_currency: Optional[str] = None
    pay_amount: Optional[float] = None
    pay_address: Optional[str] = None
    payment_id: Optional[str] = None
    # invoice flow
    invoice_id: Optional[str] = None
    invoice_url: Optional[str] = None
    # set by the IPN webhook
    actually_paid: Optional[float] = None

    def copy(self) -> "Order":
        return replace(self, customer=deepcopy(self.customer))

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Order":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in names})

    def to_api(self) -> Dict[str, Any]:
        out = {
            "orderId": self.order_id,
            "playerId": self.player_id,
            "playerName": self.player_name,
            "priceAmount": self.price_amount,
            "status": self.status,
            "redeemOption": self.redeem_option,
            "customer": self.customer,
            "createdAt": self.created_at,
        }
        if self.invoice_id is not None:
            out["invoiceId"] = self.invoice_id
            out["invoiceUrl"] = self.invoice_url
        else:
            out["payCurrency"] = self.pay_currency
            out["payAmount"] = self.pay_amount
            out["payAddress"] = self.pay_address
            out["paymentId"] = self.payment_id
        if self.actually_paid is not None:
            out["actuallyPaid"] = self.actually_paid
        return out


@dataclass
class RedeemCode:
    code: str
    player_id: int
    player_name: str
    player_name_en: str
    sats: int
    redeemed: bool = False
    redeemed_at: Optional[str] = None
    redeemed_to: Optional[str] = None
    tx_id: Optional[str] = None
    email: Optional[str] = None

    def copy(self) -> "RedeemCode":
        return replace(self)

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "RedeemCode":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in names})


@dataclass(frozen=True)
class RedeemOutcome:
    code: str
    tx_id: str
    sats: int
    player_name: str
    lightning_address: str
    redeemed_at: str


# ----------------------------
# Seed data
# ----------------------------
SEED_CODES = [
    RedeemCode("NASSR-R7CR-GOLD-2025", 1, "كريستيانو رونالدو",
               "Cristiano Ronaldo", 5_200_000),
    RedeemCode("NASSR-MANE-STAR-2025", 2, "ساديو ماني",
               "Sadio Mané", 3_600_000),
    RedeemCode("NASSR-LAPO-DFND-2025", 3, "ايمريك لابورت",
               "Aymeric Laporte", 2_700_000),
    RedeemCode("NASSR-BROZ-MIDX-2025", 4, "مارسيلو بروزوفيتش",
               "Marcelo Brozović", 2_100_000),
    RedeemCode("NASSR-TELL-WING-2025", 5, "أليكس تيليس",
               "Alex Telles", 1_600_000),
    RedeemCode("NASSR-FOFA-POWR-2025", 6, "سيكو فوفانا",
               "Seko Fofana", 1_100_000),
]


def seed_codes() -> list[RedeemCode]:
    return [c.copy() for c in SEED_CODES]
