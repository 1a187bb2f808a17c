from __future__ import annotations
from dataclasses import asdict, dataclass, replace
from typing import Dict, Iterable, List, Optional


@dataclass
class CatalogItem:
    id: int
    name: str
    name_en: str
    price: int  # whole riyals (SAR)
    btc: float  # reference crypto amount, display only
    sold: bool = False

    def to_api(self) -> dict:
        d = asdict(self)
        d["nameEn"] = d.pop("name_en")
        return d


SEED_CARDS = [
    CatalogItem(1, "كريستيانو رونالدو", "Cristiano Ronaldo", 189999, 0.75),
    CatalogItem(2, "ساديو ماني", "Sadio Mané", 129999, 0.52),
    CatalogItem(3, "ايمريك لابورت", "Aymeric Laporte", 99999, 0.27, True),
    CatalogItem(4, "مارسيلو بروزوفيتش", "Marcelo Brozović", 74999, 0.21),
    CatalogItem(5, "أليكس تيليس", "Alex Telles", 59999, 0.16, True),
    CatalogItem(6, "سيكو فوفانا", "Seko Fofana", 39999, 0.11),
]


class Catalog:
    """Fixed set of cards, built at startup. Only `sold` ever changes,
    and only from False to True."""

    def __init__(self, items: Optional[Iterable[CatalogItem]] = None) -> None:
        src = SEED_CARDS if items is None else items
        self._items: Dict[int, CatalogItem] = {
            it.id: replace(it) for it in src
        }

    def list_items(self) -> List[CatalogItem]:
        return [replace(it) for it in self._items.values()]

    def find_item(self, item_id: int) -> Optional[CatalogItem]:
        it = self._items.get(item_id)
        return replace(it) if it is not None else None

    def mark_sold(self, item_id: int) -> bool:
        # no await in here: atomic w.r.t. the event loop
        it = self._items.get(item_id)
        if it is None or it.sold:
            return False
        it.sold = True
        return True
