import os
import time
from datetime import datetime, timezone
from typing import Optional


ORDER_PREFIX = "NASSR"
TX_PREFIX = "LN"


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def now_ms() -> int:
    return int(time.time() * 1000)


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(
        timespec="milliseconds"
    ).replace("+00:00", "Z")


def normalize_code(code: str) -> str:
    return code.strip().upper()


def new_order_id(player_id: int, ms: Optional[int] = None) -> str:
    # NOT collision free: same card within the same millisecond -> same id
    return f"{ORDER_PREFIX}-{now_ms() if ms is None else ms}-{player_id}"


def new_tx_id(ms: Optional[int] = None) -> str:
    suffix = os.urandom(4).hex().upper()
    return f"{TX_PREFIX}-{now_ms() if ms is None else ms}-{suffix}"
