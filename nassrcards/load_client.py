#!/usr/bin/env python3
"""
Nassr Cards load client (async)

Two scenarios against a running server:

  redeem-race
    Fires --concurrency simultaneous POST /api/redeem for the same code.
    Exactly one must succeed; the rest must come back 409.

  ipn-replay
    Delivers --total signed IPN notifications for one existing order with
    statuses in random order, then reads the order back. The stored status
    must equal the status of the last delivery.

Usage:
  python -m nassrcards.load_client redeem-race --base http://localhost:3000 \
      --code NASSR-R7CR-GOLD-2025 --concurrency 50

  python -m nassrcards.load_client ipn-replay --base http://localhost:3000 \
      --order-id NASSR-1718000000000-1 --secret "$NOWPAYMENTS_IPN_SECRET"

Exit status is 1 when the invariant did not hold.
"""

import argparse
import asyncio
import random
import sys
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

from .nowpayments import SIG_HEADER, sign_ipn, sorted_payload

IPN_STATUSES = ["waiting", "confirming", "confirmed", "sending",
                "partially_paid", "finished", "failed", "expired"]


@dataclass
class Result:
    status_code: int
    elapsed_s: float
    err: Optional[str] = None


@dataclass
class Stats:
    results: List[Result] = field(default_factory=list)

    def add(self, r: Result):
        self.results.append(r)

    def by_status(self) -> Dict[int, int]:
        out: Dict[int, int] = {}
        for r in self.results:
            out[r.status_code] = out.get(r.status_code, 0) + 1
        return out

    def print(self, elapsed_s: float):
        lat = sorted(r.elapsed_s for r in self.results)

        def pct(p):
            if not lat:
                return 0.0
            k = int(max(0, min(len(lat)-1, round(p/100*(len(lat)-1)))))
            return lat[k]

        print("\n=== Load Summary ===")
        codes = "   ".join(
            f"HTTP {k}: {v}" for k, v in sorted(self.by_status().items())
        )
        print(f"Total: {len(self.results)}   {codes}")
        print(
            f"Latency: p50 {pct(50):.3f}s   p90 {pct(90):.3f}s   "
            f"p99 {pct(99):.3f}s"
        )
        print(f"Wall time: {elapsed_s:.3f}s")


async def _post(client: httpx.AsyncClient, url: str, **kw) -> Result:
    t0 = time.perf_counter()
    try:
        resp = await client.post(url, timeout=30.0, **kw)
    except httpx.HTTPError as e:
        return Result(0, time.perf_counter() - t0, err=str(e))
    return Result(resp.status_code, time.perf_counter() - t0)


# ----------------------------
# redeem-race
# ----------------------------
async def run_redeem_race(
    base: str, code: str, address: str, concurrency: int
) -> Stats:
    stats = Stats()
    limits = httpx.Limits(
        max_keepalive_connections=concurrency, max_connections=concurrency
    )
    async with httpx.AsyncClient(
        limits=limits, headers={"User-Agent": "NassrLoad/1.0"}
    ) as client:
        # everyone waits on the same event so the requests overlap
        go = asyncio.Event()

        async def worker(n: int):
            await go.wait()
            stats.add(await _post(
                client, f"{base}/api/redeem",
                json={"code": code, "lightningAddress": address,
                      "email": f"load{n}@example.com"},
            ))

        tasks = [asyncio.create_task(worker(i)) for i in range(concurrency)]
        await asyncio.sleep(0)
        go.set()
        await asyncio.gather(*tasks)
    return stats


def check_redeem_race(stats: Stats, already_redeemed: bool) -> bool:
    counts = stats.by_status()
    wins = counts.get(200, 0)
    expected = 0 if already_redeemed else 1
    print(f"successful redemptions: {wins} (expected {expected})")
    return wins == expected and counts.get(409, 0) == len(stats.results) - wins


# ----------------------------
# ipn-replay
# ----------------------------
async def run_ipn_replay(
    base: str, order_id: str, secret: str, total: int
) -> tuple[Stats, str, str]:
    stats = Stats()
    statuses = [random.choice(IPN_STATUSES) for _ in range(total)]
    async with httpx.AsyncClient(
        headers={"User-Agent": "NassrLoad/1.0"}
    ) as client:
        # sequential: "last delivery" has to be well defined
        for n, status in enumerate(statuses):
            payload = {
                "order_id": order_id,
                "payment_id": 1000 + n,
                "payment_status": status,
                "pay_amount": 0.001,
                "actually_paid": 0.001 if status == "finished" else 0,
            }
            headers = {"content-type": "application/json"}
            if secret:
                headers[SIG_HEADER] = sign_ipn(payload, secret)
            stats.add(await _post(
                client, f"{base}/api/ipn",
                content=sorted_payload(payload).encode(), headers=headers,
            ))
        resp = await client.get(f"{base}/api/order/{order_id}")
        final = resp.json().get("status") if resp.status_code == 200 else ""
    return stats, final, statuses[-1]


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Nassr Cards load client")
    sub = ap.add_subparsers(dest="scenario", required=True)

    rr = sub.add_parser("redeem-race", help="concurrent redemptions")
    rr.add_argument("--base", default="http://localhost:3000")
    rr.add_argument("--code", default="NASSR-R7CR-GOLD-2025")
    rr.add_argument("--address", default="load@getalby.com")
    rr.add_argument("--concurrency", type=int, default=50)

    ip = sub.add_parser("ipn-replay", help="out-of-order IPN deliveries")
    ip.add_argument("--base", default="http://localhost:3000")
    ip.add_argument("--order-id", required=True)
    ip.add_argument("--secret", default="")
    ip.add_argument("--total", type=int, default=20)

    args = ap.parse_args(argv)
    t_start = time.perf_counter()

    if args.scenario == "redeem-race":
        info = httpx.get(f"{args.base}/api/redeem/{args.code}")
        if info.status_code != 200:
            print(f"code lookup failed: HTTP {info.status_code}")
            return 1
        already = bool(info.json().get("redeemed"))
        stats = asyncio.run(run_redeem_race(
            args.base, args.code, args.address, args.concurrency
        ))
        stats.print(time.perf_counter() - t_start)
        ok = check_redeem_race(stats, already)
    else:
        stats, final, last = asyncio.run(run_ipn_replay(
            args.base, args.order_id, args.secret, args.total
        ))
        stats.print(time.perf_counter() - t_start)
        print(f"final status: {final!r}   last delivered: {last!r}")
        ok = final == last and stats.by_status().get(200, 0) == args.total

    print("OK" if ok else "INVARIANT VIOLATED")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
