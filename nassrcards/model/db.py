"""
DDL for the SQL backend (PostgreSQL in production, SQLite in tests).

Plain idempotent statements rather than ORM metadata: the stores talk to
these tables through `text()` queries, and the redeem path relies on a
conditional UPDATE being the single atomic step.
"""
from __future__ import annotations
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession


SQL_CREATE_ORDERS = r"""
CREATE TABLE IF NOT EXISTS orders (
  order_id      TEXT PRIMARY KEY,
  player_id     INTEGER NOT NULL,
  player_name   TEXT NOT NULL,
  price_amount  INTEGER NOT NULL,        -- whole riyals (SAR)
  status        TEXT NOT NULL,
  created_at    TEXT NOT NULL,           -- ISO-8601 UTC
  data          TEXT NOT NULL,           -- frozen JSON (customer, pay_*...)
  actually_paid TEXT                     -- JSON scalar from the IPN
);
"""

SQL_CREATE_REDEEM_CODES = r"""
-- one row per pre-issued code; rows are seeded, never inserted at runtime
CREATE TABLE IF NOT EXISTS redeem_codes (
  code            TEXT PRIMARY KEY,
  player_id       INTEGER NOT NULL,
  player_name     TEXT NOT NULL,
  player_name_en  TEXT NOT NULL,
  sats            BIGINT NOT NULL CHECK (sats > 0),
  redeemed        BOOLEAN NOT NULL DEFAULT FALSE,
  redeemed_at     TEXT,
  redeemed_to     TEXT,
  tx_id           TEXT UNIQUE,
  email           TEXT
);
"""


async def create_schema(db_or_conn: AsyncSession | AsyncConnection):
    exec_ = db_or_conn.execute
    await exec_(text(SQL_CREATE_ORDERS))
    await exec_(text(SQL_CREATE_REDEEM_CODES))
