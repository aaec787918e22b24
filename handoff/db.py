"""
Async Postgres: orders (current status per order) + legs (rider segment ledger).
Order update and leg insert/complete are committed in a single transaction so no lock
holder ever observes a partial handoff.
"""
from typing import Protocol

import asyncpg
from asyncpg.exceptions import UniqueViolationError

from handoff.config import settings
from handoff.errors import LedgerConsistencyError, StaleOrderError
from handoff.models import Leg, Order

_pool: asyncpg.Pool | None = None


class OrderStore(Protocol):
    async def create_order(self, order: Order) -> None: ...

    async def load_order(self, order_id: str) -> tuple[Order, list[Leg]] | None: ...

    async def commit_transition(self, order: Order, leg: Leg, expected_version: int) -> None: ...


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                order_id VARCHAR(64) PRIMARY KEY,
                status VARCHAR(32) NOT NULL,
                current_rider_id VARCHAR(255),
                version INT NOT NULL DEFAULT 1,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                CHECK ((status = 'IN_PROGRESS') = (current_rider_id IS NOT NULL))
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS legs (
                leg_id VARCHAR(64) PRIMARY KEY,
                order_id VARCHAR(64) NOT NULL REFERENCES orders(order_id),
                rider_id VARCHAR(255) NOT NULL,
                leg_number INT NOT NULL,
                status VARCHAR(32) NOT NULL,
                started_at TIMESTAMPTZ NOT NULL,
                finished_at TIMESTAMPTZ,
                UNIQUE(order_id, leg_number)
            );
        """)
        # At most one open leg per order, enforced by the database as well as the ledger.
        await conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_legs_one_open_per_order
            ON legs(order_id) WHERE status = 'IN_PROGRESS';
        """)


def _order_from_row(row: asyncpg.Record) -> Order:
    return Order(
        order_id=row["order_id"],
        status=row["status"],
        current_rider_id=row["current_rider_id"],
        version=row["version"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _leg_from_row(row: asyncpg.Record) -> Leg:
    return Leg(
        leg_id=row["leg_id"],
        order_id=row["order_id"],
        rider_id=row["rider_id"],
        leg_number=row["leg_number"],
        status=row["status"],
        started_at=row["started_at"],
        finished_at=row["finished_at"],
    )


class PostgresOrderStore:
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def create_order(self, order: Order) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO orders (order_id, status, current_rider_id, version, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6);
                """,
                order.order_id,
                order.status.value,
                order.current_rider_id,
                order.version,
                order.created_at,
                order.updated_at,
            )

    async def load_order(self, order_id: str) -> tuple[Order, list[Leg]] | None:
        """Read the order and its legs from one snapshot."""
        async with self._pool.acquire() as conn:
            async with conn.transaction(isolation="repeatable_read", readonly=True):
                row = await conn.fetchrow(
                    "SELECT * FROM orders WHERE order_id = $1;",
                    order_id,
                )
                if row is None:
                    return None
                leg_rows = await conn.fetch(
                    "SELECT * FROM legs WHERE order_id = $1 ORDER BY leg_number ASC;",
                    order_id,
                )
        return _order_from_row(row), [_leg_from_row(r) for r in leg_rows]

    async def commit_transition(self, order: Order, leg: Leg, expected_version: int) -> None:
        """
        Update the order and insert-or-complete the leg in one transaction.
        - Order update is conditional on expected_version; a mismatch raises StaleOrderError and rolls back.
        - A completed leg is never updated again.
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                result = await conn.execute(
                    """
                    UPDATE orders
                    SET status = $1, current_rider_id = $2, version = $3, updated_at = $4
                    WHERE order_id = $5 AND version = $6;
                    """,
                    order.status.value,
                    order.current_rider_id,
                    order.version,
                    order.updated_at,
                    order.order_id,
                    expected_version,
                )
                if result == "UPDATE 0":
                    raise StaleOrderError(order.order_id, expected_version)
                try:
                    result = await conn.execute(
                        """
                        INSERT INTO legs (leg_id, order_id, rider_id, leg_number, status, started_at, finished_at)
                        VALUES ($1, $2, $3, $4, $5, $6, $7)
                        ON CONFLICT (leg_id) DO UPDATE
                        SET status = EXCLUDED.status, finished_at = EXCLUDED.finished_at
                        WHERE legs.status = 'IN_PROGRESS';
                        """,
                        leg.leg_id,
                        leg.order_id,
                        leg.rider_id,
                        leg.leg_number,
                        leg.status.value,
                        leg.started_at,
                        leg.finished_at,
                    )
                except UniqueViolationError as e:
                    raise LedgerConsistencyError(order.order_id, f"leg write conflicts with existing ledger: {e}")
                if result == "INSERT 0 0":
                    raise LedgerConsistencyError(order.order_id, f"leg {leg.leg_number} already completed")
