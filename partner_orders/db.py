"""
Async Postgres: orders (current state) + order_history (audit trail) + packing_slips.
A transition runs in a single transaction: lock the order row (FOR NO KEY UPDATE), validate,
update the order, insert the history entry (and the packing slip, when one is made).
"""
import json
from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncpg

from partner_orders.config import settings
from partner_orders.errors import OrderNotFoundError, PersistenceFailure
from partner_orders.models import HistoryEntry, Order, PackingSlip

_pool: asyncpg.Pool | None = None

DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

ORDER_COLUMNS = (
    "id, status, po_number, company_id, user_id, invoice_number, so_number, number_of_pallets, "
    "packing_slip_generated, packing_slip_generated_at, packing_slip_generated_by, "
    "netsuite_sales_order_id, netsuite_status, tracking_number, created_at, updated_at"
)


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
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
                id VARCHAR(255) PRIMARY KEY,
                status VARCHAR(20) NOT NULL DEFAULT 'Open',
                po_number VARCHAR(255),
                company_id VARCHAR(255),
                user_id VARCHAR(255),
                invoice_number VARCHAR(255),
                so_number VARCHAR(255),
                number_of_pallets INT CHECK (number_of_pallets > 0),
                packing_slip_generated BOOLEAN NOT NULL DEFAULT FALSE,
                packing_slip_generated_at TIMESTAMPTZ,
                packing_slip_generated_by VARCHAR(255),
                netsuite_sales_order_id VARCHAR(255),
                netsuite_status VARCHAR(50),
                tracking_number VARCHAR(255),
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            );
        """)
        await conn.execute("ALTER TABLE orders ADD COLUMN IF NOT EXISTS tracking_number VARCHAR(255);")
        # No foreign key: history outlives a deleted order
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_history (
                id UUID PRIMARY KEY,
                order_id VARCHAR(255) NOT NULL,
                action_type VARCHAR(50) NOT NULL,
                status_from VARCHAR(20),
                status_to VARCHAR(20),
                notes TEXT,
                changed_by_id VARCHAR(255),
                changed_by_name VARCHAR(255),
                changed_by_role VARCHAR(20),
                metadata JSONB,
                created_at TIMESTAMPTZ DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_order_history_order_id
            ON order_history(order_id, created_at);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS packing_slips (
                id UUID PRIMARY KEY,
                order_id VARCHAR(255) NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                invoice_number VARCHAR(255),
                so_number VARCHAR(255),
                shipping_method VARCHAR(255),
                netsuite_reference VARCHAR(255),
                notes TEXT,
                created_by VARCHAR(255),
                created_at TIMESTAMPTZ DEFAULT NOW()
            );
        """)


def _row_to_order(row: asyncpg.Record) -> Order:
    return Order(**dict(row))


def _row_to_history(row: asyncpg.Record) -> HistoryEntry:
    data = dict(row)
    metadata = data.get("metadata")
    if isinstance(metadata, str):
        data["metadata"] = json.loads(metadata)
    elif metadata is None:
        data["metadata"] = {}
    return HistoryEntry(**data)


async def _fetch_order(conn: asyncpg.Connection, order_id: str, for_update: bool = False) -> Order:
    query = f"SELECT {ORDER_COLUMNS} FROM orders WHERE id = $1"
    if for_update:
        query += " FOR NO KEY UPDATE"
    row = await conn.fetchrow(query + ";", order_id)
    if row is None:
        raise OrderNotFoundError(order_id)
    return _row_to_order(row)


async def _update_order(conn: asyncpg.Connection, order: Order) -> None:
    result = await conn.execute(
        """
        UPDATE orders SET
            status = $2, invoice_number = $3, so_number = $4, number_of_pallets = $5,
            packing_slip_generated = $6, packing_slip_generated_at = $7, packing_slip_generated_by = $8,
            netsuite_sales_order_id = $9, netsuite_status = $10, tracking_number = $11, updated_at = NOW()
        WHERE id = $1;
        """,
        order.id,
        order.status.value,
        order.invoice_number,
        order.so_number,
        order.number_of_pallets,
        order.packing_slip_generated,
        order.packing_slip_generated_at,
        order.packing_slip_generated_by,
        order.netsuite_sales_order_id,
        order.netsuite_status,
        order.tracking_number,
    )
    if result == "UPDATE 0":
        raise OrderNotFoundError(order.id)


async def _insert_history(conn: asyncpg.Connection, entry: HistoryEntry) -> None:
    await conn.execute(
        """
        INSERT INTO order_history (id, order_id, action_type, status_from, status_to, notes,
                                   changed_by_id, changed_by_name, changed_by_role, metadata, created_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10::jsonb, $11);
        """,
        entry.id,
        entry.order_id,
        entry.action_type.value,
        entry.status_from.value if entry.status_from else None,
        entry.status_to.value if entry.status_to else None,
        entry.notes,
        entry.changed_by_id,
        entry.changed_by_name,
        entry.changed_by_role,
        json.dumps(entry.metadata, default=str),
        entry.created_at,
    )


async def _insert_packing_slip(conn: asyncpg.Connection, slip: PackingSlip) -> None:
    await conn.execute(
        """
        INSERT INTO packing_slips (id, order_id, invoice_number, so_number, shipping_method,
                                   netsuite_reference, notes, created_by, created_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9);
        """,
        slip.id,
        slip.order_id,
        slip.invoice_number,
        slip.so_number,
        slip.shipping_method,
        slip.netsuite_reference,
        slip.notes,
        slip.created_by,
        slip.created_at,
    )


class PostgresOrderSession:
    """Unit of work bound to one connection inside an open transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn

    async def load_order(self, order_id: str) -> Order:
        """Row lock held until the transaction ends."""
        return await _fetch_order(self._conn, order_id, for_update=True)

    async def save_order(self, order: Order) -> None:
        await _update_order(self._conn, order)

    async def append_history(self, entry: HistoryEntry) -> None:
        await _insert_history(self._conn, entry)

    async def insert_packing_slip(self, slip: PackingSlip) -> None:
        await _insert_packing_slip(self._conn, slip)

    async def delete_order(self, order_id: str) -> None:
        await self._conn.execute("DELETE FROM orders WHERE id = $1;", order_id)


class PostgresOrderStore:
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresOrderSession]:
        """Commit everything done through the session, or nothing."""
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    yield PostgresOrderSession(conn)
        except DB_ERRORS as e:
            raise PersistenceFailure(str(e)) from e

    async def load_order(self, order_id: str) -> Order:
        try:
            async with self._pool.acquire() as conn:
                return await _fetch_order(conn, order_id)
        except DB_ERRORS as e:
            raise PersistenceFailure(str(e)) from e

    async def save_order(self, order: Order) -> None:
        async with self.transaction() as session:
            await session.save_order(order)

    async def append_history(self, entry: HistoryEntry) -> None:
        try:
            async with self._pool.acquire() as conn:
                await _insert_history(conn, entry)
        except DB_ERRORS as e:
            raise PersistenceFailure(str(e)) from e

    async def list_history(self, order_id: str) -> list[HistoryEntry]:
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT id, order_id, action_type, status_from, status_to, notes,
                           changed_by_id, changed_by_name, changed_by_role, metadata, created_at
                    FROM order_history
                    WHERE order_id = $1
                    ORDER BY created_at ASC;
                    """,
                    order_id,
                )
        except DB_ERRORS as e:
            raise PersistenceFailure(str(e)) from e
        return [_row_to_history(r) for r in rows]

    async def delete_order(self, order_id: str) -> None:
        async with self.transaction() as session:
            await session.delete_order(order_id)
