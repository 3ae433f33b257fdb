"""
Database Module
PostgreSQL storage for procurement invoices and the import ledger.

A single ``Database`` handle owns the asyncpg connection pool. It is opened
once per process and passed to every component that needs storage.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

import asyncpg
from asyncpg import Pool

from .field_mappings import INVOICE_COLUMNS

logger = logging.getLogger(__name__)

INVOICES_TABLE = "procurement_invoices"
LEDGER_TABLE = "dataset_metadata"

SCHEMA_STATEMENTS = (
    f"""
    CREATE TABLE IF NOT EXISTS {INVOICES_TABLE} (
        id BIGSERIAL PRIMARY KEY,
        lasku_id TEXT NOT NULL UNIQUE,
        hankintayksikko TEXT NOT NULL,
        hankintayksikko_tunnus TEXT,
        ylaorganisaatio TEXT,
        ylaorganisaatio_tunnus TEXT,
        toimittaja_y_tunnus TEXT,
        toimittaja_nimi TEXT,
        toimittaja_kunta TEXT,
        tili TEXT,
        hankintakategoria TEXT NOT NULL,
        tuote_palveluryhma TEXT,
        tositepvm TEXT NOT NULL,
        tiliointisumma NUMERIC NOT NULL,
        sektori TEXT,
        data_year INTEGER NOT NULL,
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
    )
    """,
    f"CREATE INDEX IF NOT EXISTS idx_tositepvm ON {INVOICES_TABLE}(tositepvm)",
    f"CREATE INDEX IF NOT EXISTS idx_hankintakategoria ON {INVOICES_TABLE}(hankintakategoria)",
    f"CREATE INDEX IF NOT EXISTS idx_toimittaja_nimi ON {INVOICES_TABLE}(toimittaja_nimi)",
    f"CREATE INDEX IF NOT EXISTS idx_toimittaja_kunta ON {INVOICES_TABLE}(toimittaja_kunta)",
    f"CREATE INDEX IF NOT EXISTS idx_hankintayksikko ON {INVOICES_TABLE}(hankintayksikko)",
    f"CREATE INDEX IF NOT EXISTS idx_sektori ON {INVOICES_TABLE}(sektori)",
    f"CREATE INDEX IF NOT EXISTS idx_data_year ON {INVOICES_TABLE}(data_year)",
    f"CREATE INDEX IF NOT EXISTS idx_tiliointisumma ON {INVOICES_TABLE}(tiliointisumma)",
    f"""
    CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} (
        id BIGSERIAL PRIMARY KEY,
        resource_id TEXT NOT NULL UNIQUE,
        resource_name TEXT NOT NULL,
        resource_url TEXT NOT NULL,
        file_format TEXT,
        data_year INTEGER,
        last_modified TEXT,
        downloaded_at TIMESTAMPTZ,
        records_imported INTEGER DEFAULT 0,
        status TEXT DEFAULT 'pending',
        error_message TEXT,
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
    )
    """,
)


def _build_upsert_sql() -> str:
    columns = ", ".join(INVOICE_COLUMNS)
    placeholders = ", ".join(f"${i}" for i in range(1, len(INVOICE_COLUMNS) + 1))
    # Full-row replace: every column is overwritten on conflict
    assignments = ",\n            ".join(
        f"{column} = EXCLUDED.{column}" for column in INVOICE_COLUMNS if column != "lasku_id"
    )
    return f"""
        INSERT INTO {INVOICES_TABLE} ({columns})
        VALUES ({placeholders})
        ON CONFLICT (lasku_id) DO UPDATE
        SET {assignments},
            updated_at = CURRENT_TIMESTAMP
    """


UPSERT_INVOICE_SQL = _build_upsert_sql()


class Database:
    """
    Storage handle wrapping an asyncpg connection pool.
    """

    def __init__(self, db_config: Dict[str, Any]):
        """
        Initialize the database handle.

        Args:
            db_config: Database configuration dictionary with keys:
                - host: Database host
                - port: Database port
                - database: Database name
                - user: Database user
                - password: Database password
        """
        self.db_config = db_config
        self.pool: Optional[Pool] = None

    async def initialize_pool(self):
        """Initialize the connection pool."""
        if not self.pool:
            self.pool = await asyncpg.create_pool(
                host=self.db_config['host'],
                port=self.db_config.get('port', 5432),
                database=self.db_config['database'],
                user=self.db_config['user'],
                password=self.db_config['password'],
                min_size=1,
                max_size=10,
                command_timeout=300
            )
            logger.info("Database connection pool initialized")

    async def close_pool(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Database connection pool closed")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.initialize_pool()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close_pool()

    def acquire(self):
        """Acquire a pooled connection (async context manager)."""
        if self.pool is None:
            raise RuntimeError("Database pool is not initialized")
        return self.pool.acquire()

    async def initialize_schema(self):
        """Create tables and indexes if they do not exist."""
        logger.info("Initializing database schema...")
        async with self.acquire() as conn:
            async with conn.transaction():
                for statement in SCHEMA_STATEMENTS:
                    await conn.execute(statement)
        logger.info("Database schema initialized successfully")


class InvoiceRepository:
    """
    Write and maintenance operations on the invoice table.
    """

    def __init__(self, database: Database):
        self.database = database

    async def upsert_batch(self, invoices: Sequence[Dict[str, Any]]) -> int:
        """
        Insert or replace a batch of invoices in one transaction.

        Either the whole batch is applied or none of it.

        Args:
            invoices: Canonical invoice dictionaries

        Returns:
            Number of rows written
        """
        if not invoices:
            return 0

        rows = [tuple(invoice.get(column) for column in INVOICE_COLUMNS) for invoice in invoices]

        async with self.database.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(UPSERT_INVOICE_SQL, rows)

        logger.debug(f"Upserted batch of {len(rows)} invoices")
        return len(rows)

    async def clear_existing_data(self):
        """
        Delete every invoice and every ledger row.

        This is not scoped to any year.
        """
        logger.info("Clearing all invoice data...")
        async with self.database.acquire() as conn:
            async with conn.transaction():
                await conn.execute(f"DELETE FROM {INVOICES_TABLE}")
                await conn.execute(f"DELETE FROM {LEDGER_TABLE}")
        logger.info("All invoice data cleared")

    async def get_statistics(self) -> Dict[str, Any]:
        """
        Get database statistics.

        Returns:
            Dictionary with invoice totals, per-year breakdown and ledger info
        """
        async with self.database.acquire() as conn:
            stats: Dict[str, Any] = {}

            stats['total_invoices'] = await conn.fetchval(
                f"SELECT COUNT(*) FROM {INVOICES_TABLE}"
            )
            year_rows = await conn.fetch(
                f"""
                SELECT data_year, COUNT(*) AS count, SUM(tiliointisumma) AS total_value
                FROM {INVOICES_TABLE}
                GROUP BY data_year
                ORDER BY data_year DESC
                """
            )
            stats['year_breakdown'] = _rows_to_dicts(year_rows)
            stats['last_update'] = await conn.fetchval(
                f"SELECT MAX(downloaded_at) FROM {LEDGER_TABLE} WHERE status = 'completed'"
            )
            stats['dataset_files'] = await conn.fetchval(
                f"SELECT COUNT(*) FROM {LEDGER_TABLE}"
            )

            return stats


def _rows_to_dicts(rows: Iterable[Any]) -> List[Dict[str, Any]]:
    return [dict(row) for row in rows]
