"""
Import Ledger Module
Keeps one audit row per catalog resource in ``dataset_metadata``.

Every write replaces the resource's row, so the ledger reflects the latest
import attempt only. An import moves through ``pending`` to either
``completed`` or ``failed``.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from .catalog_client import ResourceDescriptor
from .database import LEDGER_TABLE, Database

logger = logging.getLogger(__name__)


class ImportStatus(Enum):
    """Ledger status of a resource import."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


UPSERT_LEDGER_SQL = f"""
    INSERT INTO {LEDGER_TABLE} (
        resource_id, resource_name, resource_url, file_format,
        data_year, last_modified, downloaded_at, records_imported,
        status, error_message
    ) VALUES ($1, $2, $3, $4, $5, $6, CURRENT_TIMESTAMP, $7, $8, $9)
    ON CONFLICT (resource_id) DO UPDATE
    SET resource_name = EXCLUDED.resource_name,
        resource_url = EXCLUDED.resource_url,
        file_format = EXCLUDED.file_format,
        data_year = EXCLUDED.data_year,
        last_modified = EXCLUDED.last_modified,
        downloaded_at = EXCLUDED.downloaded_at,
        records_imported = EXCLUDED.records_imported,
        status = EXCLUDED.status,
        error_message = EXCLUDED.error_message,
        updated_at = CURRENT_TIMESTAMP
"""


class ImportLedger:
    """
    Persists the import state of each resource.
    """

    def __init__(self, database: Database):
        self.database = database

    async def _write(
        self,
        resource: ResourceDescriptor,
        data_year: Optional[int],
        record_count: int,
        status: ImportStatus,
        error_message: Optional[str] = None
    ):
        async with self.database.acquire() as conn:
            await conn.execute(
                UPSERT_LEDGER_SQL,
                resource.id,
                resource.name,
                resource.url,
                resource.format,
                data_year,
                resource.last_modified,
                record_count,
                status.value,
                error_message
            )

    async def mark_pending(self, resource: ResourceDescriptor, data_year: Optional[int]):
        """Record that an import of the resource has started."""
        await self._write(resource, data_year, 0, ImportStatus.PENDING)
        logger.debug(f"Ledger: {resource.name} -> pending")

    async def record_import(
        self,
        resource: ResourceDescriptor,
        data_year: Optional[int],
        record_count: int
    ):
        """
        Record a successfully completed import.

        Args:
            resource: Imported resource
            data_year: Year derived from the resource name
            record_count: Number of accepted records
        """
        await self._write(resource, data_year, record_count, ImportStatus.COMPLETED)
        logger.info(f"Ledger: {resource.name} -> completed ({record_count:,} records)")

    async def mark_failed(
        self,
        resource: ResourceDescriptor,
        data_year: Optional[int],
        record_count: int,
        error: str
    ):
        """Record a failed import together with the records committed before the failure."""
        await self._write(resource, data_year, record_count, ImportStatus.FAILED, error)
        logger.warning(f"Ledger: {resource.name} -> failed after {record_count:,} records")

    async def get_entry(self, resource_id: str) -> Optional[Dict[str, Any]]:
        async with self.database.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT * FROM {LEDGER_TABLE} WHERE resource_id = $1",
                resource_id
            )
        return dict(row) if row else None

    async def list_entries(self) -> List[Dict[str, Any]]:
        async with self.database.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT * FROM {LEDGER_TABLE} ORDER BY data_year DESC NULLS LAST, resource_name"
            )
        return [dict(row) for row in rows]

    async def is_completed(self, resource_id: str) -> bool:
        """True when the latest import attempt of the resource completed."""
        entry = await self.get_entry(resource_id)
        return bool(entry) and entry.get('status') == ImportStatus.COMPLETED.value
