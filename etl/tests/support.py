"""
In-memory doubles and CSV helpers shared by the pipeline tests.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from etl.hankinnat.catalog_client import DatasetDescriptor, ResourceDescriptor
from etl.hankinnat.downloader import DownloadResult, destination_path

HEADER = (
    "lasku_id;hankintayksikko;hankintayksikko_tunnus;ylaorganisaatio;ylaorganisaatio_tunnus;"
    "toimittaja_y_tunnus;toimittaja_nimi;toimittaja_kunta;tili;hankintakategoria;"
    "tuote_palveluryhma;tositepvm;tiliointisumma;sektori"
)


def invoice_line(invoice_id: str, amount: str = "100,00", date: str = "2024-01-15",
                 unit: str = "Valtiokonttori", category: str = "ICT-palvelut") -> str:
    return (
        f"{invoice_id};{unit};0245437-2;Valtiovarainministeriö;0245975-7;"
        f"1234567-8;Oy Toimittaja Ab;Helsinki;4300;{category};"
        f"Ohjelmistot;{date};{amount};Valtio"
    )


def write_csv(path: Path, lines: List[str], header: str = HEADER, encoding: str = "utf-8") -> Path:
    path.write_text("\n".join([header, *lines]) + "\n", encoding=encoding)
    return path


def make_resource(name: str, resource_id: Optional[str] = None, file_format: str = "CSV") -> ResourceDescriptor:
    return ResourceDescriptor(
        id=resource_id or f"res-{name}",
        name=name,
        url=f"https://example.invalid/{name}",
        format=file_format,
        last_modified="2025-01-01T00:00:00",
    )


class FakeInvoiceRepository:
    """In-memory stand-in for InvoiceRepository keyed by lasku_id."""

    def __init__(self, ledger: Optional["FakeImportLedger"] = None):
        self.ledger = ledger
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.flushes: List[int] = []
        self.fail_on_flush: Optional[int] = None
        self.cleared = 0

    async def upsert_batch(self, invoices):
        if self.fail_on_flush is not None and len(self.flushes) + 1 == self.fail_on_flush:
            raise RuntimeError("database connection lost")
        for invoice in invoices:
            self.rows[invoice["lasku_id"]] = dict(invoice)
        self.flushes.append(len(invoices))
        return len(invoices)

    async def clear_existing_data(self):
        self.rows.clear()
        self.cleared += 1
        if self.ledger is not None:
            self.ledger.entries.clear()

    async def get_statistics(self):
        years: Dict[int, int] = {}
        for row in self.rows.values():
            years[row["data_year"]] = years.get(row["data_year"], 0) + 1
        return {
            "total_invoices": len(self.rows),
            "year_breakdown": [
                {"data_year": year, "count": count} for year, count in sorted(years.items(), reverse=True)
            ],
        }

    def count_for_year(self, year: int) -> int:
        return sum(1 for row in self.rows.values() if row["data_year"] == year)


class FakeImportLedger:
    """In-memory stand-in for ImportLedger keyed by resource id."""

    def __init__(self):
        self.entries: Dict[str, Dict[str, Any]] = {}
        self.history: List[tuple] = []

    def _write(self, resource, data_year, record_count, status, error=None):
        self.entries[resource.id] = {
            "resource_id": resource.id,
            "resource_name": resource.name,
            "data_year": data_year,
            "records_imported": record_count,
            "status": status,
            "error_message": error,
        }
        self.history.append((resource.id, status))

    async def mark_pending(self, resource, data_year):
        self._write(resource, data_year, 0, "pending")

    async def record_import(self, resource, data_year, record_count):
        self._write(resource, data_year, record_count, "completed")

    async def mark_failed(self, resource, data_year, record_count, error):
        self._write(resource, data_year, record_count, "failed", error)

    async def is_completed(self, resource_id):
        entry = self.entries.get(resource_id)
        return bool(entry) and entry["status"] == "completed"


class FakeCatalogClient:
    """Catalog client double returning a fixed dataset."""

    def __init__(self, dataset: Optional[DatasetDescriptor] = None, error: Optional[Exception] = None):
        self.dataset = dataset
        self.error = error
        self.entered = 0

    async def __aenter__(self):
        self.entered += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def fetch_dataset_metadata(self, dataset_id=None):
        if self.error:
            raise self.error
        return self.dataset


class FakeDownloader:
    """
    Downloader double: writes the configured file contents unless the file
    already exists (or force is set).
    """

    def __init__(self, contents: Dict[str, str], error: Optional[Exception] = None):
        self.contents = contents
        self.error = error
        self.downloaded: List[str] = []

    async def download_all(self, resources, destination_dir, force=False):
        results = []
        Path(destination_dir).mkdir(parents=True, exist_ok=True)
        for resource in resources:
            if self.error:
                raise self.error
            path = destination_path(resource, destination_dir)
            if path.exists() and not force:
                results.append(DownloadResult(path, path.stat().st_size, True, resource))
                continue
            path.write_text(self.contents[resource.name], encoding="utf-8")
            self.downloaded.append(resource.name)
            results.append(DownloadResult(path, path.stat().st_size, False, resource))
        return results

