"""
ETL Orchestrator Module
Coordinates the pipeline from catalog discovery to database import.

Phases run strictly in order: optional clear, download of every selected
resource, sequential import, report. Catalog and download failures abort the
run; a failing file import is recorded and the next file is attempted.
"""

import json
import logging
import traceback
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .catalog_client import CatalogClient, ResourceDescriptor, filter_resources
from .config import CatalogConfig, PipelineSettings
from .database import Database, InvoiceRepository
from .downloader import DownloadResult, ResourceDownloader
from .importer import StreamingImporter
from .ledger import ImportLedger

logger = logging.getLogger(__name__)


class PipelineStatus(Enum):
    """Pipeline execution status."""
    INIT = "init"
    CLEARING = "clearing"
    DOWNLOADING = "downloading"
    IMPORTING = "importing"
    REPORTING = "reporting"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class PipelineMetrics:
    """Track pipeline execution metrics."""

    def __init__(self):
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.status: PipelineStatus = PipelineStatus.INIT
        self.files_downloaded = 0
        self.files_skipped = 0
        self.results: List[Dict[str, Any]] = []
        self.statistics: Dict[str, Any] = {}
        self.error: Optional[str] = None

    def start(self):
        """Mark pipeline start."""
        self.start_time = datetime.now()
        self.status = PipelineStatus.INIT

    def complete(self, status: PipelineStatus = PipelineStatus.COMPLETED):
        """Mark pipeline completion."""
        self.end_time = datetime.now()
        self.status = status

    @property
    def duration(self) -> Optional[timedelta]:
        """Calculate pipeline duration."""
        if self.start_time and self.end_time:
            return self.end_time - self.start_time
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary."""
        successful = [r for r in self.results if r['success']]
        return {
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'duration_seconds': self.duration.total_seconds() if self.duration else None,
            'status': self.status.value,
            'files_downloaded': self.files_downloaded,
            'files_skipped': self.files_skipped,
            'files_processed': len(self.results),
            'successful': len(successful),
            'failed': len(self.results) - len(successful),
            'total_records': sum(r.get('record_count', 0) for r in self.results),
            'total_errors': sum(r.get('error_count', 0) for r in self.results),
            'results': list(self.results),
            'statistics': self.statistics,
            'error': self.error
        }


def select_resources(
    resources: Iterable[ResourceDescriptor],
    years: Optional[Iterable[int]] = None
) -> List[ResourceDescriptor]:
    """
    Restrict resources to the requested years.

    Resources without a year in their name are always dropped: their rows
    could not be assigned a data year.

    Args:
        resources: Filtered catalog resources
        years: Years to keep, or None for all

    Returns:
        Selected resources in their original order
    """
    wanted = set(years) if years else None
    selected = []

    for resource in resources:
        if resource.year is None:
            logger.warning(f"Ignoring {resource.name}: no data year in resource name")
            continue
        if wanted is not None and resource.year not in wanted:
            continue
        selected.append(resource)

    if wanted is not None:
        logger.info(f"Filtering to years: {', '.join(str(y) for y in sorted(wanted))}")

    return selected


class PipelineOrchestrator:
    """
    Main orchestrator for the ingestion pipeline.
    Coordinates discovery, downloads, imports and reporting.
    """

    def __init__(
        self,
        database: Database,
        catalog_config: Optional[CatalogConfig] = None,
        settings: Optional[PipelineSettings] = None,
        catalog_client: Optional[CatalogClient] = None,
        downloader: Optional[ResourceDownloader] = None,
        repository: Optional[InvoiceRepository] = None,
        ledger: Optional[ImportLedger] = None,
        importer: Optional[StreamingImporter] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            database: Open storage handle
            catalog_config: Catalog configuration
            settings: Pipeline directories and batch size
            catalog_client: Catalog client to use instead of a new one
            downloader: Downloader to use instead of one bound to the client
            repository: Invoice repository override
            ledger: Import ledger override
            importer: Importer override
        """
        self.database = database
        self.catalog_config = catalog_config or CatalogConfig()
        self.settings = settings or PipelineSettings()

        self.catalog_client = catalog_client or CatalogClient(self.catalog_config)
        self.downloader = downloader
        self.repository = repository or InvoiceRepository(database)
        self.ledger = ledger or ImportLedger(database)
        self.importer = importer or StreamingImporter(
            self.repository, self.ledger, batch_size=self.settings.batch_size
        )

        self.metrics = PipelineMetrics()

    async def download_resources(
        self,
        years: Optional[Iterable[int]] = None,
        force_redownload: bool = False
    ) -> List[DownloadResult]:
        """
        Discover the dataset's data files and download the selected ones.

        Raises:
            CatalogUnavailable, CatalogProtocolError: Metadata fetch failed
            DownloadFailed: Any download failed
        """
        self.metrics.status = PipelineStatus.DOWNLOADING

        async with self.catalog_client as client:
            dataset = await client.fetch_dataset_metadata()
            resources = select_resources(filter_resources(dataset), years)

            downloader = self.downloader or ResourceDownloader(client)
            downloads = await downloader.download_all(
                resources, self.settings.download_dir, force=force_redownload
            )

        self.metrics.files_downloaded = sum(1 for d in downloads if not d.skipped)
        self.metrics.files_skipped = len(downloads) - self.metrics.files_downloaded
        return downloads

    async def select_imports(self, downloads: List[DownloadResult]) -> List[DownloadResult]:
        """
        Decide which downloaded files to import.

        Fresh downloads are always imported. A file kept from an earlier run
        is imported only if the ledger has no completed import for it.
        """
        selected = []

        for download in downloads:
            if not download.skipped:
                selected.append(download)
            elif not await self.ledger.is_completed(download.resource.id):
                logger.info(f"Re-importing {download.resource.name}: no completed import in ledger")
                selected.append(download)
            else:
                logger.info(f"Already imported: {download.resource.name}")

        return selected

    async def import_downloads(self, downloads: List[DownloadResult]) -> List[Dict[str, Any]]:
        """
        Import files one after another; a failing file does not stop the rest.

        Returns:
            One result dictionary per file
        """
        self.metrics.status = PipelineStatus.IMPORTING
        logger.info("Starting database import...")

        results = []

        for download in downloads:
            resource = download.resource
            try:
                outcome = await self.importer.import_file(download.path, resource)
                results.append({
                    'filename': resource.name,
                    'year': resource.year,
                    'success': True,
                    'record_count': outcome.record_count,
                    'error_count': outcome.error_count,
                    'amounts_defaulted': outcome.amounts_defaulted,
                    'error': None
                })
            except Exception as e:
                logger.error(f"Failed to import {resource.name}: {e}")
                # Batches flushed before the failure stay in the table
                results.append({
                    'filename': resource.name,
                    'year': resource.year,
                    'success': False,
                    'record_count': getattr(e, 'records_committed', 0),
                    'error_count': 0,
                    'error': str(e)
                })

        total_records = sum(r['record_count'] for r in results)
        successful = sum(1 for r in results if r['success'])

        logger.info("Import complete!")
        logger.info(f"  Files processed: {len(results)}")
        logger.info(f"  Successful: {successful}")
        logger.info(f"  Total records: {total_records:,}")

        return results

    async def run(
        self,
        years: Optional[Iterable[int]] = None,
        force_redownload: bool = False,
        clear_existing: bool = False
    ) -> Dict[str, Any]:
        """
        Run the complete pipeline.

        Args:
            years: Restrict to these data years (None = all)
            force_redownload: Download files even if they are present
            clear_existing: Delete all invoices and ledger rows first,
                regardless of ``years``

        Returns:
            Pipeline execution report
        """
        years = list(years) if years else None
        self.metrics = PipelineMetrics()
        self.metrics.start()

        try:
            if clear_existing:
                self.metrics.status = PipelineStatus.CLEARING
                await self.repository.clear_existing_data()

            downloads = await self.download_resources(years, force_redownload)

            if not downloads:
                logger.warning("No files to process.")
            else:
                to_import = await self.select_imports(downloads)
                self.metrics.results = await self.import_downloads(to_import)

            self.metrics.status = PipelineStatus.REPORTING
            self.metrics.statistics = await self.repository.get_statistics()

            if any(not r['success'] for r in self.metrics.results):
                self.metrics.complete(PipelineStatus.PARTIAL)
            else:
                self.metrics.complete(PipelineStatus.COMPLETED)

            logger.info(f"Pipeline completed with status: {self.metrics.status.value}")
            logger.info(f"Duration: {self.metrics.duration}")

            self._save_pipeline_report()
            return self.metrics.to_dict()

        except Exception as e:
            logger.error(f"Pipeline failed with error: {e}")
            logger.error(traceback.format_exc())
            self.metrics.error = str(e)
            self.metrics.complete(PipelineStatus.FAILED)
            self._save_pipeline_report()
            raise

    def _save_pipeline_report(self) -> Optional[Path]:
        """Save pipeline execution report."""
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        report_path = self.settings.report_dir

        try:
            report_path.mkdir(parents=True, exist_ok=True)
            file_path = report_path / f"pipeline_report_{timestamp}.json"

            report = self.metrics.to_dict()
            report['timestamp'] = timestamp

            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(report, f, ensure_ascii=False, indent=2, default=str)
        except OSError as e:
            logger.error(f"Could not save pipeline report: {e}")
            return None

        logger.info(f"Saved pipeline report to {file_path}")
        return file_path
