"""
Tests for the ETL Orchestrator module.
"""

import json

import pytest

from etl.hankinnat.catalog_client import DatasetDescriptor
from etl.hankinnat.config import PipelineSettings
from etl.hankinnat.exceptions import CatalogUnavailable, DownloadFailed
from etl.hankinnat.orchestrator import PipelineOrchestrator, PipelineStatus, select_resources
from etl.tests.support import (
    HEADER, FakeCatalogClient, FakeDownloader, invoice_line, make_resource,
)


def csv_text(*invoice_ids, date="2024-01-15"):
    return "\n".join([HEADER] + [invoice_line(i, date=date) for i in invoice_ids]) + "\n"


class TestSelectResources:
    """Test suite for year selection."""

    def test_all_years(self):
        resources = [make_resource("th_data_2024.csv"), make_resource("th_data_2023.csv")]
        assert select_resources(resources) == resources

    def test_requested_years_only(self):
        resources = [make_resource(f"th_data_{year}.csv") for year in (2025, 2024, 2023)]

        selected = select_resources(resources, [2023, 2025])

        assert [r.name for r in selected] == ["th_data_2025.csv", "th_data_2023.csv"]

    def test_resources_without_year_are_dropped(self):
        resources = [make_resource("th_data_latest.csv"), make_resource("th_data_2024.csv")]

        assert [r.name for r in select_resources(resources)] == ["th_data_2024.csv"]


class TestPipelineOrchestrator:
    """Test suite for PipelineOrchestrator class."""

    @pytest.fixture
    def dataset(self):
        return DatasetDescriptor(
            id="ds-1",
            name="tutkihankintoja-data",
            title="Tutkihankintoja",
            resources=[
                make_resource("th_data_2023.csv"),
                make_resource("th_data_2024.csv"),
                make_resource("th_data_2024_kaannokset.csv"),
                make_resource("th_data_latest.csv"),
                make_resource("lueminut.pdf", file_format="PDF"),
            ],
        )

    @pytest.fixture
    def contents(self):
        return {
            "th_data_2023.csv": csv_text("A1", "A2", date="2023-05-01"),
            "th_data_2024.csv": csv_text("B1", "B2", "B3"),
        }

    @pytest.fixture
    def settings(self, tmp_path):
        return PipelineSettings(data_dir=tmp_path)

    @pytest.fixture
    def make_orchestrator(self, dataset, contents, settings, repository, ledger):
        def factory(catalog_client=None, downloader=None):
            return PipelineOrchestrator(
                None,
                settings=settings,
                catalog_client=catalog_client or FakeCatalogClient(dataset),
                downloader=downloader or FakeDownloader(contents),
                repository=repository,
                ledger=ledger,
            )
        return factory

    @pytest.mark.asyncio
    async def test_run_imports_all_years(self, make_orchestrator, repository, ledger):
        orchestrator = make_orchestrator()

        results = await orchestrator.run()

        assert results['status'] == PipelineStatus.COMPLETED.value
        assert results['files_downloaded'] == 2
        assert results['files_processed'] == 2
        assert results['total_records'] == 5
        assert repository.count_for_year(2023) == 2
        assert repository.count_for_year(2024) == 3
        assert ledger.entries["res-th_data_2024.csv"]["status"] == "completed"
        assert results['statistics']['total_invoices'] == 5

    @pytest.mark.asyncio
    async def test_newest_year_is_imported_first(self, make_orchestrator):
        orchestrator = make_orchestrator()

        results = await orchestrator.run()

        assert [r['filename'] for r in results['results']] == ["th_data_2024.csv", "th_data_2023.csv"]

    @pytest.mark.asyncio
    async def test_translation_and_yearless_files_are_ignored(self, make_orchestrator, contents):
        downloader = FakeDownloader(contents)
        orchestrator = make_orchestrator(downloader=downloader)

        await orchestrator.run()

        assert sorted(downloader.downloaded) == ["th_data_2023.csv", "th_data_2024.csv"]

    @pytest.mark.asyncio
    async def test_years_filter(self, make_orchestrator, contents, repository):
        downloader = FakeDownloader(contents)
        orchestrator = make_orchestrator(downloader=downloader)

        results = await orchestrator.run(years=[2024])

        assert downloader.downloaded == ["th_data_2024.csv"]
        assert results['files_processed'] == 1
        assert repository.count_for_year(2023) == 0

    @pytest.mark.asyncio
    async def test_clear_wipes_every_year(self, make_orchestrator, repository, ledger):
        await make_orchestrator().run()
        assert repository.count_for_year(2023) == 2

        results = await make_orchestrator().run(years=[2024], clear_existing=True)

        assert repository.cleared == 1
        assert repository.count_for_year(2023) == 0
        assert repository.count_for_year(2024) == 3
        assert "res-th_data_2023.csv" not in ledger.entries
        assert results['files_skipped'] == 1
        assert results['files_processed'] == 1

    @pytest.mark.asyncio
    async def test_completed_files_are_not_reimported(self, make_orchestrator, ledger):
        await make_orchestrator().run()
        history_length = len(ledger.history)

        results = await make_orchestrator().run()

        assert results['files_skipped'] == 2
        assert results['files_processed'] == 0
        assert len(ledger.history) == history_length

    @pytest.mark.asyncio
    async def test_existing_file_without_completed_import_is_imported(
        self, make_orchestrator, settings, repository
    ):
        settings.download_dir.mkdir(parents=True)
        (settings.download_dir / "th_data_2023.csv").write_text(csv_text("K1", date="2023-02-02"))

        results = await make_orchestrator().run(years=[2023])

        assert results['files_downloaded'] == 0
        assert results['files_skipped'] == 1
        assert results['files_processed'] == 1
        assert "K1" in repository.rows

    @pytest.mark.asyncio
    async def test_failed_file_does_not_stop_run(self, make_orchestrator, dataset, settings, repository, ledger):
        contents = {
            "th_data_2023.csv": csv_text("A1", date="2023-05-01"),
            "th_data_2024.csv": HEADER + "\n" + invoice_line("B1", category="x" * 200000) + "\n",
        }
        orchestrator = make_orchestrator(downloader=FakeDownloader(contents))

        results = await orchestrator.run()

        assert results['status'] == PipelineStatus.PARTIAL.value
        assert results['successful'] == 1
        assert results['failed'] == 1
        failed = [r for r in results['results'] if not r['success']][0]
        assert failed['filename'] == "th_data_2024.csv"
        assert "Corrupt stream" in failed['error']
        assert ledger.entries["res-th_data_2024.csv"]["status"] == "failed"
        assert "A1" in repository.rows

    @pytest.mark.asyncio
    async def test_failed_file_reports_committed_records(self, make_orchestrator, repository):
        ids = [f"B{i}" for i in range(1200)]
        contents = {
            "th_data_2023.csv": csv_text("A1", date="2023-05-01"),
            "th_data_2024.csv": csv_text(*ids) + invoice_line("B9999", category="x" * 200000) + "\n",
        }
        orchestrator = make_orchestrator(downloader=FakeDownloader(contents))

        results = await orchestrator.run()

        failed = [r for r in results['results'] if not r['success']][0]
        assert failed['record_count'] == 1000
        assert results['total_records'] == len(repository.rows) == 1001

    @pytest.mark.asyncio
    async def test_catalog_failure_is_fatal(self, make_orchestrator, settings, repository):
        client = FakeCatalogClient(error=CatalogUnavailable("CKAN API error: 503", status=503))
        orchestrator = make_orchestrator(catalog_client=client)

        with pytest.raises(CatalogUnavailable):
            await orchestrator.run()

        assert orchestrator.metrics.status == PipelineStatus.FAILED
        assert repository.rows == {}
        reports = list(settings.report_dir.glob("pipeline_report_*.json"))
        assert len(reports) == 1
        report = json.loads(reports[0].read_text(encoding="utf-8"))
        assert report['status'] == "failed"
        assert "503" in report['error']

    @pytest.mark.asyncio
    async def test_download_failure_is_fatal(self, make_orchestrator, contents, repository):
        downloader = FakeDownloader(contents, error=DownloadFailed("th_data_2024.csv", "404 Not Found"))
        orchestrator = make_orchestrator(downloader=downloader)

        with pytest.raises(DownloadFailed):
            await orchestrator.run()

        assert orchestrator.metrics.status == PipelineStatus.FAILED
        assert repository.rows == {}

    @pytest.mark.asyncio
    async def test_report_is_written(self, make_orchestrator, settings):
        await make_orchestrator().run()

        reports = list(settings.report_dir.glob("pipeline_report_*.json"))
        assert len(reports) == 1
        report = json.loads(reports[0].read_text(encoding="utf-8"))
        assert report['status'] == "completed"
        assert report['total_records'] == 5
        assert report['duration_seconds'] is not None

    @pytest.mark.asyncio
    async def test_empty_selection(self, make_orchestrator, repository):
        results = await make_orchestrator().run(years=[1999])

        assert results['status'] == PipelineStatus.COMPLETED.value
        assert results['files_processed'] == 0
        assert repository.rows == {}
