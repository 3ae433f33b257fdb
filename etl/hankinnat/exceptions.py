"""
Pipeline error taxonomy.

Phase-level errors (catalog, download) terminate a run. ``StreamCorrupt`` only
aborts the file being imported. Row-level rejections are never raised; the
validator reports them as ``(is_valid, errors)`` tuples.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all ingestion pipeline errors."""


class CatalogUnavailable(PipelineError):
    """The catalog could not be reached or answered with a non-2xx status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class CatalogProtocolError(PipelineError):
    """The catalog answered, but the body was not a successful CKAN response."""


class DownloadFailed(PipelineError):
    """A resource could not be streamed to local storage."""

    def __init__(self, resource_name: str, message: str, status: Optional[int] = None):
        super().__init__(f"Download failed for {resource_name}: {message}")
        self.resource_name = resource_name
        self.status = status


class StreamCorrupt(PipelineError):
    """
    The delimited reader failed structurally while parsing a file.

    Batches flushed before the failure stay committed.
    """

    def __init__(self, resource_name: str, message: str, records_committed: int = 0):
        super().__init__(f"Corrupt stream in {resource_name}: {message}")
        self.resource_name = resource_name
        self.records_committed = records_committed
