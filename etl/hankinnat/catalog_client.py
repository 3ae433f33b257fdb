"""
CKAN Catalog Client for avoindata.fi
====================================

This module provides an async client for the CKAN action API of the Finnish
open data portal (avoindata.fi). It lists the resources of the procurement
dataset and opens streaming responses for resource downloads.

Features:
- Async HTTP requests with aiohttp
- Rate limiting with asyncio-throttle
- Bounded timeouts for metadata calls and downloads
- Resource filtering and year extraction for the th_data_YYYY files

No request is retried; a failed run is re-invoked manually.
"""

import asyncio
import json
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp
from asyncio_throttle import Throttler

from .config import CatalogConfig
from .exceptions import CatalogProtocolError, CatalogUnavailable, DownloadFailed

logger = logging.getLogger(__name__)

DATA_FILE_PREFIX = "th_data_"
DATA_FILE_FORMATS = ("csv", "tsv")
TRANSLATION_MARKERS = ("kaannokset", "translation")

_YEAR_PATTERN = re.compile(r"(?<!\d)(\d{4})(?!\d)")


@dataclass
class ResourceDescriptor:
    """One downloadable file entry of a CKAN dataset"""
    id: str
    name: str
    url: str
    format: str = ""
    last_modified: Optional[str] = None
    created: Optional[str] = None
    size: Optional[int] = None

    @classmethod
    def from_ckan(cls, data: Dict[str, Any]) -> "ResourceDescriptor":
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            url=data.get("url") or "",
            format=data.get("format") or "",
            last_modified=data.get("last_modified"),
            created=data.get("created"),
            size=data.get("size"),
        )

    @property
    def year(self) -> Optional[int]:
        return extract_year(self.name)


@dataclass
class DatasetDescriptor:
    """The catalog's metadata record of a dataset"""
    id: str
    name: str
    title: str
    resources: List[ResourceDescriptor] = field(default_factory=list)

    @classmethod
    def from_ckan(cls, data: Dict[str, Any]) -> "DatasetDescriptor":
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            title=data.get("title") or "",
            resources=[ResourceDescriptor.from_ckan(r) for r in data.get("resources") or []],
        )


def extract_year(filename: Optional[str]) -> Optional[int]:
    """
    Extract the data year from a file name (e.g. "th_data_2024.csv" -> 2024).

    Only a run of exactly four digits counts: longer runs such as the date
    stamp in "th_data_20240101.csv" yield None, and resources without a
    year are dropped from the pipeline with a warning.

    Args:
        filename: Resource or file name

    Returns:
        The first run of exactly four digits as an integer, or None
    """
    if not filename:
        return None
    match = _YEAR_PATTERN.search(filename)
    return int(match.group(1)) if match else None


def is_procurement_data_file(resource: ResourceDescriptor) -> bool:
    """Check the th_data_ naming convention and exclude translation files."""
    name = resource.name.lower()
    file_format = resource.format.lower()

    is_data_file = name.startswith(DATA_FILE_PREFIX) and (
        file_format in DATA_FILE_FORMATS
        or name.endswith(tuple(f".{ext}" for ext in DATA_FILE_FORMATS))
    )
    is_translation = any(marker in name for marker in TRANSLATION_MARKERS)

    return is_data_file and not is_translation


def filter_resources(dataset: DatasetDescriptor) -> List[ResourceDescriptor]:
    """
    Select the procurement data files of a dataset.

    Args:
        dataset: Dataset descriptor from the catalog

    Returns:
        Matching resources, newest year first; ties keep catalog order and
        resources without a year sort last
    """
    resources = [r for r in dataset.resources if is_procurement_data_file(r)]
    resources.sort(key=lambda r: r.year or 0, reverse=True)

    logger.info(f"Found {len(resources)} procurement data files")
    for resource in resources:
        logger.info(f"  - {resource.name} ({resource.year}, {resource.format.upper()})")

    return resources


class CatalogClient:
    """
    Async client for the avoindata.fi CKAN API.

    Use as an async context manager; the HTTP session lives for the duration
    of the block.
    """

    def __init__(self, config: Optional[CatalogConfig] = None):
        """
        Initialize the catalog client.

        Args:
            config: Optional catalog configuration. Uses defaults if not provided.
        """
        self.config = config or CatalogConfig()
        self.throttler = Throttler(rate_limit=self.config.rate_limit)
        self.session: Optional[aiohttp.ClientSession] = None
        self.request_count = 0
        self.error_count = 0

    async def __aenter__(self):
        """Async context manager entry"""
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)
        self.session = aiohttp.ClientSession(timeout=timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        if self.session:
            await self.session.close()
            self.session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            raise RuntimeError("CatalogClient must be used as an async context manager")
        return self.session

    async def fetch_dataset_metadata(self, dataset_id: Optional[str] = None) -> DatasetDescriptor:
        """
        Fetch dataset metadata with the CKAN ``package_show`` action.

        Args:
            dataset_id: Dataset name or id, defaults to the configured dataset

        Returns:
            DatasetDescriptor with all resources of the dataset

        Raises:
            CatalogUnavailable: Network failure, timeout or non-2xx status
            CatalogProtocolError: Body is not JSON or ``success`` is false
        """
        session = self._require_session()
        dataset_id = dataset_id or self.config.dataset_id
        url = f"{self.config.base_url}/package_show"

        logger.info(f"Fetching dataset metadata for: {dataset_id}")

        try:
            async with self.throttler:
                async with session.get(url, params={"id": dataset_id}) as response:
                    self.request_count += 1
                    if response.status >= 300:
                        self.error_count += 1
                        raise CatalogUnavailable(
                            f"CKAN API error: {response.status} {response.reason}",
                            status=response.status,
                        )
                    text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.error_count += 1
            raise CatalogUnavailable(f"CKAN API unreachable: {e!r}") from e

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            self.error_count += 1
            raise CatalogProtocolError(f"Invalid JSON from package_show: {text[:200]!r}") from e

        if not isinstance(data, dict) or not data.get("success"):
            self.error_count += 1
            raise CatalogProtocolError("CKAN API returned unsuccessful response")

        dataset = DatasetDescriptor.from_ckan(data.get("result") or {})

        logger.info(f"Found dataset: {dataset.title}")
        logger.info(f"  Resources: {len(dataset.resources)}")

        return dataset

    @asynccontextmanager
    async def open_resource(
        self, resource: ResourceDescriptor
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """
        Open a streaming response for a resource body.

        The download timeout replaces the session timeout for this request.

        Raises:
            DownloadFailed: Network failure, timeout or non-2xx status
        """
        session = self._require_session()
        timeout = aiohttp.ClientTimeout(total=self.config.download_timeout)

        logger.debug(f"Opening resource stream: {resource.url}")

        await self.throttler.acquire()
        try:
            async with session.get(resource.url, timeout=timeout) as response:
                self.request_count += 1
                if response.status >= 300:
                    self.error_count += 1
                    raise DownloadFailed(
                        resource.name, f"{response.status} {response.reason}", status=response.status
                    )
                yield response
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            # Covers connection setup and interruptions while the body streams
            self.error_count += 1
            raise DownloadFailed(resource.name, repr(e)) from e

    def get_statistics(self) -> Dict[str, float]:
        """
        Get client statistics.

        Returns:
            Dictionary with request and error counts
        """
        return {
            "total_requests": self.request_count,
            "total_errors": self.error_count,
            "success_rate": (
                (self.request_count - self.error_count) / self.request_count * 100
                if self.request_count > 0 else 0
            )
        }
