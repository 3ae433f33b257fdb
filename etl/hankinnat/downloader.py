"""
Downloader Module
Responsible for fetching procurement data resources from the catalog and
storing them as local files for import.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .catalog_client import CatalogClient, ResourceDescriptor
from .exceptions import DownloadFailed

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"


@dataclass
class DownloadResult:
    """Outcome of downloading one resource"""
    path: Path
    byte_size: int
    skipped: bool
    resource: ResourceDescriptor

    @property
    def size_mb(self) -> float:
        return self.byte_size / 1024 / 1024


def destination_path(resource: ResourceDescriptor, destination_dir: Union[str, Path]) -> Path:
    """Deterministic local path of a resource, named after the resource."""
    return Path(destination_dir) / Path(resource.name).name


class ResourceDownloader:
    """
    Streams catalog resources to disk.

    Files are written to a ``.part`` sibling and renamed into place once the
    body has been fully received, so an existing destination file is always
    a complete download.
    """

    def __init__(self, client: CatalogClient, chunk_size: Optional[int] = None):
        """
        Initialize the downloader.

        Args:
            client: Open catalog client used for resource streams
            chunk_size: Bytes per streamed chunk, defaults to the client config
        """
        self.client = client
        self.chunk_size = chunk_size or client.config.chunk_size

    async def download(
        self,
        resource: ResourceDescriptor,
        destination_dir: Union[str, Path],
        force: bool = False
    ) -> DownloadResult:
        """
        Download a single resource.

        Args:
            resource: Resource to download
            destination_dir: Directory for downloaded files
            force: Re-download even if the file is already present

        Returns:
            DownloadResult; ``skipped`` is True when an existing file was kept

        Raises:
            DownloadFailed: Non-2xx response or interrupted stream
        """
        destination_dir = Path(destination_dir)
        destination_dir.mkdir(parents=True, exist_ok=True)
        file_path = destination_path(resource, destination_dir)

        if file_path.exists() and not force:
            result = DownloadResult(
                path=file_path, byte_size=file_path.stat().st_size, skipped=True, resource=resource
            )
            logger.info(f"Skipping (already exists): {file_path.name} ({result.size_mb:.2f} MB)")
            return result

        partial_path = file_path.with_name(file_path.name + PARTIAL_SUFFIX)

        logger.info(f"Downloading: {resource.name}")
        logger.info(f"  URL: {resource.url}")

        try:
            async with self.client.open_resource(resource) as response:
                with open(partial_path, 'wb') as f:
                    async for chunk in response.content.iter_chunked(self.chunk_size):
                        f.write(chunk)
            os.replace(partial_path, file_path)
        except DownloadFailed:
            partial_path.unlink(missing_ok=True)
            raise
        except OSError as e:
            partial_path.unlink(missing_ok=True)
            raise DownloadFailed(resource.name, f"could not write {file_path}: {e}") from e

        result = DownloadResult(
            path=file_path, byte_size=file_path.stat().st_size, skipped=False, resource=resource
        )
        logger.info(f"Downloaded: {file_path.name} ({result.size_mb:.2f} MB)")

        return result

    async def download_all(
        self,
        resources: List[ResourceDescriptor],
        destination_dir: Union[str, Path],
        force: bool = False
    ) -> List[DownloadResult]:
        """
        Download resources one after another.

        The first failure aborts the whole batch.

        Returns:
            Download results in resource order
        """
        results = []

        for resource in resources:
            results.append(await self.download(resource, destination_dir, force=force))

        downloaded = sum(1 for r in results if not r.skipped)
        logger.info(f"Download complete: {len(results)} files")
        logger.info(f"  Downloaded: {downloaded}")
        logger.info(f"  Skipped: {len(results) - downloaded}")

        return results
