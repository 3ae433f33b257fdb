"""
Configuration for the Hankinnat ETL pipeline.

All settings can be overridden through environment variables (a ``.env`` file
in the working directory is loaded first).
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv


DEFAULT_CKAN_BASE_URL = "https://www.avoindata.fi/data/api/3/action"
DEFAULT_DATASET_ID = "tutkihankintoja-data"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


@dataclass
class CatalogConfig:
    """Configuration for the CKAN catalog client and downloads"""
    base_url: str = DEFAULT_CKAN_BASE_URL
    dataset_id: str = DEFAULT_DATASET_ID
    rate_limit: int = 5  # requests per second
    timeout: int = 60  # seconds for metadata calls
    download_timeout: int = 3600  # seconds for a whole resource download
    chunk_size: int = 1024 * 1024  # bytes per streamed chunk

    @classmethod
    def from_env(cls) -> "CatalogConfig":
        load_dotenv()
        return cls(
            base_url=os.getenv("CKAN_BASE_URL", DEFAULT_CKAN_BASE_URL).rstrip("/"),
            dataset_id=os.getenv("DATASET_ID", DEFAULT_DATASET_ID),
            rate_limit=_env_int("CATALOG_RATE_LIMIT", 5),
            timeout=_env_int("CATALOG_TIMEOUT", 60),
            download_timeout=_env_int("DOWNLOAD_TIMEOUT", 3600),
            chunk_size=_env_int("DOWNLOAD_CHUNK_SIZE", 1024 * 1024),
        )


@dataclass
class PipelineSettings:
    """Filesystem locations and import tuning"""
    data_dir: Path = field(default_factory=lambda: Path("data"))
    batch_size: int = 1000

    @property
    def download_dir(self) -> Path:
        return self.data_dir / "csv"

    @property
    def report_dir(self) -> Path:
        return self.data_dir / "reports"

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        load_dotenv()
        return cls(
            data_dir=Path(os.getenv("DATA_DIR", "data")),
            batch_size=_env_int("IMPORT_BATCH_SIZE", 1000),
        )


@dataclass
class ApiSettings:
    """Settings for the REST query API"""
    host: str = "0.0.0.0"
    port: int = 3001
    default_limit: int = 100
    max_limit: int = 1000

    @classmethod
    def from_env(cls) -> "ApiSettings":
        load_dotenv()
        return cls(
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=_env_int("PORT", 3001),
        )


def get_db_config() -> Dict[str, Any]:
    """
    Build the database configuration from the environment.

    Returns:
        Dictionary with host, port, database, user and password keys
    """
    load_dotenv()

    return {
        'host': os.getenv('DB_HOST', 'localhost'),
        'port': _env_int('DB_PORT', 5432),
        'database': os.getenv('DB_NAME', 'hankinnat'),
        'user': os.getenv('DB_USER', 'hankinnat'),
        'password': os.getenv('DB_PASSWORD', 'hankinnat')
    }
