"""
Hankinnat ETL Pipeline
======================

This package contains the ETL (Extract, Transform, Load) pipeline for Finnish
government procurement invoice data. It discovers the yearly CSV/TSV resources
of the "tutkihankintoja" dataset on avoindata.fi, downloads them, streams them
into a single PostgreSQL table and serves filtered queries over a REST API.

Main components:
- catalog_client: CKAN catalog client (dataset metadata, resource streams)
- downloader: Streaming resource downloads with skip-if-present logic
- format_detector: Delimiter and encoding sniffing
- importer: Streaming CSV importer with batched upserts
- ledger: Per-resource import ledger
- orchestrator: Pipeline orchestration
- query_service / api: Read-only query layer and aiohttp REST API
"""

__version__ = "0.1.0"
__author__ = "Hankinnat Development Team"
