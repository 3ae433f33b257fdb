"""
Shared fixtures for the pipeline tests.
"""

import pytest

from etl.tests.support import FakeImportLedger, FakeInvoiceRepository


@pytest.fixture
def ledger():
    return FakeImportLedger()


@pytest.fixture
def repository(ledger):
    return FakeInvoiceRepository(ledger)
