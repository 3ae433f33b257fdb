"""
Streaming Importer Module
Parses downloaded CSV/TSV resources record by record and upserts the
accepted invoices into PostgreSQL in fixed-size batches.

Quote interpretation is disabled: the source exports contain stray quote
characters that do not follow CSV quoting rules, so every quote is kept as a
literal character. A field that legitimately contains the delimiter is split.
"""

import csv
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .catalog_client import ResourceDescriptor, extract_year
from .database import InvoiceRepository
from .exceptions import StreamCorrupt
from .field_mappings import REQUIRED_INVOICE_FIELDS, map_invoice_fields, normalize_header
from .format_detector import describe_delimiter, detect_delimiter, detect_encoding
from .ledger import ImportLedger
from .validator import InvoiceValidator

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000
MAX_LOGGED_REJECTIONS = 5
PROGRESS_INTERVAL = 10000


@dataclass
class ImportOutcome:
    """Counters of a single file import"""
    resource_name: str
    data_year: int
    delimiter: str
    encoding: str
    record_count: int = 0
    error_count: int = 0
    batch_count: int = 0
    records_committed: int = 0
    amounts_defaulted: int = 0
    rejected_samples: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'resource_name': self.resource_name,
            'data_year': self.data_year,
            'delimiter': describe_delimiter(self.delimiter),
            'encoding': self.encoding,
            'record_count': self.record_count,
            'error_count': self.error_count,
            'batch_count': self.batch_count,
            'amounts_defaulted': self.amounts_defaulted,
            'rejected_samples': list(self.rejected_samples),
        }


def iter_records(
    file_path: Union[str, Path],
    delimiter: str,
    encoding: str = 'utf-8'
) -> Iterator[Tuple[int, Dict[str, Optional[str]]]]:
    """
    Lazily read a delimited file as header-keyed records.

    Header names are normalized, values trimmed. Short rows yield None for
    the missing columns and surplus values are dropped. Empty lines are
    skipped. Undecodable bytes are replaced with U+FFFD.

    Yields:
        Tuples of (line number, record)
    """
    with open(file_path, 'r', encoding=encoding, errors='replace', newline='') as f:
        reader = csv.DictReader(f, delimiter=delimiter, quoting=csv.QUOTE_NONE)
        if reader.fieldnames is None:
            return
        reader.fieldnames = [normalize_header(name) for name in reader.fieldnames]

        for row in reader:
            yield reader.line_num, {
                key: value.strip() if isinstance(value, str) else value
                for key, value in row.items()
                if key is not None
            }


def _guard_stream(
    records: Iterator[Tuple[int, Dict[str, Optional[str]]]],
    resource_name: str
) -> Iterator[Tuple[int, Dict[str, Optional[str]]]]:
    # Only failures raised by the reader itself are structural
    try:
        yield from records
    except (csv.Error, OSError) as e:
        raise StreamCorrupt(resource_name, str(e)) from e


class StreamingImporter:
    """
    Import procurement CSV files into the invoice table.
    """

    def __init__(
        self,
        repository: InvoiceRepository,
        ledger: ImportLedger,
        batch_size: int = DEFAULT_BATCH_SIZE
    ):
        """
        Initialize the importer.

        Args:
            repository: Invoice storage used for batch upserts
            ledger: Import ledger updated around every file
            batch_size: Accepted records per upsert transaction
        """
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.repository = repository
        self.ledger = ledger
        self.batch_size = batch_size
        self.validator = InvoiceValidator()

    def transform_record(
        self,
        record: Dict[str, Optional[str]],
        data_year: int
    ) -> Tuple[Optional[Dict[str, Any]], List[str], bool]:
        """
        Turn a source record into a canonical invoice.

        Args:
            record: Header-keyed source record
            data_year: Year derived from the resource name

        Returns:
            Tuple of (invoice or None if rejected, errors, amount_defaulted)
        """
        invoice = map_invoice_fields(record)

        is_valid, errors = self.validator.validate_invoice(invoice)
        if not is_valid:
            return None, errors, False

        # A required field reading "N/A" is a value, not a missing field
        invoice = self.validator.clean_null_values(invoice, keep=REQUIRED_INVOICE_FIELDS)

        amount = self.validator.normalize_amount(invoice.get('tiliointisumma'))
        amount_defaulted = amount is None
        invoice['tiliointisumma'] = Decimal(0) if amount is None else amount
        # Row-level year columns are ignored; the file name decides
        invoice['data_year'] = data_year

        return invoice, [], amount_defaulted

    async def _flush(self, batch: List[Dict[str, Any]], outcome: ImportOutcome):
        written = await self.repository.upsert_batch(batch)
        outcome.batch_count += 1
        outcome.records_committed += written

    async def import_file(
        self,
        file_path: Union[str, Path],
        resource: ResourceDescriptor
    ) -> ImportOutcome:
        """
        Parse and import a CSV/TSV file.

        Args:
            file_path: Path of the downloaded resource
            resource: Catalog resource the file was downloaded from

        Returns:
            ImportOutcome with accepted and rejected record counts

        Raises:
            ValueError: The resource name carries no data year
            StreamCorrupt: The reader failed structurally; earlier batches stay committed
        """
        data_year = extract_year(resource.name)
        if data_year is None:
            raise ValueError(f"Cannot derive a data year from resource name {resource.name!r}")

        delimiter = detect_delimiter(file_path, resource.format)
        encoding = detect_encoding(file_path)
        outcome = ImportOutcome(
            resource_name=resource.name,
            data_year=data_year,
            delimiter=delimiter,
            encoding=encoding
        )

        logger.info(f"Importing: {resource.name}")
        logger.info(f"  Year: {data_year}")
        logger.info(f"  Format: {resource.format.upper()}")
        logger.info(f"  Delimiter: {describe_delimiter(delimiter)}")
        logger.info(f"  Encoding: {encoding}")

        await self.ledger.mark_pending(resource, data_year)

        records = _guard_stream(iter_records(file_path, delimiter, encoding), resource.name)
        batch: List[Dict[str, Any]] = []

        try:
            for line_number, record in records:
                invoice, errors, amount_defaulted = self.transform_record(record, data_year)

                if invoice is None:
                    outcome.error_count += 1
                    if outcome.error_count <= MAX_LOGGED_REJECTIONS:
                        message = f"line {line_number}: {'; '.join(errors)}"
                        outcome.rejected_samples.append(message)
                        logger.warning(f"  Skipping invalid record ({message})")
                    continue

                if amount_defaulted:
                    outcome.amounts_defaulted += 1
                    logger.debug(f"  Unparseable amount on line {line_number}, stored as 0")

                batch.append(invoice)
                outcome.record_count += 1

                if len(batch) >= self.batch_size:
                    await self._flush(batch, outcome)
                    batch = []

                if outcome.record_count % PROGRESS_INTERVAL == 0:
                    logger.info(f"  ... processed {outcome.record_count:,} records")

            if batch:
                await self._flush(batch, outcome)

        except StreamCorrupt as e:
            e.records_committed = outcome.records_committed
            logger.error(f"CSV parsing error in {resource.name}: {e}")
            await self._mark_failed(resource, data_year, outcome, e)
            raise
        except Exception as e:
            logger.error(f"Import of {resource.name} failed: {e}")
            await self._mark_failed(resource, data_year, outcome, e)
            raise
        finally:
            records.close()

        logger.info(f"Import complete: {resource.name}")
        logger.info(f"  Records imported: {outcome.record_count:,}")
        logger.info(f"  Errors skipped: {outcome.error_count:,}")
        if outcome.amounts_defaulted:
            logger.warning(f"  Amounts defaulted to 0: {outcome.amounts_defaulted:,}")

        await self.ledger.record_import(resource, data_year, outcome.record_count)

        return outcome

    async def _mark_failed(
        self,
        resource: ResourceDescriptor,
        data_year: int,
        outcome: ImportOutcome,
        error: Exception
    ):
        try:
            await self.ledger.mark_failed(resource, data_year, outcome.records_committed, str(error))
        except Exception as ledger_error:
            # The import error is the one worth propagating
            logger.error(f"Could not mark {resource.name} as failed in the ledger: {ledger_error}")
