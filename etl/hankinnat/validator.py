"""
Data Validator Module
Responsible for validating and cleaning invoice rows from the procurement CSV files.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from .field_mappings import NULL_MARKERS, REQUIRED_INVOICE_FIELDS

logger = logging.getLogger(__name__)


class InvoiceValidator:
    """
    Validate and clean canonical invoice records.
    """

    @staticmethod
    def normalize_amount(amount_str: Optional[str]) -> Optional[Decimal]:
        """
        Normalize monetary amounts to Decimal.

        Handles the formats seen in the source exports: ``1234.56``,
        ``-1234,56``, ``1 234,56`` (space or no-break space thousands
        separator), ``1.234,56`` and trailing currency signs.

        Args:
            amount_str: Amount string to normalize

        Returns:
            Decimal amount or None if invalid
        """
        if amount_str is None:
            return None

        amount_clean = str(amount_str).strip()
        if not amount_clean or amount_clean in NULL_MARKERS:
            return None

        # Remove currency symbols and all kinds of spaces
        amount_clean = re.sub(r'[\u20ac$\u00a3\s]|EUR', '', amount_clean)

        # Unicode minus sign used by some spreadsheet exports
        amount_clean = amount_clean.replace('\u2212', '-')

        if ',' in amount_clean and '.' in amount_clean:
            if amount_clean.rfind(',') > amount_clean.rfind('.'):
                # 1.234.567,89
                amount_clean = amount_clean.replace('.', '').replace(',', '.')
            else:
                # 1,234,567.89
                amount_clean = amount_clean.replace(',', '')
        elif ',' in amount_clean:
            if amount_clean.count(',') == 1:
                # Finnish decimal comma
                amount_clean = amount_clean.replace(',', '.')
            else:
                amount_clean = amount_clean.replace(',', '')

        try:
            amount = Decimal(amount_clean)
        except (InvalidOperation, ValueError):
            logger.debug(f"Could not parse amount: {amount_str!r}")
            return None

        if not amount.is_finite():
            return None
        return amount

    @staticmethod
    def clean_null_values(data: Dict[str, Any], keep: Iterable[str] = ()) -> Dict[str, Any]:
        """
        Replace 'NULL' strings and empty values with None.

        Args:
            data: Dictionary to clean
            keep: Keys whose NULL markers are kept verbatim

        Returns:
            Cleaned dictionary
        """
        cleaned = {}
        keep = set(keep)

        for key, value in data.items():
            if isinstance(value, str):
                stripped = value.strip()
                is_marker = stripped in NULL_MARKERS and key not in keep
                cleaned[key] = None if stripped == "" or is_marker else stripped
            else:
                cleaned[key] = value

        return cleaned

    @staticmethod
    def validate_invoice(invoice: Dict[str, Any]) -> Tuple[bool, List[str]]:
        """
        Validate a canonical invoice record.

        Args:
            invoice: Invoice dictionary keyed by canonical field names

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        errors = []

        for field in REQUIRED_INVOICE_FIELDS:
            if not invoice.get(field):
                errors.append(f"Missing required field: {field}")

        return len(errors) == 0, errors
