"""
Query Service Module
Read-only filtered, paginated and aggregated queries over the invoice table.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .database import INVOICES_TABLE, Database

logger = logging.getLogger(__name__)

INVOICE_LIST_COLUMNS = (
    "lasku_id", "hankintayksikko", "hankintayksikko_tunnus",
    "ylaorganisaatio", "ylaorganisaatio_tunnus",
    "toimittaja_y_tunnus", "toimittaja_nimi", "toimittaja_kunta",
    "tili", "hankintakategoria", "tuote_palveluryhma",
    "tositepvm", "tiliointisumma", "sektori", "data_year",
)

# Columns exposed through the distinct-value endpoints
DISTINCT_COLUMNS = {
    "categories": "hankintakategoria",
    "cities": "toimittaja_kunta",
    "units": "hankintayksikko",
}


def _parse_int(params: Mapping[str, str], name: str) -> Optional[int]:
    value = params.get(name)
    if value in (None, ""):
        return None
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid integer for {name}: {value!r}") from None


def _parse_decimal(params: Mapping[str, str], name: str) -> Optional[Decimal]:
    value = params.get(name)
    if value in (None, ""):
        return None
    try:
        parsed = Decimal(value)
    except InvalidOperation:
        raise ValueError(f"Invalid number for {name}: {value!r}") from None
    if not parsed.is_finite():
        raise ValueError(f"Invalid number for {name}: {value!r}")
    return parsed


@dataclass
class InvoiceFilters:
    """Filter and pagination parameters of an invoice listing"""
    supplier: Optional[str] = None
    category: Optional[str] = None
    city: Optional[str] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    sector: Optional[str] = None
    procurement_unit: Optional[str] = None
    year: Optional[int] = None
    limit: int = 100
    offset: int = 0

    @classmethod
    def from_query(
        cls,
        params: Mapping[str, str],
        default_limit: int = 100,
        max_limit: int = 1000
    ) -> "InvoiceFilters":
        """
        Build filters from HTTP query parameters (camelCase names).

        Raises:
            ValueError: A numeric parameter is malformed
        """
        limit = _parse_int(params, "limit")
        offset = _parse_int(params, "offset")

        return cls(
            supplier=params.get("supplier") or None,
            category=params.get("category") or None,
            city=params.get("city") or None,
            min_amount=_parse_decimal(params, "minAmount"),
            max_amount=_parse_decimal(params, "maxAmount"),
            start_date=params.get("startDate") or None,
            end_date=params.get("endDate") or None,
            sector=params.get("sector") or None,
            procurement_unit=params.get("procurementUnit") or None,
            year=_parse_int(params, "year"),
            limit=min(max(limit if limit is not None else default_limit, 1), max_limit),
            offset=max(offset or 0, 0),
        )


def build_where_clause(filters: InvoiceFilters) -> Tuple[str, List[Any]]:
    """
    Translate filters into a parameterized WHERE clause.

    Args:
        filters: Invoice filters

    Returns:
        Tuple of (clause or empty string, positional parameters)
    """
    conditions: List[str] = []
    params: List[Any] = []

    def add(template: str, value: Any):
        params.append(value)
        conditions.append(template.format(p=f"${len(params)}"))

    if filters.supplier:
        add("(toimittaja_nimi ILIKE {p} OR toimittaja_y_tunnus ILIKE {p})", f"%{filters.supplier}%")
    if filters.category:
        add("hankintakategoria ILIKE {p}", f"%{filters.category}%")
    if filters.city:
        add("toimittaja_kunta ILIKE {p}", f"%{filters.city}%")
    if filters.min_amount is not None:
        add("tiliointisumma >= {p}", filters.min_amount)
    if filters.max_amount is not None:
        add("tiliointisumma <= {p}", filters.max_amount)
    if filters.start_date:
        add("tositepvm >= {p}", filters.start_date)
    if filters.end_date:
        add("tositepvm <= {p}", filters.end_date)
    if filters.sector:
        add("sektori = {p}", filters.sector)
    if filters.procurement_unit:
        add("hankintayksikko ILIKE {p}", f"%{filters.procurement_unit}%")
    if filters.year is not None:
        add("data_year = {p}", filters.year)

    clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return clause, params


class InvoiceQueryService:
    """
    Read queries over procurement invoices.
    """

    def __init__(self, database: Database):
        self.database = database

    async def list_invoices(self, filters: InvoiceFilters) -> Dict[str, Any]:
        """
        List invoices matching the filters, newest posting date first.

        Returns:
            Dictionary with ``data`` rows and ``pagination`` info
        """
        where, params = build_where_clause(filters)
        limit_index = len(params) + 1

        async with self.database.acquire() as conn:
            total = await conn.fetchval(
                f"SELECT COUNT(*) FROM {INVOICES_TABLE} {where}", *params
            )
            rows = await conn.fetch(
                f"""
                SELECT {', '.join(INVOICE_LIST_COLUMNS)}
                FROM {INVOICES_TABLE}
                {where}
                ORDER BY tositepvm DESC
                LIMIT ${limit_index} OFFSET ${limit_index + 1}
                """,
                *params, filters.limit, filters.offset
            )

        return {
            "data": [dict(row) for row in rows],
            "pagination": {
                "total": total,
                "limit": filters.limit,
                "offset": filters.offset,
                "has_more": filters.offset + filters.limit < total,
            },
        }

    async def get_statistics(self, year: Optional[int] = None) -> Dict[str, Any]:
        """
        Aggregate statistics, optionally for a single data year.
        """
        year_filter = "data_year = $1" if year is not None else "TRUE"
        params = [year] if year is not None else []

        async with self.database.acquire() as conn:
            totals = await conn.fetchrow(
                f"""
                SELECT COALESCE(SUM(tiliointisumma), 0) AS total_value,
                       COUNT(*) AS total_invoices,
                       COALESCE(AVG(tiliointisumma), 0) AS average_invoice,
                       COUNT(DISTINCT toimittaja_nimi) AS unique_suppliers
                FROM {INVOICES_TABLE}
                WHERE {year_filter}
                """,
                *params
            )
            top_categories = await conn.fetch(
                f"""
                SELECT hankintakategoria AS category,
                       COUNT(*) AS count,
                       SUM(tiliointisumma) AS total_value
                FROM {INVOICES_TABLE}
                WHERE {year_filter}
                GROUP BY hankintakategoria
                ORDER BY total_value DESC
                LIMIT 10
                """,
                *params
            )
            top_suppliers = await conn.fetch(
                f"""
                SELECT toimittaja_nimi AS supplier,
                       toimittaja_y_tunnus AS business_id,
                       COUNT(*) AS invoice_count,
                       SUM(tiliointisumma) AS total_value
                FROM {INVOICES_TABLE}
                WHERE toimittaja_nimi IS NOT NULL AND {year_filter}
                GROUP BY toimittaja_nimi, toimittaja_y_tunnus
                ORDER BY total_value DESC
                LIMIT 10
                """,
                *params
            )

        stats = dict(totals)
        stats["top_categories"] = [dict(row) for row in top_categories]
        stats["top_suppliers"] = [dict(row) for row in top_suppliers]
        return stats

    async def list_distinct(self, kind: str) -> List[str]:
        """
        Distinct non-null values for one of ``DISTINCT_COLUMNS``.

        Raises:
            KeyError: Unknown kind
        """
        column = DISTINCT_COLUMNS[kind]
        async with self.database.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT DISTINCT {column} AS value
                FROM {INVOICES_TABLE}
                WHERE {column} IS NOT NULL
                ORDER BY {column}
                """
            )
        return [row["value"] for row in rows]
