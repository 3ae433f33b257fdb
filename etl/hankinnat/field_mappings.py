"""
Field Mappings Module
Maps source CSV column names onto canonical invoice columns.

The yearly th_data files are published with Finnish column headers, some
exports use the English translations instead. Each canonical field lists its
candidate source columns in lookup order; the first non-empty one wins.
"""

from typing import Dict, Mapping, Optional, Tuple

# Canonical field -> candidate source columns (Finnish first, English alias second)
INVOICE_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    'lasku_id': ('lasku_id', 'invoice_id'),
    'hankintayksikko': ('hankintayksikko', 'procurement_unit'),
    'hankintayksikko_tunnus': ('hankintayksikko_tunnus', 'procurement_unit_id'),
    'ylaorganisaatio': ('ylaorganisaatio', 'parent_organization'),
    'ylaorganisaatio_tunnus': ('ylaorganisaatio_tunnus', 'parent_organization_id'),
    'toimittaja_y_tunnus': ('toimittaja_y_tunnus', 'supplier_business_id'),
    'toimittaja_nimi': ('toimittaja_nimi', 'supplier_name'),
    'toimittaja_kunta': ('toimittaja_kunta', 'supplier_city'),
    'tili': ('tili', 'account'),
    'hankintakategoria': ('hankintakategoria', 'procurement_category'),
    'tuote_palveluryhma': ('tuote_palveluryhma', 'product_service_group'),
    'tositepvm': ('tositepvm', 'invoice_entry_date'),
    'tiliointisumma': ('tiliointisumma', 'posting_sum'),
    'sektori': ('sektori', 'sector'),
}

REQUIRED_INVOICE_FIELDS: Tuple[str, ...] = (
    'lasku_id',
    'hankintayksikko',
    'hankintakategoria',
    'tositepvm',
)

# Placeholder values some exports write instead of leaving a cell empty
NULL_MARKERS = frozenset({"NULL", "null", "N/A"})

# Column order of the procurement_invoices table (excluding bookkeeping columns)
INVOICE_COLUMNS: Tuple[str, ...] = tuple(INVOICE_FIELD_ALIASES) + ('data_year',)


def normalize_header(name: Optional[str]) -> Optional[str]:
    """Trim and lower-case a source header; ``None`` (overflow columns) passes through."""
    if name is None:
        return None
    return name.lstrip('\ufeff').strip().lower()


def resolve_field(record: Mapping[str, Optional[str]], field: str) -> Optional[str]:
    """
    Resolve a canonical field from a source record.

    A candidate holding a NULL marker is skipped in favour of a later one
    with a real value. If no candidate has one, the first marker is returned
    as is.

    Args:
        record: Source record keyed by normalized header names
        field: Canonical field name

    Returns:
        Resolved value, or None when every candidate is empty
    """
    placeholder = None
    for candidate in INVOICE_FIELD_ALIASES[field]:
        value = record.get(candidate)
        if isinstance(value, str):
            value = value.strip()
        if not value:
            continue
        if value in NULL_MARKERS:
            placeholder = placeholder or value
            continue
        return value
    return placeholder


def map_invoice_fields(record: Mapping[str, Optional[str]]) -> Dict[str, Optional[str]]:
    """
    Map a source record onto all canonical invoice fields.

    Args:
        record: Source record keyed by normalized header names

    Returns:
        Dictionary with every canonical field; unresolved fields are None
    """
    return {field: resolve_field(record, field) for field in INVOICE_FIELD_ALIASES}
