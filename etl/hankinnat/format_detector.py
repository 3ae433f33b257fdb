"""
Format Detector Module
Sniffs the field delimiter and text encoding of a downloaded resource.

The format declared in the catalog is unreliable: the agency publishes
semicolon separated files regardless of whether a resource is labelled CSV or
TSV. The delimiter is taken from the first kilobyte, the encoding from the
first megabyte. Files are read with undecodable bytes replaced, so a wrong
encoding guess garbles characters but never aborts an import.
"""

import codecs
import logging
from pathlib import Path
from typing import Optional, Union

import chardet

logger = logging.getLogger(__name__)

SNIFF_BYTES = 1024
ENCODING_SAMPLE_BYTES = 1024 * 1024

# Single-byte Western guesses are read as Windows-1252, their common superset
WESTERN_CODECS = {'iso8859-1', 'iso8859-15', 'cp1252', 'mac-roman'}

SEMICOLON = ';'
TAB = '\t'
COMMA = ','

_DELIMITER_NAMES = {SEMICOLON: 'SEMICOLON', TAB: 'TAB', COMMA: 'COMMA'}


def _read_head(file_path: Union[str, Path], size: int = SNIFF_BYTES) -> bytes:
    with open(file_path, 'rb') as f:
        return f.read(size)
def _format_default(declared_format: Optional[str]) -> str:
    if declared_format and declared_format.strip().lower() == 'tsv':
        return TAB
    return COMMA


def detect_delimiter(file_path: Union[str, Path], declared_format: Optional[str]) -> str:
    """
    Choose the field delimiter for a file.

    A semicolon anywhere on the first line wins. Otherwise a declared ``tsv``
    format means tab, anything else comma. Never raises: if the file cannot
    be read the format-based default is returned.

    Args:
        file_path: Path of the downloaded file
        declared_format: Format string from the catalog (csv, tsv, ...)

    Returns:
        Single-character delimiter
    """
    try:
        head = _read_head(file_path)
    except OSError as e:
        logger.warning(f"Could not sniff delimiter of {file_path}: {e}")
        return _format_default(declared_format)

    first_line = head.decode('utf-8', errors='replace').split('\n')[0]

    if SEMICOLON in first_line:
        return SEMICOLON
    return _format_default(declared_format)


def detect_encoding(file_path: Union[str, Path]) -> str:
    """
    Guess the text encoding of a file from its first megabyte.

    A UTF-8 BOM selects 'utf-8-sig'. Otherwise chardet decides: ASCII and
    UTF-8 read as 'utf-8', Western single-byte guesses as 'cp1252'. Falls
    back to 'utf-8' if the file is unreadable or chardet has no answer.
    """
    try:
        head = _read_head(file_path, ENCODING_SAMPLE_BYTES)
    except OSError as e:
        logger.warning(f"Could not sniff encoding of {file_path}: {e}")
        return 'utf-8'

    if head.startswith(codecs.BOM_UTF8):
        return 'utf-8-sig'

    sample = head
    if len(head) == ENCODING_SAMPLE_BYTES:
        # Cut at the last line break so a multi-byte character is never split
        sample = head[:head.rfind(b'\n') + 1] or head
    result = chardet.detect(sample)
    guess = result.get('encoding')
    logger.debug(f"chardet guess for {file_path}: {guess} ({result.get('confidence')})")

    if not guess or guess.lower() == 'ascii':
        return 'utf-8'
    try:
        name = codecs.lookup(guess).name
    except LookupError:
        return 'utf-8'

    if name == 'utf-8':
        return 'utf-8'
    if name in WESTERN_CODECS:
        return 'cp1252'
    return name


def describe_delimiter(delimiter: str) -> str:
    """Human readable delimiter name for logs."""
    return _DELIMITER_NAMES.get(delimiter, repr(delimiter))
