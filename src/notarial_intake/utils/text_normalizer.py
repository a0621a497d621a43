# ============================================================================
# src/notarial_intake/utils/text_normalizer.py
# ============================================================================
"""
Text Normalization Utilities

Normalizes values coming back from extraction before they are compared or
merged:
- Folio numbers (registry identifiers) to a compact canonical form
- Person names for accent/case/order-insensitive matching
- Institution and name validation against generic placeholder terms
- Marital status and person type inference
"""

import re
import unicodedata
import logging
from typing import Any, List, Optional

from ..constants.vocabulary import (
    GENERIC_INSTITUTION_TERMS,
    MIN_INSTITUTION_LENGTH,
    PLACEHOLDER_NAME_TERMS,
    LEGAL_ENTITY_MARKERS,
    MARITAL_STATUS_PREFIXES,
)

logger = logging.getLogger(__name__)

# "Folio real: 1,234,567" -> "1234567"; "123456-A" keeps its unit suffix
FOLIO_LABEL_PATTERN = re.compile(
    r'^\s*(?:folio(?:\s+real)?|f\.?\s*r\.?|no\.?|n[uú]m(?:ero)?\.?)\s*[:#.]?\s*',
    re.IGNORECASE,
)
FOLIO_IN_TEXT_PATTERN = re.compile(r'\d[\d,.\s]{4,}\d(?:\s*-\s*[A-Za-z0-9]{1,3}\b)?')
DIGIT_RUN_PATTERN = re.compile(r'\d{3,}')
UNIT_SUFFIX_PATTERN = re.compile(r'(\d+)([A-Z][A-Z0-9]*)')


def strip_accents(text: str) -> str:
    """Remove diacritics: 'José Núñez' -> 'Jose Nunez'."""
    normalized = unicodedata.normalize('NFD', text)
    return ''.join(ch for ch in normalized if unicodedata.category(ch) != 'Mn')


def normalize_folio(value: Any) -> Optional[str]:
    """
    Normalize a folio number.

    Labels, whitespace and separators are dropped and letters uppercased, so
    "Folio real: 1,234,567" and "1234567" compare equal. A letter unit suffix
    is kept behind a single hyphen ("123456 a" -> "123456-A") and stays
    distinct from the parent folio.

    Returns:
        Canonical folio or None when nothing identifying is left
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    text = FOLIO_LABEL_PATTERN.sub('', text)
    canonical = re.sub(r'[^0-9A-Za-z]', '', strip_accents(text)).upper()
    if not canonical or not any(ch.isdigit() for ch in canonical):
        return None
    unit = UNIT_SUFFIX_PATTERN.fullmatch(canonical)
    if unit:
        return f"{unit.group(1)}-{unit.group(2)}"
    return canonical


def extract_folios(text: str) -> List[str]:
    """Pull every folio-looking number out of free text, normalized and de-duplicated."""
    if not text:
        return []
    found: List[str] = []
    for match in FOLIO_IN_TEXT_PATTERN.findall(text):
        folio = normalize_folio(match)
        if folio and len(re.sub(r'\D', '', folio)) >= 6 and folio not in found:
            found.append(folio)
    return found


def normalize_name(value: Optional[str]) -> str:
    """
    Canonical form of a person or company name for comparison.

    Accents and punctuation are removed, case is folded and whitespace
    collapsed. Word order is preserved; see ``names_match`` for the
    order-insensitive comparison.
    """
    if not value:
        return ''
    text = strip_accents(str(value)).lower()
    text = re.sub(r'[^a-z0-9\s]', ' ', text)
    return re.sub(r'\s+', ' ', text).strip()


def _name_tokens(value: Optional[str]) -> List[str]:
    return sorted(token for token in normalize_name(value).split() if len(token) >= 2)


def names_match(left: Optional[str], right: Optional[str]) -> bool:
    """
    True when two names refer to the same person.

    Exact match on the normalized form first, then on the sorted tokens so
    "PEREZ LOPEZ JUAN" matches "Juan Pérez López".
    """
    a = normalize_name(left)
    b = normalize_name(right)
    if not a or not b:
        return False
    if a == b:
        return True
    tokens_a = _name_tokens(a)
    tokens_b = _name_tokens(b)
    return bool(tokens_a) and tokens_a == tokens_b


def is_valid_institution(value: Optional[str]) -> bool:
    """Reject generic terms such as "el crédito" or "banco" as lender names."""
    if value is None:
        return False
    text = re.sub(r'\s+', ' ', str(value)).strip().lower()
    if len(text) < MIN_INSTITUTION_LENGTH:
        return False
    return text not in GENERIC_INSTITUTION_TERMS


def is_valid_person_name(value: Optional[str]) -> bool:
    """
    Reject role words and obvious garbage posing as a name.

    A name must have at least three characters, no run of three or more
    digits, and must not be a bare role/status word ("comprador", "casada").
    Short values made only of such words are rejected too.
    """
    if value is None:
        return False
    text = str(value).strip()
    if len(text) < 3:
        return False
    if DIGIT_RUN_PATTERN.search(text):
        return False
    normalized = normalize_name(text)
    if not normalized:
        return False
    if normalized in PLACEHOLDER_NAME_TERMS or strip_accents(normalized) in PLACEHOLDER_NAME_TERMS:
        return False
    tokens = normalized.split()
    if len(normalized) < 20 and all(token in PLACEHOLDER_NAME_TERMS for token in tokens):
        return False
    return True


def infer_person_type(name: Optional[str]) -> Optional[str]:
    """Return 'legal' when the name carries a company marker, else None."""
    if not name:
        return None
    lowered = ' ' + str(name).lower() + ' '
    for marker in LEGAL_ENTITY_MARKERS:
        if marker in lowered:
            return 'legal'
    return None


def normalize_marital_status(value: Optional[str]) -> Optional[str]:
    """Map 'Casada', 'soltero(a)', 'married' ... onto single|married|divorced|widowed."""
    if not value:
        return None
    text = strip_accents(str(value)).strip().lower()
    for prefix, canonical in MARITAL_STATUS_PREFIXES.items():
        if text.startswith(prefix):
            return canonical
    logger.debug(f"Unrecognized marital status: {value!r}")
    return None


def clean_text(value: Any) -> Optional[str]:
    """Trim a scalar to a non-empty string, or None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None
