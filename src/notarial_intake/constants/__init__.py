# ============================================================================
# src/notarial_intake/constants/__init__.py
# ============================================================================
"""
Convenient imports for all constants
"""

from .document_types import (
    DocumentSubtype,
    CACHEABLE_SUBTYPES,
    SUBTYPE_LANES,
    SEQUENTIAL_LANES,
)
from .vocabulary import (
    GENERIC_INSTITUTION_TERMS,
    PLACEHOLDER_NAME_TERMS,
    LEGAL_ENTITY_MARKERS,
    MARITAL_STATUS_PREFIXES,
)
