# ============================================================================
# src/notarial_intake/constants/document_types.py
# ============================================================================
"""
Document Subtypes and Scheduling Lanes
- Closed set of subtypes the classifier can emit
- Which subtypes may reuse a cached page result
- Which concurrency lane each subtype runs in
"""

from enum import Enum

class DocumentSubtype(str, Enum):
    """
    Closed set of document subtypes. The value is what the extraction
    service receives as ``document_type``.
    """
    IDENTIFICATION = "identification"
    PROPERTY_REGISTRY_EXTRACT = "property_registry_extract"
    DEED = "deed"
    MARRIAGE_CERTIFICATE = "marriage_certificate"
    FLOOR_PLAN = "floor_plan"


# Results for these depend only on the page itself, never on the case
# context sent along, so they can be reused across batches.
CACHEABLE_SUBTYPES = frozenset({
    DocumentSubtype.PROPERTY_REGISTRY_EXTRACT,
    DocumentSubtype.DEED,
    DocumentSubtype.FLOOR_PLAN,
})


CONTEXT_LANE = "context"
REGISTRY_LANE = "registry"
PLANS_LANE = "plans"

SUBTYPE_LANES = {
    DocumentSubtype.IDENTIFICATION: CONTEXT_LANE,
    DocumentSubtype.MARRIAGE_CERTIFICATE: CONTEXT_LANE,
    DocumentSubtype.PROPERTY_REGISTRY_EXTRACT: REGISTRY_LANE,
    DocumentSubtype.DEED: REGISTRY_LANE,
    DocumentSubtype.FLOOR_PLAN: PLANS_LANE,
}

# Lanes whose next page must see the result of the previous one
SEQUENTIAL_LANES = frozenset({CONTEXT_LANE})

# config key holding each lane's concurrency ceiling
LANE_CONFIG_KEYS = {
    CONTEXT_LANE: "context_lane_concurrency",
    REGISTRY_LANE: "registry_lane_concurrency",
    PLANS_LANE: "plans_lane_concurrency",
}

DEFAULT_LANE_LIMITS = {
    CONTEXT_LANE: 1,
    REGISTRY_LANE: 2,
    PLANS_LANE: 2,
}
