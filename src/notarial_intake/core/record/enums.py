# ============================================================================
# src/notarial_intake/core/record/enums.py
# ============================================================================
"""
Record Enums
- Party kinds and credit roles
- Folio candidate scopes
- Wizard step ids and statuses
- Batch outcome
"""

from enum import Enum

class OperationType(str, Enum):
    PURCHASE_SALE = "purchase_sale"

class PersonType(str, Enum):
    NATURAL = "natural"
    LEGAL = "legal"

class CreditRole(str, Enum):
    PRINCIPAL = "principal"
    CO_PRINCIPAL = "co_principal"

class FolioScope(str, Enum):
    UNITS = "units"                                  # one folio per unit of a condominium
    AFFECTED_PROPERTIES = "affected_properties"      # folios listed as affected by the act
    OTHER = "other"

class StepStatus(str, Enum):
    PENDING = "pending"              # nothing known yet
    INCOMPLETE = "incomplete"        # partial data
    COMPLETED = "completed"
    NOT_APPLICABLE = "not_applicable"

class WizardStep(str, Enum):
    PAYMENT_METHOD = "payment_method"
    PROPERTY_REGISTRY = "property_registry"
    SELLERS = "sellers"
    BUYERS = "buyers"
    BUYER_CREDIT = "buyer_credit"
    LIEN_CANCELLATION = "lien_cancellation"

class WizardAction(str, Enum):
    CLARIFY_CONFLICT = "CLARIFY_CONFLICT"
    ASK_FOR_DATA = "ASK_FOR_DATA"
    ASK_FOR_CONFIRMATION = "ASK_FOR_CONFIRMATION"
    NO_ACTION = "NO_ACTION"

class BatchStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"              # some pages failed
    FAILED = "failed"                # every page failed
    CANCELLED = "cancelled"
    SESSION_EXPIRED = "session_expired"
