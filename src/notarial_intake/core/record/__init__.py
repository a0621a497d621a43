# ============================================================================
# src/notarial_intake/core/record/__init__.py
# ============================================================================
"""
Canonical case record, incoming payload models and per-upload status.
"""

from .enums import (
    OperationType,
    PersonType,
    CreditRole,
    FolioScope,
    StepStatus,
    WizardStep,
    WizardAction,
    BatchStatus,
)
from .case_record import (
    CaseRecord,
    PartyRecord,
    SpouseRecord,
    CreditRecord,
    CreditParticipant,
    LienRecord,
    PropertyRecord,
    AddressRecord,
    CadastralData,
    FolioCandidate,
    FolioSource,
    FolioSelection,
    ProcessedDocumentEntry,
)
from .processed_document import ProcessedDocument
from .payloads import ParsedUpdate, parse_update
