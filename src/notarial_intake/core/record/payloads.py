# ============================================================================
# src/notarial_intake/core/record/payloads.py
# ============================================================================
"""
Incoming Partial-Record Payloads

The extraction service returns loosely-typed partial records. Each entity
kind is validated with its own pydantic model so one malformed block (say,
a credit with an unparseable amount) is dropped on its own while the
parties and property from the same page still merge.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .enums import CreditRole, FolioScope, PersonType
from ...utils.exceptions import MergeSkip

logger = logging.getLogger(__name__)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


def _to_text(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return value


def _to_amount(value: Any) -> Any:
    if isinstance(value, str):
        cleaned = re.sub(r"[\s$,]|MXN|M\.N\.", "", value, flags=re.IGNORECASE)
        return cleaned or None
    return value


class SpousePayload(_Payload):
    name: Optional[str] = None
    participates: Optional[bool] = None
    name_confirmed: Optional[bool] = None


class PartyPayload(_Payload):
    party_id: Optional[str] = None
    person_type: Optional[PersonType] = None
    name: Optional[str] = None
    company_name: Optional[str] = None
    tax_id: Optional[str] = None
    national_id: Optional[str] = None
    marital_status: Optional[str] = None
    spouse: Optional[SpousePayload] = None
    name_confirmed: Optional[bool] = None
    registered_owner_confirmed: Optional[bool] = None

    _coerce_text = field_validator(
        "party_id", "name", "company_name", "tax_id", "national_id", "marital_status",
        mode="before",
    )(_to_text)

    @field_validator("person_type", mode="before")
    @classmethod
    def _person_type_aliases(cls, value):
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("persona_fisica", "fisica", "física", "natural", "individual"):
                return PersonType.NATURAL
            if lowered in ("persona_moral", "moral", "legal", "company"):
                return PersonType.LEGAL
            if not lowered:
                return None
        return value


class CreditParticipantPayload(_Payload):
    party_id: Optional[str] = None
    name: Optional[str] = None
    role: Optional[CreditRole] = None

    _coerce_text = field_validator("party_id", "name", mode="before")(_to_text)

    @field_validator("role", mode="before")
    @classmethod
    def _role_aliases(cls, value):
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("acreditado", "acreditada", "principal", "borrower"):
                return CreditRole.PRINCIPAL
            if lowered in ("coacreditado", "coacreditada", "co_principal", "co-borrower", "coborrower"):
                return CreditRole.CO_PRINCIPAL
            if not lowered:
                return None
        return value


class CreditPayload(_Payload):
    credit_id: Optional[str] = None
    institution: Optional[str] = None
    amount: Optional[float] = None
    credit_type: Optional[str] = None
    participants: List[CreditParticipantPayload] = []

    _coerce_text = field_validator("credit_id", "institution", "credit_type", mode="before")(_to_text)

    _coerce_amount = field_validator("amount", mode="before")(_to_amount)

    @field_validator("participants", mode="before")
    @classmethod
    def _participants_list(cls, value):
        return [] if value is None else value


class LienPayload(_Payload):
    lien_id: Optional[str] = None
    kind: Optional[str] = None
    institution: Optional[str] = None
    credit_number: Optional[str] = None
    cancellation_confirmed: Optional[bool] = None

    _coerce_text = field_validator(
        "lien_id", "kind", "institution", "credit_number", mode="before"
    )(_to_text)


class AddressPayload(_Payload):
    street: Optional[str] = None
    exterior_number: Optional[str] = None
    interior_number: Optional[str] = None
    neighborhood: Optional[str] = None
    municipality: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    full_text: Optional[str] = None

    _coerce_text = field_validator("*", mode="before")(_to_text)


class CadastralPayload(_Payload):
    lot: Optional[str] = None
    block: Optional[str] = None
    subdivision: Optional[str] = None
    condominium: Optional[str] = None
    unit: Optional[str] = None
    module: Optional[str] = None
    cadastral_key: Optional[str] = None

    _coerce_text = field_validator("*", mode="before")(_to_text)


class PropertyPayload(_Payload):
    folio_real: Optional[str] = None
    parcels: List[str] = []
    section: Optional[str] = None
    address: Optional[Union[AddressPayload, str]] = None
    surface_area: Optional[str] = None
    value: Optional[float] = None
    cadastral_data: Optional[CadastralPayload] = None
    has_mortgage: Optional[bool] = None

    _coerce_text = field_validator("folio_real", "section", "surface_area", mode="before")(_to_text)
    _coerce_value = field_validator("value", mode="before")(_to_amount)

    @field_validator("parcels", mode="before")
    @classmethod
    def _parcels_list(cls, value):
        if value is None:
            return []
        if isinstance(value, (str, int)):
            value = [value]
        return [str(v).strip() for v in value if v is not None and str(v).strip()]


FOLIO_SCOPE_ALIASES = {
    "unidades": FolioScope.UNITS,
    "inmuebles_afectados": FolioScope.AFFECTED_PROPERTIES,
    "otros": FolioScope.OTHER,
}


def _scope_alias(value):
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in FOLIO_SCOPE_ALIASES:
            return FOLIO_SCOPE_ALIASES[lowered]
        if not lowered:
            return None
    return value


class FolioCandidatePayload(_Payload):
    folio: str
    scope: Optional[FolioScope] = FolioScope.OTHER
    attrs: Dict[str, Any] = {}

    _coerce_text = field_validator("folio", mode="before")(_to_text)
    _scope = field_validator("scope", mode="before")(_scope_alias)

    @field_validator("attrs", mode="before")
    @classmethod
    def _attrs_dict(cls, value):
        return {} if value is None else value


class FolioSelectionPayload(_Payload):
    selected_folio: Optional[str] = None
    selected_scope: Optional[FolioScope] = None
    confirmed_by_user: Optional[bool] = None

    _coerce_text = field_validator("selected_folio", mode="before")(_to_text)
    _scope = field_validator("selected_scope", mode="before")(_scope_alias)


class ProcessedDocumentPayload(_Payload):
    name: str
    subtype: str
    extracted_fields: Dict[str, Any] = {}


@dataclass
class ParsedUpdate:
    """
    One incoming partial record split into validated entities.

    Party and lien lists keep each entry's original position so a skipped
    entry never shifts positional matching of the ones after it.
    """
    operation_type: Optional[str] = None
    sellers: List[Tuple[int, PartyPayload]] = field(default_factory=list)
    buyers: List[Tuple[int, PartyPayload]] = field(default_factory=list)
    credits: Optional[List[CreditPayload]] = None
    liens: List[Tuple[int, LienPayload]] = field(default_factory=list)
    property: Optional[PropertyPayload] = None
    folio_candidates: List[FolioCandidatePayload] = field(default_factory=list)
    folio_selection: Optional[FolioSelectionPayload] = None
    processed_documents: List[ProcessedDocumentPayload] = field(default_factory=list)
    has_pending_document_intent: bool = False
    pending_document_intent: Optional[str] = None
    has_pending_people: bool = False
    pending_people: Optional[Dict[str, Any]] = None
    skips: List[MergeSkip] = field(default_factory=list)


def _error_summary(exc: ValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', 'invalid')}" if location else str(first.get("msg", exc))


def _as_list(value: Any) -> Optional[List[Any]]:
    if value is None:
        return None
    if isinstance(value, dict):
        return [value]
    if isinstance(value, list):
        return value
    return None


def _parse_indexed(
    entity: str,
    raw_items: Any,
    model: type,
    parsed: ParsedUpdate,
    source: Optional[str],
) -> List[Tuple[int, Any]]:
    items = _as_list(raw_items)
    if items is None:
        if raw_items is not None:
            parsed.skips.append(MergeSkip(entity, f"expected a list, got {type(raw_items).__name__}", source))
        return []
    result = []
    for position, item in enumerate(items):
        try:
            result.append((position, model.model_validate(item)))
        except ValidationError as e:
            parsed.skips.append(MergeSkip(f"{entity}[{position}]", _error_summary(e), source))
    return result


def parse_update(raw: Optional[Dict[str, Any]], source: Optional[str] = None) -> ParsedUpdate:
    """
    Validate a partial record entity by entity.

    Args:
        raw: Partial record as returned by the extraction service
        source: Page or document name, for skip reporting

    Returns:
        ParsedUpdate with validated entities and the list of skipped ones
    """
    parsed = ParsedUpdate()
    if not isinstance(raw, dict):
        if raw is not None:
            parsed.skips.append(MergeSkip("record", "partial record is not an object", source))
        return parsed

    if isinstance(raw.get("operation_type"), str):
        parsed.operation_type = raw["operation_type"]

    parsed.sellers = _parse_indexed("sellers", raw.get("sellers"), PartyPayload, parsed, source)
    parsed.buyers = _parse_indexed("buyers", raw.get("buyers"), PartyPayload, parsed, source)
    parsed.liens = _parse_indexed("liens", raw.get("liens"), LienPayload, parsed, source)

    # A credit block is all or nothing: dropping only the bad entries could
    # turn a financed purchase into an empty list, which means cash.
    raw_credits = raw.get("credits")
    if raw_credits is not None:
        items = _as_list(raw_credits)
        if items is None:
            parsed.skips.append(MergeSkip("credits", "expected a list", source))
        else:
            try:
                parsed.credits = [CreditPayload.model_validate(item) for item in items]
            except ValidationError as e:
                parsed.skips.append(MergeSkip("credits", _error_summary(e), source))

    if raw.get("property") is not None:
        try:
            parsed.property = PropertyPayload.model_validate(raw["property"])
        except ValidationError as e:
            parsed.skips.append(MergeSkip("property", _error_summary(e), source))

    parsed.folio_candidates = [
        payload for _, payload in _parse_indexed(
            "folio_candidates", raw.get("folio_candidates"), FolioCandidatePayload, parsed, source
        )
    ]

    if raw.get("folio_selection") is not None:
        try:
            parsed.folio_selection = FolioSelectionPayload.model_validate(raw["folio_selection"])
        except ValidationError as e:
            parsed.skips.append(MergeSkip("folio_selection", _error_summary(e), source))

    parsed.processed_documents = [
        payload for _, payload in _parse_indexed(
            "processed_documents", raw.get("processed_documents"), ProcessedDocumentPayload, parsed, source
        )
    ]

    # Explicit keys only; an explicit null clears the hint
    if "pending_document_intent" in raw:
        value = raw["pending_document_intent"]
        if value is None or isinstance(value, str):
            parsed.has_pending_document_intent = True
            parsed.pending_document_intent = value
        else:
            parsed.skips.append(MergeSkip("pending_document_intent", "expected a string or null", source))

    if "pending_people" in raw:
        value = raw["pending_people"]
        if value is None or isinstance(value, dict):
            parsed.has_pending_people = True
            parsed.pending_people = value
        else:
            parsed.skips.append(MergeSkip("pending_people", "expected an object or null", source))

    return parsed
