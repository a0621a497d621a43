# ============================================================================
# src/notarial_intake/core/record/case_record.py
# ============================================================================
"""
Canonical Case Record

The single structured record a batch of uploads is fused into. Only the
MergeEngine mutates it; everything else reads snapshots from ``to_dict()``.

Tri-state fields are deliberate:
- ``credits``: None (not determined) / [] (cash) / [..] (financed)
- ``property.has_mortgage`` and ``lien.cancellation_confirmed``:
  None (unknown) / True / False
"""

import copy
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from .enums import CreditRole, FolioScope, OperationType, PersonType
from ...utils.text_normalizer import names_match


@dataclass
class SpouseRecord:
    """Spouse embedded in a party; matched to standalone parties by name lookup only."""
    name: Optional[str] = None
    participates: Optional[bool] = None
    name_confirmed: Optional[bool] = None


@dataclass
class PartyRecord:
    """
    A seller or buyer.

    Natural persons use ``name``; legal persons use ``company_name``. Both
    share ``tax_id``.
    """
    party_id: Optional[str] = None
    person_type: Optional[PersonType] = None
    name: Optional[str] = None
    company_name: Optional[str] = None
    tax_id: Optional[str] = None
    national_id: Optional[str] = None
    marital_status: Optional[str] = None
    spouse: Optional[SpouseRecord] = None
    name_confirmed: Optional[bool] = None
    registered_owner_confirmed: Optional[bool] = None

    @property
    def display_name(self) -> Optional[str]:
        if self.person_type == PersonType.LEGAL:
            return self.company_name or self.name
        return self.name or self.company_name


@dataclass
class CreditParticipant:
    party_id: Optional[str] = None
    name: Optional[str] = None
    role: Optional[CreditRole] = None


@dataclass
class CreditRecord:
    credit_id: Optional[str] = None
    institution: Optional[str] = None
    amount: Optional[float] = None
    credit_type: Optional[str] = None
    participants: List[CreditParticipant] = field(default_factory=list)


@dataclass
class LienRecord:
    """Encumbrance on the property, usually the seller's mortgage."""
    lien_id: Optional[str] = None
    kind: Optional[str] = None
    institution: Optional[str] = None
    credit_number: Optional[str] = None
    cancellation_confirmed: Optional[bool] = None


@dataclass
class AddressRecord:
    """Structured address. ``full_text`` holds a free-text address when that is all we got."""
    street: Optional[str] = None
    exterior_number: Optional[str] = None
    interior_number: Optional[str] = None
    neighborhood: Optional[str] = None
    municipality: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    full_text: Optional[str] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) in (None, "") for f in fields(self))


@dataclass
class CadastralData:
    lot: Optional[str] = None
    block: Optional[str] = None
    subdivision: Optional[str] = None
    condominium: Optional[str] = None
    unit: Optional[str] = None
    module: Optional[str] = None
    cadastral_key: Optional[str] = None


@dataclass
class PropertyRecord:
    folio_real: Optional[str] = None
    parcels: List[str] = field(default_factory=list)
    section: Optional[str] = None
    address: AddressRecord = field(default_factory=AddressRecord)
    surface_area: Optional[str] = None
    value: Optional[float] = None
    cadastral_data: CadastralData = field(default_factory=CadastralData)
    has_mortgage: Optional[bool] = None


@dataclass(frozen=True)
class FolioSource:
    document_name: str
    document_type: Optional[str] = None


@dataclass
class FolioCandidate:
    folio: str
    scope: FolioScope = FolioScope.OTHER
    attrs: Dict[str, Any] = field(default_factory=dict)
    sources: List[FolioSource] = field(default_factory=list)

    @property
    def key(self):
        return (self.scope, self.folio)


@dataclass
class FolioSelection:
    selected_folio: Optional[str] = None
    selected_scope: Optional[FolioScope] = None
    confirmed_by_user: bool = False


@dataclass
class ProcessedDocumentEntry:
    """What the record remembers about a document it has merged."""
    name: str
    subtype: str
    extracted_fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CaseRecord:
    operation_type: OperationType = OperationType.PURCHASE_SALE
    sellers: List[PartyRecord] = field(default_factory=list)
    buyers: List[PartyRecord] = field(default_factory=list)
    credits: Optional[List[CreditRecord]] = None
    liens: List[LienRecord] = field(default_factory=list)
    property: PropertyRecord = field(default_factory=PropertyRecord)
    folio_candidates: List[FolioCandidate] = field(default_factory=list)
    folio_selection: FolioSelection = field(default_factory=FolioSelection)
    processed_documents: List[ProcessedDocumentEntry] = field(default_factory=list)
    # Ephemeral workflow hints; owned by the extraction service
    pending_document_intent: Optional[str] = None
    pending_people: Optional[Dict[str, Any]] = None

    def find_party_by_name(self, name: Optional[str]) -> Optional[PartyRecord]:
        """Look up a seller or buyer by normalized name (used to reconcile spouses)."""
        if not name:
            return None
        for party in self.sellers + self.buyers:
            if names_match(party.display_name, name):
                return party
        return None

    def effective_folio(self) -> Optional[str]:
        """
        The folio the case currently stands on.

        With candidates present only a user-confirmed selection that is one
        of them counts; without candidates the property's own folio does.
        """
        if self.folio_candidates:
            selection = self.folio_selection
            if not selection.confirmed_by_user or not selection.selected_folio:
                return None
            known = {candidate.folio for candidate in self.folio_candidates}
            return selection.selected_folio if selection.selected_folio in known else None
        return self.property.folio_real

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready snapshot, same shape the extraction service accepts."""
        return _to_plain(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CaseRecord":
        """Rebuild a record from a persisted ``to_dict()`` snapshot."""
        data = data or {}
        record = cls()
        record.sellers = [_party_from_dict(p) for p in data.get("sellers") or []]
        record.buyers = [_party_from_dict(p) for p in data.get("buyers") or []]
        credits = data.get("credits")
        record.credits = None if credits is None else [_credit_from_dict(c) for c in credits]
        record.liens = [_build(LienRecord, lien) for lien in data.get("liens") or []]
        record.property = _property_from_dict(data.get("property") or {})
        record.folio_candidates = [
            _candidate_from_dict(c) for c in data.get("folio_candidates") or []
        ]
        selection = data.get("folio_selection") or {}
        record.folio_selection = FolioSelection(
            selected_folio=selection.get("selected_folio"),
            selected_scope=_enum_or_none(FolioScope, selection.get("selected_scope")),
            confirmed_by_user=bool(selection.get("confirmed_by_user", False)),
        )
        record.processed_documents = [
            ProcessedDocumentEntry(
                name=d.get("name", ""),
                subtype=d.get("subtype", ""),
                extracted_fields=dict(d.get("extracted_fields") or {}),
            )
            for d in data.get("processed_documents") or []
        ]
        record.pending_document_intent = data.get("pending_document_intent")
        record.pending_people = data.get("pending_people")
        return record


def _to_plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    return copy.deepcopy(value)


def _enum_or_none(enum_cls, value):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _build(cls, data: Dict[str, Any]):
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (data or {}).items() if k in names})


def _party_from_dict(data: Dict[str, Any]) -> PartyRecord:
    party = _build(PartyRecord, {k: v for k, v in data.items() if k != "spouse"})
    party.person_type = _enum_or_none(PersonType, data.get("person_type"))
    if data.get("spouse"):
        party.spouse = _build(SpouseRecord, data["spouse"])
    return party


def _credit_from_dict(data: Dict[str, Any]) -> CreditRecord:
    credit = _build(CreditRecord, {k: v for k, v in data.items() if k != "participants"})
    credit.participants = [
        CreditParticipant(
            party_id=p.get("party_id"),
            name=p.get("name"),
            role=_enum_or_none(CreditRole, p.get("role")),
        )
        for p in data.get("participants") or []
    ]
    return credit


def _property_from_dict(data: Dict[str, Any]) -> PropertyRecord:
    prop = _build(PropertyRecord, {
        k: v for k, v in data.items() if k not in ("address", "cadastral_data", "parcels")
    })
    prop.parcels = list(data.get("parcels") or [])
    prop.address = _build(AddressRecord, data.get("address") or {})
    prop.cadastral_data = _build(CadastralData, data.get("cadastral_data") or {})
    return prop


def _candidate_from_dict(data: Dict[str, Any]) -> FolioCandidate:
    return FolioCandidate(
        folio=data["folio"],
        scope=_enum_or_none(FolioScope, data.get("scope")) or FolioScope.OTHER,
        attrs=dict(data.get("attrs") or {}),
        sources=[
            FolioSource(s.get("document_name", ""), s.get("document_type"))
            for s in data.get("sources") or []
        ],
    )
