# ============================================================================
# src/notarial_intake/core/merge/property_rules.py
# ============================================================================
"""
Property, lien and folio merge rules.

- Scalars are overwritten only by non-empty values
- Address and cadastral data merge field by field; a free-text address goes
  to ``address.full_text`` and never wipes structured fields
- Parcels are a de-duplicated union
- ``has_mortgage`` / ``cancellation_confirmed`` change only on explicit
  true/false
- Folio candidates are unique per (scope, normalized folio); attrs merge and
  sources accumulate
- A user-confirmed folio selection is sticky: unconfirmed suggestions never
  replace it
"""

import logging
import re
from dataclasses import fields
from typing import List, Optional, Tuple

from ..record.case_record import (
    CaseRecord,
    FolioCandidate,
    FolioSelection,
    FolioSource,
    LienRecord,
    PropertyRecord,
)
from ..record.enums import FolioScope
from ..record.payloads import (
    FolioCandidatePayload,
    FolioSelectionPayload,
    LienPayload,
    PropertyPayload,
)
from ...utils.exceptions import MergeSkip
from ...utils.text_normalizer import is_valid_institution, names_match, normalize_folio
from .report import MergeReport

logger = logging.getLogger(__name__)


def _parcel_key(value: str) -> str:
    return re.sub(r'\s+', '', value).upper()


def merge_property(record: CaseRecord, payload: PropertyPayload, report: MergeReport) -> None:
    prop: PropertyRecord = record.property

    if payload.folio_real:
        folio = normalize_folio(payload.folio_real)
        if not folio:
            report.rejected.append(f"property.folio_real={payload.folio_real!r}")
        elif record.folio_selection.confirmed_by_user and record.folio_selection.selected_folio:
            if folio != record.folio_selection.selected_folio:
                report.conflicts.append(
                    f"property.folio_real: kept confirmed {record.folio_selection.selected_folio} over {folio}"
                )
        else:
            prop.folio_real = folio

    known = {_parcel_key(p) for p in prop.parcels}
    for parcel in payload.parcels:
        key = _parcel_key(parcel)
        if key and key not in known:
            prop.parcels.append(parcel)
            known.add(key)

    if payload.section:
        prop.section = payload.section
    if payload.surface_area:
        prop.surface_area = payload.surface_area
    if payload.value is not None:
        prop.value = payload.value

    if isinstance(payload.address, str):
        text = payload.address.strip()
        if text:
            prop.address.full_text = text
    elif payload.address is not None:
        for f in fields(prop.address):
            value = getattr(payload.address, f.name, None)
            if value:
                setattr(prop.address, f.name, value)

    if payload.cadastral_data is not None:
        for f in fields(prop.cadastral_data):
            value = getattr(payload.cadastral_data, f.name, None)
            if value:
                setattr(prop.cadastral_data, f.name, value)

    if payload.has_mortgage is not None:
        prop.has_mortgage = payload.has_mortgage

    report.mark("property")


def merge_liens(record: CaseRecord, incoming: List[Tuple[int, LienPayload]], report: MergeReport) -> None:
    for position, payload in incoming:
        label = f"liens[{position}]"
        institution = payload.institution
        if institution is not None and not is_valid_institution(institution):
            report.rejected.append(f"{label}.institution={institution!r}")
            institution = None

        target = _match_lien(record.liens, position, payload.lien_id, institution)
        if target is None:
            if not (payload.lien_id or institution or payload.kind or payload.credit_number
                    or payload.cancellation_confirmed is not None):
                report.skipped.append(MergeSkip(label, "lien without identifying data", report.source))
                continue
            target = LienRecord()
            record.liens.append(target)

        if payload.lien_id and not target.lien_id:
            target.lien_id = payload.lien_id
        if institution:
            target.institution = institution
        if payload.kind:
            target.kind = payload.kind
        if payload.credit_number:
            target.credit_number = payload.credit_number
        if payload.cancellation_confirmed is not None:
            target.cancellation_confirmed = payload.cancellation_confirmed
        report.mark("liens")

    # A recorded lien means there is a mortgage, unless someone said otherwise
    if record.liens and record.property.has_mortgage is None:
        record.property.has_mortgage = True
    elif record.liens and record.property.has_mortgage is False and incoming:
        report.conflicts.append("liens present while has_mortgage is false")


def _match_lien(
    liens: List[LienRecord],
    position: int,
    lien_id: Optional[str],
    institution: Optional[str],
) -> Optional[LienRecord]:
    if lien_id:
        for lien in liens:
            if lien.lien_id == lien_id:
                return lien
    if institution:
        for lien in liens:
            if names_match(lien.institution, institution):
                return lien
    if position < len(liens):
        candidate = liens[position]
        if lien_id and candidate.lien_id and candidate.lien_id != lien_id:
            return None
        if institution and candidate.institution and not names_match(candidate.institution, institution):
            return None
        return candidate
    return None


def merge_folio_candidates(
    record: CaseRecord,
    incoming: List[FolioCandidatePayload],
    source: Optional[FolioSource],
    report: MergeReport,
) -> None:
    for payload in incoming:
        folio = normalize_folio(payload.folio)
        if not folio:
            report.rejected.append(f"folio_candidates.folio={payload.folio!r}")
            continue
        scope = payload.scope or FolioScope.OTHER
        attrs = {k: v for k, v in (payload.attrs or {}).items() if v not in (None, "", [], {})}
        _upsert_candidate(record, folio, scope, attrs, source)
        report.mark("folio_candidates")


def _upsert_candidate(
    record: CaseRecord,
    folio: str,
    scope: FolioScope,
    attrs: dict,
    source: Optional[FolioSource],
) -> FolioCandidate:
    for candidate in record.folio_candidates:
        if candidate.key == (scope, folio):
            candidate.attrs.update(attrs)
            if source and source not in candidate.sources:
                candidate.sources.append(source)
            return candidate
    candidate = FolioCandidate(
        folio=folio,
        scope=scope,
        attrs=dict(attrs),
        sources=[source] if source else [],
    )
    record.folio_candidates.append(candidate)
    return candidate


def merge_folio_selection(
    record: CaseRecord,
    payload: FolioSelectionPayload,
    source: Optional[FolioSource],
    report: MergeReport,
) -> None:
    current = record.folio_selection
    folio = normalize_folio(payload.selected_folio)

    if not payload.confirmed_by_user:
        if current.confirmed_by_user:
            if folio and folio != current.selected_folio:
                report.conflicts.append(
                    f"folio_selection: kept confirmed {current.selected_folio} over suggested {folio}"
                )
            return
        if folio:
            current.selected_folio = folio
        if payload.selected_scope is not None:
            current.selected_scope = payload.selected_scope
        report.mark("folio_selection")
        return

    folio = folio or current.selected_folio
    if not folio:
        report.skipped.append(MergeSkip("folio_selection", "confirmation without a folio", report.source))
        return

    scope = payload.selected_scope
    if scope is None:
        scope = next(
            (c.scope for c in record.folio_candidates if c.folio == folio),
            current.selected_scope if current.selected_folio == folio else None,
        )
    record.folio_selection = FolioSelection(
        selected_folio=folio,
        selected_scope=scope,
        confirmed_by_user=True,
    )
    if not any(c.folio == folio for c in record.folio_candidates):
        _upsert_candidate(record, folio, scope or FolioScope.OTHER, {}, source)
    record.property.folio_real = folio
    logger.info(f"Folio {folio} confirmed")
    report.mark("folio_selection")
