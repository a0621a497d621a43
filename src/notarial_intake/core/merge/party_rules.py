# ============================================================================
# src/notarial_intake/core/merge/party_rules.py
# ============================================================================
"""
Seller / buyer merge rules.

Incoming parties are matched to known ones by party_id, then by normalized
name, then by position (only when that does not pit two different names
against each other). Matched parties are updated field by field; omitted
fields, the spouse and confirmation flags are never dropped.

Spouse conflicts: a later page naming a different spouse replaces the
earlier name unless the user confirmed it. Either way the conflict is
reported and logged.
"""

import logging
from typing import List, Optional, Tuple

from ..record.case_record import PartyRecord, SpouseRecord
from ..record.enums import PersonType
from ..record.payloads import PartyPayload, SpousePayload
from ...utils.exceptions import MergeSkip
from ...utils.text_normalizer import (
    infer_person_type,
    is_valid_person_name,
    names_match,
    normalize_marital_status,
)
from .report import MergeReport

logger = logging.getLogger(__name__)


def merge_parties(
    existing: List[PartyRecord],
    incoming: List[Tuple[int, PartyPayload]],
    role: str,
    report: MergeReport,
) -> None:
    """
    Merge incoming parties of one role ("sellers" / "buyers") in place.
    """
    for position, payload in incoming:
        label = f"{role}[{position}]"
        target = _match_party(existing, position, payload)
        if target is None:
            if not _has_identity(payload):
                report.skipped.append(MergeSkip(label, "party without name or tax id", report.source))
                continue
            target = PartyRecord()
            existing.append(target)
        _apply_party(target, payload, label, report)
        report.mark(role)


def _has_identity(payload: PartyPayload) -> bool:
    return bool(
        (payload.name and is_valid_person_name(payload.name))
        or payload.company_name
        or payload.tax_id
        or payload.party_id
    )


def _incoming_name(payload: PartyPayload) -> Optional[str]:
    if payload.person_type == PersonType.LEGAL:
        return payload.company_name or payload.name
    return payload.name or payload.company_name


def _match_party(
    existing: List[PartyRecord],
    position: int,
    payload: PartyPayload,
) -> Optional[PartyRecord]:
    if payload.party_id:
        for party in existing:
            if party.party_id == payload.party_id:
                return party

    name = _incoming_name(payload)
    if name:
        for party in existing:
            if names_match(party.display_name, name):
                return party

    if position < len(existing):
        candidate = existing[position]
        if payload.party_id and candidate.party_id and candidate.party_id != payload.party_id:
            return None
        if name and candidate.display_name and not names_match(candidate.display_name, name):
            return None
        return candidate
    return None


def _apply_party(target: PartyRecord, payload: PartyPayload, label: str, report: MergeReport) -> None:
    if payload.party_id and not target.party_id:
        target.party_id = payload.party_id

    if payload.person_type is not None:
        target.person_type = payload.person_type
    elif target.person_type is None:
        inferred = infer_person_type(payload.company_name or payload.name)
        if inferred:
            target.person_type = PersonType(inferred)

    if target.person_type == PersonType.LEGAL:
        company = payload.company_name or payload.name
        if company:
            target.company_name = company
    else:
        if payload.name:
            _apply_name(target, payload.name, label, report)
        if payload.company_name:
            target.company_name = payload.company_name

    if payload.tax_id:
        target.tax_id = payload.tax_id.replace(" ", "").upper()
    if payload.national_id:
        target.national_id = payload.national_id.replace(" ", "").upper()

    if payload.marital_status:
        status = normalize_marital_status(payload.marital_status)
        if status:
            target.marital_status = status
        else:
            report.rejected.append(f"{label}.marital_status={payload.marital_status!r}")

    if payload.spouse is not None:
        _merge_spouse(target, payload.spouse, label, report)

    if payload.name_confirmed is not None:
        target.name_confirmed = payload.name_confirmed
    if payload.registered_owner_confirmed is not None:
        target.registered_owner_confirmed = payload.registered_owner_confirmed


def _apply_name(target: PartyRecord, name: str, label: str, report: MergeReport) -> None:
    if not is_valid_person_name(name):
        report.rejected.append(f"{label}.name={name!r}")
        logger.info(f"Rejected placeholder name for {label}: {name!r}")
        return
    if target.name and not names_match(target.name, name) and target.name_confirmed:
        report.conflicts.append(f"{label}.name: kept confirmed {target.name!r} over {name!r}")
        return
    if not target.name or not names_match(target.name, name):
        target.name = name


def _merge_spouse(target: PartyRecord, payload: SpousePayload, label: str, report: MergeReport) -> None:
    spouse = target.spouse or SpouseRecord()

    if payload.name:
        if not is_valid_person_name(payload.name):
            report.rejected.append(f"{label}.spouse.name={payload.name!r}")
        elif spouse.name and not names_match(spouse.name, payload.name):
            if spouse.name_confirmed:
                report.conflicts.append(
                    f"{label}.spouse.name: kept confirmed {spouse.name!r} over {payload.name!r}"
                )
                logger.warning(f"Spouse conflict on {label}: confirmed name kept")
            else:
                report.conflicts.append(
                    f"{label}.spouse.name: {spouse.name!r} replaced by {payload.name!r}"
                )
                logger.warning(
                    f"Spouse conflict on {label}: {spouse.name!r} replaced by later page ({report.source})"
                )
                spouse.name = payload.name
        elif not spouse.name:
            spouse.name = payload.name

    if payload.participates is not None:
        spouse.participates = payload.participates
    if payload.name_confirmed is not None:
        spouse.name_confirmed = payload.name_confirmed

    if spouse.name or spouse.participates is not None or spouse.name_confirmed is not None:
        target.spouse = spouse
