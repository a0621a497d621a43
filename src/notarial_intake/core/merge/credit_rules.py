# ============================================================================
# src/notarial_intake/core/merge/credit_rules.py
# ============================================================================
"""
Buyer credit merge rules.

``credits`` is tri-state: None (unknown), [] (cash), [..] (financed).
- An incoming [] may only turn unknown into cash; it never erases credits
  already known.
- An incoming non-empty list turns unknown or cash into financed and
  otherwise merges entry by entry (credit_id, then position).
- Generic institution names ("el crédito", "banco") are refused and leave
  the field as it was.
"""

import logging
from typing import List, Optional

from ..record.case_record import CaseRecord, CreditParticipant, CreditRecord, PartyRecord
from ..record.payloads import CreditParticipantPayload, CreditPayload
from ...utils.text_normalizer import is_valid_institution, names_match
from .report import MergeReport

logger = logging.getLogger(__name__)


def merge_credits(record: CaseRecord, incoming: Optional[List[CreditPayload]], report: MergeReport) -> None:
    if incoming is None:
        return

    if not incoming:
        if record.credits:
            report.conflicts.append(
                f"credits: empty list ignored, {len(record.credits)} known credit(s) kept"
            )
            logger.info("Ignoring empty credit list over known credits")
            return
        record.credits = []
        report.mark("credits")
        return

    if not record.credits:
        record.credits = []

    for position, payload in enumerate(incoming):
        target = _match_credit(record.credits, position, payload)
        if target is None:
            target = CreditRecord()
            record.credits.append(target)
        _apply_credit(target, payload, position, record.buyers, report)
    report.mark("credits")


def _match_credit(credits: List[CreditRecord], position: int, payload: CreditPayload) -> Optional[CreditRecord]:
    if payload.credit_id:
        for credit in credits:
            if credit.credit_id == payload.credit_id:
                return credit
        return None
    if position < len(credits):
        return credits[position]
    return None


def _apply_credit(
    target: CreditRecord,
    payload: CreditPayload,
    position: int,
    buyers: List[PartyRecord],
    report: MergeReport,
) -> None:
    if payload.credit_id and not target.credit_id:
        target.credit_id = payload.credit_id

    if payload.institution is not None:
        if is_valid_institution(payload.institution):
            target.institution = payload.institution.strip()
        else:
            report.rejected.append(f"credits[{position}].institution={payload.institution!r}")
            logger.info(f"Rejected generic credit institution {payload.institution!r}")

    if payload.amount is not None:
        target.amount = payload.amount
    if payload.credit_type:
        target.credit_type = payload.credit_type

    for participant in payload.participants:
        _merge_participant(target, participant, buyers)


def _merge_participant(
    credit: CreditRecord,
    payload: CreditParticipantPayload,
    buyers: List[PartyRecord],
) -> None:
    party_id = payload.party_id
    name = payload.name

    # Resolve against buyers so a participant named on one page and
    # referenced by id on another end up as the same entry
    if not party_id and name:
        for buyer in buyers:
            if buyer.party_id and names_match(buyer.display_name, name):
                party_id = buyer.party_id
                break
    if party_id and not name:
        for buyer in buyers:
            if buyer.party_id == party_id:
                name = buyer.display_name
                break

    existing = None
    for participant in credit.participants:
        if party_id and participant.party_id == party_id:
            existing = participant
            break
        if name and names_match(participant.name, name):
            existing = participant
            break

    if existing is None:
        if not party_id and not name:
            return
        existing = CreditParticipant()
        credit.participants.append(existing)

    if party_id:
        existing.party_id = party_id
    if name and not existing.name:
        existing.name = name
    if payload.role is not None:
        existing.role = payload.role
