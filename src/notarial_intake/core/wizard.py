# ============================================================================
# src/notarial_intake/core/wizard.py
# ============================================================================
"""
Wizard State Machine

Derives, from the canonical record alone, which of the six intake steps are
done. Pure function of the record; recomputed after every merge.

Steps, in order:
1. payment_method      cash or financed is known
2. property_registry   folio (confirmed when there are candidates) + location
3. sellers             every seller has a name and tax id
4. buyers              every buyer has a name and tax id (+ spouse name if
                       the spouse participates)
5. buyer_credit        every credit names a real institution; n/a for cash
6. lien_cancellation   every lien says whether it will be cancelled; n/a
                       when there is no mortgage
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .record.case_record import CaseRecord, PartyRecord
from .record.enums import PersonType, StepStatus, WizardAction, WizardStep
from ..utils.text_normalizer import is_valid_institution

logger = logging.getLogger(__name__)

DONE_STATUSES = (StepStatus.COMPLETED, StepStatus.NOT_APPLICABLE)

STEP_ORDER = [
    WizardStep.PAYMENT_METHOD,
    WizardStep.PROPERTY_REGISTRY,
    WizardStep.SELLERS,
    WizardStep.BUYERS,
    WizardStep.BUYER_CREDIT,
    WizardStep.LIEN_CANCELLATION,
]

MULTIPLE_FOLIO_CANDIDATES = "multiple_folio_candidates"
FOLIO_CONFIRMATION_REQUIRED = "folio_confirmation_required"


@dataclass
class WizardSnapshot:
    steps: Dict[WizardStep, StepStatus]
    current_step: Optional[WizardStep]
    required_missing: List[str] = field(default_factory=list)
    blocking_reasons: List[str] = field(default_factory=list)
    allowed_actions: List[WizardAction] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return all(status in DONE_STATUSES for status in self.steps.values())

    @property
    def completed_steps(self) -> int:
        return sum(1 for status in self.steps.values() if status in DONE_STATUSES)

    @property
    def progress_percent(self) -> int:
        return int(self.completed_steps * 100 / len(STEP_ORDER))

    def status(self, step: WizardStep) -> StepStatus:
        return self.steps[step]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": {step.value: status.value for step, status in self.steps.items()},
            "current_step": self.current_step.value if self.current_step else None,
            "completed_steps": self.completed_steps,
            "progress_percent": self.progress_percent,
            "ready": self.ready,
            "required_missing": list(self.required_missing),
            "blocking_reasons": list(self.blocking_reasons),
            "allowed_actions": [action.value for action in self.allowed_actions],
        }


class WizardStateMachine:
    """Computes a WizardSnapshot from a CaseRecord."""

    def compute(self, record: CaseRecord) -> WizardSnapshot:
        missing: List[str] = []
        blocking: List[str] = []

        steps = {
            WizardStep.PAYMENT_METHOD: self._payment_method(record, missing),
            WizardStep.PROPERTY_REGISTRY: self._property_registry(record, missing, blocking),
            WizardStep.SELLERS: self._parties(record.sellers, "sellers", missing),
            WizardStep.BUYERS: self._parties(record.buyers, "buyers", missing),
            WizardStep.BUYER_CREDIT: self._buyer_credit(record, missing),
            WizardStep.LIEN_CANCELLATION: self._lien_cancellation(record, missing),
        }

        current = next((step for step in STEP_ORDER if steps[step] not in DONE_STATUSES), None)
        snapshot = WizardSnapshot(
            steps=steps,
            current_step=current,
            required_missing=missing,
            blocking_reasons=blocking,
        )
        snapshot.allowed_actions = self._allowed_actions(snapshot)
        logger.debug(
            f"Wizard: {snapshot.completed_steps}/{len(STEP_ORDER)} steps done, "
            f"current={current.value if current else 'ready'}"
        )
        return snapshot

    def _payment_method(self, record: CaseRecord, missing: List[str]) -> StepStatus:
        if record.credits is None:
            missing.append("payment_method")
            return StepStatus.PENDING
        return StepStatus.COMPLETED

    def _property_registry(self, record: CaseRecord, missing: List[str], blocking: List[str]) -> StepStatus:
        prop = record.property
        has_address = not prop.address.is_empty()
        has_any = bool(prop.folio_real or record.folio_candidates or prop.parcels or has_address)

        effective = record.effective_folio()
        if record.folio_candidates and not effective:
            distinct = {candidate.folio for candidate in record.folio_candidates}
            blocking.append(MULTIPLE_FOLIO_CANDIDATES if len(distinct) > 1 else FOLIO_CONFIRMATION_REQUIRED)

        # folio, at least one parcel and an address are all required
        if effective and prop.parcels and has_address:
            return StepStatus.COMPLETED
        if not effective:
            missing.append("property.folio_real")
        if not prop.parcels:
            missing.append("property.parcels")
        if not has_address:
            missing.append("property.address")
        return StepStatus.INCOMPLETE if has_any else StepStatus.PENDING

    def _parties(self, parties: List[PartyRecord], role: str, missing: List[str]) -> StepStatus:
        if not parties:
            missing.append(role)
            return StepStatus.PENDING

        complete = True
        for index, party in enumerate(parties):
            for field_name in self._party_gaps(party, role):
                missing.append(f"{role}[{index}].{field_name}")
                complete = False
        return StepStatus.COMPLETED if complete else StepStatus.INCOMPLETE

    @staticmethod
    def _party_gaps(party: PartyRecord, role: str) -> List[str]:
        gaps = []
        if not party.display_name:
            gaps.append("name")
        if not party.tax_id:
            gaps.append("tax_id")
        if (
            role == "buyers"
            and party.person_type != PersonType.LEGAL
            and party.marital_status == "married"
            and party.spouse is not None
            and party.spouse.participates
            and not party.spouse.name
        ):
            gaps.append("spouse.name")
        return gaps

    def _buyer_credit(self, record: CaseRecord, missing: List[str]) -> StepStatus:
        if record.credits is None:
            return StepStatus.PENDING
        if not record.credits:
            return StepStatus.NOT_APPLICABLE
        complete = True
        for index, credit in enumerate(record.credits):
            if not is_valid_institution(credit.institution):
                missing.append(f"credits[{index}].institution")
                complete = False
        return StepStatus.COMPLETED if complete else StepStatus.INCOMPLETE

    def _lien_cancellation(self, record: CaseRecord, missing: List[str]) -> StepStatus:
        if record.property.has_mortgage is False:
            return StepStatus.NOT_APPLICABLE
        if record.liens and all(lien.cancellation_confirmed is not None for lien in record.liens):
            return StepStatus.COMPLETED
        if record.property.has_mortgage:
            if not record.liens:
                missing.append("liens")
            for index, lien in enumerate(record.liens):
                if lien.cancellation_confirmed is None:
                    missing.append(f"liens[{index}].cancellation_confirmed")
        return StepStatus.PENDING

    @staticmethod
    def _allowed_actions(snapshot: WizardSnapshot) -> List[WizardAction]:
        actions: List[WizardAction] = []
        if MULTIPLE_FOLIO_CANDIDATES in snapshot.blocking_reasons:
            actions.append(WizardAction.CLARIFY_CONFLICT)
        if FOLIO_CONFIRMATION_REQUIRED in snapshot.blocking_reasons:
            actions.append(WizardAction.ASK_FOR_CONFIRMATION)
        if not snapshot.ready:
            actions.append(WizardAction.ASK_FOR_DATA)
        return actions or [WizardAction.NO_ACTION]
