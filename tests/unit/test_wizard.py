# ============================================================================
# tests/unit/test_wizard.py
# ============================================================================
"""
Tests for the wizard step projection
"""

from notarial_intake.core.record import (
    CaseRecord,
    CreditRecord,
    FolioCandidate,
    FolioSelection,
    LienRecord,
    PersonType,
    SpouseRecord,
    StepStatus,
    WizardAction,
    WizardStep,
)
from notarial_intake.core.wizard import STEP_ORDER, WizardStateMachine

wizard = WizardStateMachine()


class TestWizardStateMachine:

    def test_empty_record(self):
        snapshot = wizard.compute(CaseRecord())

        assert snapshot.current_step == WizardStep.PAYMENT_METHOD
        assert all(status == StepStatus.PENDING for status in snapshot.steps.values())
        assert "payment_method" in snapshot.required_missing
        assert snapshot.allowed_actions == [WizardAction.ASK_FOR_DATA]
        assert snapshot.progress_percent == 0

    def test_terminal_when_cash_and_no_mortgage(self, complete_record):
        snapshot = wizard.compute(complete_record)

        assert snapshot.ready
        assert snapshot.current_step is None
        assert snapshot.status(WizardStep.BUYER_CREDIT) == StepStatus.NOT_APPLICABLE
        assert snapshot.status(WizardStep.LIEN_CANCELLATION) == StepStatus.NOT_APPLICABLE
        assert snapshot.allowed_actions == [WizardAction.NO_ACTION]
        assert snapshot.to_dict()["progress_percent"] == 100

    def test_financed_credit_needs_real_institution(self, complete_record):
        complete_record.credits = [CreditRecord(institution="crédito")]
        assert wizard.compute(complete_record).status(WizardStep.BUYER_CREDIT) == StepStatus.INCOMPLETE

        complete_record.credits[0].institution = "Infonavit"
        assert wizard.compute(complete_record).status(WizardStep.BUYER_CREDIT) == StepStatus.COMPLETED

    def test_lien_step(self, complete_record):
        complete_record.property.has_mortgage = True
        snapshot = wizard.compute(complete_record)
        assert snapshot.status(WizardStep.LIEN_CANCELLATION) == StepStatus.PENDING
        assert "liens" in snapshot.required_missing

        complete_record.liens = [LienRecord(institution="Scotiabank", cancellation_confirmed=False)]
        assert wizard.compute(complete_record).status(WizardStep.LIEN_CANCELLATION) == StepStatus.COMPLETED

    def test_parties_missing_tax_id(self, complete_record):
        complete_record.sellers[0].tax_id = None
        snapshot = wizard.compute(complete_record)

        assert snapshot.status(WizardStep.SELLERS) == StepStatus.INCOMPLETE
        assert snapshot.current_step == WizardStep.SELLERS
        assert "sellers[0].tax_id" in snapshot.required_missing

    def test_participating_spouse_needs_a_name(self, complete_record):
        buyer = complete_record.buyers[0]
        buyer.marital_status = "married"
        buyer.spouse = SpouseRecord(participates=True)
        snapshot = wizard.compute(complete_record)
        assert snapshot.status(WizardStep.BUYERS) == StepStatus.INCOMPLETE
        assert "buyers[0].spouse.name" in snapshot.required_missing

        buyer.spouse.name = "Ana Ruiz Soto"
        assert wizard.compute(complete_record).status(WizardStep.BUYERS) == StepStatus.COMPLETED

    def test_legal_person_uses_company_name(self, complete_record):
        complete_record.sellers[0].person_type = PersonType.LEGAL
        complete_record.sellers[0].name = None
        complete_record.sellers[0].company_name = "Desarrolladora Norte SA"
        assert wizard.compute(complete_record).status(WizardStep.SELLERS) == StepStatus.COMPLETED


class TestFolioBlocking:

    def test_multiple_candidates_need_clarification(self, complete_record):
        complete_record.folio_candidates = [FolioCandidate(folio="111111"), FolioCandidate(folio="222222")]
        snapshot = wizard.compute(complete_record)

        assert snapshot.status(WizardStep.PROPERTY_REGISTRY) == StepStatus.INCOMPLETE
        assert snapshot.blocking_reasons == ["multiple_folio_candidates"]
        assert WizardAction.CLARIFY_CONFLICT in snapshot.allowed_actions

    def test_single_candidate_needs_confirmation(self, complete_record):
        complete_record.folio_candidates = [FolioCandidate(folio="111111")]
        snapshot = wizard.compute(complete_record)

        assert snapshot.blocking_reasons == ["folio_confirmation_required"]
        assert WizardAction.ASK_FOR_CONFIRMATION in snapshot.allowed_actions

    def test_confirmed_candidate_completes_step(self, complete_record):
        complete_record.folio_candidates = [FolioCandidate(folio="111111"), FolioCandidate(folio="222222")]
        complete_record.folio_selection = FolioSelection(selected_folio="222222", confirmed_by_user=True)
        snapshot = wizard.compute(complete_record)

        assert snapshot.status(WizardStep.PROPERTY_REGISTRY) == StepStatus.COMPLETED
        assert snapshot.blocking_reasons == []

    def test_location_required(self):
        record = CaseRecord()
        record.property.folio_real = "1234567"
        snapshot = wizard.compute(record)

        assert snapshot.status(WizardStep.PROPERTY_REGISTRY) == StepStatus.INCOMPLETE
        assert "property.address" in snapshot.required_missing

    def test_parcels_required(self):
        record = CaseRecord()
        record.property.folio_real = "1234567"
        record.property.address.street = "Av. Reforma"
        snapshot = wizard.compute(record)

        assert snapshot.status(WizardStep.PROPERTY_REGISTRY) == StepStatus.INCOMPLETE
        assert "property.parcels" in snapshot.required_missing
        assert "property.address" not in snapshot.required_missing

    def test_parcels_alone_do_not_complete_step(self):
        record = CaseRecord()
        record.property.folio_real = "1234567"
        record.property.parcels = ["LOTE 5"]
        snapshot = wizard.compute(record)

        assert snapshot.status(WizardStep.PROPERTY_REGISTRY) == StepStatus.INCOMPLETE
        assert snapshot.required_missing.count("property.address") == 1


def test_wizard_is_pure(complete_record):
    before = complete_record.to_dict()
    first = wizard.compute(complete_record).to_dict()
    second = wizard.compute(complete_record).to_dict()

    assert first == second
    assert complete_record.to_dict() == before
    assert list(first["steps"]) == [step.value for step in STEP_ORDER]
