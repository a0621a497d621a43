# ============================================================================
# tests/unit/test_merge_engine.py
# ============================================================================
"""
Tests for merging partial records into the canonical case record
"""

import itertools

import pytest

from notarial_intake.core.merge import MergeEngine
from notarial_intake.core.record import CaseRecord, FolioScope, PersonType
from notarial_intake.core.record.enums import StepStatus, WizardStep
from notarial_intake.core.reorder_buffer import PageOutcome, ReorderBuffer


@pytest.fixture
def engine():
    return MergeEngine()


BUYER = {"name": "Juan Pérez García", "tax_id": "pegj850505xy2", "marital_status": "Casado"}


class TestNonDestructiveMerge:

    def test_absent_fields_keep_known_values(self, engine):
        engine.merge({"buyers": [BUYER], "property": {"folio_real": "1234567", "parcels": ["LOTE 5"]}})
        before = engine.snapshot()

        engine.merge({"buyers": [{"name": "JUAN PEREZ GARCIA"}], "property": {"section": "B"}})
        after = engine.snapshot()

        assert after["buyers"][0]["tax_id"] == "PEGJ850505XY2"
        assert after["buyers"][0]["marital_status"] == "married"
        assert after["property"]["folio_real"] == before["property"]["folio_real"]
        assert after["property"]["parcels"] == ["LOTE 5"]
        assert after["property"]["section"] == "B"

    def test_explicit_nulls_do_not_erase(self, engine):
        engine.merge({"property": {"folio_real": "1234567", "has_mortgage": True}})
        engine.merge({"property": {"folio_real": None, "has_mortgage": None}, "credits": None})

        assert engine.record.property.folio_real == "1234567"
        assert engine.record.property.has_mortgage is True
        assert engine.record.credits is None

    def test_empty_update_changes_nothing(self, engine):
        engine.merge({"buyers": [BUYER], "credits": []})
        before = engine.snapshot()

        report = engine.merge({})

        assert engine.snapshot() == before
        assert not report.changed

    def test_spouse_and_confirmation_survive_omission(self, engine):
        engine.merge({"buyers": [{**BUYER, "name_confirmed": True,
                                  "spouse": {"name": "Ana Ruiz Soto", "participates": True}}]})
        engine.merge({"buyers": [{"name": "Juan Pérez García", "national_id": "abc 123"}]})

        buyer = engine.record.buyers[0]
        assert buyer.spouse.name == "Ana Ruiz Soto"
        assert buyer.spouse.participates is True
        assert buyer.name_confirmed is True
        assert buyer.national_id == "ABC123"

    def test_parcels_are_a_normalized_union(self, engine):
        engine.merge({"property": {"parcels": ["Lote 5", "LOTE 6"]}})
        engine.merge({"property": {"parcels": ["LOTE  5", "Lote 7"]}})

        assert engine.record.property.parcels == ["Lote 5", "LOTE 6", "Lote 7"]

    def test_free_text_address_keeps_structure(self, engine):
        engine.merge({"property": {"address": {"street": "Av. Reforma", "postal_code": "06600"}}})
        engine.merge({"property": {"address": "Av. Reforma 100, Juárez, CDMX"}})
        engine.merge({"property": {"address": {"exterior_number": "100"}}})

        address = engine.record.property.address
        assert address.street == "Av. Reforma"
        assert address.postal_code == "06600"
        assert address.exterior_number == "100"
        assert address.full_text == "Av. Reforma 100, Juárez, CDMX"


class TestParties:

    def test_match_by_party_id_then_name(self, engine):
        engine.merge({"sellers": [
            {"party_id": "s1", "name": "María López Hernández"},
            {"party_id": "s2", "name": "Pedro Ramírez Luna"},
        ]})
        engine.merge({"sellers": [{"name": "RAMIREZ LUNA PEDRO", "tax_id": "RALP700101AA1"}]})
        engine.merge({"sellers": [{"party_id": "s1", "tax_id": "LOHM800101AB1"}]})

        sellers = engine.record.sellers
        assert len(sellers) == 2
        assert sellers[1].tax_id == "RALP700101AA1"
        assert sellers[0].tax_id == "LOHM800101AB1"

    def test_different_name_at_same_position_is_a_new_party(self, engine):
        engine.merge({"buyers": [{"name": "Juan Pérez García"}]})
        engine.merge({"buyers": [{"name": "Laura Méndez Ortiz"}]})

        assert [b.name for b in engine.record.buyers] == ["Juan Pérez García", "Laura Méndez Ortiz"]

    def test_placeholder_name_is_rejected(self, engine):
        report = engine.merge({"buyers": [{"name": "Comprador", "tax_id": "XAXX010101000"}]})

        assert engine.record.buyers[0].name is None
        assert engine.record.buyers[0].tax_id == "XAXX010101000"
        assert "buyers[0].name='Comprador'" in report.rejected

    def test_party_without_identity_is_skipped(self, engine):
        report = engine.merge({"sellers": [{"marital_status": "soltera"}]})

        assert engine.record.sellers == []
        assert report.skipped[0].entity == "sellers[0]"

    def test_company_inferred_as_legal_person(self, engine):
        engine.merge({"sellers": [{"name": "Inmobiliaria del Valle S.A. de C.V.", "tax_id": "IVA010101AB1"}]})

        seller = engine.record.sellers[0]
        assert seller.person_type == PersonType.LEGAL
        assert seller.company_name == "Inmobiliaria del Valle S.A. de C.V."


class TestSpouseConflicts:

    def test_later_page_wins_and_conflict_is_reported(self, engine):
        engine.merge({"buyers": [{**BUYER, "spouse": {"name": "Ana Ruiz Soto"}}]})
        report = engine.merge({"buyers": [{"name": BUYER["name"], "spouse": {"name": "María Gómez Vela"}}]})

        assert engine.record.buyers[0].spouse.name == "María Gómez Vela"
        assert report.conflicts

    def test_confirmed_spouse_is_kept(self, engine):
        engine.merge({"buyers": [{**BUYER, "spouse": {"name": "Ana Ruiz Soto", "name_confirmed": True}}]})
        report = engine.merge({"buyers": [{"name": BUYER["name"], "spouse": {"name": "María Gómez Vela"}}]})

        assert engine.record.buyers[0].spouse.name == "Ana Ruiz Soto"
        assert "kept confirmed" in report.conflicts[0]

    def test_spouse_is_looked_up_not_merged(self, engine):
        engine.merge({"buyers": [
            {**BUYER, "spouse": {"name": "Ana Ruiz Soto", "participates": True}},
            {"name": "Ana Ruiz Soto", "tax_id": "RUSA900101CD3"},
        ]})

        spouse_party = engine.record.find_party_by_name(engine.record.buyers[0].spouse.name)
        assert spouse_party is engine.record.buyers[1]
        assert engine.record.buyers[0].spouse.name == "Ana Ruiz Soto"


class TestCredits:

    def test_tri_state_progression(self, engine):
        assert engine.record.credits is None

        engine.merge({"credits": []})
        assert engine.record.credits == []

        engine.merge({"credits": [{"institution": "BBVA México", "amount": "$1,500,000.00"}]})
        assert len(engine.record.credits) == 1
        assert engine.record.credits[0].amount == 1500000.0

        engine.merge({})
        assert len(engine.record.credits) == 1

    def test_empty_list_never_erases_known_credits(self, engine):
        engine.merge({"credits": [{"institution": "Infonavit"}]})
        report = engine.merge({"credits": []})

        assert len(engine.record.credits) == 1
        assert report.conflicts

    def test_generic_institution_is_refused(self, engine):
        engine.merge({"credits": [{"institution": "Banorte"}]})
        report = engine.merge({"credits": [{"institution": "el crédito"}]})

        assert engine.record.credits[0].institution == "Banorte"
        assert "credits[0].institution='el crédito'" in report.rejected

    def test_generic_institution_on_new_credit_stays_unset(self, engine):
        engine.merge({"credits": [{"institution": "banco"}]})

        assert engine.record.credits[0].institution is None
        assert engine.wizard_snapshot.status(WizardStep.BUYER_CREDIT) == StepStatus.INCOMPLETE

    def test_participants_resolve_against_buyers(self, engine):
        engine.merge({"buyers": [{**BUYER, "party_id": "b1"}]})
        engine.merge({"credits": [{"institution": "HSBC", "participants": [{"name": "Juan Perez Garcia",
                                                                             "role": "acreditado"}]}]})
        engine.merge({"credits": [{"participants": [{"party_id": "b1"}]}]})

        participants = engine.record.credits[0].participants
        assert len(participants) == 1
        assert participants[0].party_id == "b1"
        assert participants[0].role.value == "principal"

    def test_malformed_credit_block_does_not_block_the_page(self, engine):
        report = engine.merge({
            "credits": [{"institution": "HSBC"}, {"amount": "a lot"}],
            "buyers": [BUYER],
            "property": {"folio_real": "7654321"},
        })

        assert engine.record.credits is None
        assert engine.record.buyers[0].name == BUYER["name"]
        assert engine.record.property.folio_real == "7654321"
        assert [s.entity for s in report.skipped] == ["credits"]


class TestFolios:

    def test_three_page_registry_extract(self, engine):
        pages = [
            ("rpp-p1.png", {
                "folio_candidates": [{"folio": "123456", "scope": "units"}],
                "folio_selection": {"selected_folio": "123456", "confirmed_by_user": False},
            }),
            ("rpp-p2.png", {"property": {"parcels": ["LOTE 5"]}}),
            ("rpp-p3.png", {
                "folio_candidates": [{"folio": "123456-A", "scope": "units", "attrs": {"unit": "A"}}],
                "folio_selection": {"selected_folio": "123456-A", "confirmed_by_user": True},
            }),
        ]
        for name, payload in pages:
            engine.merge(payload, source=name, source_type="property_registry_extract")

        record = engine.record
        assert {c.folio for c in record.folio_candidates} == {"123456", "123456-A"}
        assert record.folio_selection.selected_folio == "123456-A"
        assert record.folio_selection.confirmed_by_user is True
        assert record.folio_selection.selected_scope == FolioScope.UNITS
        assert record.effective_folio() == "123456-A"

    def test_candidates_dedupe_and_accumulate_sources(self, engine):
        engine.merge({"folio_candidates": [{"folio": "Folio real: 1,234,567", "attrs": {"lot": "5"}}]},
                     source="a.png", source_type="deed")
        engine.merge({"folio_candidates": [{"folio": "1234567", "attrs": {"block": "3"}}]},
                     source="b.png", source_type="property_registry_extract")

        assert len(engine.record.folio_candidates) == 1
        candidate = engine.record.folio_candidates[0]
        assert candidate.attrs == {"lot": "5", "block": "3"}
        assert [s.document_name for s in candidate.sources] == ["a.png", "b.png"]

    def test_confirmed_selection_is_sticky(self, engine):
        engine.merge({
            "folio_candidates": [{"folio": "111111"}, {"folio": "222222"}],
            "folio_selection": {"selected_folio": "111111", "confirmed_by_user": True},
        })
        report = engine.merge({
            "folio_selection": {"selected_folio": "222222", "confirmed_by_user": False},
            "property": {"folio_real": "222222"},
        })

        assert engine.record.folio_selection.selected_folio == "111111"
        assert engine.record.folio_selection.confirmed_by_user
        assert engine.record.property.folio_real == "111111"
        assert len(report.conflicts) == 2

    def test_unconfirmed_candidates_block_registry_step(self, engine):
        engine.merge({
            "folio_candidates": [{"folio": "111111"}, {"folio": "222222"}],
            "property": {"parcels": ["LOTE 1"]},
        })

        snapshot = engine.wizard_snapshot
        assert snapshot.status(WizardStep.PROPERTY_REGISTRY) == StepStatus.INCOMPLETE
        assert "multiple_folio_candidates" in snapshot.blocking_reasons


class TestLiens:

    def test_lien_implies_mortgage_and_matches_by_institution(self, engine):
        engine.merge({"liens": [{"institution": "Santander", "kind": "hipoteca"}]})
        assert engine.record.property.has_mortgage is True
        assert engine.wizard_snapshot.status(WizardStep.LIEN_CANCELLATION) == StepStatus.PENDING

        engine.merge({"liens": [{"institution": "SANTANDER", "cancellation_confirmed": True}]})

        assert len(engine.record.liens) == 1
        assert engine.record.liens[0].cancellation_confirmed is True
        assert engine.wizard_snapshot.status(WizardStep.LIEN_CANCELLATION) == StepStatus.COMPLETED

    def test_only_explicit_booleans_change_mortgage(self, engine):
        engine.merge({"property": {"has_mortgage": False}})
        engine.merge({"property": {"parcels": ["LOTE 2"]}})

        assert engine.record.property.has_mortgage is False


class TestWorkflowHints:

    def test_pending_flags_follow_explicit_keys(self, engine):
        engine.merge({"pending_document_intent": "spouse_identification",
                      "pending_people": {"buyers[0].spouse": "name"}})
        engine.merge({"buyers": [BUYER]})
        assert engine.record.pending_document_intent == "spouse_identification"

        engine.merge({"pending_document_intent": None})
        assert engine.record.pending_document_intent is None
        assert engine.record.pending_people == {"buyers[0].spouse": "name"}

    def test_flags_are_part_of_the_snapshot(self, engine):
        engine.merge({"pending_people": {"sellers[0]": "tax_id"}})
        assert engine.snapshot()["pending_people"] == {"sellers[0]": "tax_id"}


class TestEngineBehaviour:

    def test_listeners_see_every_change(self, engine):
        seen = []
        engine.add_listener(lambda record, wizard, report: seen.append((report.source, wizard.current_step)))

        engine.merge({"credits": []}, source="p1.png")
        engine.record_document("p1.png", "deed", {"folio": "1234567"})

        assert [s[0] for s in seen] == ["p1.png", "p1.png"]
        assert seen[0][1] == WizardStep.PROPERTY_REGISTRY

    def test_record_document_dedupes(self, engine):
        engine.record_document("ine.png", "identification", {"name": "Juan", "curp": ""})
        engine.record_document("ine.png", "identification", {"tax_id": "X"})
        engine.record_document("ine.png", "deed", {})

        docs = engine.record.processed_documents
        assert len(docs) == 2
        assert docs[0].extracted_fields == {"name": "Juan", "tax_id": "X"}

    def test_invalid_operation_type_is_rejected(self, engine):
        report = engine.merge({"operation_type": "donation"})
        assert report.rejected == ["operation_type='donation'"]
        assert engine.record.operation_type.value == "purchase_sale"

    def test_non_object_update_is_skipped(self, engine):
        report = engine.merge(["not", "a", "record"])
        assert report.skipped[0].entity == "record"

    def test_resume_from_existing_record(self, complete_record):
        engine = MergeEngine(record=CaseRecord.from_dict(complete_record.to_dict()))
        assert engine.wizard_snapshot.ready


def test_final_record_independent_of_completion_order():
    """Whatever order pages complete in, the buffer applies them in submission order."""
    updates = [
        {"buyers": [{**BUYER, "spouse": {"name": "Ana Ruiz", "participates": True}}]},
        {"buyers": [{"name": BUYER["name"], "spouse": {"name": "Ana Ruiz Soto"}}], "credits": []},
        {"property": {"folio_real": "1234567", "address": {"street": "Calle 5"}}, "credits": [{"institution": "BBVA"}]},
        {"buyers": [{"name": BUYER["name"], "tax_id": "PEGJ850505XY9"}]},
    ]

    def run(order):
        engine = MergeEngine()
        buffer = ReorderBuffer(apply=lambda outcome: engine.merge(outcome.result))
        for index in order:
            buffer.submit(index, PageOutcome(index=index, job=None, result=updates[index]))
        return engine.snapshot()

    expected = run(range(len(updates)))
    for order in itertools.permutations(range(len(updates))):
        assert run(order) == expected

    assert expected["buyers"][0]["spouse"]["name"] == "Ana Ruiz Soto"
    assert expected["buyers"][0]["tax_id"] == "PEGJ850505XY9"
    assert len(expected["credits"]) == 1
