# ============================================================================
# src/notarial_intake/core/merge/engine.py
# ============================================================================
"""
Merge Engine

Owns the canonical CaseRecord and is the only component that mutates it.
Each call merges one page's partial record:

1. The update is validated entity by entity; malformed entities become
   MergeSkip entries and are dropped on their own
2. Entity rules apply (see party_rules, credit_rules, property_rules)
3. The wizard snapshot is recomputed and listeners are notified

Absence never erases: a field missing from the update, or explicitly null,
leaves the known value alone. The two workflow hints
(``pending_document_intent`` / ``pending_people``) are the exception: an
explicit key, null included, overwrites them.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from ..record.case_record import CaseRecord, FolioSource, ProcessedDocumentEntry
from ..record.enums import OperationType
from ..record.payloads import parse_update
from ..wizard import WizardSnapshot, WizardStateMachine
from ...utils.exceptions import MergeSkip
from .credit_rules import merge_credits
from .party_rules import merge_parties
from .property_rules import (
    merge_folio_candidates,
    merge_folio_selection,
    merge_liens,
    merge_property,
)
from .report import MergeReport

RecordListener = Callable[[CaseRecord, WizardSnapshot, MergeReport], None]


class MergeEngine:
    """
    Incremental fusion of partial records into one canonical record.

    Example:
        engine = MergeEngine()
        report = engine.merge(result.payload, source="escritura-p1.png", source_type="deed")
        engine.wizard_snapshot.current_step
    """

    def __init__(
        self,
        record: Optional[CaseRecord] = None,
        wizard: Optional[WizardStateMachine] = None,
    ):
        self._record = record or CaseRecord()
        self.wizard = wizard or WizardStateMachine()
        self.wizard_snapshot: WizardSnapshot = self.wizard.compute(self._record)
        self._listeners: List[RecordListener] = []
        self.merge_count = 0
        self.logger = logging.getLogger(__name__)

    @property
    def record(self) -> CaseRecord:
        return self._record

    def snapshot(self) -> Dict[str, Any]:
        """Detached JSON-ready copy of the record, flags included."""
        return self._record.to_dict()

    def add_listener(self, listener: RecordListener) -> None:
        self._listeners.append(listener)

    def merge(
        self,
        update: Optional[Dict[str, Any]],
        source: Optional[str] = None,
        source_type: Optional[str] = None,
    ) -> MergeReport:
        """
        Merge one partial record.

        Args:
            update: Partial record from the extraction service
            source: Page or document name the update came from
            source_type: Subtype of that document

        Returns:
            MergeReport describing what was applied, skipped and refused
        """
        report = MergeReport(source=source)
        parsed = parse_update(update, source=source)
        report.skipped.extend(parsed.skips)
        folio_source = FolioSource(source, source_type) if source else None
        record = self._record

        steps = [
            ("operation_type", lambda: self._merge_operation_type(parsed.operation_type, report)),
            ("sellers", lambda: merge_parties(record.sellers, parsed.sellers, "sellers", report)),
            ("buyers", lambda: merge_parties(record.buyers, parsed.buyers, "buyers", report)),
            ("credits", lambda: merge_credits(record, parsed.credits, report)),
            # candidates before selection so a confirmation can find its scope
            ("folio_candidates", lambda: merge_folio_candidates(record, parsed.folio_candidates, folio_source, report)),
            ("folio_selection", lambda: parsed.folio_selection and merge_folio_selection(
                record, parsed.folio_selection, folio_source, report)),
            ("property", lambda: parsed.property and merge_property(record, parsed.property, report)),
            ("liens", lambda: merge_liens(record, parsed.liens, report)),
            ("processed_documents", lambda: self._merge_processed_documents(parsed.processed_documents, report)),
            ("pending_flags", lambda: self._merge_pending_flags(parsed, report)),
        ]
        for entity, apply in steps:
            try:
                apply()
            except MergeSkip as skip:
                report.skipped.append(skip)
            except (TypeError, ValueError, AttributeError) as e:
                self.logger.exception(f"Merge of {entity} from {source} failed")
                report.skipped.append(MergeSkip(entity, str(e), source))

        for skip in report.skipped:
            self.logger.warning(f"Skipped {skip.entity} from {source or 'update'}: {skip.reason}")

        self.merge_count += 1
        self._after_change(report)
        return report

    def record_document(self, name: str, subtype: str, extracted_fields: Optional[Dict[str, Any]] = None) -> None:
        """Remember a merged document, de-duplicated by (subtype, name)."""
        report = MergeReport(source=name)
        self._upsert_document(name, subtype, extracted_fields or {})
        report.mark("processed_documents")
        self._after_change(report)

    def _after_change(self, report: MergeReport) -> None:
        self.wizard_snapshot = self.wizard.compute(self._record)
        for listener in list(self._listeners):
            listener(self._record, self.wizard_snapshot, report)

    def _merge_operation_type(self, value: Optional[str], report: MergeReport) -> None:
        if value is None:
            return
        try:
            self._record.operation_type = OperationType(value)
        except ValueError:
            report.rejected.append(f"operation_type={value!r}")

    def _merge_processed_documents(self, documents, report: MergeReport) -> None:
        for document in documents:
            self._upsert_document(document.name, document.subtype, document.extracted_fields)
            report.mark("processed_documents")

    def _upsert_document(self, name: str, subtype: str, extracted_fields: Dict[str, Any]) -> None:
        fields = {k: v for k, v in extracted_fields.items() if v not in (None, "", [], {})}
        for entry in self._record.processed_documents:
            if entry.name == name and entry.subtype == subtype:
                entry.extracted_fields.update(fields)
                return
        self._record.processed_documents.append(
            ProcessedDocumentEntry(name=name, subtype=subtype, extracted_fields=fields)
        )

    def _merge_pending_flags(self, parsed, report: MergeReport) -> None:
        if parsed.has_pending_document_intent:
            self._record.pending_document_intent = parsed.pending_document_intent
            report.mark("pending_document_intent")
        if parsed.has_pending_people:
            self._record.pending_people = parsed.pending_people
            report.mark("pending_people")
