# ============================================================================
# src/notarial_intake/core/record/processed_document.py
# ============================================================================
"""
Processed Document

Per-upload status shown next to the wizard. Created when a file is accepted
(``processed=False``) and moved to exactly one terminal state:
success, ``processed and error`` or ``processed and cancelled``.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ProcessedDocument:
    name: str
    type: str
    size: int
    original_file: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    processed: bool = False
    extracted_fields: Dict[str, Any] = field(default_factory=dict)
    subtype: Optional[str] = None
    cancelled: bool = False
    error: Optional[str] = None

    # Durable id handed back by the upload adapter
    document_id: Optional[str] = None
    pages_total: int = 0
    pages_done: int = 0
    pages_failed: int = 0
    # Server reported these pages were processed before
    known_prior: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.processed

    def record_page(self, fields: Optional[Dict[str, Any]] = None, error: Optional[str] = None):
        """Account for one finished page of this document."""
        if self.processed:
            return
        if error:
            self.pages_failed += 1
        else:
            self.pages_done += 1
            for key, value in (fields or {}).items():
                if value not in (None, "", [], {}):
                    self.extracted_fields[key] = value

    def finish(self):
        """Mark terminal once every page is accounted for."""
        if self.processed:
            return
        self.processed = True
        if self.pages_failed:
            if self.pages_done == 0:
                self.error = f"All {self.pages_failed} page(s) failed"
            else:
                total = self.pages_done + self.pages_failed
                self.error = f"{self.pages_failed} of {total} page(s) failed"

    def fail(self, error: str):
        if self.processed:
            return
        self.processed = True
        self.error = error

    def cancel(self, reason: Optional[str] = None):
        if self.processed:
            return
        self.processed = True
        self.cancelled = True
        if reason:
            self.error = reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "original_file": self.original_file,
            "name": self.name,
            "type": self.type,
            "size": self.size,
            "processed": self.processed,
            "extracted_fields": dict(self.extracted_fields),
            "subtype": self.subtype,
            "cancelled": self.cancelled,
            "error": self.error,
            "document_id": self.document_id,
            "pages_total": self.pages_total,
            "pages_done": self.pages_done,
            "pages_failed": self.pages_failed,
            "known_prior": self.known_prior,
        }
