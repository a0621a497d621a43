# ============================================================================
# src/notarial_intake/classifiers/document_classifier.py
# ============================================================================
"""
Document Type Classifier

Assigns every upload one subtype from a closed set, in strict priority:

1. FILENAME KEYWORDS
   - Accent/case-insensitive, short tokens ("ine", "id") match whole words only

2. CONVERSATION CONTEXT
   - The last question the user was asked. A question about a spouse or a
     buyer's/seller's name means the upload is an identification, even when
     the same question also asks for marital status

3. MIME / SIZE / CONTENT HEURISTIC
   - Small flat images are identifications
   - PDFs whose raw bytes carry registry markers are registry extracts

4. DEFAULT
   - Deed

No model call is involved, so the same inputs always give the same subtype.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..constants.document_types import DocumentSubtype
from ..utils.text_normalizer import strip_accents


@dataclass(frozen=True)
class ClassificationResult:
    subtype: DocumentSubtype
    method: str                  # filename | context | heuristic | default
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"subtype": self.subtype.value, "method": self.method, "reasoning": self.reasoning}


class DocumentTypeClassifier:
    """
    Classifies uploads into document subtypes for routing and scheduling.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.identification_max_bytes = self.config.get('identification_max_bytes', 4 * 1024 * 1024)
        self.logger = logging.getLogger(__name__)
        self.patterns = self._load_classification_patterns()

    def _load_classification_patterns(self) -> List[Dict[str, Any]]:
        """
        Keyword patterns per subtype, in evaluation order.

        Order matters: a "acta de matrimonio" filename must not fall through
        to a generic word, and spouse questions must be checked before
        marital-status ones.
        """
        return [
            {
                "subtype": DocumentSubtype.MARRIAGE_CERTIFICATE,
                "filename": [r"acta\s*(de\s*)?matrimonio", r"matrimonio", r"marriage"],
                "question": [r"acta\s+de\s+matrimonio", r"marriage\s+certificate"],
            },
            {
                "subtype": DocumentSubtype.FLOOR_PLAN,
                "filename": [r"plano", r"croquis", r"catastr", r"floor\s*plan", r"\bplan\b"],
                "question": [r"\bplano\b", r"\bcroquis\b", r"floor\s+plan"],
            },
            {
                "subtype": DocumentSubtype.PROPERTY_REGISTRY_EXTRACT,
                "filename": [
                    r"inscrip", r"registro", r"\brpp\b", r"folio\s*real",
                    r"libertad\s*(de\s*)?gravamen", r"gravamen", r"registry",
                ],
                "question": [
                    r"folio\s+real", r"inscripci", r"registro\s+publico",
                    r"libertad\s+de\s+gravamen", r"registry",
                ],
            },
            {
                "subtype": DocumentSubtype.IDENTIFICATION,
                "filename": [
                    r"\bine\b", r"\bife\b", r"\bid\b", r"\bcurp\b", r"identif",
                    r"pasaporte", r"passport", r"credencial", r"licencia",
                ],
                "question": [
                    r"\bconyuge\b", r"\besposa\b", r"\besposo\b", r"\bspouse\b",
                    r"nombre\b.*\b(comprador|compradora|vendedor|vendedora|adquirente|enajenante)",
                    r"\b(buyer|seller)'?s?\b.*\bname\b",
                    r"identificaci", r"\bine\b",
                ],
            },
            {
                "subtype": DocumentSubtype.DEED,
                "filename": [r"escritura", r"titulo", r"testimonio", r"\bdeed\b", r"propiedad"],
                "question": [r"\bescritura\b", r"\btitulo de propiedad\b", r"\bdeed\b"],
            },
        ]

    # Registry extracts often carry these in uncompressed metadata or text
    REGISTRY_CONTENT_MARKERS = (b"registro publico", b"folio real", b"certificado de libertad")

    def classify(
        self,
        file_name: str,
        content: bytes = b"",
        mime_type: Optional[str] = None,
        last_question: Optional[str] = None,
    ) -> ClassificationResult:
        """
        Classify one upload.

        Args:
            file_name: Name as uploaded
            content: File bytes (only the head is inspected)
            mime_type: Declared MIME type
            last_question: Last question the wizard asked the user

        Returns:
            ClassificationResult with subtype and the rule that decided it
        """
        normalized_name = self._normalize(file_name)
        match = self._match(normalized_name, "filename")
        if match:
            return self._result(match[0], "filename", f"file name matches {match[1]!r}", file_name)

        if last_question:
            # Spouse/name questions outrank every other context pattern
            match = self._match(self._normalize(last_question), "question", prefer=DocumentSubtype.IDENTIFICATION)
            if match:
                return self._result(match[0], "context", f"last question matches {match[1]!r}", file_name)

        heuristic = self._heuristic(content or b"", mime_type or "")
        if heuristic:
            reasoning = self._heuristic_reasoning(heuristic, len(content or b""), mime_type)
            return self._result(heuristic, "heuristic", reasoning, file_name)

        return self._result(DocumentSubtype.DEED, "default", "no rule matched", file_name)

    def _match(self, text: str, field: str, prefer: Optional[DocumentSubtype] = None):
        if not text:
            return None
        ordered = self.patterns
        if prefer is not None:
            ordered = sorted(self.patterns, key=lambda p: p["subtype"] != prefer)
        for entry in ordered:
            for pattern in entry[field]:
                if re.search(pattern, text):
                    return entry["subtype"], pattern
        return None

    def _heuristic(self, content: bytes, mime_type: str) -> Optional[DocumentSubtype]:
        mime_type = mime_type.lower()
        if mime_type.startswith("image/"):
            if len(content) <= self.identification_max_bytes:
                return DocumentSubtype.IDENTIFICATION
            return None
        if mime_type == "application/pdf" or content.startswith(b"%PDF"):
            head = self._normalize(content[:65536].decode("latin-1", errors="ignore")).encode("ascii", "ignore")
            if any(marker in head for marker in self.REGISTRY_CONTENT_MARKERS):
                return DocumentSubtype.PROPERTY_REGISTRY_EXTRACT
        return None

    @staticmethod
    def _heuristic_reasoning(subtype: DocumentSubtype, size: int, mime_type: Optional[str]) -> str:
        if subtype == DocumentSubtype.IDENTIFICATION:
            return f"small image ({size} bytes, {mime_type or 'unknown type'})"
        return "registry markers in PDF content"

    @staticmethod
    def _normalize(text: str) -> str:
        text = strip_accents(text or "").lower()
        text = re.sub(r"[_\-.,;:()\[\]¿?¡!/]+", " ", text)
        return re.sub(r"\s+", " ", text).strip()

    def _result(self, subtype: DocumentSubtype, method: str, reasoning: str, file_name: str) -> ClassificationResult:
        self.logger.debug(f"Classified {file_name!r} as {subtype.value}: {reasoning}")
        return ClassificationResult(subtype=subtype, method=method, reasoning=reasoning)
