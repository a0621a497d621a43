# ============================================================================
# src/notarial_intake/utils/exceptions.py
# ============================================================================
"""
Custom exceptions for the notarial intake engine.
"""

from typing import Optional


class NotarialIntakeError(Exception):
    """Base exception for all intake errors."""
    pass


class DocumentProcessingError(NotarialIntakeError):
    """Error while processing an uploaded document."""
    pass


class ConversionError(DocumentProcessingError):
    """A multi-page file could not be split into page images."""
    def __init__(self, message: str, file_name: str, page_number: Optional[int] = None):
        super().__init__(message)
        self.file_name = file_name
        self.page_number = page_number


class ClassificationError(DocumentProcessingError):
    """Error classifying document type."""
    pass


class ExtractionError(DocumentProcessingError):
    """Extraction of a single page failed."""
    def __init__(self, message: str, page_name: Optional[str] = None):
        super().__init__(message)
        self.page_name = page_name


class ExtractionTimeout(ExtractionError):
    """Extraction call exceeded its time budget."""
    def __init__(self, message: str, page_name: Optional[str] = None, timeout_seconds: float = 0.0):
        super().__init__(message, page_name)
        self.timeout_seconds = timeout_seconds


class ExtractionServerError(ExtractionError):
    """Extraction service answered with an error or an unusable body."""
    def __init__(self, message: str, page_name: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message, page_name)
        self.status = status


class SessionExpired(NotarialIntakeError):
    """Authentication expired mid-batch; the rest of the batch is aborted."""
    pass


class MergeSkip(NotarialIntakeError):
    """One entity of an incoming partial record was dropped."""
    def __init__(self, entity: str, reason: str, source: Optional[str] = None):
        super().__init__(f"{entity}: {reason}")
        self.entity = entity
        self.reason = reason
        self.source = source


class ConfigurationError(NotarialIntakeError):
    """Invalid configuration."""
    pass


class CacheError(NotarialIntakeError):
    """Error with caching system."""
    pass


class PersistenceError(NotarialIntakeError):
    """Record could not be saved or loaded."""
    pass
