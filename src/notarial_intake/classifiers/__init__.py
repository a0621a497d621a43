from .document_classifier import DocumentTypeClassifier, ClassificationResult
