# ============================================================================
# src/notarial_intake/__init__.py
# ============================================================================
"""
Notarial Intake Engine

Turns a batch of uploaded case documents into one continuously updated case
record and a six-step intake wizard snapshot.
"""

__version__ = "0.1.0"
