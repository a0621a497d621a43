# ============================================================================
# src/notarial_intake/core/__init__.py
# ============================================================================
"""
Core components of the intake engine.
"""

from .config import get_config, reload_config

# Batch execution
from .scheduler import CancellationToken, ConcurrencyScheduler, ExtractionJob
from .reorder_buffer import PageOutcome, ReorderBuffer

# Record fusion and derived state
from .merge import MergeEngine, MergeReport
from .wizard import WizardSnapshot, WizardStateMachine

# Persistence
from .session_store import SessionStore, RecordPersister

# Orchestration
from .intake_pipeline import IntakePipeline, BatchResult
