"""
Merge Engine and its per-entity rules.
"""

from .engine import MergeEngine
from .report import MergeReport
