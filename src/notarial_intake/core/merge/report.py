# ============================================================================
# src/notarial_intake/core/merge/report.py
# ============================================================================
"""
Merge Report

What one merge did: entities applied, entities skipped as malformed, values
refused by validation, and conflicts resolved by policy.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ...utils.exceptions import MergeSkip


@dataclass
class MergeReport:
    source: Optional[str] = None
    applied: List[str] = field(default_factory=list)
    skipped: List[MergeSkip] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)

    def mark(self, entity: str) -> None:
        if entity not in self.applied:
            self.applied.append(entity)

    @property
    def changed(self) -> bool:
        return bool(self.applied)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "applied": list(self.applied),
            "skipped": [{"entity": s.entity, "reason": s.reason} for s in self.skipped],
            "rejected": list(self.rejected),
            "conflicts": list(self.conflicts),
        }
