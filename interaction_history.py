from __future__ import annotations

"""
interaction_history.py

Per-step record of what the agent just did. The orchestrator opens a fresh
history for every plan step, feeds its summary into the next action request
and asks it whether the same move keeps coming back.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, List

DEFAULT_MAX_RECORDS = 10


@dataclass
class InteractionRecord:
    action_type: str
    details: str
    success: bool
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class InteractionHistory:
    def __init__(self, max_records: int = DEFAULT_MAX_RECORDS):
        self.max_records = max(1, int(max_records))
        self._records: Deque[InteractionRecord] = deque(maxlen=self.max_records)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> List[InteractionRecord]:
        return list(self._records)

    def record_action(self, action_type: str, details: str, success: bool) -> None:
        self._records.append(InteractionRecord(action_type=action_type, details=details or "", success=bool(success)))

    def count_matching(self, action_type: str, details: str) -> int:
        needle = (details or "").lower()
        return sum(
            1 for r in self._records
            if r.action_type == action_type and needle in r.details.lower()
        )

    def has_repeated_action(self, action_type: str, details: str, threshold: int = 2) -> bool:
        return self.count_matching(action_type, details) >= threshold

    def summary(self) -> str:
        if not self._records:
            return "No actions taken yet."
        return "\n".join(
            f"{i}. {r.action_type}: {r.details} [{'OK' if r.success else 'FAILED'}]"
            for i, r in enumerate(self._records, start=1)
        )
