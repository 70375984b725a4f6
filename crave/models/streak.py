from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Literal, Optional

StreakDecision = Literal["incremented", "protected", "reset", "deferred"]


@dataclass(frozen=True)
class StreakOutcome:
    """
    Result of a streak trigger. Day-level, reward-zone calendar only.

    ``deferred`` means the pause state could not be read; the counter was
    left untouched and the miss should be re-driven later. Its streak_count
    is None because the stored value could not be read either.
    """

    user_id: str
    status: StreakDecision
    streak_count: Optional[int]
    pause_end_date: Optional[date] = None

    @property
    def changed(self) -> bool:
        return self.status in ("incremented", "reset")
