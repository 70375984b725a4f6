"""
crave/models/pause.py

Streak pause windows. Dates are reward-zone calendar days, end inclusive.
"""

from datetime import date
from typing import Optional
from pydantic import BaseModel, ConfigDict


class PausePeriod(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    start_date: date
    end_date: date
    is_active: bool = True
    inventory_entry_id: Optional[str] = None

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1


class PauseWindow(BaseModel):
    """What callers see after activation or when querying the active pause."""
    model_config = ConfigDict(frozen=True)

    id: str
    start_date: date
    end_date: date
    days: int
    days_remaining: Optional[int] = None
