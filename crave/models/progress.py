"""
crave/models/progress.py

Level progression results.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class LevelProgress(BaseModel):
    """A completed level. ``skipped`` completions never carry rewards."""
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    level_id: str
    level_number: int
    completed_at: datetime
    skipped: bool = False
    xp_awarded: int = 0
    coins_awarded: int = 0


class LevelSkipResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    level_id: str
    level_number: int
    new_current_level: int
    inventory_entry_id: str
    remaining_quantity: int


class LevelCompletionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    level_id: str
    level_number: int
    xp_awarded: int
    coins_awarded: int
    new_current_level: int
    new_balance: int
    streak_count: int
    completed_at: Optional[datetime] = None
