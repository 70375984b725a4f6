"""
crave/models/theme.py

Cosmetic theme payloads and unlock rows.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ColorScheme(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary: str
    secondary: str
    accent: str
    background: str


class ThemeData(BaseModel):
    """Personalization generated once at unlock time and persisted as-is."""
    model_config = ConfigDict(frozen=True)

    color_scheme: ColorScheme
    motivational_quotes: List[str] = Field(default_factory=list)
    badges: List[str] = Field(default_factory=list)
    special_effects: Optional[Dict[str, Any]] = None


class ThemeUnlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    theme_id: str
    theme_data: Dict[str, Any] = Field(default_factory=dict)
    unlocked_at: datetime

    @property
    def display_name(self) -> str:
        return self.theme_id[:1].upper() + self.theme_id[1:].replace("_", " ", 1)
