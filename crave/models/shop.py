"""
crave/models/shop.py

Catalog models: shop items and level definitions. Immutable at read time.
"""

from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from crave.models.account import Tier

ItemCategory = Literal["consumable", "utility", "cosmetic"]
EffectKind = Literal["pause", "level_skip", "theme", "none"]


class ShopItem(BaseModel):
    """
    A purchasable item.

    ``effects`` is a small tagged payload, one of:
    - {"pause_days": N}   consumable pause token
    - {"level_skip": 1}   one-shot level skip
    - {"theme": "id"}     cosmetic theme unlock
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: ItemCategory
    price_coins: int = Field(ge=0)
    tier_required: Tier = "free"
    effects: Dict[str, Any] = Field(default_factory=dict)
    expires_after_days: Optional[int] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    active: bool = True

    @property
    def pause_days(self) -> Optional[int]:
        value = self.effects.get("pause_days")
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            return None
        return value

    @property
    def is_level_skip(self) -> bool:
        return "level_skip" in self.effects

    @property
    def theme_id(self) -> Optional[str]:
        value = self.effects.get("theme")
        return str(value) if value else None

    @property
    def effect_kind(self) -> EffectKind:
        if self.pause_days is not None:
            return "pause"
        if self.is_level_skip:
            return "level_skip"
        if self.theme_id:
            return "theme"
        return "none"

    @property
    def grants_inventory(self) -> bool:
        if self.effect_kind == "pause":
            return self.category in ("consumable", "utility")
        return self.is_skip_token

    @property
    def is_skip_token(self) -> bool:
        return self.category == "utility" and self.effect_kind == "level_skip"

    @property
    def grants_theme(self) -> bool:
        return self.category == "cosmetic" and self.effect_kind == "theme"

    @property
    def effect_mismatch(self) -> bool:
        """An effect the category can never deliver (a consumable level skip, say)."""
        return self.effect_kind != "none" and not (self.grants_inventory or self.grants_theme)


class LevelDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    level_number: int = Field(ge=1)
    title: str
    craving_type: Optional[str] = None
    xp_reward: int = 0
    coin_reward: int = 0
