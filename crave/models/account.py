"""
crave/models/account.py

User account and profile snapshot models.

Tiers are ordered: free < plus < plus_trial < ultra.
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

Tier = Literal["free", "plus", "plus_trial", "ultra"]

TIER_ORDER = ("free", "plus", "plus_trial", "ultra")


def tier_rank(tier: str) -> int:
    """Position of ``tier`` in TIER_ORDER; unknown tiers rank below free."""
    try:
        return TIER_ORDER.index(tier)
    except ValueError:
        return -1


def tier_allows(account_tier: str, required_tier: str) -> bool:
    return tier_rank(account_tier) >= tier_rank(required_tier)


class UserAccount(BaseModel):
    """
    Long-lived account state owned by the reward economy.

    Created at onboarding. Balance and level move through the economy
    engine, streak fields through the streak controller.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    cravecoins: int = Field(ge=0)
    starting_balance: int = 0
    subscription_tier: Tier = "free"
    streak_count: int = Field(default=0, ge=0)
    longest_streak: int = 0
    current_level: int = 1
    xp: int = 0
    primary_craving: Optional[str] = None
    preferences: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class ProfileSnapshot(BaseModel):
    """Read-only view of a profile handed to the personalization generator."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    tier: Tier = "free"
    level: int = 1
    streak: int = 0
    xp: int = 0
    primary_craving: Optional[str] = None
    preferences: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_account(cls, account: UserAccount) -> "ProfileSnapshot":
        return cls(
            user_id=account.user_id,
            tier=account.subscription_tier,
            level=account.current_level,
            streak=account.streak_count,
            xp=account.xp,
            primary_craving=account.primary_craving,
            preferences=dict(account.preferences or {}),
        )
