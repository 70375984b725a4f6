from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field

from crave.core.auth import get_current_user_id
from crave.features.economy.service import EconomyEngine, get_economy_engine

router = APIRouter(tags=["levels"])


class CompleteLevelRequest(BaseModel):
    level_id: str = Field(..., min_length=1, validation_alias=AliasChoices("level_id", "levelId"))


@router.post("/v1/levels/complete")
def complete_level(
    body: CompleteLevelRequest,
    user_id: str = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_economy_engine),
):
    """Earn a level: XP and coins are credited and the streak extends."""
    result, streak = engine.complete_level(user_id, body.level_id)
    return {
        "success": True,
        "completion": result.model_dump(mode="json"),
        "streak": {"status": streak.status, "streak_count": streak.streak_count},
    }
