"""
Rewards API: inventory, pause tokens, level skips and themes.

All routes resolve the caller through get_current_user_id and delegate to the
economy engine. Failures surface as AppError and are rendered by the app's
exception handlers.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field

from crave.core.auth import get_current_user_id
from crave.features.economy.service import EconomyEngine, get_economy_engine

router = APIRouter(prefix="/v1/rewards", tags=["rewards"])


class ActivatePauseRequest(BaseModel):
    inventory_id: str = Field(..., min_length=1, validation_alias=AliasChoices("inventory_id", "inventoryId"))
    days: int = Field(..., ge=1)


class UseLevelSkipRequest(BaseModel):
    level_id: str = Field(..., min_length=1, validation_alias=AliasChoices("level_id", "levelId"))


class ApplyThemeRequest(BaseModel):
    theme_id: str = Field(..., min_length=1, validation_alias=AliasChoices("theme_id", "themeId"))
    personalization: Optional[Dict[str, Any]] = None


@router.get("/inventory")
def get_inventory(
    user_id: str = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_economy_engine),
):
    entries = engine.get_inventory(user_id)
    return {"inventory": [entry.model_dump(mode="json") for entry in entries]}


@router.post("/pause-token/activate")
def activate_pause(
    body: ActivatePauseRequest,
    user_id: str = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_economy_engine),
):
    window = engine.activate_pause(user_id, body.inventory_id, body.days)
    return {"success": True, "pause": window.model_dump(mode="json")}


@router.get("/pause-token/active")
def active_pause(
    user_id: str = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_economy_engine),
):
    window = engine.get_active_pause(user_id)
    if window is None:
        return {"active": False, "pause": None}
    return {"active": True, "pause": window.model_dump(mode="json")}


@router.post("/level-skip/use")
def use_level_skip(
    body: UseLevelSkipRequest,
    user_id: str = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_economy_engine),
):
    result = engine.use_level_skip(user_id, body.level_id)
    return {"success": True, **result.model_dump()}


@router.get("/themes")
def list_themes(
    user_id: str = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_economy_engine),
):
    unlocks = engine.list_themes(user_id)
    active = engine.get_active_theme(user_id)
    return {
        "themes": [
            {
                "id": unlock.id,
                "theme_id": unlock.theme_id,
                "name": unlock.display_name,
                "theme_data": unlock.theme_data,
                "unlocked_at": unlock.unlocked_at.isoformat(),
            }
            for unlock in unlocks
        ],
        "active_theme_id": active["theme_id"] if active else None,
    }


@router.post("/theme/apply")
def apply_theme(
    body: ApplyThemeRequest,
    user_id: str = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_economy_engine),
):
    payload = engine.apply_theme(user_id, body.theme_id, body.personalization)
    return {"success": True, "theme_id": body.theme_id, "personalization": payload}
