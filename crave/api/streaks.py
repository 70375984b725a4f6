from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from crave.core.auth import get_current_user_id
from crave.features.economy.service import EconomyEngine, get_economy_engine

router = APIRouter(tags=["streaks"])


@router.get("/v1/streaks/current")
def get_current_streak(
    user_id: str = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_economy_engine),
):
    """Return the current streak state for the caller."""
    state = engine.streaks.get_state(user_id)
    pause = state["active_pause"]
    return {
        **state,
        "day": state["day"].isoformat(),
        "active_pause": pause.model_dump(mode="json") if pause else None,
    }


@router.post("/v1/streaks/miss")
def record_miss(
    user_id: str = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_economy_engine),
):
    outcome = engine.streaks.record_miss(user_id)
    payload = asdict(outcome)
    if outcome.pause_end_date:
        payload["pause_end_date"] = outcome.pause_end_date.isoformat()
    return payload
