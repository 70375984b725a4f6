from fastapi import APIRouter, Depends

from crave.core.auth import get_current_user_id, require_operator
from crave.features.economy.service import EconomyEngine, get_economy_engine

router = APIRouter(tags=["economy"])


@router.get("/v1/economy/reconcile")
def reconcile(
    user_id: str = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_economy_engine),
):
    return engine.reconcile(user_id)


@router.get("/v1/economy/metrics")
def reward_metrics(
    _operator: str = Depends(require_operator),
    engine: EconomyEngine = Depends(get_economy_engine),
):
    """Economy-wide totals, spend by item type and the latest purchases."""
    report = engine.reward_metrics()
    report["recent_purchases"] = [p.model_dump(mode="json") for p in report["recent_purchases"]]
    return report
