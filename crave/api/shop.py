from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import AliasChoices, BaseModel, Field

from crave.core.auth import get_current_user_id
from crave.features.economy.service import (
    DEFAULT_HISTORY_LIMIT,
    MAX_HISTORY_LIMIT,
    EconomyEngine,
    get_economy_engine,
)

router = APIRouter(tags=["shop"])


class PurchaseRequest(BaseModel):
    item_id: str = Field(..., min_length=1, validation_alias=AliasChoices("item_id", "itemId"))
    quantity: int = Field(1, ge=1)


@router.get("/v1/shop/items")
def list_items(engine: EconomyEngine = Depends(get_economy_engine)):
    """Active shop items, cheapest first."""
    return {"items": [item.model_dump() for item in engine.list_items()]}


@router.post("/v1/shop/purchase")
def purchase(
    body: PurchaseRequest,
    user_id: str = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_economy_engine),
):
    result = engine.purchase(user_id, body.item_id, body.quantity)
    return {
        "success": True,
        "purchase_id": result.purchase_id,
        "item_id": result.item_id,
        "quantity": result.quantity,
        "amount_coins": result.amount_coins,
        "new_balance": result.new_balance,
        "affected_ids": result.affected_ids,
    }


@router.get("/v1/shop/purchases")
def purchase_history(
    limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
    user_id: str = Depends(get_current_user_id),
    engine: EconomyEngine = Depends(get_economy_engine),
):
    records = engine.get_purchase_history(user_id, limit)
    return {"purchases": [record.model_dump(mode="json") for record in records]}
