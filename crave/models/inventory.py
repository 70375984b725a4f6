"""
crave/models/inventory.py

Inventory and purchase-ledger models.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class InventoryEntry(BaseModel):
    """
    A depletable holding of a consumable/utility item.

    Constraint: quantity is always positive. A row that would reach zero
    is deleted instead of stored.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    item_id: str
    quantity: int = Field(gt=0)
    purchased_at: Optional[datetime] = None
    expires_at: Optional[date] = None

    def is_expired(self, on: date) -> bool:
        return self.expires_at is not None and self.expires_at < on


class InventoryView(BaseModel):
    """Inventory entry joined with its catalog item, as listed to the user."""
    model_config = ConfigDict(frozen=True)

    id: str
    item_id: str
    item_name: str
    item_type: str
    quantity: int
    effects: Dict[str, Any] = Field(default_factory=dict)
    icon: Optional[str] = None
    purchased_at: Optional[datetime] = None
    expires_at: Optional[date] = None


class PurchaseRecord(BaseModel):
    """Append-only ledger row. Never updated or deleted."""
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    item_id: str
    quantity: int
    amount_coins: int
    purchased_at: datetime
    item_name: Optional[str] = None
    item_type: Optional[str] = None


class PurchaseResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    purchase_id: str
    item_id: str
    quantity: int
    amount_coins: int
    new_balance: int
    affected_ids: List[str] = Field(default_factory=list)
