"""
Account service.
- create_account(store, user_id, ...)   onboarding, idempotent
- get_account(store, user_id)
"""

from typing import Any, Dict, Optional

from crave.core.errors import ValidationError
from crave.features.store.ledger_store import LedgerStore, UnitOfWork
from crave.models.account import TIER_ORDER, UserAccount


def create_account(
    store: LedgerStore,
    user_id: str,
    *,
    balance: int = 0,
    tier: str = "free",
    current_level: int = 1,
    streak_count: int = 0,
    xp: int = 0,
    primary_craving: Optional[str] = None,
    preferences: Optional[Dict[str, Any]] = None,
) -> UserAccount:
    """Create the account if missing. An existing account is returned unchanged."""
    if not user_id or not user_id.strip():
        raise ValidationError("user_id is required")
    if balance < 0:
        raise ValidationError("balance must be non-negative", details={"balance": balance})
    if tier not in TIER_ORDER:
        raise ValidationError(f"Unknown tier: {tier}", details={"tier": tier})

    def work(uow: UnitOfWork) -> UserAccount:
        existing = uow.get_account()
        if existing:
            return existing
        return uow.insert_account(
            balance=balance,
            tier=tier,
            current_level=current_level,
            streak_count=streak_count,
            xp=xp,
            primary_craving=primary_craving,
            preferences=preferences,
        )

    return store.run(user_id.strip(), work, operation="create_account")


def get_account(store: LedgerStore, user_id: str) -> Optional[UserAccount]:
    return store.read(user_id, lambda uow: uow.get_account(), operation="get_account")
