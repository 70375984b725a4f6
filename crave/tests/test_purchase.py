"""Purchase pipeline: preconditions, effects, conservation."""
from datetime import date

import pytest
from sqlalchemy import func, select

from crave.core.database import user_inventory, user_purchases, user_themes
from crave.core.errors import (
    AccountNotFoundError,
    InsufficientFundsError,
    ItemUnavailableError,
    TierInsufficientError,
    ValidationError,
)
from crave.core.metrics import coins_spent_total, economy_operations_total
from crave.features.accounts.service import get_account


def _count(session_factory, table, user_id):
    session = session_factory()
    try:
        return session.execute(
            select(func.count()).select_from(table).where(table.c.user_id == user_id)
        ).scalar()
    finally:
        session.close()


def test_purchase_debits_and_records(engine, make_account, store, session_factory):
    make_account("u1", balance=100)

    result = engine.purchase("u1", "pause_token_1d", 1)

    assert result.new_balance == 50
    assert result.amount_coins == 50
    assert get_account(store, "u1").cravecoins == 50
    history = engine.get_purchase_history("u1")
    assert [(p.item_id, p.amount_coins, p.quantity) for p in history] == [("pause_token_1d", 50, 1)]
    assert history[0].item_name == "Streak Pause (1 day)"
    assert coins_spent_total.value() == 50
    assert economy_operations_total.value({"operation": "purchase", "outcome": "ok"}) == 1


def test_insufficient_funds_leaves_no_trace(engine, make_account, store, session_factory):
    make_account("u1", balance=40)

    with pytest.raises(InsufficientFundsError) as exc:
        engine.purchase("u1", "pause_token_1d", 1)

    assert exc.value.details == {"required": 50, "balance": 40}
    assert get_account(store, "u1").cravecoins == 40
    assert _count(session_factory, user_purchases, "u1") == 0
    assert _count(session_factory, user_inventory, "u1") == 0
    assert economy_operations_total.value({"operation": "purchase", "outcome": "insufficient_funds"}) == 1


def test_quantity_multiplies_price(engine, make_account):
    make_account("u1", balance=200)

    result = engine.purchase("u1", "pause_token_1d", 3)

    assert result.amount_coins == 150
    assert result.new_balance == 50
    [entry] = engine.get_inventory("u1")
    assert entry.quantity == 3


def test_repurchase_increments_existing_entry(engine, make_account, session_factory):
    make_account("u1", balance=500)

    first = engine.purchase("u1", "pause_token_1d", 1)
    second = engine.purchase("u1", "pause_token_1d", 2)

    assert first.affected_ids == second.affected_ids
    [entry] = engine.get_inventory("u1")
    assert entry.quantity == 3
    assert _count(session_factory, user_inventory, "u1") == 1


def test_repurchase_extends_expiry_to_later_date(engine, make_account, clock):
    make_account("u1", balance=500)

    engine.purchase("u1", "pause_token_1d", 1)
    [entry] = engine.get_inventory("u1")
    assert entry.expires_at == date(2024, 4, 9)

    clock.advance(10)
    engine.purchase("u1", "pause_token_1d", 1)
    [entry] = engine.get_inventory("u1")
    assert entry.expires_at == date(2024, 4, 19)
    assert entry.quantity == 2


def test_unknown_item_is_unavailable(engine, make_account):
    make_account("u1", balance=500)

    with pytest.raises(ItemUnavailableError):
        engine.purchase("u1", "does_not_exist", 1)


def test_item_checked_before_account(engine):
    with pytest.raises(ItemUnavailableError):
        engine.purchase("ghost", "does_not_exist", 1)

    with pytest.raises(AccountNotFoundError):
        engine.purchase("ghost", "pause_token_1d", 1)


def test_tier_checked_before_funds(engine, make_account, store):
    make_account("u1", balance=0, tier="free")

    with pytest.raises(TierInsufficientError) as exc:
        engine.purchase("u1", "level_skip", 1)

    assert exc.value.details["required_tier"] == "plus"
    assert get_account(store, "u1").cravecoins == 0


@pytest.mark.parametrize("tier", ["plus", "plus_trial", "ultra"])
def test_higher_tiers_can_buy_plus_items(engine, make_account, tier):
    make_account("u1", balance=100, tier=tier)

    result = engine.purchase("u1", "level_skip", 1)

    assert result.new_balance == 0


@pytest.mark.parametrize(
    "user_id,item_id,quantity",
    [("", "pause_token_1d", 1), ("u1", " ", 1), ("u1", "pause_token_1d", 0), ("u1", "pause_token_1d", True)],
)
def test_validation_happens_before_store_access(engine, monkeypatch, user_id, item_id, quantity):
    def fail(*args, **kwargs):
        raise AssertionError("store touched")

    monkeypatch.setattr(engine.store, "run", fail)
    monkeypatch.setattr(engine.catalog, "get_item", fail)

    with pytest.raises(ValidationError):
        engine.purchase(user_id, item_id, quantity)


def test_theme_unlock_is_idempotent(engine, make_account, store, session_factory):
    make_account("u1", balance=200, primary_craving="sugar", streak_count=8)

    first = engine.purchase("u1", "theme_premium", 1)
    second = engine.purchase("u1", "theme_premium", 1)

    assert get_account(store, "u1").cravecoins == 50
    assert _count(session_factory, user_purchases, "u1") == 2
    assert _count(session_factory, user_themes, "u1") == 1
    assert first.affected_ids == second.affected_ids

    [theme] = engine.list_themes("u1")
    assert theme.theme_id == "premium"
    assert theme.display_name == "Premium"
    assert theme.theme_data["color_scheme"]["primary"] == "#FFD93D"
    assert "7-Day Warrior" in theme.theme_data["badges"]


def test_conservation_over_mixed_operations(engine, make_account, store):
    make_account("u1", balance=1000, tier="plus")

    spent = 0
    for item_id, qty in [("pause_token_1d", 2), ("pause_token_3d", 1), ("level_skip", 1), ("theme_premium", 1)]:
        spent += engine.purchase("u1", item_id, qty).amount_coins
    with pytest.raises(InsufficientFundsError):
        engine.purchase("u1", "pause_token_3d", 10)

    history = engine.get_purchase_history("u1")
    assert sum(p.amount_coins for p in history) == spent == 395
    assert get_account(store, "u1").cravecoins == 1000 - spent
    assert engine.reconcile("u1")["drift"] == 0


def test_purchase_history_limit_is_clamped(engine, make_account):
    make_account("u1", balance=1000)
    for _ in range(3):
        engine.purchase("u1", "pause_token_1d", 1)

    assert len(engine.get_purchase_history("u1", limit=0)) == 1
    assert len(engine.get_purchase_history("u1", limit=500)) == 3
    assert len(engine.get_purchase_history("u1", limit=2)) == 2


def test_list_items_ordered_by_price(engine):
    prices = [item.price_coins for item in engine.list_items()]
    assert prices == sorted(prices)
    assert {item.id for item in engine.list_items()} >= {"pause_token_1d", "pause_token_3d", "level_skip", "theme_premium"}
