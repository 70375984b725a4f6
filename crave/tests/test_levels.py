import pytest

from crave.core.errors import (
    AlreadyCompletedError,
    LevelNotFoundError,
    NoSkipAvailableError,
    TierInsufficientError,
)
from crave.features.accounts.service import get_account


@pytest.fixture
def skipper(make_account, engine):
    make_account("u1", balance=300, tier="plus", current_level=5)
    engine.purchase("u1", "level_skip", 1)
    return "u1"


def test_level_skip_advances_and_consumes(engine, store, skipper):
    result = engine.use_level_skip(skipper, "level_5")

    assert result.level_number == 5
    assert result.new_current_level == 6
    assert result.remaining_quantity == 0
    assert engine.get_inventory(skipper) == []
    assert get_account(store, skipper).current_level == 6

    with pytest.raises(NoSkipAvailableError):
        engine.use_level_skip(skipper, "level_6")


def test_skip_grants_no_rewards(engine, store, skipper):
    before = get_account(store, skipper)
    engine.use_level_skip(skipper, "level_5")
    after = get_account(store, skipper)

    assert after.cravecoins == before.cravecoins
    assert after.xp == before.xp
    assert after.streak_count == before.streak_count
    assert engine.reconcile(skipper)["drift"] == 0


def test_skip_never_moves_level_backward(engine, store, skipper):
    result = engine.use_level_skip(skipper, "level_2")

    assert result.new_current_level == 5


def test_skip_precondition_order(engine, make_account):
    make_account("u2", balance=0, tier="plus")
    with pytest.raises(NoSkipAvailableError):
        engine.use_level_skip("u2", "no_such_level")


def test_unknown_level_keeps_token(engine, skipper):
    with pytest.raises(LevelNotFoundError):
        engine.use_level_skip(skipper, "level_999")
    assert engine.get_inventory(skipper)[0].quantity == 1


def test_completed_level_cannot_be_skipped(engine, skipper):
    engine.complete_level(skipper, "level_5")

    with pytest.raises(AlreadyCompletedError):
        engine.use_level_skip(skipper, "level_5")
    assert engine.get_inventory(skipper)[0].quantity == 1


def test_pause_token_is_not_a_skip(engine, make_account):
    make_account("u3", balance=100)
    engine.purchase("u3", "pause_token_1d", 1)

    with pytest.raises(NoSkipAvailableError):
        engine.use_level_skip("u3", "level_1")


def test_complete_level_credits_rewards_and_streak(engine, store, make_account):
    make_account("u1", balance=0, streak_count=2)

    result, streak = engine.complete_level("u1", "level_1")

    assert (result.xp_awarded, result.coins_awarded) == (20, 10)
    assert result.new_balance == 10
    assert result.new_current_level == 2
    assert streak.status == "incremented"
    assert streak.streak_count == 3
    account = get_account(store, "u1")
    assert (account.cravecoins, account.xp, account.streak_count, account.longest_streak) == (10, 20, 3, 3)
    assert engine.reconcile("u1")["drift"] == 0

    with pytest.raises(AlreadyCompletedError):
        engine.complete_level("u1", "level_1")
    assert get_account(store, "u1").cravecoins == 10


def test_free_tier_level_cap(engine, make_account):
    make_account("free", tier="free")
    make_account("paid", tier="plus")

    with pytest.raises(TierInsufficientError):
        engine.complete_level("free", "level_11")
    result, _ = engine.complete_level("paid", "level_11")
    assert result.level_number == 11


def test_complete_unknown_level(engine, make_account):
    make_account("u1")
    with pytest.raises(LevelNotFoundError):
        engine.complete_level("u1", "level_0")
