from sqlalchemy import update

from crave.core.database import user_accounts
from crave.features.economy.reconciliation import reconcile_account


def test_consistent_account_has_no_drift(engine, make_account, store):
    make_account("u1", balance=200)
    engine.purchase("u1", "pause_token_1d", 2)
    engine.complete_level("u1", "level_1")

    report = reconcile_account(store, "u1")

    assert report["status"] == "ok"
    assert report["expected_balance"] == 200 + 10 - 100
    assert report["current_balance"] == 110
    assert report["drift"] == 0


def test_drift_is_reported_not_fixed(make_account, store, session_factory):
    make_account("u1", balance=100)
    session = session_factory()
    try:
        session.execute(update(user_accounts).where(user_accounts.c.user_id == "u1").values(cravecoins=130))
        session.commit()
    finally:
        session.close()

    report = reconcile_account(store, "u1")

    assert report["status"] == "drift"
    assert report["drift"] == 30
    assert reconcile_account(store, "u1")["current_balance"] == 130
