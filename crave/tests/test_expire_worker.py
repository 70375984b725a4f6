from datetime import date

from sqlalchemy import func, select

from crave.core.database import streak_pauses, user_inventory
from crave.workers.expire_inventory import expire_inventory


def _count(session_factory, stmt):
    session = session_factory()
    try:
        return session.execute(stmt).scalar()
    finally:
        session.close()


def test_worker_purges_expired_and_closes_pauses(engine, make_account, session_factory):
    make_account("u1", balance=500)
    make_account("u2", balance=500)
    engine.purchase("u1", "pause_token_1d", 2)
    engine.purchase("u2", "pause_token_3d", 1)
    [entry] = engine.get_inventory("u1")
    engine.activate_pause("u1", entry.id, 1)

    report = expire_inventory(today=date(2024, 6, 1), session_factory=session_factory)

    assert report["inventory_deleted"] == 2
    assert report["pauses_deactivated"] == 1
    assert _count(session_factory, select(func.count()).select_from(user_inventory)) == 0
    active = select(func.count()).select_from(streak_pauses).where(streak_pauses.c.is_active.is_(True))
    assert _count(session_factory, active) == 0

    again = expire_inventory(today=date(2024, 6, 1), session_factory=session_factory)
    assert again["inventory_deleted"] == 0
    assert again["pauses_deactivated"] == 0


def test_dry_run_changes_nothing(engine, make_account, session_factory):
    make_account("u1", balance=500)
    engine.purchase("u1", "pause_token_1d", 1)

    report = expire_inventory(today=date(2024, 6, 1), dry_run=True, session_factory=session_factory)

    assert report["expired_candidates"] == 1
    assert report["inventory_deleted"] == 0
    assert _count(session_factory, select(func.count()).select_from(user_inventory)) == 1


def test_unexpired_rows_survive(engine, make_account, session_factory):
    make_account("u1", balance=500, tier="plus")
    engine.purchase("u1", "level_skip", 1)
    engine.purchase("u1", "pause_token_1d", 1)

    report = expire_inventory(today=date(2024, 2, 1), session_factory=session_factory)

    assert report["inventory_deleted"] == 0
    assert _count(session_factory, select(func.count()).select_from(user_inventory)) == 2
