"""Maintenance job: purge expired inventory and close ended pause windows."""
from datetime import date
import logging
from typing import Callable, Optional

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.orm import Session

from crave.core import clock
from crave.core.database import get_session_factory, streak_pauses, user_inventory

logger = logging.getLogger("crave.workers.expire_inventory")


def expire_inventory(
    *,
    today: Optional[date] = None,
    dry_run: bool = False,
    session_factory: Optional[Callable[[], Session]] = None,
) -> dict:
    """
    Delete inventory rows whose expiry date has passed and deactivate pauses
    whose window ended before ``today``. Safe to re-run.
    """
    day = today or clock.today()
    factory = session_factory or get_session_factory()

    expired = and_(user_inventory.c.expires_at.is_not(None), user_inventory.c.expires_at < day)
    ended = and_(streak_pauses.c.is_active.is_(True), streak_pauses.c.end_date < day)

    session = factory()
    try:
        expired_count = session.execute(
            select(func.count()).select_from(user_inventory).where(expired)
        ).scalar() or 0
        ended_count = session.execute(
            select(func.count()).select_from(streak_pauses).where(ended)
        ).scalar() or 0

        deleted = 0
        deactivated = 0
        if not dry_run:
            if expired_count:
                deleted = session.execute(delete(user_inventory).where(expired)).rowcount or 0
            if ended_count:
                deactivated = session.execute(
                    update(streak_pauses).where(ended).values(is_active=False)
                ).rowcount or 0
            session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    report = {
        "day": day.isoformat(),
        "dry_run": dry_run,
        "expired_candidates": expired_count,
        "ended_pause_candidates": ended_count,
        "inventory_deleted": deleted,
        "pauses_deactivated": deactivated,
    }
    logger.info("[expire] inventory and pause maintenance", extra=report)
    return report


if __name__ == "__main__":
    result = expire_inventory()
    print(result)
