from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from crave.core import clock
from crave.core.clock import TodayProvider
from crave.core.errors import BusyError, UnavailableError
from crave.core.logging import log_event
from crave.core.metrics import record_safely, streak_decisions_total
from crave.features.store.ledger_store import LedgerStore, UnitOfWork
from crave.models.pause import PauseWindow
from crave.models.streak import StreakOutcome

logger = logging.getLogger("crave.streaks")


class StreakController:
    """Streak counter with pause protection.

    Completions always count. A miss resets the streak unless a pause covers
    the reward-zone day. The pause check fails open: if storage cannot answer,
    the streak is left alone and the miss is reported as ``deferred``.
    """

    def __init__(self, store: LedgerStore, today_provider: Optional[TodayProvider] = None):
        self.store = store
        self._today = today_provider or clock.today

    def today(self):
        return self._today()

    def record_completion(self, user_id: str, uow: Optional[UnitOfWork] = None) -> StreakOutcome:
        """Add one to the streak. Joins ``uow`` when called inside another unit of work."""
        if uow is not None:
            return self._increment(uow)

        outcome = self.store.run(user_id, self._increment, operation="streak_completion")
        self.emit(outcome)
        return outcome

    def record_miss(self, user_id: str) -> StreakOutcome:
        day = self.today()

        def work(uow: UnitOfWork) -> StreakOutcome:
            account = uow.require_account(for_update=True)
            uow.deactivate_ended_pauses(day)
            pause = uow.find_active_pause(day)
            if pause is not None:
                return StreakOutcome(
                    user_id=user_id,
                    status="protected",
                    streak_count=account.streak_count,
                    pause_end_date=pause.end_date,
                )
            uow.set_streak(0, account.longest_streak)
            return StreakOutcome(user_id=user_id, status="reset", streak_count=0)

        try:
            outcome = self.store.run(user_id, work, operation="streak_miss")
        except (UnavailableError, BusyError) as e:
            # Fail open: never reset a streak we could not check
            outcome = StreakOutcome(user_id=user_id, status="deferred", streak_count=None)
            log_event(
                "warning",
                "streak.deferred",
                user_id=user_id,
                event_type="streak_miss",
                error_code=e.code,
                extra={"day": day.isoformat()},
            )
        self.emit(outcome)
        return outcome

    def get_state(self, user_id: str) -> Dict[str, Any]:
        day = self.today()

        def work(uow: UnitOfWork) -> Dict[str, Any]:
            account = uow.require_account()
            pause = uow.find_active_pause(day)
            active = None
            if pause is not None:
                active = PauseWindow(
                    id=pause.id,
                    start_date=pause.start_date,
                    end_date=pause.end_date,
                    days=pause.days,
                    days_remaining=clock.days_remaining(pause.end_date, day),
                )
            return {
                "user_id": user_id,
                "streak_count": account.streak_count,
                "longest_streak": account.longest_streak,
                "active_pause": active,
                "protected_today": active is not None,
                "day": day,
            }

        return self.store.read(user_id, work, operation="streak_state")

    def _increment(self, uow: UnitOfWork) -> StreakOutcome:
        account = uow.require_account(for_update=True)
        streak = account.streak_count + 1
        uow.set_streak(streak, max(account.longest_streak, streak))
        return StreakOutcome(user_id=account.user_id, status="incremented", streak_count=streak)

    def emit(self, outcome: StreakOutcome) -> None:
        record_safely(streak_decisions_total, {"status": outcome.status})
        if outcome.status == "deferred":
            return
        try:
            log_event(
                "info",
                "streak.miss" if outcome.status != "incremented" else "streak.completion",
                user_id=outcome.user_id,
                event_type=outcome.status,
                extra={"streak_count": outcome.streak_count},
            )
        except Exception:
            logger.debug("streak.log_failed", exc_info=True)
