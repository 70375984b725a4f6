"""
crave/features/economy/service.py

Economy engine: every balance or inventory mutation in the reward economy.

Handles:
- Purchases (debit, ledger row, item effect) as one atomic unit
- Pause-token activation and lookup
- Level skips and earned level completions
- Theme application
- Inventory, purchase history and theme listings

Each write runs through LedgerStore.run, so it holds the user's lock and
commits once. Preconditions raise AppError subclasses with stable codes.
Metrics and structured logs are emitted after commit only.
"""

import logging
from contextlib import contextmanager
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from crave.core import clock
from crave.core.clock import TodayProvider
from crave.core.config import settings
from crave.core.errors import (
    AlreadyCompletedError,
    AppError,
    DurationMismatchError,
    InsufficientFundsError,
    ItemUnavailableError,
    LevelNotFoundError,
    NoSkipAvailableError,
    NotFoundError,
    PauseAlreadyActiveError,
    ThemeNotUnlockedError,
    TierInsufficientError,
    ValidationError,
)
from crave.core.logging import log_event
from crave.core.metrics import coins_awarded_total, coins_spent_total, economy_operations_total, record_safely
from crave.features.catalog.service import CatalogService
from crave.features.economy.reconciliation import reconcile_account
from crave.features.economy.reward_metrics import collect_reward_metrics
from crave.features.personalization.generator import generate_theme_personalization
from crave.features.store.ledger_store import LedgerStore, UnitOfWork
from crave.features.streaks.service import StreakController
from crave.models.account import ProfileSnapshot, UserAccount, tier_allows
from crave.models.inventory import InventoryEntry, InventoryView, PurchaseRecord, PurchaseResult
from crave.models.pause import PauseWindow
from crave.models.progress import LevelCompletionResult, LevelSkipResult
from crave.models.shop import ShopItem
from crave.models.streak import StreakOutcome
from crave.models.theme import ThemeUnlock

logger = logging.getLogger("crave.economy")

DEFAULT_HISTORY_LIMIT = 30
MAX_HISTORY_LIMIT = 100


def _require_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required", details={"field": name})
    return value.strip()


def _require_positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{name} must be a positive integer", details={"field": name, "value": value})
    return value


def clamp_history_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_HISTORY_LIMIT
    return max(1, min(MAX_HISTORY_LIMIT, int(limit)))


class EconomyEngine:
    def __init__(
        self,
        store: LedgerStore,
        catalog: CatalogService,
        streaks: Optional[StreakController] = None,
        *,
        today_provider: Optional[TodayProvider] = None,
        free_tier_max_level: Optional[int] = None,
    ):
        self.store = store
        self.catalog = catalog
        self._today = today_provider or clock.today
        self.streaks = streaks or StreakController(store, today_provider=self._today)
        self.free_tier_max_level = (
            settings.FREE_TIER_MAX_LEVEL if free_tier_max_level is None else free_tier_max_level
        )

    def today(self) -> date:
        return self._today()

    # Purchase ---------------------------------------------------------------
    def purchase(self, user_id: str, item_id: str, quantity: int = 1) -> PurchaseResult:
        """
        Spend coins on a shop item.

        Preconditions, in order: item available, account exists, tier
        sufficient, balance covers price x quantity. On success the debit,
        the ledger row and the item's effect commit together.
        """
        user_id = _require_text("user_id", user_id)
        item_id = _require_text("item_id", item_id)
        quantity = _require_positive_int("quantity", quantity)

        with self._observed("purchase"):
            item = self.catalog.get_item(item_id)
            if item is None:
                raise ItemUnavailableError("Item not found or unavailable", details={"item_id": item_id})

            day = self.today()

            def work(uow: UnitOfWork) -> PurchaseResult:
                account = uow.require_account(for_update=True)
                if not tier_allows(account.subscription_tier, item.tier_required):
                    raise TierInsufficientError(
                        f"This item requires the {item.tier_required} tier",
                        details={"required_tier": item.tier_required, "tier": account.subscription_tier},
                    )
                total = item.price_coins * quantity
                if account.cravecoins < total:
                    raise InsufficientFundsError(
                        "Insufficient CraveCoins",
                        details={"required": total, "balance": account.cravecoins},
                    )

                uow.purge_expired_inventory(day)
                new_balance = uow.debit(total, expected_balance=account.cravecoins)
                purchase_id = uow.append_purchase(item.id, quantity, total)
                affected = self._apply_effect(uow, account, item, quantity, day)
                return PurchaseResult(
                    purchase_id=purchase_id,
                    item_id=item.id,
                    quantity=quantity,
                    amount_coins=total,
                    new_balance=new_balance,
                    affected_ids=affected,
                )

            result = self.store.run(user_id, work, operation="purchase")

        record_safely(coins_spent_total, amount=result.amount_coins)
        self._succeeded(
            "purchase",
            "economy.purchase",
            user_id,
            item_id=item.id,
            quantity=quantity,
            amount_coins=result.amount_coins,
            new_balance=result.new_balance,
        )
        return result

    def _apply_effect(
        self,
        uow: UnitOfWork,
        account: UserAccount,
        item: ShopItem,
        quantity: int,
        day: date,
    ) -> List[str]:
        if item.grants_inventory:
            expires_at = None
            if item.expires_after_days:
                expires_at = day + timedelta(days=item.expires_after_days)
            return [uow.upsert_inventory(item.id, quantity, expires_at)]

        if item.grants_theme:
            existing = uow.get_theme_unlock(item.theme_id)
            if existing is not None:
                return [existing.id]
            theme_data = generate_theme_personalization(ProfileSnapshot.from_account(account), item.theme_id)
            unlock = uow.insert_theme_unlock(item.theme_id, theme_data.model_dump(exclude_none=True))
            return [unlock.id]

        logger.warning(
            f"economy.no_effect item={item.id} category={item.category} effect={item.effect_kind}",
            extra={"user_id": account.user_id},
        )
        return []

    # Pauses -----------------------------------------------------------------
    def activate_pause(self, user_id: str, inventory_id: str, days: int) -> PauseWindow:
        user_id = _require_text("user_id", user_id)
        inventory_id = _require_text("inventory_id", inventory_id)
        days = _require_positive_int("days", days)

        with self._observed("activate_pause"):
            day = self.today()

            def work(uow: UnitOfWork) -> PauseWindow:
                uow.require_account(for_update=True)
                uow.deactivate_ended_pauses(day)

                entry = uow.get_inventory_entry(inventory_id)
                if entry is None or entry.is_expired(day):
                    raise NotFoundError("Token not found in inventory", details={"inventory_id": inventory_id})

                item = self.catalog.get_item(entry.item_id, include_inactive=True)
                token_days = item.pause_days if item else None
                if token_days != days:
                    raise DurationMismatchError(
                        "Token duration does not match the requested days",
                        details={"token_days": token_days, "days": days},
                    )

                active = uow.find_active_pause(day)
                if active is not None:
                    raise PauseAlreadyActiveError(
                        "You already have an active pause period",
                        details={"active_until": active.end_date.isoformat()},
                    )

                pause = uow.insert_pause(day, clock.window_end(day, days), entry.id)
                uow.consume_inventory(entry.id)
                return PauseWindow(
                    id=pause.id,
                    start_date=pause.start_date,
                    end_date=pause.end_date,
                    days=pause.days,
                    days_remaining=clock.days_remaining(pause.end_date, day),
                )

            window = self.store.run(user_id, work, operation="activate_pause")

        self._succeeded(
            "activate_pause",
            "economy.pause_activated",
            user_id,
            inventory_id=inventory_id,
            start_date=window.start_date.isoformat(),
            end_date=window.end_date.isoformat(),
        )
        return window

    def get_active_pause(self, user_id: str) -> Optional[PauseWindow]:
        user_id = _require_text("user_id", user_id)
        day = self.today()

        def work(uow: UnitOfWork) -> Optional[PauseWindow]:
            uow.require_account()
            pause = uow.find_active_pause(day)
            if pause is None:
                return None
            return PauseWindow(
                id=pause.id,
                start_date=pause.start_date,
                end_date=pause.end_date,
                days=pause.days,
                days_remaining=clock.days_remaining(pause.end_date, day),
            )

        return self.store.read(user_id, work, operation="get_active_pause")

    # Levels -----------------------------------------------------------------
    def use_level_skip(self, user_id: str, level_id: str) -> LevelSkipResult:
        """Consume one level-skip token to mark ``level_id`` complete without rewards."""
        user_id = _require_text("user_id", user_id)
        level_id = _require_text("level_id", level_id)

        with self._observed("level_skip"):
            day = self.today()

            def work(uow: UnitOfWork) -> LevelSkipResult:
                uow.require_account(for_update=True)
                entry = self._pick_skip_entry(uow, day)
                if entry is None:
                    raise NoSkipAvailableError("No level skip available in inventory")

                level = self.catalog.get_level(level_id)
                if level is None:
                    raise LevelNotFoundError("Level not found", details={"level_id": level_id})

                if uow.get_progress(level.id) is not None:
                    raise AlreadyCompletedError(
                        "Level already completed", details={"level_number": level.level_number}
                    )

                uow.insert_progress(level, skipped=True)
                new_level = uow.advance_level(level.level_number + 1)
                remaining = uow.consume_inventory(entry.id)
                return LevelSkipResult(
                    level_id=level.id,
                    level_number=level.level_number,
                    new_current_level=new_level,
                    inventory_entry_id=entry.id,
                    remaining_quantity=remaining,
                )

            result = self.store.run(user_id, work, operation="level_skip")

        self._succeeded(
            "level_skip",
            "economy.level_skipped",
            user_id,
            level_number=result.level_number,
            new_current_level=result.new_current_level,
        )
        return result

    def _pick_skip_entry(self, uow: UnitOfWork, day: date) -> Optional[InventoryEntry]:
        candidates = []
        for entry in uow.list_inventory_entries(day):
            item = self.catalog.get_item(entry.item_id, include_inactive=True)
            if item is not None and item.is_skip_token:
                candidates.append(entry)
        if not candidates:
            return None
        # Earliest-expiring first, then oldest
        return min(
            candidates,
            key=lambda e: (e.expires_at is None, e.expires_at or date.max, e.purchased_at is None, e.purchased_at, e.id),
        )

    def complete_level(self, user_id: str, level_id: str) -> Tuple[LevelCompletionResult, StreakOutcome]:
        """Earn a level: credit its XP and coins, advance, and extend the streak."""
        user_id = _require_text("user_id", user_id)
        level_id = _require_text("level_id", level_id)

        with self._observed("complete_level"):
            level = self.catalog.get_level(level_id)
            if level is None:
                raise LevelNotFoundError("Level not found", details={"level_id": level_id})

            def work(uow: UnitOfWork) -> Tuple[LevelCompletionResult, StreakOutcome]:
                account = uow.require_account(for_update=True)
                if account.subscription_tier == "free" and level.level_number > self.free_tier_max_level:
                    raise TierInsufficientError(
                        f"Free users can only complete levels 1-{self.free_tier_max_level}. Upgrade to continue.",
                        details={"level_number": level.level_number, "max_level": self.free_tier_max_level},
                    )
                if uow.get_progress(level.id) is not None:
                    raise AlreadyCompletedError(
                        "Level already completed", details={"level_number": level.level_number}
                    )

                progress = uow.insert_progress(
                    level,
                    skipped=False,
                    xp_awarded=level.xp_reward,
                    coins_awarded=level.coin_reward,
                )
                new_balance = uow.credit(level.coin_reward, level.xp_reward)
                new_level = uow.advance_level(level.level_number + 1)
                streak = self.streaks.record_completion(user_id, uow=uow)
                result = LevelCompletionResult(
                    level_id=level.id,
                    level_number=level.level_number,
                    xp_awarded=level.xp_reward,
                    coins_awarded=level.coin_reward,
                    new_current_level=new_level,
                    new_balance=new_balance,
                    streak_count=streak.streak_count or 0,
                    completed_at=progress.completed_at,
                )
                return result, streak

            result, streak = self.store.run(user_id, work, operation="complete_level")

        self.streaks.emit(streak)
        record_safely(coins_awarded_total, amount=result.coins_awarded)
        self._succeeded(
            "complete_level",
            "economy.level_completed",
            user_id,
            level_number=result.level_number,
            coins_awarded=result.coins_awarded,
            xp_awarded=result.xp_awarded,
        )
        return result, streak

    # Themes -----------------------------------------------------------------
    def apply_theme(
        self,
        user_id: str,
        theme_id: str,
        personalization: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        user_id = _require_text("user_id", user_id)
        theme_id = _require_text("theme_id", theme_id)
        if personalization is not None and not isinstance(personalization, dict):
            raise ValidationError("personalization must be an object", details={"field": "personalization"})

        with self._observed("apply_theme"):
            def work(uow: UnitOfWork) -> Dict[str, Any]:
                uow.require_account(for_update=True)
                unlock = uow.get_theme_unlock(theme_id)
                if unlock is None:
                    raise ThemeNotUnlockedError("Theme not unlocked", details={"theme_id": theme_id})
                payload = personalization if personalization is not None else dict(unlock.theme_data)
                uow.set_active_theme(theme_id, payload)
                return payload

            payload = self.store.run(user_id, work, operation="apply_theme")

        self._succeeded("apply_theme", "economy.theme_applied", user_id, theme_id=theme_id)
        return payload

    def list_themes(self, user_id: str) -> List[ThemeUnlock]:
        user_id = _require_text("user_id", user_id)

        def work(uow: UnitOfWork) -> List[ThemeUnlock]:
            uow.require_account()
            return uow.list_theme_unlocks()

        return self.store.read(user_id, work, operation="list_themes")

    def get_active_theme(self, user_id: str) -> Optional[Dict[str, Any]]:
        user_id = _require_text("user_id", user_id)
        return self.store.read(user_id, lambda uow: uow.get_active_theme(), operation="get_active_theme")

    # Queries ----------------------------------------------------------------
    def get_inventory(self, user_id: str) -> List[InventoryView]:
        user_id = _require_text("user_id", user_id)
        day = self.today()

        def work(uow: UnitOfWork) -> List[InventoryView]:
            uow.require_account()
            return uow.list_inventory_views(day)

        return self.store.read(user_id, work, operation="get_inventory")

    def get_purchase_history(self, user_id: str, limit: Optional[int] = DEFAULT_HISTORY_LIMIT) -> List[PurchaseRecord]:
        user_id = _require_text("user_id", user_id)
        bounded = clamp_history_limit(limit)

        def work(uow: UnitOfWork) -> List[PurchaseRecord]:
            uow.require_account()
            return uow.list_purchases(bounded)

        return self.store.read(user_id, work, operation="get_purchase_history")

    def list_items(self) -> List[ShopItem]:
        return self.catalog.list_items()

    def reconcile(self, user_id: str) -> Dict[str, Any]:
        return reconcile_account(self.store, _require_text("user_id", user_id))

    def reward_metrics(self) -> Dict[str, Any]:
        return collect_reward_metrics(self.store, today=self.today())

    # Telemetry --------------------------------------------------------------
    @contextmanager
    def _observed(self, operation: str):
        try:
            yield
        except AppError as e:
            record_safely(economy_operations_total, {"operation": operation, "outcome": e.code})
            raise

    def _succeeded(self, operation: str, event: str, user_id: str, **extra: Any) -> None:
        record_safely(economy_operations_total, {"operation": operation, "outcome": "ok"})
        try:
            log_event("info", event, user_id=user_id, operation=operation, extra=extra)
        except Exception:
            logger.debug("economy.log_failed", exc_info=True)


_engine: Optional[EconomyEngine] = None


def get_economy_engine() -> EconomyEngine:
    """Process-wide engine for the API. Tests override this dependency."""
    global _engine
    if _engine is None:
        store = LedgerStore()
        _engine = EconomyEngine(store, CatalogService(), StreakController(store))
    return _engine
