"""
Ledger Store: transactional access to balances, inventory, the purchase
ledger, pause windows, theme unlocks and level progress.

Discipline:
- Writes go through ``LedgerStore.run(user_id, fn)``. The user's lock is
  held for the whole call, ``fn`` receives a UnitOfWork bound to one
  session/transaction, and the account row is locked FOR UPDATE where the
  dialect supports it. One commit per public operation; any exception rolls
  everything back.
- Transient storage failures (connection loss, serialization conflicts,
  stale compare-and-swap writes) re-run the whole unit with bounded
  exponential backoff, then surface as UnavailableError.
- Reads go through ``LedgerStore.read(user_id, fn)``: no lock, same retry.
- Business-rule errors (AppError) are never retried.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar
from uuid import uuid4

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from crave.core.clock import utc_now
from crave.core.config import settings
from crave.core.database import (
    get_session_factory,
    levels,
    shop_items,
    streak_pauses,
    user_accounts,
    user_inventory,
    user_progress,
    user_purchases,
    user_settings,
    user_themes,
)
from crave.core.errors import AccountNotFoundError, AppError, NotFoundError, UnavailableError
from crave.core.metrics import record_safely, store_retries_total
from crave.features.store.locks import UserLockRegistry
from crave.models.account import UserAccount
from crave.models.inventory import InventoryEntry, InventoryView, PurchaseRecord
from crave.models.pause import PausePeriod
from crave.models.progress import LevelProgress
from crave.models.shop import LevelDefinition
from crave.models.theme import ThemeUnlock

logger = logging.getLogger("crave.store")

T = TypeVar("T")


class StaleWriteError(Exception):
    """A compare-and-swap update matched no row; the unit is re-run."""


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, AppError):
        return False
    if isinstance(exc, (StaleWriteError, OperationalError, InterfaceError, PoolTimeoutError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


def _new_id() -> str:
    return str(uuid4())


def _later(a: Optional[date], b: Optional[date]) -> Optional[date]:
    # None means "never expires" and wins
    if a is None or b is None:
        return None
    return max(a, b)


def _account_from_row(row) -> UserAccount:
    m = row._mapping
    return UserAccount(
        user_id=m["user_id"],
        cravecoins=m["cravecoins"],
        starting_balance=m["starting_balance"],
        subscription_tier=m["subscription_tier"],
        streak_count=m["streak_count"],
        longest_streak=m["longest_streak"],
        current_level=m["current_level"],
        xp=m["xp"],
        primary_craving=m["primary_craving"],
        preferences=m["preferences"] or {},
        created_at=m["created_at"],
    )


def _entry_from_row(row) -> InventoryEntry:
    m = row._mapping
    return InventoryEntry(
        id=m["id"],
        user_id=m["user_id"],
        item_id=m["item_id"],
        quantity=m["quantity"],
        purchased_at=m["purchased_at"],
        expires_at=m["expires_at"],
    )


def _pause_from_row(row) -> PausePeriod:
    m = row._mapping
    return PausePeriod(
        id=m["id"],
        user_id=m["user_id"],
        start_date=m["start_date"],
        end_date=m["end_date"],
        is_active=m["is_active"],
        inventory_entry_id=m["inventory_entry_id"],
    )


def _theme_from_row(row) -> ThemeUnlock:
    m = row._mapping
    return ThemeUnlock(
        id=m["id"],
        user_id=m["user_id"],
        theme_id=m["theme_id"],
        theme_data=m["theme_data"] or {},
        unlocked_at=m["unlocked_at"],
    )


def _progress_from_row(row) -> LevelProgress:
    m = row._mapping
    return LevelProgress(
        id=m["id"],
        user_id=m["user_id"],
        level_id=m["level_id"],
        level_number=m["level_number"],
        completed_at=m["completed_at"],
        skipped=m["skipped"],
        xp_awarded=m["xp_awarded"],
        coins_awarded=m["coins_awarded"],
    )


class UnitOfWork:
    """All reads and writes for one user inside one transaction."""

    def __init__(self, session: Session, user_id: str):
        self.session = session
        self.user_id = user_id
        self.now: datetime = utc_now()

    # Account ---------------------------------------------------------------
    def get_account(self, *, for_update: bool = False) -> Optional[UserAccount]:
        stmt = select(user_accounts).where(user_accounts.c.user_id == self.user_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = self.session.execute(stmt).first()
        return _account_from_row(row) if row else None

    def require_account(self, *, for_update: bool = False) -> UserAccount:
        account = self.get_account(for_update=for_update)
        if account is None:
            raise AccountNotFoundError("User not found", details={"user_id": self.user_id})
        return account

    def insert_account(
        self,
        *,
        balance: int = 0,
        tier: str = "free",
        current_level: int = 1,
        streak_count: int = 0,
        xp: int = 0,
        primary_craving: Optional[str] = None,
        preferences: Optional[Dict[str, Any]] = None,
    ) -> UserAccount:
        self.session.execute(
            insert(user_accounts).values(
                user_id=self.user_id,
                cravecoins=balance,
                starting_balance=balance,
                subscription_tier=tier,
                streak_count=streak_count,
                longest_streak=streak_count,
                current_level=current_level,
                xp=xp,
                primary_craving=primary_craving,
                preferences=preferences or {},
                created_at=self.now,
                updated_at=self.now,
            )
        )
        return self.require_account()

    def debit(self, amount: int, *, expected_balance: int) -> int:
        """Compare-and-swap debit. Returns the new balance."""
        result = self.session.execute(
            update(user_accounts)
            .where(
                and_(
                    user_accounts.c.user_id == self.user_id,
                    user_accounts.c.cravecoins == expected_balance,
                    user_accounts.c.cravecoins >= amount,
                )
            )
            .values(cravecoins=user_accounts.c.cravecoins - amount, updated_at=self.now)
        )
        if result.rowcount != 1:
            raise StaleWriteError(f"balance changed under debit for {self.user_id}")
        return expected_balance - amount

    def credit(self, coins: int, xp: int = 0) -> int:
        self.session.execute(
            update(user_accounts)
            .where(user_accounts.c.user_id == self.user_id)
            .values(
                cravecoins=user_accounts.c.cravecoins + coins,
                xp=user_accounts.c.xp + xp,
                updated_at=self.now,
            )
        )
        return self.require_account().cravecoins

    def advance_level(self, level: int) -> int:
        """Move current_level forward to ``level``; never backward. Returns the resulting level."""
        self.session.execute(
            update(user_accounts)
            .where(and_(user_accounts.c.user_id == self.user_id, user_accounts.c.current_level < level))
            .values(current_level=level, updated_at=self.now)
        )
        return self.require_account().current_level

    def set_streak(self, streak_count: int, longest_streak: int) -> None:
        self.session.execute(
            update(user_accounts)
            .where(user_accounts.c.user_id == self.user_id)
            .values(streak_count=streak_count, longest_streak=longest_streak, updated_at=self.now)
        )

    # Purchase ledger (append-only) -------------------------------------------
    def append_purchase(self, item_id: str, quantity: int, amount_coins: int) -> str:
        purchase_id = _new_id()
        self.session.execute(
            insert(user_purchases).values(
                id=purchase_id,
                user_id=self.user_id,
                item_id=item_id,
                quantity=quantity,
                amount_coins=amount_coins,
                purchased_at=self.now,
            )
        )
        return purchase_id

    def list_purchases(self, limit: int) -> List[PurchaseRecord]:
        rows = self.session.execute(
            select(
                user_purchases,
                shop_items.c.name.label("item_name"),
                shop_items.c.category.label("item_type"),
            )
            .select_from(user_purchases.outerjoin(shop_items, user_purchases.c.item_id == shop_items.c.id))
            .where(user_purchases.c.user_id == self.user_id)
            .order_by(user_purchases.c.purchased_at.desc(), user_purchases.c.id.desc())
            .limit(limit)
        ).fetchall()
        return [
            PurchaseRecord(
                id=row.id,
                user_id=row.user_id,
                item_id=row.item_id,
                quantity=row.quantity,
                amount_coins=row.amount_coins,
                purchased_at=row.purchased_at,
                item_name=row.item_name,
                item_type=row.item_type,
            )
            for row in rows
        ]

    def sum_purchases(self) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(user_purchases.c.amount_coins), 0)).where(
                user_purchases.c.user_id == self.user_id
            )
        ).scalar()
        return int(total or 0)

    # Inventory ---------------------------------------------------------------
    def get_inventory_entry(self, entry_id: str) -> Optional[InventoryEntry]:
        row = self.session.execute(
            select(user_inventory).where(
                and_(user_inventory.c.id == entry_id, user_inventory.c.user_id == self.user_id)
            )
        ).first()
        return _entry_from_row(row) if row else None

    def list_inventory_entries(self, on: date) -> List[InventoryEntry]:
        rows = self.session.execute(
            select(user_inventory)
            .where(user_inventory.c.user_id == self.user_id)
            .order_by(user_inventory.c.purchased_at, user_inventory.c.id)
        ).fetchall()
        entries = [_entry_from_row(row) for row in rows]
        return [entry for entry in entries if not entry.is_expired(on)]

    def list_inventory_views(self, on: date) -> List[InventoryView]:
        rows = self.session.execute(
            select(
                user_inventory,
                shop_items.c.name.label("item_name"),
                shop_items.c.category.label("item_type"),
                shop_items.c.effects.label("effects"),
                shop_items.c.icon.label("icon"),
            )
            .select_from(user_inventory.outerjoin(shop_items, user_inventory.c.item_id == shop_items.c.id))
            .where(and_(user_inventory.c.user_id == self.user_id, user_inventory.c.quantity > 0))
            .order_by(user_inventory.c.purchased_at, user_inventory.c.id)
        ).fetchall()
        views = []
        for row in rows:
            if row.expires_at is not None and row.expires_at < on:
                continue
            views.append(
                InventoryView(
                    id=row.id,
                    item_id=row.item_id,
                    item_name=row.item_name or "Unknown Item",
                    item_type=row.item_type or "unknown",
                    quantity=row.quantity,
                    effects=row.effects or {},
                    icon=row.icon,
                    purchased_at=row.purchased_at,
                    expires_at=row.expires_at,
                )
            )
        return views

    def upsert_inventory(self, item_id: str, quantity: int, expires_at: Optional[date]) -> str:
        existing = self.session.execute(
            select(user_inventory).where(
                and_(user_inventory.c.user_id == self.user_id, user_inventory.c.item_id == item_id)
            )
        ).first()
        if existing:
            result = self.session.execute(
                update(user_inventory)
                .where(
                    and_(
                        user_inventory.c.id == existing.id,
                        user_inventory.c.quantity == existing.quantity,
                    )
                )
                .values(
                    quantity=user_inventory.c.quantity + quantity,
                    expires_at=_later(existing.expires_at, expires_at),
                )
            )
            if result.rowcount != 1:
                raise StaleWriteError(f"inventory {existing.id} changed under upsert")
            return existing.id

        entry_id = _new_id()
        self.session.execute(
            insert(user_inventory).values(
                id=entry_id,
                user_id=self.user_id,
                item_id=item_id,
                quantity=quantity,
                purchased_at=self.now,
                expires_at=expires_at,
            )
        )
        return entry_id

    def consume_inventory(self, entry_id: str) -> int:
        """Take one unit from an entry. Deletes the row at zero. Returns the remaining quantity."""
        current = self.get_inventory_entry(entry_id)
        if current is None or current.quantity < 1:
            raise NotFoundError("Token not found in inventory", details={"inventory_id": entry_id})

        if current.quantity == 1:
            result = self.session.execute(
                delete(user_inventory).where(
                    and_(user_inventory.c.id == entry_id, user_inventory.c.quantity == 1)
                )
            )
        else:
            result = self.session.execute(
                update(user_inventory)
                .where(
                    and_(
                        user_inventory.c.id == entry_id,
                        user_inventory.c.quantity == current.quantity,
                    )
                )
                .values(quantity=user_inventory.c.quantity - 1)
            )
        if result.rowcount != 1:
            raise StaleWriteError(f"inventory {entry_id} changed under consume")
        return current.quantity - 1

    def purge_expired_inventory(self, on: date) -> int:
        result = self.session.execute(
            delete(user_inventory).where(
                and_(
                    user_inventory.c.user_id == self.user_id,
                    user_inventory.c.expires_at.is_not(None),
                    user_inventory.c.expires_at < on,
                )
            )
        )
        return result.rowcount or 0

    # Pauses ------------------------------------------------------------------
    def find_active_pause(self, on: date) -> Optional[PausePeriod]:
        row = self.session.execute(
            select(streak_pauses)
            .where(
                and_(
                    streak_pauses.c.user_id == self.user_id,
                    streak_pauses.c.is_active.is_(True),
                    streak_pauses.c.start_date <= on,
                    streak_pauses.c.end_date >= on,
                )
            )
            .order_by(streak_pauses.c.end_date.desc())
            .limit(1)
        ).first()
        return _pause_from_row(row) if row else None

    def insert_pause(self, start: date, end: date, inventory_entry_id: Optional[str]) -> PausePeriod:
        pause_id = _new_id()
        self.session.execute(
            insert(streak_pauses).values(
                id=pause_id,
                user_id=self.user_id,
                inventory_entry_id=inventory_entry_id,
                start_date=start,
                end_date=end,
                is_active=True,
                created_at=self.now,
            )
        )
        return PausePeriod(
            id=pause_id,
            user_id=self.user_id,
            start_date=start,
            end_date=end,
            is_active=True,
            inventory_entry_id=inventory_entry_id,
        )

    def deactivate_ended_pauses(self, on: date) -> int:
        result = self.session.execute(
            update(streak_pauses)
            .where(
                and_(
                    streak_pauses.c.user_id == self.user_id,
                    streak_pauses.c.is_active.is_(True),
                    streak_pauses.c.end_date < on,
                )
            )
            .values(is_active=False)
        )
        return result.rowcount or 0

    # Themes ------------------------------------------------------------------
    def get_theme_unlock(self, theme_id: str) -> Optional[ThemeUnlock]:
        row = self.session.execute(
            select(user_themes).where(
                and_(user_themes.c.user_id == self.user_id, user_themes.c.theme_id == theme_id)
            )
        ).first()
        return _theme_from_row(row) if row else None

    def insert_theme_unlock(self, theme_id: str, theme_data: Dict[str, Any]) -> ThemeUnlock:
        unlock_id = _new_id()
        self.session.execute(
            insert(user_themes).values(
                id=unlock_id,
                user_id=self.user_id,
                theme_id=theme_id,
                theme_data=theme_data,
                unlocked_at=self.now,
            )
        )
        return ThemeUnlock(
            id=unlock_id,
            user_id=self.user_id,
            theme_id=theme_id,
            theme_data=theme_data,
            unlocked_at=self.now,
        )

    def list_theme_unlocks(self) -> List[ThemeUnlock]:
        rows = self.session.execute(
            select(user_themes)
            .where(user_themes.c.user_id == self.user_id)
            .order_by(user_themes.c.unlocked_at.desc(), user_themes.c.theme_id)
        ).fetchall()
        return [_theme_from_row(row) for row in rows]

    def set_active_theme(self, theme_id: str, personalization: Dict[str, Any]) -> None:
        existing = self.session.execute(
            select(user_settings.c.user_id).where(user_settings.c.user_id == self.user_id)
        ).first()
        if existing:
            self.session.execute(
                update(user_settings)
                .where(user_settings.c.user_id == self.user_id)
                .values(active_theme_id=theme_id, theme_personalization=personalization, updated_at=self.now)
            )
        else:
            self.session.execute(
                insert(user_settings).values(
                    user_id=self.user_id,
                    active_theme_id=theme_id,
                    theme_personalization=personalization,
                    updated_at=self.now,
                )
            )

    def get_active_theme(self) -> Optional[Dict[str, Any]]:
        row = self.session.execute(
            select(user_settings).where(user_settings.c.user_id == self.user_id)
        ).first()
        if not row or not row.active_theme_id:
            return None
        return {"theme_id": row.active_theme_id, "personalization": row.theme_personalization or {}}

    # Level progress ----------------------------------------------------------
    def get_progress(self, level_id: str) -> Optional[LevelProgress]:
        row = self.session.execute(
            select(user_progress).where(
                and_(user_progress.c.user_id == self.user_id, user_progress.c.level_id == level_id)
            )
        ).first()
        return _progress_from_row(row) if row else None

    def insert_progress(
        self,
        level: LevelDefinition,
        *,
        skipped: bool,
        xp_awarded: int = 0,
        coins_awarded: int = 0,
    ) -> LevelProgress:
        progress_id = _new_id()
        self.session.execute(
            insert(user_progress).values(
                id=progress_id,
                user_id=self.user_id,
                level_id=level.id,
                level_number=level.level_number,
                completed_at=self.now,
                skipped=skipped,
                xp_awarded=xp_awarded,
                coins_awarded=coins_awarded,
            )
        )
        return LevelProgress(
            id=progress_id,
            user_id=self.user_id,
            level_id=level.id,
            level_number=level.level_number,
            completed_at=self.now,
            skipped=skipped,
            xp_awarded=xp_awarded,
            coins_awarded=coins_awarded,
        )

    def sum_coins_awarded(self) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(user_progress.c.coins_awarded), 0)).where(
                user_progress.c.user_id == self.user_id
            )
        ).scalar()
        return int(total or 0)


class LedgerStore:
    """Owns the session factory, the per-user lock registry and the retry policy."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        *,
        locks: Optional[UserLockRegistry] = None,
        lock_timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self.locks = locks or UserLockRegistry()
        self.lock_timeout = settings.USER_LOCK_TIMEOUT_SECONDS if lock_timeout is None else lock_timeout
        self.retry_attempts = max(1, settings.STORE_RETRY_ATTEMPTS if retry_attempts is None else retry_attempts)
        self.retry_backoff = settings.STORE_RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff
        self._sleep = sleep

    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    @contextmanager
    def transaction(self, user_id: str) -> Iterator[UnitOfWork]:
        """One attempt: a session, the account row locked, commit or roll back."""
        session = self.session_factory()
        try:
            uow = UnitOfWork(session, user_id)
            uow.get_account(for_update=True)
            yield uow
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def run(self, user_id: str, fn: Callable[[UnitOfWork], T], *, operation: str = "write") -> T:
        """Run ``fn`` as one atomic unit behind ``user_id``'s serialization boundary."""
        with self.locks.hold(user_id, self.lock_timeout):
            def attempt() -> T:
                with self.transaction(user_id) as uow:
                    return fn(uow)

            return self._with_retries(attempt, operation)

    def read(self, user_id: str, fn: Callable[[UnitOfWork], T], *, operation: str = "read") -> T:
        """Run a read-only ``fn`` without the user lock. Retried on transient errors."""
        return self.query(lambda session: fn(UnitOfWork(session, user_id)), operation=operation)

    def query(self, fn: Callable[[Session], T], *, operation: str = "query") -> T:
        """Read across accounts on a bare session. Nothing is locked or committed."""
        def attempt() -> T:
            session = self.session_factory()
            try:
                return fn(session)
            finally:
                session.rollback()
                session.close()

        return self._with_retries(attempt, operation)

    def _with_retries(self, attempt: Callable[[], T], operation: str) -> T:
        for number in range(1, self.retry_attempts + 1):
            try:
                return attempt()
            except Exception as exc:
                if not is_transient(exc):
                    raise
                record_safely(store_retries_total, {"path": operation})
                if number >= self.retry_attempts:
                    logger.error(
                        "store.retries_exhausted",
                        extra={"operation": operation, "attempt": number, "error_code": "unavailable"},
                    )
                    raise UnavailableError(
                        "Storage is temporarily unavailable; nothing was applied",
                        details={"operation": operation},
                    ) from exc
                delay = self.retry_backoff * (2 ** (number - 1))
                logger.warning(
                    f"store.retry {operation} attempt={number} delay={delay:.3f}s: {exc.__class__.__name__}"
                )
                self._sleep(delay)
        raise UnavailableError("Storage is temporarily unavailable", details={"operation": operation})
