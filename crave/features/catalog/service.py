"""
crave/features/catalog/service.py

Catalog service: shop items and level definitions.

Handles:
- Catalog seeding (default items, levels 1..30)
- Cached lookups with a short TTL (misses are never cached)
- Listing active items by price
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import insert, select
from sqlalchemy.orm import Session

from crave.core.config import settings
from crave.core.database import get_session_factory, levels, shop_items
from crave.models.shop import LevelDefinition, ShopItem

logger = logging.getLogger("crave.catalog")


# Default catalog
DEFAULT_SHOP_ITEMS = [
    {
        "id": "pause_token_1d",
        "name": "Streak Pause (1 day)",
        "category": "consumable",
        "price_coins": 50,
        "tier_required": "free",
        "effects": {"pause_days": 1},
        "expires_after_days": 90,
        "description": "Protect your streak for one day.",
        "icon": "⏸️",
    },
    {
        "id": "pause_token_3d",
        "name": "Streak Pause (3 days)",
        "category": "consumable",
        "price_coins": 120,
        "tier_required": "free",
        "effects": {"pause_days": 3},
        "expires_after_days": 90,
        "description": "Protect your streak for three days in a row.",
        "icon": "🛡️",
    },
    {
        "id": "level_skip",
        "name": "Level Skip",
        "category": "utility",
        "price_coins": 100,
        "tier_required": "plus",
        "effects": {"level_skip": 1},
        "expires_after_days": None,
        "description": "Skip one level without earning its rewards.",
        "icon": "⏭️",
    },
    {
        "id": "theme_premium",
        "name": "Premium Theme",
        "category": "cosmetic",
        "price_coins": 75,
        "tier_required": "free",
        "effects": {"theme": "premium"},
        "expires_after_days": None,
        "description": "A theme personalized to your journey.",
        "icon": "🎨",
    },
]

LEVEL_COUNT = 30


def default_levels() -> List[Dict[str, Any]]:
    return [
        {
            "id": f"level_{n}",
            "level_number": n,
            "title": f"Level {n}",
            "craving_type": None,
            "xp_reward": 20,
            "coin_reward": 10,
        }
        for n in range(1, LEVEL_COUNT + 1)
    ]


def _item_from_row(row) -> ShopItem:
    return ShopItem(
        id=row.id,
        name=row.name,
        category=row.category,
        price_coins=row.price_coins,
        tier_required=row.tier_required,
        effects=row.effects or {},
        expires_after_days=row.expires_after_days,
        description=row.description,
        icon=row.icon,
        active=bool(row.active),
    )


def _sellable_item(row) -> Optional[ShopItem]:
    item = _item_from_row(row)
    if item.effect_mismatch:
        logger.warning(
            f"catalog.item_rejected item={item.id} category={item.category} effect={item.effect_kind}"
        )
        return None
    return item


def _level_from_row(row) -> LevelDefinition:
    return LevelDefinition(
        id=row.id,
        level_number=row.level_number,
        title=row.title,
        craving_type=row.craving_type,
        xp_reward=row.xp_reward,
        coin_reward=row.coin_reward,
    )


def seed_catalog(session_factory: Optional[Callable[[], Session]] = None) -> Dict[str, int]:
    """
    Seed default shop items and levels (idempotent).

    Existing rows are left untouched. Returns the number of rows inserted.
    """
    factory = session_factory or get_session_factory()
    now = datetime.now(timezone.utc)
    inserted = {"items": 0, "levels": 0}

    session = factory()
    try:
        for item in DEFAULT_SHOP_ITEMS:
            existing = session.execute(select(shop_items.c.id).where(shop_items.c.id == item["id"])).first()
            if not existing:
                session.execute(insert(shop_items).values(active=True, created_at=now, **item))
                inserted["items"] += 1

        for level in default_levels():
            existing = session.execute(
                select(levels.c.id).where(levels.c.level_number == level["level_number"])
            ).first()
            if not existing:
                session.execute(insert(levels).values(**level))
                inserted["levels"] += 1

        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted["items"] or inserted["levels"]:
        logger.info(f"catalog.seeded items={inserted['items']} levels={inserted['levels']}")
    return inserted


class CatalogService:
    """Read-only catalog access with an in-process TTL cache."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self.ttl_seconds = settings.CATALOG_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._cache: Dict[Tuple[str, str], Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    def _cached(self, key: Tuple[str, str], loader: Callable[[Session], Any]) -> Any:
        now = self._clock()
        with self._lock:
            hit = self._cache.get(key)
            if hit is not None and hit[0] > now:
                return hit[1]

        session = self.session_factory()
        try:
            value = loader(session)
        finally:
            session.close()

        if value is not None and self.ttl_seconds > 0:
            with self._lock:
                self._cache[key] = (now + self.ttl_seconds, value)
        return value

    def get_item(self, item_id: str, *, include_inactive: bool = False) -> Optional[ShopItem]:
        """
        Item by id, or None. Items whose effect their category cannot deliver
        are treated as missing.

        Inactive items are hidden from the shop but still describe tokens
        already bought, so ``include_inactive`` returns them too.
        """
        def load(session: Session) -> Optional[ShopItem]:
            row = session.execute(select(shop_items).where(shop_items.c.id == item_id)).first()
            if not row or not (row.active or include_inactive):
                return None
            return _sellable_item(row)

        kind = "item_any" if include_inactive else "item"
        return self._cached((kind, item_id), load)

    def get_level(self, level_id: str) -> Optional[LevelDefinition]:
        def load(session: Session) -> Optional[LevelDefinition]:
            row = session.execute(select(levels).where(levels.c.id == level_id)).first()
            return _level_from_row(row) if row else None

        return self._cached(("level", level_id), load)

    def list_items(self) -> List[ShopItem]:
        def load(session: Session) -> List[ShopItem]:
            rows = session.execute(
                select(shop_items)
                .where(shop_items.c.active.is_(True))
                .order_by(shop_items.c.price_coins, shop_items.c.id)
            ).fetchall()
            return [item for item in map(_sellable_item, rows) if item is not None]

        return list(self._cached(("items", "*"), load))

    def invalidate(self) -> None:
        with self._lock:
            self._cache.clear()
