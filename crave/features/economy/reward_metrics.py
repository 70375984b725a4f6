"""
Economy-wide reward metrics for operators.

Aggregates across every account: inventory rows held, themes unlocked, pauses
running today, and where coins went by item type. Read-only; no user lock is
taken, so figures are a point-in-time snapshot.
"""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, List

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crave.core.database import shop_items, streak_pauses, user_inventory, user_purchases, user_themes
from crave.features.store.ledger_store import LedgerStore
from crave.models.inventory import PurchaseRecord

RECENT_PURCHASES_LIMIT = 10
UNKNOWN_ITEM_TYPE = "unknown"


def _count(session: Session, table, *criteria) -> int:
    stmt = select(func.count()).select_from(table)
    if criteria:
        stmt = stmt.where(*criteria)
    return session.execute(stmt).scalar() or 0


def _purchase_breakdown(session: Session) -> List[Dict[str, Any]]:
    # Purchases of items since removed from the catalog land under "unknown"
    rows = session.execute(
        select(
            shop_items.c.category,
            func.sum(user_purchases.c.quantity).label("purchases"),
            func.sum(user_purchases.c.amount_coins).label("coins_spent"),
        )
        .select_from(user_purchases.outerjoin(shop_items, user_purchases.c.item_id == shop_items.c.id))
        .group_by(shop_items.c.category)
    ).fetchall()

    merged: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        item_type = row.category or UNKNOWN_ITEM_TYPE
        bucket = merged.setdefault(item_type, {"type": item_type, "purchases": 0, "coins_spent": 0})
        bucket["purchases"] += int(row.purchases or 0)
        bucket["coins_spent"] += int(row.coins_spent or 0)
    return sorted(merged.values(), key=lambda b: (-b["coins_spent"], b["type"]))


def _recent_purchases(session: Session, limit: int) -> List[PurchaseRecord]:
    rows = session.execute(
        select(
            user_purchases,
            shop_items.c.name.label("item_name"),
            shop_items.c.category.label("item_type"),
        )
        .select_from(user_purchases.outerjoin(shop_items, user_purchases.c.item_id == shop_items.c.id))
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
            item_type=row.item_type or UNKNOWN_ITEM_TYPE,
        )
        for row in rows
    ]


def collect_reward_metrics(
    store: LedgerStore,
    *,
    today: date,
    recent_limit: int = RECENT_PURCHASES_LIMIT,
) -> Dict[str, Any]:
    """
    Snapshot of the reward economy.

    ``active_pauses`` counts active windows that have not ended by ``today``
    (future-dated windows included). ``purchase_breakdown`` sums units and
    coins per item type over the whole ledger, biggest spend first.
    """
    def work(session: Session) -> Dict[str, Any]:
        return {
            "day": today.isoformat(),
            "totals": {
                "inventory_items": _count(session, user_inventory),
                "themes_unlocked": _count(session, user_themes),
                "active_pauses": _count(
                    session,
                    streak_pauses,
                    streak_pauses.c.is_active.is_(True),
                    streak_pauses.c.end_date >= today,
                ),
            },
            "purchase_breakdown": _purchase_breakdown(session),
            "recent_purchases": _recent_purchases(session, recent_limit),
        }

    return store.query(work, operation="reward_metrics")
