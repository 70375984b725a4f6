import pytest
from sqlalchemy import update

from crave.core.database import shop_items
from crave.features.catalog.service import CatalogService, LEVEL_COUNT, seed_catalog


class Ticker:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _set_price(session_factory, item_id, price):
    session = session_factory()
    try:
        session.execute(update(shop_items).where(shop_items.c.id == item_id).values(price_coins=price))
        session.commit()
    finally:
        session.close()


def test_seed_is_idempotent(session_factory):
    again = seed_catalog(session_factory)
    assert again == {"items": 0, "levels": 0}

    catalog = CatalogService(session_factory)
    assert catalog.get_level(f"level_{LEVEL_COUNT}").level_number == LEVEL_COUNT
    assert catalog.get_level(f"level_{LEVEL_COUNT + 1}") is None


def test_items_are_cached_until_ttl(session_factory):
    ticker = Ticker()
    catalog = CatalogService(session_factory, ttl_seconds=60, clock=ticker)
    assert catalog.get_item("pause_token_1d").price_coins == 50

    _set_price(session_factory, "pause_token_1d", 55)
    assert catalog.get_item("pause_token_1d").price_coins == 50

    ticker.now += 61
    assert catalog.get_item("pause_token_1d").price_coins == 55


def test_invalidate_clears_cache(session_factory):
    catalog = CatalogService(session_factory, ttl_seconds=600)
    catalog.list_items()
    _set_price(session_factory, "theme_premium", 5)

    catalog.invalidate()

    assert catalog.list_items()[0].id == "theme_premium"


def test_misses_are_not_cached(session_factory):
    from sqlalchemy import insert

    catalog = CatalogService(session_factory, ttl_seconds=600)
    assert catalog.get_item("new_item") is None

    session = session_factory()
    try:
        session.execute(
            insert(shop_items).values(
                id="new_item", name="New", category="consumable", price_coins=1,
                tier_required="free", effects={"pause_days": 1}, active=True,
            )
        )
        session.commit()
    finally:
        session.close()

    assert catalog.get_item("new_item").name == "New"


def test_inactive_items_hidden_from_shop(session_factory):
    session = session_factory()
    try:
        session.execute(update(shop_items).where(shop_items.c.id == "pause_token_3d").values(active=False))
        session.commit()
    finally:
        session.close()

    catalog = CatalogService(session_factory)
    assert catalog.get_item("pause_token_3d") is None
    assert catalog.get_item("pause_token_3d", include_inactive=True).pause_days == 3
    assert "pause_token_3d" not in {item.id for item in catalog.list_items()}


def test_item_effect_descriptors(catalog):
    assert catalog.get_item("pause_token_3d").grants_inventory
    assert catalog.get_item("level_skip").is_level_skip
    theme = catalog.get_item("theme_premium")
    assert theme.grants_theme and theme.theme_id == "premium"


def test_skip_effect_on_consumable_is_not_sold(engine, make_account, session_factory):
    from sqlalchemy import insert

    from crave.core.errors import ItemUnavailableError
    from crave.features.accounts.service import get_account

    session = session_factory()
    try:
        session.execute(
            insert(shop_items).values(
                id="skip_pack", name="Skip (single use)", category="consumable", price_coins=40,
                tier_required="free", effects={"level_skip": 1}, active=True,
            )
        )
        session.commit()
    finally:
        session.close()

    catalog = CatalogService(session_factory, ttl_seconds=0)
    assert catalog.get_item("skip_pack") is None
    assert "skip_pack" not in [item.id for item in catalog.list_items()]

    make_account("u1", balance=100)
    with pytest.raises(ItemUnavailableError):
        engine.purchase("u1", "skip_pack", 1)
    assert get_account(engine.store, "u1").cravecoins == 100


def test_effect_and_category_agree():
    from crave.models.shop import ShopItem

    utility_skip = ShopItem(id="a", name="A", category="utility", price_coins=1, effects={"level_skip": 1})
    consumable_skip = ShopItem(id="b", name="B", category="consumable", price_coins=1, effects={"level_skip": 1})
    cosmetic_pause = ShopItem(id="c", name="C", category="cosmetic", price_coins=1, effects={"pause_days": 1})
    plain = ShopItem(id="d", name="D", category="utility", price_coins=1)

    assert utility_skip.grants_inventory and utility_skip.is_skip_token
    assert not utility_skip.effect_mismatch
    assert consumable_skip.effect_mismatch and not consumable_skip.grants_inventory
    assert cosmetic_pause.effect_mismatch
    assert not plain.effect_mismatch
