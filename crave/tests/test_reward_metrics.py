from datetime import date

from crave.features.economy.reward_metrics import collect_reward_metrics


def _mixed_economy(engine, make_account):
    make_account("u1", balance=1000, tier="plus")
    make_account("u2", balance=100)
    engine.purchase("u1", "pause_token_1d", 2)
    engine.purchase("u1", "pause_token_3d", 1)
    engine.purchase("u1", "level_skip", 1)
    engine.purchase("u1", "theme_premium", 1)
    three_day = next(e for e in engine.get_inventory("u1") if e.item_id == "pause_token_3d")
    engine.activate_pause("u1", three_day.id, 3)
    engine.purchase("u2", "pause_token_1d", 1)


def test_breakdown_after_mixed_purchases(engine, make_account):
    _mixed_economy(engine, make_account)

    report = engine.reward_metrics()

    assert report["day"] == "2024-01-10"
    # the 3-day token was spent on the pause, so its row is gone
    assert report["totals"] == {"inventory_items": 3, "themes_unlocked": 1, "active_pauses": 1}
    assert report["purchase_breakdown"] == [
        {"type": "consumable", "purchases": 4, "coins_spent": 270},
        {"type": "utility", "purchases": 1, "coins_spent": 100},
        {"type": "cosmetic", "purchases": 1, "coins_spent": 75},
    ]

    recent = report["recent_purchases"]
    assert len(recent) == 5
    assert (recent[0].user_id, recent[0].item_id) == ("u2", "pause_token_1d")
    assert recent[0].item_name == "Streak Pause (1 day)"
    assert recent[0].item_type == "consumable"


def test_recent_purchases_are_capped(engine, make_account, store):
    make_account("u1", balance=1000)
    for _ in range(12):
        engine.purchase("u1", "pause_token_1d", 1)

    report = collect_reward_metrics(store, today=date(2024, 1, 10))

    assert len(report["recent_purchases"]) == 10
    assert report["purchase_breakdown"] == [{"type": "consumable", "purchases": 12, "coins_spent": 600}]


def test_ended_pauses_are_not_active(engine, make_account, store):
    make_account("u1", balance=100)
    engine.purchase("u1", "pause_token_1d", 1)
    [entry] = engine.get_inventory("u1")
    engine.activate_pause("u1", entry.id, 1)

    assert collect_reward_metrics(store, today=date(2024, 1, 10))["totals"]["active_pauses"] == 1
    assert collect_reward_metrics(store, today=date(2024, 1, 11))["totals"]["active_pauses"] == 0


def test_empty_economy(store):
    report = collect_reward_metrics(store, today=date(2024, 1, 10))

    assert report["totals"] == {"inventory_items": 0, "themes_unlocked": 0, "active_pauses": 0}
    assert report["purchase_breakdown"] == []
    assert report["recent_purchases"] == []
