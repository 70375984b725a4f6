import json
import logging
from datetime import date, datetime, timezone

import pytest

from crave.core import clock
from crave.core.config import Settings, validate_config
from crave.core.logging import JsonFormatter, PrettyFormatter, latency_bucket_ms, request_id_ctx_var
from crave.core.middleware.request_id import resolve_request_id
from crave.core.metrics import normalize_path
from crave.models.account import tier_allows


def test_window_end_is_inclusive():
    assert clock.window_end(date(2024, 1, 10), 1) == date(2024, 1, 10)
    assert clock.window_end(date(2024, 1, 10), 3) == date(2024, 1, 12)
    assert clock.window_end(date(2024, 2, 28), 2) == date(2024, 2, 29)
    with pytest.raises(ValueError):
        clock.window_end(date(2024, 1, 10), 0)


def test_days_remaining_counts_today():
    end = date(2024, 1, 12)
    assert clock.days_remaining(end, date(2024, 1, 10)) == 3
    assert clock.days_remaining(end, date(2024, 1, 12)) == 1
    assert clock.days_remaining(end, date(2024, 1, 13)) == 0


def test_today_uses_reward_zone():
    late_utc = datetime(2024, 1, 10, 23, 30, tzinfo=timezone.utc)
    assert clock.today("UTC", now=late_utc) == date(2024, 1, 10)
    assert clock.today("Asia/Tokyo", now=late_utc) == date(2024, 1, 11)
    assert clock.today("America/New_York", now=late_utc) == date(2024, 1, 10)


def test_tier_ordering():
    assert tier_allows("plus_trial", "plus")
    assert tier_allows("ultra", "free")
    assert not tier_allows("free", "plus")
    assert not tier_allows("mystery", "free")


def test_validate_config_strict_raises():
    cfg = Settings(DATABASE_URL=None)
    with pytest.raises(RuntimeError):
        validate_config(strict=True, settings_obj=cfg)


def test_validate_config_warns_only(caplog):
    cfg = Settings(DATABASE_URL=None)
    with caplog.at_level(logging.WARNING):
        assert validate_config(strict=False, settings_obj=cfg, logger=logging.getLogger("crave.test"))
    assert "DATABASE_URL" in caplog.text


def test_header_auth_defaults_off_in_production():
    assert Settings(ENV="development").ALLOW_HEADER_AUTH is True
    assert Settings(ENV="production").ALLOW_HEADER_AUTH is False
    assert Settings(ENV="production", ALLOW_HEADER_AUTH=True).ALLOW_HEADER_AUTH is True


def test_header_auth_in_production_is_flagged(caplog):
    cfg = Settings(ENV="production", DATABASE_URL="sqlite://", ALLOW_HEADER_AUTH=True)
    with caplog.at_level(logging.WARNING):
        validate_config(strict=False, settings_obj=cfg, logger=logging.getLogger("crave.test"))
    assert "ALLOW_HEADER_AUTH" in caplog.text

    with pytest.raises(RuntimeError):
        validate_config(strict=True, settings_obj=cfg)


def test_json_formatter_includes_structured_fields():
    record = logging.LogRecord("crave", logging.INFO, __file__, 1, "economy.purchase", None, None)
    record.user_id = "u1"
    record.event_type = "purchase"
    token = request_id_ctx_var.set("rid-1")
    try:
        record.request_id = request_id_ctx_var.get()
        payload = json.loads(JsonFormatter().format(record))
    finally:
        request_id_ctx_var.reset(token)

    assert payload["message"] == "economy.purchase"
    assert payload["user_id"] == "u1"
    assert payload["event_type"] == "purchase"
    assert payload["request_id"] == "rid-1"


def test_latency_buckets_and_paths():
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(1500) == ">=1000ms"
    assert normalize_path("/v1/items/123") == "/v1/items/:id"


def test_pretty_formatter_tags_and_details():
    record = logging.LogRecord("crave", logging.INFO, __file__, 1, "economy.purchase", None, None)
    record.user_id = "u1"
    record.operation = "purchase"
    record.details = {"amount_coins": 50}

    line = PrettyFormatter().format(record)

    assert "[user=u1] [op=purchase] economy.purchase" in line
    assert line.endswith('{"amount_coins": 50}')


def test_untrusted_request_ids_are_replaced():
    assert resolve_request_id("abc-123") == "abc-123"
    assert resolve_request_id(None) != resolve_request_id(None)
    replaced = resolve_request_id("bad id\nwith newline")
    assert replaced != "bad id\nwith newline"
    assert len(replaced) == 36
