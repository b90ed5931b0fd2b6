"""Tests for display order id generation.

Covers:
- PREFIX-YYMMDD-#### format, first id of a day is 1001
- Distinct, increasing ids within a day (10,000 of them)
- Daily rollover at UTC midnight restarts the suffix
- Configurable prefix / offset / padding; malformed prefixes refused at startup
- Counter failures propagate and no order is created
"""

import re
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from fulfillment import create_app
from fulfillment.config import Config
from fulfillment.exceptions import ConfigurationError
from fulfillment.extensions import db
from fulfillment.models.order import Order
from fulfillment.services.order_id_service import (
    format_display_order_id,
    generate_display_order_id,
    today_date_str,
)

ID_PATTERN = re.compile(r"^[A-Z]+-\d{6}-\d{4,}$")
NOON = datetime(2026, 2, 20, 12, 0, tzinfo=timezone.utc)


def _suffix(display_id):
    return int(display_id.rsplit("-", 1)[1])


class TestFormat:
    """Pure formatting helpers."""

    def test_format_pads_and_offsets(self):
        assert format_display_order_id("ORD", "260220", 1) == "ORD-260220-1001"
        assert format_display_order_id("ORD", "260220", 23) == "ORD-260220-1023"

    def test_suffix_grows_past_four_digits(self):
        assert format_display_order_id("ORD", "260220", 9000) == "ORD-260220-10000"

    def test_small_offset_is_zero_padded(self):
        assert format_display_order_id("SHOP", "260220", 7, offset=0) == "SHOP-260220-0007"

    def test_date_is_taken_in_utc(self):
        # 01:30 in India is still the previous day in UTC
        ist = timezone(timedelta(hours=5, minutes=30))
        assert today_date_str(datetime(2026, 2, 21, 1, 30, tzinfo=ist)) == "260220"


class TestGenerate:
    """Tests for generate_display_order_id against the counter store."""

    def test_first_id_of_day(self, app):
        with app.app_context():
            display_id = generate_display_order_id(NOON)
            db.session.commit()
        assert display_id == "ORD-260220-1001"
        assert ID_PATTERN.match(display_id)

    def test_ten_thousand_ids_are_distinct_and_increasing(self, app):
        with app.app_context():
            ids = [generate_display_order_id(NOON) for _ in range(10_000)]
            db.session.commit()

        assert len(set(ids)) == 10_000
        assert all(ID_PATTERN.match(i) for i in ids)
        suffixes = [_suffix(i) for i in ids]
        assert suffixes == sorted(suffixes)
        assert suffixes[0] == 1001 and suffixes[-1] == 11000

        # Lexicographic order holds while the suffix keeps four digits
        four_digit = [i for i in ids if _suffix(i) <= 9999]
        assert four_digit == sorted(four_digit)

    def test_rollover_at_utc_midnight(self, app):
        before_midnight = datetime(2026, 2, 20, 23, 59, 59, tzinfo=timezone.utc)
        after_midnight = datetime(2026, 2, 21, 0, 0, 1, tzinfo=timezone.utc)
        with app.app_context():
            generate_display_order_id(before_midnight)
            last = generate_display_order_id(before_midnight)
            first = generate_display_order_id(after_midnight)
            db.session.commit()

        assert last == "ORD-260220-1002"
        assert first == "ORD-260221-1001"

    def test_config_drives_prefix_and_offset(self, app):
        with app.app_context():
            with patch.dict(app.config, {"ORDER_ID_PREFIX": "ZY", "ORDER_SEQUENCE_OFFSET": 5000}):
                display_id = generate_display_order_id(NOON)
            db.session.commit()
        assert display_id == "ZY-260220-5001"


class TestFailurePropagates:
    """No id, no order."""

    @patch("fulfillment.services.order_id_service.counter_service.increment")
    def test_store_error_surfaces(self, mock_increment, app):
        mock_increment.side_effect = OperationalError("UPDATE counters", {}, Exception("down"))
        with app.app_context():
            with pytest.raises(OperationalError):
                generate_display_order_id(NOON)

    @patch("fulfillment.services.order_id_service.counter_service.increment")
    def test_order_not_created_when_generation_fails(self, mock_increment, app, make_order):
        mock_increment.side_effect = OperationalError("UPDATE counters", {}, Exception("down"))
        with app.app_context():
            with pytest.raises(OperationalError):
                make_order()
            db.session.rollback()
            assert Order.query.count() == 0


class TestPrefixValidation:
    """ORDER_ID_PREFIX is checked at startup."""

    @pytest.fixture
    def required_env(self, monkeypatch):
        monkeypatch.setenv("SECRET_KEY", "s3cret")
        monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
        monkeypatch.setenv("CARRIER_WEBHOOK_TOKEN", "carrier-token")
        monkeypatch.setenv("OPS_API_KEY", "ops-key")
        return monkeypatch

    @pytest.mark.parametrize("prefix", ["ord", "ORD2", "OR-D", ""])
    def test_rejects_prefix_outside_format(self, required_env, prefix):
        required_env.setenv("ORDER_ID_PREFIX", prefix)
        with pytest.raises(RuntimeError, match="ORDER_ID_PREFIX"):
            Config.validate()

    def test_accepts_upper_case_prefix(self, required_env):
        required_env.setenv("ORDER_ID_PREFIX", "SHOP")
        Config.validate()

    def test_bad_prefix_stops_app_startup(self, required_env):
        required_env.setenv("ORDER_ID_PREFIX", "ord")
        with pytest.raises(ConfigurationError, match="ORDER_ID_PREFIX"):
            create_app("production")
