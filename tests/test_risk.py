"""Tests for the risk analyzer and the shipment gate built on it.

Covers:
- PIN code and phone validation rules
- Address completeness and placeholder detection
- High-value COD, failed-delivery history, unverified delivery
- Clean orders produce no findings
- Shipment gate: high findings park the order for manual review,
  ?force overrides, clean orders move to shipment_created
"""

import copy

import pytest

from fulfillment.exceptions import TransitionRejected
from fulfillment.extensions import db
from fulfillment.models.audit import AuditEvent
from fulfillment.services import order_service
from fulfillment.services.risk_service import (
    HIGH,
    MEDIUM,
    analyze_order_risks,
    has_incomplete_address,
    is_valid_phone,
    is_valid_pincode,
)

from tests.conftest import GOOD_ADDRESS


def _snapshot(address=None, total=299800, method="razorpay", history=None):
    return {
        "total": total,
        "shipping_address": copy.deepcopy(GOOD_ADDRESS if address is None else address),
        "payment": {"method": method, "status": "paid"},
        "shipping": {"tracking_history": history or []},
    }


class TestFieldChecks:
    """Single-field validators."""

    @pytest.mark.parametrize("pin", ["560038", "110001", "999999"])
    def test_valid_pincodes(self, pin):
        assert is_valid_pincode(pin)

    @pytest.mark.parametrize("pin", ["012345", "56003", "5600381", "56O038", "", None])
    def test_invalid_pincodes(self, pin):
        assert not is_valid_pincode(pin)

    @pytest.mark.parametrize("phone", ["9876543210", "98765 43210", "(987) 654-3210", "6000000000"])
    def test_valid_phones(self, phone):
        assert is_valid_phone(phone)

    @pytest.mark.parametrize("phone", ["5876543210", "987654321", "+919876543210", "", None])
    def test_invalid_phones(self, phone):
        assert not is_valid_phone(phone)


class TestAddressCompleteness:
    """Tests for has_incomplete_address."""

    def test_complete_address(self):
        assert not has_incomplete_address(GOOD_ADDRESS)

    def test_missing_required_field(self):
        address = dict(GOOD_ADDRESS, city="  ")
        assert has_incomplete_address(address)

    def test_short_first_line(self):
        assert has_incomplete_address(dict(GOOD_ADDRESS, address_line1="12 B"))

    @pytest.mark.parametrize("line1", [
        "test address",
        "Flat 1, Dummy Street",
        "N/A",
        "Sample Apartments 4",
        "House na, Sector 5",
    ])
    def test_placeholder_text(self, line1):
        assert has_incomplete_address(dict(GOOD_ADDRESS, address_line1=line1))

    def test_real_place_names_are_not_placeholders(self):
        address = dict(GOOD_ADDRESS, address_line1="22 Anna Salai", city="Chennai")
        assert not has_incomplete_address(address)


class TestAnalyzeOrderRisks:
    """Tests for analyze_order_risks."""

    def test_clean_order_has_no_risks(self):
        analysis = analyze_order_risks(_snapshot())
        assert not analysis.has_risks
        assert analysis.risk_count == 0
        assert analysis.high_severity_count == 0

    def test_high_value_cod_only(self):
        analysis = analyze_order_risks(_snapshot(total=40_000_000, method="cod"))
        assert analysis.types() == ["high_cod_value"]
        assert analysis.risks[0].severity == MEDIUM
        assert analysis.risks[0].message == "High COD value: ₹400,000.00"
        assert analysis.high_severity_count == 0

    def test_minimal_address_with_high_cod(self):
        address = {
            "full_name": "A",
            "phone": "9876543210",
            "address_line1": "221B Baker Street",
            "city": "Metropolis",
            "state": "X",
            "postal_code": "123456",
        }
        analysis = analyze_order_risks(_snapshot(address=address, total=40_000_000, method="cod"))
        assert analysis.types() == ["high_cod_value"]
        assert analysis.has_risks
        assert analysis.high_severity_count == 0

    def test_high_value_prepaid_is_fine(self):
        analysis = analyze_order_risks(_snapshot(total=40_000_000, method="razorpay"))
        assert "high_cod_value" not in analysis.types()

    def test_leading_zero_pincode(self):
        analysis = analyze_order_risks(_snapshot(address=dict(GOOD_ADDRESS, postal_code="012345")))
        assert analysis.types() == ["invalid_pincode"]
        assert analysis.risks[0].severity == HIGH

    def test_placeholder_address(self):
        address = dict(GOOD_ADDRESS, address_line1="test address")
        analysis = analyze_order_risks(_snapshot(address=address))
        assert "incomplete_address" in analysis.types()
        assert analysis.high_severity_count >= 1

    def test_invalid_phone_is_medium(self):
        analysis = analyze_order_risks(_snapshot(address=dict(GOOD_ADDRESS, phone="12345")))
        assert analysis.types() == ["invalid_phone"]
        assert analysis.risks[0].severity == MEDIUM

    def test_failed_delivery_history(self):
        history = [
            {"status": "IN TRANSIT"},
            {"status": "UNDELIVERED - customer not available"},
        ]
        analysis = analyze_order_risks(_snapshot(history=history))
        assert analysis.types() == ["failed_delivery_history"]

    def test_unverified_delivery(self):
        address = dict(GOOD_ADDRESS, verified_delivery=False)
        analysis = analyze_order_risks(_snapshot(address=address))
        assert analysis.types() == ["unserviceable_area"]

    def test_missing_address_raises_many_findings(self):
        analysis = analyze_order_risks(_snapshot(address={}))
        assert set(analysis.types()) == {"incomplete_address", "invalid_pincode", "invalid_phone"}

    def test_threshold_is_configurable(self):
        analysis = analyze_order_risks(
            _snapshot(total=200_000, method="cod"), high_cod_threshold=100_000
        )
        assert analysis.types() == ["high_cod_value"]

    def test_to_dict_shape(self):
        data = analyze_order_risks(_snapshot(address=dict(GOOD_ADDRESS, postal_code="0"))).to_dict()
        assert data["has_risks"] is True
        assert data["risk_count"] == 1
        assert data["high_severity_count"] == 1
        assert data["risks"][0] == {
            "type": "invalid_pincode",
            "severity": HIGH,
            "message": "Invalid PIN code format",
        }


class TestShipmentGate:
    """Tests for order_service.request_shipment."""

    def test_clean_order_gets_shipment(self, app, make_order):
        with app.app_context():
            order = make_order()
            created, analysis = order_service.request_shipment(
                order, "ops", awb_code="AWB555", courier_name="Delhivery"
            )
            db.session.commit()

            assert created is True
            assert not analysis.has_risks
            assert order.lifecycle_status == "shipment_created"
            assert order.status == "processing"
            assert order.shipment_creation_attempted is True
            assert order.awb_code == "AWB555"
            assert order.manual_review_required is False

    def test_high_risk_order_is_held(self, app, make_order):
        with app.app_context():
            order = make_order(address=dict(GOOD_ADDRESS, postal_code="012345"))
            created, analysis = order_service.request_shipment(order, "ops")
            db.session.commit()

            assert created is False
            assert analysis.high_severity_count == 1
            assert order.lifecycle_status == "ready_to_ship"
            assert order.status == "confirmed"
            assert order.shipment_creation_attempted is True
            assert order.manual_review_required is True
            assert "PIN code" in order.review_reason
            assert order_service.review_queue() == [order]
            assert AuditEvent.query.filter_by(action="order.review_hold").count() == 1

    def test_force_overrides_hold(self, app, make_order):
        with app.app_context():
            order = make_order(address=dict(GOOD_ADDRESS, postal_code="012345"))
            order_service.request_shipment(order, "ops")
            created, _ = order_service.request_shipment(order, "ops", force=True)
            db.session.commit()

            assert created is True
            assert order.manual_review_required is False
            assert order.review_reason is None
            assert order.lifecycle_status == "shipment_created"

    def test_medium_risk_does_not_block(self, app, make_order):
        with app.app_context():
            order = make_order(payment_method="cod", payment_status="pending", unit_price=3_000_000)
            created, analysis = order_service.request_shipment(order, "ops")
            db.session.commit()

            assert analysis.types() == ["high_cod_value"]
            assert created is True

    def test_gate_can_be_disabled(self, app, make_order):
        with app.app_context():
            order = make_order(address=dict(GOOD_ADDRESS, postal_code="012345"))
            app.config["RISK_GATE_BLOCK_ON_HIGH"] = False
            try:
                created, _ = order_service.request_shipment(order, "ops")
            finally:
                app.config["RISK_GATE_BLOCK_ON_HIGH"] = True
            db.session.commit()
            assert created is True

    def test_second_request_rejected(self, app, awb_order):
        with app.app_context():
            order = db.session.merge(awb_order)
            with pytest.raises(TransitionRejected):
                order_service.request_shipment(order, "ops")
