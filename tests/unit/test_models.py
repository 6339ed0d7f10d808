"""Tests for deal_sentinel.core.models."""

import pytest
from pydantic import TypeAdapter, ValidationError

from deal_sentinel.core.models import (
    AlertPolicy,
    AnySaleStart,
    DiscountAtLeast,
    PriceBelow,
    PriceSource,
    RawObservation,
    RunState,
    TrackedItem,
)


class TestAlertPolicy:
    adapter = TypeAdapter(AlertPolicy)

    def test_discriminated_by_kind(self):
        assert self.adapter.validate_python({"kind": "price_below", "amount": 1500}) == PriceBelow(
            amount=1500
        )
        assert self.adapter.validate_python({"kind": "any_sale_start"}) == AnySaleStart()

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            self.adapter.validate_python({"kind": "price_above", "amount": 1})

    def test_amount_must_be_positive(self):
        with pytest.raises(ValidationError, match="amount must be > 0"):
            PriceBelow(amount=0)

    @pytest.mark.parametrize("percent", [0, 101])
    def test_percent_range(self, percent):
        with pytest.raises(ValidationError, match=r"\[1, 100\]"):
            DiscountAtLeast(percent=percent)

    def test_policies_are_frozen(self):
        policy = PriceBelow(amount=1000)
        with pytest.raises(ValidationError):
            policy.amount = 5


class TestTrackedItem:
    def test_label(self, make_item):
        assert make_item(display_name="CS2", external_id="730").label == "CS2 (730)"

    def test_external_id_stripped(self, make_item):
        assert make_item(external_id=" 730 ").external_id == "730"

    def test_blank_external_id_rejected(self):
        with pytest.raises(ValidationError, match="blank"):
            TrackedItem(id=1, external_id="  ", display_name="x")


class TestRawObservation:
    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError, match="price must be >= 0"):
            RawObservation(current_price=-1)


class TestPriceSnapshot:
    def test_discount_range(self, make_snapshot):
        with pytest.raises(ValidationError):
            make_snapshot(discount_percent=101)

    def test_discount_only_for_normal(self, make_snapshot):
        with pytest.raises(ValidationError, match="must be 0"):
            make_snapshot(source=PriceSource.FREE, discount_percent=10)

    def test_effective_discount(self, make_snapshot):
        assert make_snapshot(current_price=750, discount_percent=25).effective_discount == 25
        assert make_snapshot(original_price=0, discount_percent=25).effective_discount == 0


class TestRunState:
    def test_percent_complete(self):
        assert RunState().percent_complete == 0.0
        assert RunState(completed_count=1, total_count=3).percent_complete == 33.3
