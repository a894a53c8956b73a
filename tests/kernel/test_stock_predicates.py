"""
The shared stock predicates and result DTO serialization.
"""

import json
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from stock_kernel.domain.types import (
    ELIGIBLE_STATUSES,
    OVER_COUNTED_ISSUE,
    UNDER_COUNTED_ISSUE,
    BatchSalesConsistency,
    BatchStatus,
    ContinuityResult,
    SnapshotLine,
    SyncResult,
    UnitConsistency,
    UnitType,
    is_eligible,
    is_expired,
    is_sellable,
    status_for_counters,
)

NOW = datetime(2024, 6, 1, 12, tzinfo=UTC)


class TestEligibility:
    def test_eligible_statuses(self):
        assert ELIGIBLE_STATUSES == {BatchStatus.ACTIVE, BatchStatus.DEPLETED}

    @pytest.mark.parametrize(
        "status,expected",
        [
            (BatchStatus.ACTIVE, True),
            (BatchStatus.DEPLETED, True),
            (BatchStatus.EXPIRED, False),
            ("ACTIVE", True),
            ("EXPIRED", False),
        ],
    )
    def test_is_eligible(self, status, expected):
        assert is_eligible(status) is expected


class TestExpiry:
    def test_no_expiry_never_expires(self):
        assert not is_expired(None, NOW)

    def test_expiry_instant_counts_as_expired(self):
        assert is_expired(NOW, NOW)

    def test_future_expiry(self):
        assert not is_expired(NOW + timedelta(seconds=1), NOW)


class TestSellable:
    def _sellable(self, **overrides):
        args = dict(
            status=BatchStatus.ACTIVE,
            quantity_remaining=5,
            batch_unit=UnitType.PACKS,
            requested_unit=UnitType.PACKS,
            expiry_date=NOW + timedelta(days=1),
            as_of=NOW,
        )
        args.update(overrides)
        return is_sellable(**args)

    def test_active_in_date_batch_is_sellable(self):
        assert self._sellable()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"status": BatchStatus.DEPLETED},
            {"status": BatchStatus.EXPIRED},
            {"quantity_remaining": 0},
            {"requested_unit": UnitType.PALLETS},
            {"expiry_date": NOW},
            {"expiry_date": NOW - timedelta(days=1)},
        ],
    )
    def test_not_sellable(self, overrides):
        assert not self._sellable(**overrides)


class TestStatusForCounters:
    def test_zero_remaining_is_depleted_even_if_expired(self):
        assert status_for_counters(0, NOW - timedelta(days=1), NOW) == BatchStatus.DEPLETED

    def test_expired_with_stock(self):
        assert status_for_counters(3, NOW - timedelta(days=1), NOW) == BatchStatus.EXPIRED

    def test_active(self):
        assert status_for_counters(3, None, NOW) == BatchStatus.ACTIVE


class TestResultSerialization:
    def test_sync_result_to_dict_is_json_safe(self):
        result = SyncResult(
            product_id=uuid4(),
            triggered_by="manual",
            lines=(SnapshotLine(UnitType.PACKS, cached=999, computed=70),),
        )

        data = result.to_dict()

        json.dumps(data)
        assert data["lines"][0]["unit_type"] == "PACKS"
        assert data["lines"][0]["delta"] == -929
        assert data["had_discrepancy"] is False

    def test_consistency_issue_text(self):
        over = UnitConsistency(UnitType.PACKS, batch_quantity_sold=10, sales_quantity=0)
        under = UnitConsistency(UnitType.PACKS, batch_quantity_sold=0, sales_quantity=4)

        assert over.discrepancy == 10 and over.issue == OVER_COUNTED_ISSUE
        assert under.discrepancy == -4 and under.issue == UNDER_COUNTED_ISSUE

    def test_consistency_sums_units(self):
        result = BatchSalesConsistency(
            product_id=uuid4(),
            units=(
                UnitConsistency(UnitType.PACKS, 10, 10),
                UnitConsistency(UnitType.UNITS, 3, 1),
            ),
        )

        assert result.has_discrepancy
        assert result.discrepancy == 2
        assert result.unit(UnitType.UNITS).discrepancy == 2
        assert result.to_dict()["units"][1]["issue"] == OVER_COUNTED_ISSUE

    def test_continuity_discrepancy_is_opening_minus_previous_closing(self):
        result = ContinuityResult(
            product_id=uuid4(),
            day=NOW.date(),
            previous_day=NOW.date() - timedelta(days=1),
            unit_type=UnitType.PACKS,
            previous_closing_stock=70,
            opening_stock=60,
            closing_stock=60,
            purchased=0,
            sold=0,
        )

        assert result.discrepancy == -10
        assert not result.is_valid
        assert result.to_dict()["day"] == "2024-06-01"
