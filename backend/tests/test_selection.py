# Overview: Pytest coverage for waterfall supplier selection.

from datetime import date
from decimal import Decimal

import pytest
from inventory_engine.models import Reservation, AllocationBucket
from inventory_engine.models.allocations import RESERVATION_CONFIRMED, RESERVATION_HELD, RESERVATION_RELEASED
from inventory_engine.services import allocation_service, rate_service, selection_service
from inventory_engine.services.allocation_service import InsufficientInventoryError
from inventory_engine.services.concurrency import RetryExhaustedError
from inventory_engine.services.rate_service import NoMasterRateError
from inventory_engine.services.selection_service import InsufficientSupplierInventoryError
from inventory_engine.validation import NotFoundError


DAY = date(2026, 3, 1)


def _plan(org, variant, supplier, amount, currency="EUR", **kwargs):
    return rate_service.create_rate_plan(
        org_id=org.id,
        variant_id=variant.id,
        supplier_id=supplier.id if supplier is not None else None,
        currency=currency,
        valid_from=date(2026, 1, 1),
        valid_to=date(2026, 12, 31),
        occupancies=[{"min_occupancy": 1, "max_occupancy": 4, "base_amount": amount}],
        inventory_model="freesale" if supplier is None else "committed",
        preferred=supplier is None,
        **kwargs,
    )


@pytest.fixture
def waterfall(db_session, org_a, variant_a, supplier_a, supplier_a2, make_bucket):
    """
    Sell at 200. supplier_a costs 120 with 5 units, supplier_a2 costs 100 with 3 units.
    Equal priority, so the cheaper supplier_a2 is drawn first.
    """
    _plan(org_a, variant_a, None, "200.00")
    _plan(org_a, variant_a, supplier_a, "120.00")
    _plan(org_a, variant_a, supplier_a2, "100.00")
    bucket_a = make_bucket(org_a, variant_a, day=DAY, supplier=supplier_a, quantity=5)
    bucket_a2 = make_bucket(org_a, variant_a, day=DAY, supplier=supplier_a2, quantity=3)
    return {"a": bucket_a, "a2": bucket_a2}


def _select(org, variant, qty, pax=2):
    return selection_service.select_suppliers(
        org_id=org.id, variant_id=variant.id, day=DAY, pax_count=pax, demand_qty=qty
    )


class TestWaterfall:

    def test_cheapest_supplier_first_then_spill(self, db_session, org_a, variant_a, supplier_a, supplier_a2, waterfall):
        result = _select(org_a, variant_a, 5)

        breakdown = [(line["supplier_id"], line["qty"]) for line in result.supplier_breakdown]
        assert breakdown == [(supplier_a2.id, 3), (supplier_a.id, 2)]
        assert result.sell_price == Decimal("200.00")
        # (200 - 100) * 3 + (200 - 120) * 2
        assert result.total_margin == Decimal("460.00")

        holds = db_session.query(Reservation).filter_by(selection_ref=result.selection_ref).all()
        assert len(holds) == 2
        assert {r.status for r in holds} == {RESERVATION_HELD}

    def test_priority_beats_cost(self, db_session, org_a, variant_a, supplier_a, supplier_a2, waterfall):
        supplier_a.default_priority = 150
        db_session.commit()

        result = _select(org_a, variant_a, 2)
        assert [line["supplier_id"] for line in result.supplier_breakdown] == [supplier_a.id]

    def test_tie_break_is_lower_supplier_id(self, db_session, org_a, variant_a, supplier_a, supplier_a2, make_bucket):
        _plan(org_a, variant_a, None, "200.00")
        _plan(org_a, variant_a, supplier_a, "100.00")
        _plan(org_a, variant_a, supplier_a2, "100.00")
        make_bucket(org_a, variant_a, day=DAY, supplier=supplier_a2, quantity=5)
        make_bucket(org_a, variant_a, day=DAY, supplier=supplier_a, quantity=5)

        picks = []
        for _ in range(3):
            result = _select(org_a, variant_a, 1)
            picks.append(result.supplier_breakdown[0]["supplier_id"])
            selection_service.release_selection(org_id=org_a.id, selection_ref=result.selection_ref)
        assert picks == [supplier_a.id] * 3

    def test_insufficient_inventory_reports_shortfall(self, db_session, org_a, variant_a, waterfall):
        with pytest.raises(InsufficientSupplierInventoryError) as exc_info:
            _select(org_a, variant_a, 10)

        assert exc_info.value.requested == 10
        assert exc_info.value.available == 8
        assert exc_info.value.shortfall == 2
        assert db_session.query(Reservation).count() == 0

    def test_no_master_rate(self, db_session, org_a, variant_a, supplier_a, make_bucket):
        _plan(org_a, variant_a, supplier_a, "100.00")
        make_bucket(org_a, variant_a, day=DAY, supplier=supplier_a, quantity=5)
        with pytest.raises(NoMasterRateError):
            _select(org_a, variant_a, 1)

    def test_currency_mismatch_supplier_skipped(self, db_session, org_a, variant_a, supplier_a, supplier_a2, make_bucket):
        _plan(org_a, variant_a, None, "200.00")
        _plan(org_a, variant_a, supplier_a, "50.00", currency="USD")
        _plan(org_a, variant_a, supplier_a2, "150.00")
        make_bucket(org_a, variant_a, day=DAY, supplier=supplier_a, quantity=5)
        make_bucket(org_a, variant_a, day=DAY, supplier=supplier_a2, quantity=5)

        result = _select(org_a, variant_a, 2)
        assert [line["supplier_id"] for line in result.supplier_breakdown] == [supplier_a2.id]

    def test_closed_bucket_is_not_a_candidate(self, db_session, org_a, variant_a, supplier_a, supplier_a2, waterfall):
        waterfall["a2"].stop_sell = True
        db_session.commit()

        result = _select(org_a, variant_a, 2)
        assert [line["supplier_id"] for line in result.supplier_breakdown] == [supplier_a.id]

    def test_bucket_occupancy_bounds_exclude_party(self, db_session, org_a, variant_a, supplier_a, supplier_a2, make_bucket):
        _plan(org_a, variant_a, None, "200.00")
        _plan(org_a, variant_a, supplier_a, "120.00")
        _plan(org_a, variant_a, supplier_a2, "100.00")
        make_bucket(org_a, variant_a, day=DAY, supplier=supplier_a, quantity=5)
        twin_only = make_bucket(org_a, variant_a, day=DAY, supplier=supplier_a2, quantity=5, max_occupancy=2)

        result = _select(org_a, variant_a, 2, pax=4)
        assert [line["supplier_id"] for line in result.supplier_breakdown] == [supplier_a.id]

        db_session.expire_all()
        assert db_session.get(AllocationBucket, twin_only.id).held == 0

    def test_only_bucket_too_small_for_party(self, db_session, org_a, variant_a, supplier_a, make_bucket):
        _plan(org_a, variant_a, None, "200.00")
        _plan(org_a, variant_a, supplier_a, "120.00")
        bucket = make_bucket(org_a, variant_a, day=DAY, supplier=supplier_a, quantity=5, max_occupancy=2)

        with pytest.raises(InsufficientSupplierInventoryError):
            _select(org_a, variant_a, 1, pax=4)

        db_session.expire_all()
        assert db_session.get(AllocationBucket, bucket.id).held == 0

    def test_supplier_priced_by_plan_covering_party(self, db_session, org_a, variant_a, supplier_a, make_bucket):
        _plan(org_a, variant_a, None, "200.00")
        for priority, low, high, amount in ((10, 1, 2, "90.00"), (5, 3, 4, "130.00")):
            rate_service.create_rate_plan(
                org_id=org_a.id,
                variant_id=variant_a.id,
                supplier_id=supplier_a.id,
                currency="EUR",
                valid_from=date(2026, 1, 1),
                valid_to=date(2026, 12, 31),
                occupancies=[{"min_occupancy": low, "max_occupancy": high, "base_amount": amount}],
                inventory_model="committed",
                priority=priority,
            )
        make_bucket(org_a, variant_a, day=DAY, supplier=supplier_a, quantity=5)

        result = _select(org_a, variant_a, 1, pax=3)
        assert len(result.supplier_breakdown) == 1
        line = result.supplier_breakdown[0]
        assert line["supplier_id"] == supplier_a.id
        assert line["unit_cost"] == Decimal("130.00")

        couple = _select(org_a, variant_a, 1, pax=2)
        assert couple.supplier_breakdown[0]["unit_cost"] == Decimal("90.00")


class TestSelectionLifecycle:

    def test_confirm_selection_books_units(self, db_session, org_a, variant_a, waterfall):
        result = _select(org_a, variant_a, 4)
        confirmed = selection_service.confirm_selection(org_id=org_a.id, selection_ref=result.selection_ref)

        assert {r.status for r in confirmed} == {RESERVATION_CONFIRMED}
        db_session.expire_all()
        assert db_session.get(AllocationBucket, waterfall["a2"].id).booked == 3
        assert db_session.get(AllocationBucket, waterfall["a"].id).booked == 1

    def test_release_selection_returns_units(self, db_session, org_a, variant_a, waterfall):
        result = _select(org_a, variant_a, 4)
        released = selection_service.release_selection(org_id=org_a.id, selection_ref=result.selection_ref)

        assert {r.status for r in released} == {RESERVATION_RELEASED}
        db_session.expire_all()
        assert db_session.get(AllocationBucket, waterfall["a2"].id).held == 0

    def test_unknown_selection_ref(self, db_session, org_a):
        with pytest.raises(NotFoundError):
            selection_service.confirm_selection(org_id=org_a.id, selection_ref="missing")


class TestLostRace:
    """A hold lost mid-selection releases what was taken and re-plans once."""

    def test_retry_after_lost_race(self, db_session, org_a, variant_a, waterfall, monkeypatch):
        real_reserve = selection_service.reserve
        calls = []

        def flaky_reserve(**kwargs):
            calls.append(kwargs["bucket_id"])
            if len(calls) == 2:
                raise InsufficientInventoryError("lost race", requested=kwargs["quantity"], available=0)
            return real_reserve(**kwargs)

        monkeypatch.setattr(selection_service, "reserve", flaky_reserve)
        result = _select(org_a, variant_a, 5)

        assert sum(line["qty"] for line in result.supplier_breakdown) == 5
        rolled_back = db_session.query(Reservation).filter_by(release_reason="selection_rollback").all()
        assert len(rolled_back) == 1

        db_session.expire_all()
        assert db_session.get(AllocationBucket, waterfall["a2"].id).held == 3
        assert db_session.get(AllocationBucket, waterfall["a"].id).held == 2

    def test_retry_budget_exhausted(self, db_session, org_a, variant_a, waterfall, monkeypatch):
        def always_lose(**kwargs):
            raise InsufficientInventoryError("lost race", requested=kwargs["quantity"], available=0)

        monkeypatch.setattr(selection_service, "reserve", always_lose)
        with pytest.raises(RetryExhaustedError):
            _select(org_a, variant_a, 2)
