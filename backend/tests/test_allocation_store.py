# Overview: Pytest coverage for the allocation store: counters, reservations, pools, bulk create.

"""
Allocation Store Tests

Prove the counter invariants:
1. available = quantity + overbooking allowance - booked - held (never below 0)
2. Reserve never pushes booked + held past the ceiling
3. stop_sell / blackout close a bucket regardless of counters
4. Pooled buckets read and write the pool's counters
5. BulkCreate is idempotent per (variant, supplier, scope)
"""

from datetime import date, datetime
from decimal import Decimal

import pytest
from inventory_engine.models import AllocationBucket, Reservation
from inventory_engine.models.allocations import (
    RESERVATION_CONFIRMED,
    RESERVATION_HELD,
    RESERVATION_RELEASED,
)
from inventory_engine.services import allocation_service
from inventory_engine.services.allocation_service import (
    UNBOUNDED,
    BucketClosedError,
    BucketInUseError,
    BucketScope,
    BucketTerms,
    DuplicateScopeError,
    InsufficientInventoryError,
    ReservationStateError,
    expand_scopes,
    get_available,
    sellability_status,
)
from inventory_engine.services.tenant_service import TenantAccessError
from inventory_engine.validation import ValidationError


def _reload(db_session, bucket_id):
    db_session.expire_all()
    return db_session.get(AllocationBucket, bucket_id)


class TestAvailability:
    """GetAvailable and sellability status."""

    def test_overbooking_allowance_example(self, db_session, org_a, variant_a, make_bucket):
        """quantity 100, booked 40, overbooking 10 -> 70 available; 75 fails, 70 fills the ceiling."""
        bucket = make_bucket(org_a, variant_a, quantity=100, allow_overbooking=True, overbooking_limit=10)
        allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=40, as_hold=False)

        bucket = _reload(db_session, bucket.id)
        assert get_available(bucket) == 70

        with pytest.raises(InsufficientInventoryError) as exc_info:
            allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=75, as_hold=False)
        assert exc_info.value.requested == 75
        assert exc_info.value.available == 70
        assert exc_info.value.shortfall == 5

        allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=70, as_hold=False)
        bucket = _reload(db_session, bucket.id)
        assert bucket.booked == 110
        assert get_available(bucket) == 0

    def test_held_units_reduce_availability(self, db_session, org_a, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=10)
        allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=4)

        bucket = _reload(db_session, bucket.id)
        assert bucket.held == 4
        assert bucket.booked == 0
        assert get_available(bucket) == 6

    def test_stop_sell_closes_regardless_of_counters(self, db_session, org_a, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=10, stop_sell=True)

        assert get_available(bucket) == 0
        assert sellability_status(bucket) == "CLOSED"
        with pytest.raises(BucketClosedError):
            allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=1)

    def test_blackout_closes_bucket(self, db_session, org_a, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=10, blackout=True)
        assert sellability_status(bucket) == "CLOSED"

    def test_freesale_is_unbounded(self, db_session, org_a, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, allocation_type="freesale")

        assert get_available(bucket) is UNBOUNDED
        allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=500, as_hold=False)
        bucket = _reload(db_session, bucket.id)
        assert bucket.booked == 500
        assert sellability_status(bucket) == "OPEN"

    def test_on_request_has_no_automatic_inventory(self, db_session, org_a, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=10, allocation_type="on_request")

        assert get_available(bucket) == 0
        with pytest.raises(InsufficientInventoryError):
            allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=1)

    def test_low_threshold_is_strict(self, db_session, org_a, variant_a, make_bucket):
        """Exactly 10% left is OPEN; below 10% is LOW."""
        at_threshold = make_bucket(org_a, variant_a, day=date(2026, 3, 1), quantity=50)
        below = make_bucket(org_a, variant_a, day=date(2026, 3, 2), quantity=50)
        allocation_service.reserve(org_id=org_a.id, bucket_id=at_threshold.id, quantity=45, as_hold=False)
        allocation_service.reserve(org_id=org_a.id, bucket_id=below.id, quantity=46, as_hold=False)

        assert sellability_status(_reload(db_session, at_threshold.id)) == "OPEN"
        assert sellability_status(_reload(db_session, below.id)) == "LOW"

    def test_sold_out_status(self, db_session, org_a, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=2)
        allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=2, as_hold=False)
        assert sellability_status(_reload(db_session, bucket.id)) == "SOLD_OUT"


class TestReservationLifecycle:
    """HELD -> CONFIRMED / RELEASED transitions and their counter effects."""

    def test_confirm_hold_moves_held_to_booked(self, db_session, org_a, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=10)
        reservation = allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=3)
        assert reservation.status == RESERVATION_HELD

        confirmed = allocation_service.confirm_hold(org_id=org_a.id, reservation_id=reservation.id)
        assert confirmed.status == RESERVATION_CONFIRMED

        bucket = _reload(db_session, bucket.id)
        assert bucket.held == 0
        assert bucket.booked == 3

    def test_release_returns_held_units(self, db_session, org_a, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=10)
        reservation = allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=3)

        released = allocation_service.release(org_id=org_a.id, reservation_id=reservation.id, reason="customer_cancel")
        assert released.status == RESERVATION_RELEASED
        assert released.release_reason == "customer_cancel"
        assert _reload(db_session, bucket.id).held == 0

    def test_release_twice_is_rejected(self, db_session, org_a, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=10)
        reservation = allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=3)
        allocation_service.release(org_id=org_a.id, reservation_id=reservation.id)

        with pytest.raises(ReservationStateError):
            allocation_service.release(org_id=org_a.id, reservation_id=reservation.id)
        assert _reload(db_session, bucket.id).held == 0

    def test_confirmed_reservation_cannot_be_released(self, db_session, org_a, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=10)
        reservation = allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=2, as_hold=False)

        with pytest.raises(ReservationStateError):
            allocation_service.release(org_id=org_a.id, reservation_id=reservation.id)

    def test_hold_expires_at_release_deadline(self, db_session, org_a, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=10, release_period_hours=24)
        now = datetime(2026, 2, 1, 12, 0)
        reservation = allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=1, now=now)
        assert reservation.expires_at == datetime(2026, 2, 28, 0, 0)

    def test_invalid_quantity_rejected(self, db_session, org_a, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=10)
        with pytest.raises(ValidationError):
            allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=0)


class TestPools:
    """Shared pool counters."""

    def test_pooled_buckets_share_counters(self, db_session, org_a, variant_a, make_bucket):
        pool = allocation_service.create_pool(org_id=org_a.id, name="Block A", quantity=10)
        first = make_bucket(org_a, variant_a, day=date(2026, 3, 1), inventory_pool_id=pool.id)
        second = make_bucket(org_a, variant_a, day=date(2026, 3, 2), inventory_pool_id=pool.id)

        allocation_service.reserve(org_id=org_a.id, bucket_id=first.id, quantity=6, as_hold=False)
        allocation_service.reserve(org_id=org_a.id, bucket_id=second.id, quantity=4, as_hold=False)

        with pytest.raises(InsufficientInventoryError):
            allocation_service.reserve(org_id=org_a.id, bucket_id=second.id, quantity=1)

        pool_view = allocation_service.get_pool(org_id=org_a.id, pool_id=pool.id)
        assert pool_view["booked"] == 10
        assert pool_view["available"] == 0
        assert sorted(pool_view["member_bucket_ids"]) == sorted([first.id, second.id])

        # Member bucket counters are not used
        assert _reload(db_session, first.id).booked == 0

    def test_pool_member_cannot_carry_quantity(self, db_session, org_a, variant_a, make_bucket):
        pool = allocation_service.create_pool(org_id=org_a.id, name="Block A", quantity=10)
        with pytest.raises(ValidationError):
            make_bucket(org_a, variant_a, quantity=5, inventory_pool_id=pool.id)

    def test_release_on_pool_returns_to_pool(self, db_session, org_a, variant_a, make_bucket):
        pool = allocation_service.create_pool(org_id=org_a.id, name="Block A", quantity=5)
        bucket = make_bucket(org_a, variant_a, inventory_pool_id=pool.id)
        reservation = allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=5)
        allocation_service.release(org_id=org_a.id, reservation_id=reservation.id)

        pool_view = allocation_service.get_pool(org_id=org_a.id, pool_id=pool.id)
        assert pool_view["held"] == 0
        assert pool_view["available"] == 5


class TestBulkCreate:
    """One creation path for single dates and ranges."""

    def test_single_date_duplicate_raises(self, db_session, org_a, variant_a, make_bucket):
        make_bucket(org_a, variant_a, quantity=10)
        with pytest.raises(DuplicateScopeError):
            make_bucket(org_a, variant_a, quantity=20)

    def test_same_date_different_supplier_is_not_duplicate(
        self, db_session, org_a, variant_a, supplier_a, make_bucket
    ):
        make_bucket(org_a, variant_a, quantity=10)
        bucket = make_bucket(org_a, variant_a, supplier=supplier_a, quantity=10)
        assert bucket.supplier_id == supplier_a.id

    def test_range_rerun_reports_all_skipped(self, db_session, org_a, variant_a):
        scopes = expand_scopes(date_from=date(2026, 3, 1), date_to=date(2026, 3, 10))
        terms = BucketTerms(quantity=10)

        first = allocation_service.bulk_create(
            org_id=org_a.id, variant_id=variant_a.id, scopes=scopes, terms=terms, batch_size=3
        )
        assert first.created == 10
        assert first.failed == 0

        second = allocation_service.bulk_create(
            org_id=org_a.id, variant_id=variant_a.id, scopes=scopes, terms=terms, batch_size=3
        )
        assert second.created == 0
        assert second.skipped == 10
        assert {i.code for i in second.items} == {DuplicateScopeError.code}
        assert db_session.query(AllocationBucket).count() == 10

    def test_days_of_week_filter(self):
        # 2026-03-02 is a Monday
        scopes = expand_scopes(date_from=date(2026, 3, 2), date_to=date(2026, 3, 15), days_of_week=[5, 6])
        assert [s.start_date.weekday() for s in scopes] == [5, 6, 5, 6]

    def test_cancel_between_batches(self, db_session, org_a, variant_a):
        scopes = expand_scopes(date_from=date(2026, 3, 1), date_to=date(2026, 3, 6))
        calls = []

        def should_cancel():
            calls.append(1)
            return len(calls) > 1

        result = allocation_service.bulk_create(
            org_id=org_a.id,
            variant_id=variant_a.id,
            scopes=scopes,
            terms=BucketTerms(quantity=5),
            batch_size=2,
            should_cancel=should_cancel,
        )
        assert result.cancelled is True
        assert result.created == 2
        assert result.skipped == 4

    def test_event_and_slot_scopes(self, db_session, org_a, variant_a):
        event = BucketScope.event(date(2026, 7, 1), date(2026, 7, 3))
        assert event.covers(date(2026, 7, 2))
        assert event.key_for(None) == "-|R:2026-07-01/2026-07-03"

        with pytest.raises(ValidationError):
            BucketScope("date", date(2026, 7, 1), date(2026, 7, 2))
        with pytest.raises(ValidationError):
            BucketScope("slot", date(2026, 7, 1), date(2026, 7, 1))

    def test_freesale_with_quantity_rejected(self, db_session, org_a, variant_a, make_bucket):
        with pytest.raises(ValidationError):
            make_bucket(org_a, variant_a, quantity=10, allocation_type="freesale")

    def test_unit_cost_requires_currency(self, db_session, org_a, variant_a, make_bucket):
        with pytest.raises(ValidationError):
            make_bucket(org_a, variant_a, quantity=10, unit_cost=Decimal("40.00"))

    def test_alternates_are_stored_in_order(self, db_session, org_a, variant_a, make_bucket):
        from inventory_engine.models import ProductVariant

        alt_1 = ProductVariant(org_id=org_a.id, name="Twin Room")
        alt_2 = ProductVariant(org_id=org_a.id, name="Suite")
        db_session.add_all([alt_1, alt_2])
        db_session.commit()

        bucket = make_bucket(org_a, variant_a, quantity=5, alternate_variant_ids=(alt_2.id, alt_1.id))
        assert bucket.to_dict()["alternate_variant_ids"] == [alt_2.id, alt_1.id]


class TestDeleteBucket:

    def test_delete_refused_with_live_reservation(self, db_session, org_a, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=10)
        allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=1)

        with pytest.raises(BucketInUseError):
            allocation_service.delete_bucket(org_id=org_a.id, bucket_id=bucket.id)

    def test_delete_removes_terminal_reservations(self, db_session, org_a, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=10)
        reservation = allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=1)
        allocation_service.release(org_id=org_a.id, reservation_id=reservation.id)

        allocation_service.delete_bucket(org_id=org_a.id, bucket_id=bucket.id)
        assert db_session.query(AllocationBucket).count() == 0
        assert db_session.query(Reservation).count() == 0


class TestTenantIsolation:
    """Foreign rows look exactly like missing rows."""

    def test_reserve_on_foreign_bucket(self, db_session, org_a, org_b, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=10)
        with pytest.raises(TenantAccessError):
            allocation_service.reserve(org_id=org_b.id, bucket_id=bucket.id, quantity=1)

    def test_create_with_foreign_variant(self, db_session, org_a, variant_b):
        with pytest.raises(TenantAccessError):
            allocation_service.create_bucket(
                org_id=org_a.id,
                variant_id=variant_b.id,
                scope=BucketScope.single(date(2026, 3, 1)),
                terms=BucketTerms(quantity=1),
            )

    def test_foreign_reservation_not_found(self, db_session, org_a, org_b, variant_a, make_bucket):
        bucket = make_bucket(org_a, variant_a, quantity=10)
        reservation = allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=1)
        with pytest.raises(TenantAccessError):
            allocation_service.release(org_id=org_b.id, reservation_id=reservation.id)
