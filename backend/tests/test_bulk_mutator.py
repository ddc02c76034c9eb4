# Overview: Pytest coverage for bulk edits across a date range.

from datetime import date

import pytest
from inventory_engine.models import AllocationBucket, InventoryPool
from inventory_engine.services import allocation_service, bulk_service
from inventory_engine.services.allocation_service import BucketTerms, expand_scopes
from inventory_engine.services.bulk_service import BulkAction
from inventory_engine.validation import ValidationError


def _seed(org, variant, quantity=10, days=5, **terms):
    allocation_service.bulk_create(
        org_id=org.id,
        variant_id=variant.id,
        scopes=expand_scopes(date_from=date(2026, 3, 1), date_to=date(2026, 3, days)),
        terms=BucketTerms(quantity=quantity, **terms),
    )


def _update(org, variant, action, payload=None, date_from=date(2026, 3, 1), date_to=date(2026, 3, 5), **kwargs):
    return bulk_service.bulk_update(
        org_id=org.id,
        variant_id=variant.id,
        date_from=date_from,
        date_to=date_to,
        action=BulkAction.from_payload(action, payload),
        **kwargs,
    )


def _quantities(db_session):
    db_session.expire_all()
    return [b.quantity for b in db_session.query(AllocationBucket).order_by(AllocationBucket.start_date)]


class TestBulkActions:

    def test_adjust_every_date(self, db_session, org_a, variant_a):
        _seed(org_a, variant_a)
        report = _update(org_a, variant_a, "ADJUST", {"delta": -3})

        assert {r["status"] for r in report} == {"success"}
        assert _quantities(db_session) == [7] * 5

    def test_adjust_floors_at_zero(self, db_session, org_a, variant_a):
        _seed(org_a, variant_a, quantity=2)
        _update(org_a, variant_a, "ADJUST", {"delta": -5})
        assert _quantities(db_session) == [0] * 5

    def test_adjust_without_floor_fails_dates(self, db_session, org_a, variant_a):
        _seed(org_a, variant_a, quantity=2)
        report = _update(org_a, variant_a, "ADJUST", {"delta": -5, "floor_at_zero": False})
        assert {r["status"] for r in report} == {"failed"}
        assert _quantities(db_session) == [2] * 5

    def test_set_below_committed_fails_only_that_date(self, db_session, org_a, variant_a):
        _seed(org_a, variant_a)
        bucket = db_session.query(AllocationBucket).filter_by(start_date=date(2026, 3, 2)).one()
        allocation_service.reserve(org_id=org_a.id, bucket_id=bucket.id, quantity=9, as_hold=False)

        report = _update(org_a, variant_a, "SET", {"value": 5})
        statuses = {r["date"]: r["status"] for r in report}

        assert statuses["2026-03-02"] == "failed"
        assert sum(1 for s in statuses.values() if s == "success") == 4
        assert _quantities(db_session) == [5, 10, 5, 5, 5]

    def test_close_and_open(self, db_session, org_a, variant_a):
        _seed(org_a, variant_a)
        _update(org_a, variant_a, "CLOSE")

        db_session.expire_all()
        assert all(b.stop_sell for b in db_session.query(AllocationBucket))

        _update(org_a, variant_a, "OPEN", date_from=date(2026, 3, 1), date_to=date(2026, 3, 2))
        db_session.expire_all()
        flags = [b.stop_sell for b in db_session.query(AllocationBucket).order_by(AllocationBucket.start_date)]
        assert flags == [False, False, True, True, True]

    def test_open_keeps_blackout_unless_cleared(self, db_session, org_a, variant_a):
        _seed(org_a, variant_a, days=1, blackout=True)
        _update(org_a, variant_a, "OPEN", date_to=date(2026, 3, 1))
        db_session.expire_all()
        assert db_session.query(AllocationBucket).one().blackout is True

        _update(org_a, variant_a, "OPEN", {"clear_blackout": True}, date_to=date(2026, 3, 1))
        db_session.expire_all()
        assert db_session.query(AllocationBucket).one().blackout is False

    def test_annotate(self, db_session, org_a, variant_a):
        _seed(org_a, variant_a, days=2)
        _update(org_a, variant_a, "ANNOTATE", {"text": "Renovation week"}, date_to=date(2026, 3, 2))
        db_session.expire_all()
        assert {b.notes for b in db_session.query(AllocationBucket)} == {"Renovation week"}

    def test_dates_without_buckets_are_skipped(self, db_session, org_a, variant_a):
        _seed(org_a, variant_a, days=2)
        report = _update(org_a, variant_a, "ADJUST", {"delta": 1}, date_to=date(2026, 3, 4))

        assert [r["status"] for r in report] == ["success", "success", "skipped", "skipped"]
        assert db_session.query(AllocationBucket).count() == 2

    def test_days_of_week_filter(self, db_session, org_a, variant_a):
        _seed(org_a, variant_a, days=7)
        # 2026-03-01 is a Sunday
        report = _update(org_a, variant_a, "ADJUST", {"delta": 1}, date_to=date(2026, 3, 7), days_of_week=[6])
        assert [r["date"] for r in report] == ["2026-03-01"]

    def test_freesale_skipped_for_quantity_edits(self, db_session, org_a, variant_a, make_bucket):
        make_bucket(org_a, variant_a, allocation_type="freesale")
        report = _update(org_a, variant_a, "SET", {"value": 3}, date_to=date(2026, 3, 1))
        assert report[0]["status"] == "skipped"

    def test_pool_adjusted_once(self, db_session, org_a, variant_a):
        pool = allocation_service.create_pool(org_id=org_a.id, name="Block", quantity=10)
        _seed_pool = BucketTerms(inventory_pool_id=pool.id)
        allocation_service.bulk_create(
            org_id=org_a.id,
            variant_id=variant_a.id,
            scopes=expand_scopes(date_from=date(2026, 3, 1), date_to=date(2026, 3, 3)),
            terms=_seed_pool,
        )

        report = _update(org_a, variant_a, "ADJUST", {"delta": 5}, date_to=date(2026, 3, 3), batch_size=2)
        assert {r["status"] for r in report} == {"success"}

        db_session.expire_all()
        assert db_session.get(InventoryPool, pool.id).quantity == 15

    def test_event_bucket_mutated_once(self, db_session, org_a, variant_a):
        allocation_service.create_bucket(
            org_id=org_a.id,
            variant_id=variant_a.id,
            scope=allocation_service.BucketScope.event(date(2026, 3, 1), date(2026, 3, 3)),
            terms=BucketTerms(quantity=20),
        )
        _update(org_a, variant_a, "ADJUST", {"delta": 2}, date_to=date(2026, 3, 3))
        assert _quantities(db_session) == [22]


class TestBulkActionParsing:

    def test_unknown_action(self):
        with pytest.raises(ValidationError):
            BulkAction.from_payload("DELETE", {})

    def test_adjust_requires_delta(self):
        with pytest.raises(ValidationError):
            BulkAction.from_payload("ADJUST", {})

    def test_set_rejects_negative(self):
        with pytest.raises(ValidationError):
            BulkAction.from_payload("SET", {"value": -1})

    def test_action_is_case_insensitive(self):
        assert BulkAction.from_payload("close", None).kind == "CLOSE"
