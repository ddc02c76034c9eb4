# Overview: Service-layer operations for availability; derived per-day projection over allocation buckets.

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterator

from flask import current_app

from ..models import AllocationBucket
from ..validation import ValidationError
from inventory_engine.time_utils import iter_dates
from .allocation_service import (
    STATUS_CLOSED,
    STATUS_LOW,
    STATUS_OPEN,
    STATUS_SOLD_OUT,
    ITEM_FAILED,
    UNBOUNDED,
    BucketTerms,
    bulk_create,
    buckets_for_window,
    expand_scopes,
    get_available,
    is_low,
    load_pools,
    resolve_counters,
)
from .tenant_service import require_variant_in_org, require_variants_in_org

STATUS_UNALLOCATED = "UNALLOCATED"

# Generous upper bound; a year of daily records per call
MAX_WINDOW_DAYS = 366


@dataclass
class _Tally:
    available: int = 0
    booked: int = 0
    held: int = 0
    unbounded: bool = False
    candidates: int = 0
    closed: int = 0
    bucket_ids: list = field(default_factory=list)

    @property
    def inventory(self) -> int:
        return self.available + self.booked

    @property
    def capacity(self) -> int:
        return self.available + self.booked + self.held

    @property
    def all_closed(self) -> bool:
        return self.candidates > 0 and self.closed == self.candidates

    def status(self) -> str:
        if self.candidates == 0:
            return STATUS_UNALLOCATED
        if self.all_closed:
            return STATUS_CLOSED
        if self.unbounded:
            return STATUS_OPEN
        if self.available == 0:
            return STATUS_SOLD_OUT
        if is_low(self.available, self.capacity):
            return STATUS_LOW
        return STATUS_OPEN


@dataclass
class AvailabilityDay:
    """
    Derived per-date aggregate. Never stored; always recomputable.

    total_inventory == total_available + total_booked (held is reported
    separately and already excluded from available). Unbounded (freesale)
    buckets flag the day instead of contributing a number.
    """
    date: date
    total_inventory: int
    total_available: int
    total_booked: int
    total_held: int
    utilization_percentage: float
    status: str
    has_unbounded: bool
    bucket_count: int
    suppliers: list = field(default_factory=list)

    @property
    def is_closed(self) -> bool:
        return self.status == STATUS_CLOSED

    @property
    def is_sold_out(self) -> bool:
        return self.status == STATUS_SOLD_OUT

    @property
    def is_low(self) -> bool:
        return self.status == STATUS_LOW

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "total_inventory": self.total_inventory,
            "total_available": self.total_available,
            "total_booked": self.total_booked,
            "total_held": self.total_held,
            "utilization_percentage": self.utilization_percentage,
            "status": self.status,
            "is_closed": self.is_closed,
            "has_unbounded": self.has_unbounded,
            "bucket_count": self.bucket_count,
            "suppliers": self.suppliers,
        }


def utilization(booked: int, available: int) -> float:
    denominator = booked + available
    if denominator <= 0:
        return 0.0
    return round(booked / denominator * 100, 2)


def build_day(day: date, candidates: list[AllocationBucket], pools: dict) -> AvailabilityDay:
    """
    Aggregate every bucket covering day.

    Pooled buckets resolve to their pool's counters, and each pool is counted
    once per day no matter how many member buckets cover it.
    """
    total = _Tally()
    by_supplier: dict = defaultdict(_Tally)
    counted_booked: set[int] = set()
    counted_available: set[int] = set()

    for bucket in candidates:
        counters = resolve_counters(bucket, pools)
        available = get_available(bucket, counters)
        closed = bucket.is_closed

        for tally in (total, by_supplier[bucket.supplier_id]):
            tally.candidates += 1
            tally.closed += 1 if closed else 0
            tally.bucket_ids.append(bucket.id)

        pool_id = counters.pool_id
        if pool_id is None or pool_id not in counted_booked:
            if pool_id is not None:
                counted_booked.add(pool_id)
            for tally in (total, by_supplier[bucket.supplier_id]):
                tally.booked += counters.booked
                tally.held += counters.held

        if closed:
            continue
        if available is UNBOUNDED:
            total.unbounded = True
            by_supplier[bucket.supplier_id].unbounded = True
            continue
        if pool_id is not None:
            if pool_id in counted_available:
                continue
            counted_available.add(pool_id)
        total.available += available
        by_supplier[bucket.supplier_id].available += available

    suppliers = [
        {
            "supplier_id": supplier_id,
            "available": None if tally.unbounded else tally.available,
            "unbounded": tally.unbounded,
            "booked": tally.booked,
            "held": tally.held,
            "status": tally.status(),
            "bucket_ids": tally.bucket_ids,
        }
        for supplier_id, tally in sorted(
            by_supplier.items(), key=lambda item: (item[0] is None, item[0] or 0)
        )
    ]

    return AvailabilityDay(
        date=day,
        total_inventory=total.inventory,
        total_available=total.available,
        total_booked=total.booked,
        total_held=total.held,
        utilization_percentage=utilization(total.booked, total.available),
        status=total.status(),
        has_unbounded=total.unbounded,
        bucket_count=total.candidates,
        suppliers=suppliers,
    )


class AvailabilityGenerator:
    """
    Lazy, finite, restartable per-day availability over [date_from, date_to].

    Each iteration takes one snapshot read of the buckets (and their pools)
    in the window and derives every day from it. Iterating again re-reads,
    so a second pass reflects writes made in between. Never writes.

        for day in AvailabilityGenerator(org_id=1, variant_id=7, date_from=d1, date_to=d2):
            ...
    """

    def __init__(
        self,
        *,
        org_id: int,
        variant_id: int,
        date_from: date,
        date_to: date,
        supplier_id: int | None = None,
        time_slot_id: int | None = None,
        max_days: int = MAX_WINDOW_DAYS,
    ):
        if date_from > date_to:
            raise ValidationError("date_from cannot be after date_to")
        if (date_to - date_from).days + 1 > max_days:
            raise ValidationError(f"window cannot exceed {max_days} days")
        self.org_id = org_id
        self.variant_id = variant_id
        self.date_from = date_from
        self.date_to = date_to
        self.supplier_id = supplier_id
        self.time_slot_id = time_slot_id

    def __iter__(self) -> Iterator[AvailabilityDay]:
        return self._generate()

    def _candidates_for(self, day: date, buckets: list[AllocationBucket]) -> list[AllocationBucket]:
        matched = []
        for bucket in buckets:
            if not bucket.covers(day):
                continue
            if self.time_slot_id is not None and bucket.time_slot_id not in (None, self.time_slot_id):
                continue
            matched.append(bucket)
        return matched

    def _generate(self) -> Iterator[AvailabilityDay]:
        require_variant_in_org(self.variant_id, self.org_id)
        buckets = buckets_for_window(
            self.org_id,
            self.variant_id,
            self.date_from,
            self.date_to,
            supplier_id=self.supplier_id,
        )
        pools = load_pools(buckets)
        for day in iter_dates(self.date_from, self.date_to):
            yield build_day(day, self._candidates_for(day, buckets), pools)


def generate_availability(
    *,
    org_id: int,
    variant_ids: list[int],
    date_from: date,
    date_to: date,
    quantity: int | None = None,
    supplier_id: int | None = None,
    days_of_week: list[int] | None = None,
    terms: dict | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> list[dict]:
    """
    Seed daily buckets for each variant, then verify with a generator pass.

    Idempotent per (variant, supplier, date): dates that already have a
    bucket report skipped (DuplicateScope) and are left untouched.
    """
    if not variant_ids:
        raise ValidationError("variant_ids is required")
    require_variants_in_org(variant_ids, org_id)
    if date_from <= date_to and (date_to - date_from).days + 1 > MAX_WINDOW_DAYS:
        raise ValidationError(f"window cannot exceed {MAX_WINDOW_DAYS} days")
    if quantity is None:
        quantity = int(current_app.config.get("DEFAULT_DAILY_QUANTITY", 10))
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        raise ValidationError("quantity must be >= 0")

    scopes = expand_scopes(date_from=date_from, date_to=date_to, days_of_week=days_of_week)
    if not scopes:
        raise ValidationError("no dates in range match days_of_week")
    bucket_terms = BucketTerms.from_patch({**(terms or {}), "quantity": quantity})

    summaries = []
    for variant_id in variant_ids:
        result = bulk_create(
            org_id=org_id,
            variant_id=variant_id,
            scopes=scopes,
            terms=bucket_terms,
            supplier_id=supplier_id,
            should_cancel=should_cancel,
        )

        expected = {s.start_date for s in scopes}
        covered = {
            day.date
            for day in AvailabilityGenerator(
                org_id=org_id,
                variant_id=variant_id,
                date_from=date_from,
                date_to=date_to,
                supplier_id=supplier_id,
            )
            if day.bucket_count
        }
        missing = sorted(expected - covered)
        if missing and not result.cancelled:
            current_app.logger.warning(
                "Availability verify found %d uncovered date(s) variant_id=%s", len(missing), variant_id
            )

        summaries.append({
            "variant_id": variant_id,
            "created": result.created,
            "skipped": result.skipped,
            "failed": result.failed,
            "cancelled": result.cancelled,
            "missing_dates": [d.isoformat() for d in missing],
            "failures": [i.to_dict() for i in result.items if i.status == ITEM_FAILED],
        })
    return summaries
