# Overview: Service-layer operations for the allocation store; authoritative counters and reservations.

# backend/inventory_engine/services/allocation_service.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Optional

from flask import current_app
from sqlalchemy import and_, case, exists, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import AllocationBucket, InventoryPool, Reservation
from ..models.allocations import (
    ALLOCATION_COMMITTED,
    ALLOCATION_FREESALE,
    ALLOCATION_ON_REQUEST,
    ALLOCATION_TYPES,
    RESERVATION_CONFIRMED,
    RESERVATION_EXPIRED,
    RESERVATION_HELD,
    RESERVATION_LIVE_STATUSES,
    RESERVATION_RELEASED,
    SCOPE_DATE,
    SCOPE_RANGE,
    SCOPE_SLOT,
)
from ..validation import CapacityError, ConcurrencyError, ConflictError, ValidationError, require_currency
from inventory_engine.time_utils import iter_dates, utcnow
from .concurrency import lock_for_update, run_with_retry
from .tenant_service import (
    TenantAccessError,
    require_pool_in_org,
    require_supplier_in_org,
    require_time_slot_for_variant,
    require_variant_in_org,
    scoped_query,
)
"""
Allocation Store Invariants (authoritative)

Counters:
- booked + held <= quantity + (allow_overbooking ? overbooking_limit : 0) whenever quantity is set.
  Checked in the guarded UPDATE of every counter write and again by a table CHECK constraint.
- quantity NULL (or allocation_type='freesale') means unconstrained: available is UNBOUNDED.
- allocation_type='on_request' has zero automatically-available inventory.
- stop_sell or blackout forces available = 0 (closure always wins).

Pools:
- A bucket with inventory_pool_id reads and writes the POOL's counters; its own are ignored.
  resolve_counters() is the only way any component reads counters.

Sellability is derived, never stored:
- CLOSED (stop_sell || blackout) overrides everything
- SOLD_OUT when available == 0
- LOW when available / capacity < LOW_AVAILABILITY_THRESHOLD_PCT (strict <)
- OPEN otherwise

Concurrency:
- Counter writes are single guarded UPDATE statements (single writer per row),
  so concurrent Reserve() calls can never jointly exceed the ceiling.
- OperationalError/StaleDataError are retried once, then RetryExhaustedError.

Range operations:
- BulkCreate commits in batches (ALLOCATION_BATCH_SIZE); batches are independent.
- Every item resolves to exactly one of created / skipped / failed.
"""


STATUS_OPEN = "OPEN"
STATUS_LOW = "LOW"
STATUS_SOLD_OUT = "SOLD_OUT"
STATUS_CLOSED = "CLOSED"

ITEM_CREATED = "created"
ITEM_SKIPPED = "skipped"
ITEM_FAILED = "failed"


class _Unbounded:
    """Availability of an unconstrained (freesale) bucket."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNBOUNDED"

    def __bool__(self) -> bool:
        return True


UNBOUNDED = _Unbounded()


class DuplicateScopeError(ConflictError):
    """A bucket already exists for this (variant, supplier, scope)."""
    code = "duplicate_scope"


class BucketInUseError(ConflictError):
    code = "bucket_in_use"


class ReservationStateError(ConflictError):
    code = "invalid_reservation_state"


class InsufficientInventoryError(CapacityError):
    code = "insufficient_inventory"


class BucketClosedError(CapacityError):
    code = "closed"


class ReleasePeriodPassedError(CapacityError):
    """The bucket's release deadline has passed; its units are back with the supplier."""
    code = "release_period_passed"


# =============================================================================
# Scope and terms
# =============================================================================

@dataclass(frozen=True)
class BucketScope:
    """Exactly one of: single date, event date-range, date + time slot."""
    kind: str
    start_date: date
    end_date: date
    time_slot_id: int | None = None

    def __post_init__(self):
        if self.kind not in (SCOPE_DATE, SCOPE_RANGE, SCOPE_SLOT):
            raise ValidationError(f"scope type must be one of {SCOPE_DATE}, {SCOPE_RANGE}, {SCOPE_SLOT}")
        if not isinstance(self.start_date, date) or not isinstance(self.end_date, date):
            raise ValidationError("scope dates are required")
        if self.start_date > self.end_date:
            raise ValidationError("scope start_date cannot be after end_date")
        if self.kind != SCOPE_RANGE and self.start_date != self.end_date:
            raise ValidationError(f"{self.kind} scope covers exactly one date")
        if self.kind == SCOPE_SLOT and self.time_slot_id is None:
            raise ValidationError("slot scope requires time_slot_id")
        if self.kind != SCOPE_SLOT and self.time_slot_id is not None:
            raise ValidationError("time_slot_id is only valid for slot scope")

    @classmethod
    def single(cls, day: date) -> "BucketScope":
        return cls(SCOPE_DATE, day, day)

    @classmethod
    def event(cls, start: date, end: date) -> "BucketScope":
        return cls(SCOPE_RANGE, start, end)

    @classmethod
    def slot(cls, day: date, time_slot_id: int) -> "BucketScope":
        return cls(SCOPE_SLOT, day, day, time_slot_id)

    def key_for(self, supplier_id: int | None) -> str:
        owner = "-" if supplier_id is None else str(supplier_id)
        if self.kind == SCOPE_DATE:
            scope = f"D:{self.start_date.isoformat()}"
        elif self.kind == SCOPE_RANGE:
            scope = f"R:{self.start_date.isoformat()}/{self.end_date.isoformat()}"
        else:
            scope = f"S:{self.start_date.isoformat()}@{self.time_slot_id}"
        return f"{owner}|{scope}"

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def to_dict(self) -> dict:
        return {
            "type": self.kind,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "time_slot_id": self.time_slot_id,
        }


def expand_scopes(
    *,
    date_from: date,
    date_to: date,
    days_of_week: Optional[Iterable[int]] = None,
    time_slot_ids: Optional[Iterable[int]] = None,
) -> list[BucketScope]:
    """
    Range expansion for BulkCreate: one date (or date+slot) scope per day.

    A single-date allocation is just date_from == date_to.
    """
    if date_from > date_to:
        raise ValidationError("date_from cannot be after date_to")
    slots = list(time_slot_ids or [])
    scopes: list[BucketScope] = []
    for day in iter_dates(date_from, date_to, days_of_week):
        if slots:
            scopes.extend(BucketScope.slot(day, slot_id) for slot_id in slots)
        else:
            scopes.append(BucketScope.single(day))
    return scopes


@dataclass(frozen=True)
class BucketTerms:
    """Everything about a bucket except its identity (variant, supplier, scope)."""
    quantity: int | None = None
    allocation_type: str = ALLOCATION_COMMITTED
    unit_cost: Decimal | None = None
    currency: str | None = None
    stop_sell: bool = False
    blackout: bool = False
    allow_overbooking: bool = False
    overbooking_limit: int = 0
    release_period_hours: int | None = None
    min_stay: int | None = None
    max_stay: int | None = None
    min_occupancy: int | None = None
    max_occupancy: int | None = None
    inventory_pool_id: int | None = None
    alternate_variant_ids: tuple = field(default_factory=tuple)
    notes: str | None = None

    @classmethod
    def from_patch(cls, patch: dict) -> "BucketTerms":
        known = {f for f in cls.__dataclass_fields__}
        values = {k: v for k, v in patch.items() if k in known and v is not None}
        if "alternate_variant_ids" in values:
            values["alternate_variant_ids"] = tuple(values["alternate_variant_ids"])
        return cls(**values)

    def validate(self) -> None:
        if self.allocation_type not in ALLOCATION_TYPES:
            raise ValidationError(f"allocation_type must be one of {', '.join(ALLOCATION_TYPES)}")
        if self.quantity is not None and self.quantity < 0:
            raise ValidationError("quantity must be >= 0")
        if self.allocation_type == ALLOCATION_FREESALE and self.quantity is not None:
            raise ValidationError("freesale allocations are unconstrained; omit quantity")
        if self.overbooking_limit < 0:
            raise ValidationError("overbooking_limit must be >= 0")
        if self.overbooking_limit and not self.allow_overbooking:
            raise ValidationError("overbooking_limit requires allow_overbooking")
        if self.unit_cost is not None:
            if self.unit_cost < 0:
                raise ValidationError("unit_cost must be >= 0")
            if self.currency is None:
                raise ValidationError("currency is required with unit_cost")
        if self.currency is not None:
            require_currency(self.currency)
        if self.release_period_hours is not None and self.release_period_hours < 0:
            raise ValidationError("release_period_hours must be >= 0")
        if self.inventory_pool_id is not None and self.quantity is not None:
            raise ValidationError("quantity is managed by the inventory pool; omit it")
        for alt in self.alternate_variant_ids:
            if isinstance(alt, bool) or not isinstance(alt, int):
                raise ValidationError("alternate_variant_ids must be variant ids")


@dataclass
class BulkItemResult:
    scope: BucketScope
    status: str
    bucket_id: int | None = None
    error: str | None = None
    code: str | None = None

    def to_dict(self) -> dict:
        data = {"scope": self.scope.to_dict(), "status": self.status, "bucket_id": self.bucket_id}
        if self.error:
            data["error"] = self.error
            data["code"] = self.code
        return data


@dataclass
class BulkCreateResult:
    items: list[BulkItemResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def created(self) -> int:
        return sum(1 for i in self.items if i.status == ITEM_CREATED)

    @property
    def skipped(self) -> int:
        return sum(1 for i in self.items if i.status == ITEM_SKIPPED)

    @property
    def failed(self) -> int:
        return sum(1 for i in self.items if i.status == ITEM_FAILED)

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "items": [i.to_dict() for i in self.items],
        }


# =============================================================================
# Counter resolution (every component reads counters through here)
# =============================================================================

@dataclass(frozen=True)
class Counters:
    quantity: int | None
    booked: int
    held: int
    allow_overbooking: bool
    overbooking_limit: int
    pool_id: int | None = None

    @property
    def ceiling(self) -> int | None:
        if self.quantity is None:
            return None
        return self.quantity + (self.overbooking_limit if self.allow_overbooking else 0)


def resolve_counters(bucket: AllocationBucket, pools: dict[int, InventoryPool] | None = None) -> Counters:
    """Counters for a bucket, taken from its pool when it has one."""
    if bucket.inventory_pool_id is not None:
        pool = pools.get(bucket.inventory_pool_id) if pools is not None else None
        if pool is None:
            pool = bucket.pool
        return Counters(
            quantity=pool.quantity,
            booked=pool.booked or 0,
            held=pool.held or 0,
            allow_overbooking=bool(pool.allow_overbooking),
            overbooking_limit=pool.overbooking_limit or 0,
            pool_id=pool.id,
        )
    return Counters(
        quantity=bucket.quantity,
        booked=bucket.booked or 0,
        held=bucket.held or 0,
        allow_overbooking=bool(bucket.allow_overbooking),
        overbooking_limit=bucket.overbooking_limit or 0,
    )


def is_unconstrained(bucket: AllocationBucket, counters: Counters) -> bool:
    return bucket.allocation_type == ALLOCATION_FREESALE or counters.quantity is None


def get_available(bucket: AllocationBucket, counters: Counters | None = None):
    """
    Sellable units for a bucket: an int >= 0, or UNBOUNDED.

    Closure always wins; on-request never offers automatic inventory.
    """
    if counters is None:
        counters = resolve_counters(bucket)
    if bucket.is_closed:
        return 0
    if bucket.allocation_type == ALLOCATION_ON_REQUEST:
        return 0
    if is_unconstrained(bucket, counters):
        return UNBOUNDED
    return max(0, counters.ceiling - counters.booked - counters.held)


def _low_threshold_pct() -> int:
    return int(current_app.config.get("LOW_AVAILABILITY_THRESHOLD_PCT", 10))


def is_low(available: int, capacity: int, threshold_pct: int | None = None) -> bool:
    """
    Strictly below threshold_pct percent of capacity (integer math, no float edge).

    capacity is available + booked + held for buckets and calendar days alike.
    """
    if threshold_pct is None:
        threshold_pct = _low_threshold_pct()
    if capacity <= 0:
        return False
    return available * 100 < threshold_pct * capacity


def sellability_status(bucket: AllocationBucket, counters: Counters | None = None) -> str:
    if counters is None:
        counters = resolve_counters(bucket)
    if bucket.is_closed:
        return STATUS_CLOSED
    available = get_available(bucket, counters)
    if available is UNBOUNDED:
        return STATUS_OPEN
    if available == 0:
        return STATUS_SOLD_OUT
    if is_low(available, available + counters.booked + counters.held):
        return STATUS_LOW
    return STATUS_OPEN


def describe_bucket(bucket: AllocationBucket, counters: Counters | None = None) -> dict:
    if counters is None:
        counters = resolve_counters(bucket)
    available = get_available(bucket, counters)
    data = bucket.to_dict()
    data["effective_counters"] = {
        "quantity": counters.quantity,
        "booked": counters.booked,
        "held": counters.held,
        "pool_id": counters.pool_id,
    }
    data["available"] = None if available is UNBOUNDED else available
    data["unbounded"] = available is UNBOUNDED
    data["status"] = sellability_status(bucket, counters)
    return data


def buckets_for_window(
    org_id: int,
    variant_id: int,
    date_from: date,
    date_to: date,
    *,
    supplier_id: int | None = None,
    time_slot_id: int | None = None,
) -> list[AllocationBucket]:
    """Buckets whose scope overlaps [date_from, date_to]."""
    q = scoped_query(AllocationBucket, org_id).filter(
        AllocationBucket.variant_id == variant_id,
        AllocationBucket.start_date <= date_to,
        AllocationBucket.end_date >= date_from,
    )
    if supplier_id is not None:
        q = q.filter(AllocationBucket.supplier_id == supplier_id)
    if time_slot_id is not None:
        q = q.filter(AllocationBucket.time_slot_id == time_slot_id)
    return q.order_by(AllocationBucket.start_date.asc(), AllocationBucket.id.asc()).all()


def load_pools(buckets: Iterable[AllocationBucket]) -> dict[int, InventoryPool]:
    pool_ids = {b.inventory_pool_id for b in buckets if b.inventory_pool_id is not None}
    if not pool_ids:
        return {}
    pools = db.session.query(InventoryPool).filter(InventoryPool.id.in_(pool_ids)).all()
    return {p.id: p for p in pools}


# =============================================================================
# Guarded counter writes
# =============================================================================

def _counter_table(pool_id: int | None):
    return InventoryPool.__table__ if pool_id is not None else AllocationBucket.__table__


def _apply_counter_delta(
    *,
    bucket_id: int,
    pool_id: int | None,
    booked_delta: int = 0,
    held_delta: int = 0,
    enforce_ceiling: bool = True,
    require_open: bool = False,
) -> bool:
    """
    Single-statement counter write on the counter owner (bucket or pool).

    The WHERE clause carries every invariant, so the row is only touched when
    the result is valid; returns False when it was not (lost race, closed,
    insufficient). Never reads-then-writes.
    """
    t = _counter_table(pool_id)
    owner_id = pool_id if pool_id is not None else bucket_id

    stmt = (
        update(t)
        .where(t.c.id == owner_id)
        .values(
            booked=t.c.booked + booked_delta,
            held=t.c.held + held_delta,
            version_id=t.c.version_id + 1,
        )
    )

    growth = booked_delta + held_delta
    if enforce_ceiling and growth > 0:
        ceiling = t.c.quantity + case((t.c.allow_overbooking.is_(True), t.c.overbooking_limit), else_=0)
        stmt = stmt.where(or_(t.c.quantity.is_(None), t.c.booked + t.c.held + growth <= ceiling))
    if booked_delta < 0:
        stmt = stmt.where(t.c.booked + booked_delta >= 0)
    if held_delta < 0:
        stmt = stmt.where(t.c.held + held_delta >= 0)
    if require_open:
        b = AllocationBucket.__table__
        stmt = stmt.where(
            exists().where(and_(b.c.id == bucket_id, b.c.stop_sell.is_(False), b.c.blackout.is_(False)))
        )

    result = db.session.execute(stmt)
    return result.rowcount == 1


def _get_bucket(org_id: int, bucket_id: int, *, lock: bool = False) -> AllocationBucket:
    q = scoped_query(AllocationBucket, org_id).filter(AllocationBucket.id == bucket_id)
    if lock:
        q = lock_for_update(q)
    bucket = q.first()
    if bucket is None:
        raise TenantAccessError("Allocation not found")
    return bucket


def get_bucket(*, org_id: int, bucket_id: int) -> dict:
    return describe_bucket(_get_bucket(org_id, bucket_id))


# =============================================================================
# Create (single and bulk share one path)
# =============================================================================

def _validate_identity(org_id: int, variant_id: int, supplier_id: int | None, terms: BucketTerms) -> None:
    require_variant_in_org(variant_id, org_id)
    if supplier_id is not None:
        require_supplier_in_org(supplier_id, org_id)
    if terms.inventory_pool_id is not None:
        pool = require_pool_in_org(terms.inventory_pool_id, org_id)
        if pool.supplier_id is not None and pool.supplier_id != supplier_id:
            raise ValidationError("inventory pool belongs to a different supplier")
    for alt in terms.alternate_variant_ids:
        if alt == variant_id:
            raise ValidationError("a variant cannot be its own alternate")
        require_variant_in_org(alt, org_id)


def _new_bucket(org_id: int, variant_id: int, supplier_id: int | None, scope: BucketScope, terms: BucketTerms) -> AllocationBucket:
    return AllocationBucket(
        org_id=org_id,
        variant_id=variant_id,
        supplier_id=supplier_id,
        scope_type=scope.kind,
        start_date=scope.start_date,
        end_date=scope.end_date,
        time_slot_id=scope.time_slot_id,
        scope_key=scope.key_for(supplier_id),
        quantity=terms.quantity,
        booked=0,
        held=0,
        allocation_type=terms.allocation_type,
        stop_sell=terms.stop_sell,
        blackout=terms.blackout,
        allow_overbooking=terms.allow_overbooking,
        overbooking_limit=terms.overbooking_limit,
        unit_cost=terms.unit_cost,
        currency=terms.currency,
        release_period_hours=terms.release_period_hours,
        min_stay=terms.min_stay,
        max_stay=terms.max_stay,
        min_occupancy=terms.min_occupancy,
        max_occupancy=terms.max_occupancy,
        inventory_pool_id=terms.inventory_pool_id,
        alternate_variant_ids=list(terms.alternate_variant_ids) or None,
        notes=terms.notes,
    )


def _insert_batch(
    org_id: int,
    variant_id: int,
    supplier_id: int | None,
    batch: list[BucketScope],
    terms: BucketTerms,
) -> list[BulkItemResult]:
    keys = [s.key_for(supplier_id) for s in batch]
    existing = {
        row.scope_key
        for row in db.session.query(AllocationBucket.scope_key).filter(
            AllocationBucket.org_id == org_id,
            AllocationBucket.variant_id == variant_id,
            AllocationBucket.scope_key.in_(keys),
        )
    }

    results: list[BulkItemResult] = []
    pending: list[tuple[BulkItemResult, AllocationBucket]] = []
    for scope, key in zip(batch, keys):
        if key in existing:
            results.append(BulkItemResult(
                scope=scope,
                status=ITEM_SKIPPED,
                error="allocation already exists for this variant, supplier and scope",
                code=DuplicateScopeError.code,
            ))
            continue
        existing.add(key)
        bucket = _new_bucket(org_id, variant_id, supplier_id, scope, terms)
        db.session.add(bucket)
        item = BulkItemResult(scope=scope, status=ITEM_CREATED)
        pending.append((item, bucket))
        results.append(item)

    db.session.flush()
    for item, bucket in pending:
        item.bucket_id = bucket.id
    db.session.commit()
    return results


def _create_batch(org_id, variant_id, supplier_id, batch, terms) -> list[BulkItemResult]:
    # A concurrent creator can win the unique index between the duplicate
    # check and the insert; redo the batch once so those rows report skipped.
    for attempt in range(2):
        try:
            return _insert_batch(org_id, variant_id, supplier_id, batch, terms)
        except IntegrityError:
            db.session.rollback()
            if attempt:
                raise
    return []


def bulk_create(
    *,
    org_id: int,
    variant_id: int,
    scopes: list[BucketScope],
    terms: BucketTerms,
    supplier_id: int | None = None,
    batch_size: int | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> BulkCreateResult:
    """
    Create one bucket per scope, in independent batches.

    WHY batches: a year of daily buckets should not be one giant transaction,
    and long runs can be cooperatively cancelled between batches. A batch
    that fails does not roll back batches already committed.

    Validation (identity, terms, scopes) is synchronous and all-or-nothing:
    nothing is written if it fails.
    """
    terms.validate()
    if not scopes:
        raise ValidationError("at least one scope is required")
    _validate_identity(org_id, variant_id, supplier_id, terms)
    for slot_id in {s.time_slot_id for s in scopes if s.time_slot_id is not None}:
        require_time_slot_for_variant(slot_id, variant_id, org_id)

    if batch_size is None:
        batch_size = int(current_app.config.get("ALLOCATION_BATCH_SIZE", 100))
    batch_size = max(1, batch_size)

    result = BulkCreateResult()
    for start in range(0, len(scopes), batch_size):
        batch = scopes[start:start + batch_size]
        if should_cancel is not None and should_cancel():
            result.cancelled = True
            result.items.extend(
                BulkItemResult(scope=s, status=ITEM_SKIPPED, error="cancelled before this batch", code="cancelled")
                for s in scopes[start:]
            )
            current_app.logger.info(
                "Bulk create cancelled variant_id=%s remaining=%d", variant_id, len(scopes) - start
            )
            break
        try:
            result.items.extend(run_with_retry(
                lambda batch=batch: _create_batch(org_id, variant_id, supplier_id, batch, terms)
            ))
        except (SQLAlchemyError, ConcurrencyError) as exc:
            db.session.rollback()
            current_app.logger.exception(
                "Bulk create batch failed variant_id=%s batch_start=%d", variant_id, start
            )
            result.items.extend(
                BulkItemResult(scope=s, status=ITEM_FAILED, error=str(exc.__class__.__name__), code="batch_failed")
                for s in batch
            )

    current_app.logger.info(
        "Bulk create variant_id=%s supplier_id=%s created=%d skipped=%d failed=%d",
        variant_id, supplier_id, result.created, result.skipped, result.failed,
    )
    return result


def create_bucket(
    *,
    org_id: int,
    variant_id: int,
    scope: BucketScope,
    terms: BucketTerms,
    supplier_id: int | None = None,
) -> AllocationBucket:
    """CreateBucket: a one-element BulkCreate that raises instead of reporting."""
    result = bulk_create(
        org_id=org_id,
        variant_id=variant_id,
        scopes=[scope],
        terms=terms,
        supplier_id=supplier_id,
    )
    item = result.items[0]
    if item.status == ITEM_CREATED:
        return db.session.get(AllocationBucket, item.bucket_id)
    if item.code == DuplicateScopeError.code:
        raise DuplicateScopeError(item.error)
    raise ConflictError(item.error or "allocation could not be created")


def delete_bucket(*, org_id: int, bucket_id: int) -> None:
    """
    Delete a bucket with no live inventory.

    Refused while booked/held are non-zero or any HELD/CONFIRMED reservation
    references it. Terminal (released/expired) reservation rows go with it.
    """
    def _op():
        bucket = _get_bucket(org_id, bucket_id, lock=True)
        live = db.session.query(Reservation.id).filter(
            Reservation.bucket_id == bucket.id,
            Reservation.status.in_(RESERVATION_LIVE_STATUSES),
        ).count()
        if live:
            raise BucketInUseError(f"allocation has {live} live reservation(s)")
        if bucket.inventory_pool_id is None and (bucket.booked or bucket.held):
            raise BucketInUseError("allocation has booked or held units")

        db.session.query(Reservation).filter(Reservation.bucket_id == bucket.id).delete(
            synchronize_session=False
        )
        db.session.delete(bucket)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# Pools
# =============================================================================

def create_pool(
    *,
    org_id: int,
    name: str,
    quantity: int | None,
    allow_overbooking: bool = False,
    overbooking_limit: int = 0,
    supplier_id: int | None = None,
    currency: str | None = None,
    reference: str | None = None,
    valid_from: date | None = None,
    valid_to: date | None = None,
) -> InventoryPool:
    if not name or not str(name).strip():
        raise ValidationError("name is required")
    if quantity is not None and quantity < 0:
        raise ValidationError("quantity must be >= 0")
    if overbooking_limit < 0:
        raise ValidationError("overbooking_limit must be >= 0")
    if overbooking_limit and not allow_overbooking:
        raise ValidationError("overbooking_limit requires allow_overbooking")
    if valid_from and valid_to and valid_from > valid_to:
        raise ValidationError("valid_from cannot be after valid_to")
    if currency is not None:
        currency = require_currency(currency)
    if supplier_id is not None:
        require_supplier_in_org(supplier_id, org_id)

    pool = InventoryPool(
        org_id=org_id,
        supplier_id=supplier_id,
        name=str(name).strip(),
        reference=reference,
        quantity=quantity,
        booked=0,
        held=0,
        allow_overbooking=allow_overbooking,
        overbooking_limit=overbooking_limit,
        currency=currency,
        valid_from=valid_from,
        valid_to=valid_to,
    )
    db.session.add(pool)
    db.session.commit()
    return pool


def get_pool(*, org_id: int, pool_id: int) -> dict:
    pool = require_pool_in_org(pool_id, org_id)
    data = pool.to_dict()
    counters = Counters(pool.quantity, pool.booked, pool.held, pool.allow_overbooking, pool.overbooking_limit, pool.id)
    data["available"] = None if counters.ceiling is None else max(0, counters.ceiling - pool.booked - pool.held)
    data["member_bucket_ids"] = [b.id for b in pool.buckets]
    return data


# =============================================================================
# Reservations
# =============================================================================

def _capacity_error(org_id: int, bucket_id: int, requested: int) -> CapacityError:
    db.session.rollback()
    bucket = _get_bucket(org_id, bucket_id)
    db.session.refresh(bucket)
    if bucket.inventory_pool_id is not None:
        db.session.refresh(bucket.pool)
    if bucket.is_closed:
        return BucketClosedError("allocation is closed (stop-sell or blackout)", requested=requested, available=0)
    available = get_available(bucket)
    available = requested if available is UNBOUNDED else available
    return InsufficientInventoryError(
        f"insufficient inventory: requested {requested}, available {available}",
        requested=requested,
        available=available,
    )


def reserve(
    *,
    org_id: int,
    bucket_id: int,
    quantity: int,
    as_hold: bool = True,
    selection_ref: str | None = None,
    now: datetime | None = None,
) -> Reservation:
    """
    Reserve units atomically against one bucket (or its pool).

    as_hold=True  -> held += quantity, reservation HELD (expires at the release deadline)
    as_hold=False -> booked += quantity, reservation CONFIRMED

    Raises:
        BucketClosedError, InsufficientInventoryError: with requested/available
        ReleasePeriodPassedError: a hold requested after the release deadline
        RetryExhaustedError: the counter write kept conflicting
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")

    def _op():
        bucket = _get_bucket(org_id, bucket_id)
        if bucket.is_closed:
            raise BucketClosedError(
                "allocation is closed (stop-sell or blackout)", requested=quantity, available=0
            )
        if bucket.allocation_type == ALLOCATION_ON_REQUEST:
            raise InsufficientInventoryError(
                "on-request allocation has no automatically available inventory",
                requested=quantity,
                available=0,
            )

        created_at = now or utcnow()
        deadline = release_deadline(bucket) if as_hold else None
        if deadline is not None and created_at >= deadline:
            raise ReleasePeriodPassedError(
                f"release deadline {deadline.isoformat()}Z has passed; holds are no longer accepted",
                requested=quantity,
                available=0,
            )

        pool_id = bucket.inventory_pool_id
        unconstrained = bucket.allocation_type == ALLOCATION_FREESALE

        ok = _apply_counter_delta(
            bucket_id=bucket.id,
            pool_id=pool_id,
            booked_delta=0 if as_hold else quantity,
            held_delta=quantity if as_hold else 0,
            enforce_ceiling=not unconstrained,
            require_open=True,
        )
        if not ok:
            raise _capacity_error(org_id, bucket_id, quantity)

        reservation = Reservation(
            org_id=org_id,
            bucket_id=bucket_id,
            counter_pool_id=pool_id,
            quantity=quantity,
            status=RESERVATION_HELD if as_hold else RESERVATION_CONFIRMED,
            selection_ref=selection_ref,
            created_at=created_at,
            confirmed_at=None if as_hold else created_at,
            expires_at=deadline,
        )
        db.session.add(reservation)
        db.session.commit()
        return reservation

    return run_with_retry(_op)


def _transition(org_id: int, reservation_id: int, *, to_status: str, now: datetime, reason: str | None) -> Reservation:
    """Guarded HELD -> to_status flip; exactly one concurrent caller wins."""
    t = Reservation.__table__
    values = {"status": to_status}
    if to_status == RESERVATION_CONFIRMED:
        values["confirmed_at"] = now
    else:
        values["released_at"] = now
        values["release_reason"] = reason
    result = db.session.execute(
        update(t)
        .where(t.c.id == reservation_id, t.c.org_id == org_id, t.c.status == RESERVATION_HELD)
        .values(**values)
    )
    if result.rowcount != 1:
        db.session.rollback()
        reservation = scoped_query(Reservation, org_id).filter(Reservation.id == reservation_id).first()
        if reservation is None:
            raise TenantAccessError("Reservation not found")
        raise ReservationStateError(f"reservation is {reservation.status}, not {RESERVATION_HELD}")

    reservation = scoped_query(Reservation, org_id).filter(Reservation.id == reservation_id).first()
    db.session.refresh(reservation)
    return reservation


def release(
    *,
    org_id: int,
    reservation_id: int,
    reason: str = "released",
    expired: bool = False,
    now: datetime | None = None,
) -> Reservation:
    """Reverse a hold: held -= quantity. Only HELD reservations can be released."""
    def _op():
        moment = now or utcnow()
        reservation = _transition(
            org_id,
            reservation_id,
            to_status=RESERVATION_EXPIRED if expired else RESERVATION_RELEASED,
            now=moment,
            reason=reason,
        )
        ok = _apply_counter_delta(
            bucket_id=reservation.bucket_id,
            pool_id=reservation.counter_pool_id,
            held_delta=-reservation.quantity,
            enforce_ceiling=False,
        )
        if not ok:
            db.session.rollback()
            raise ConflictError("held counter is lower than the reservation being released")
        db.session.commit()
        return reservation

    return run_with_retry(_op)


def confirm_hold(*, org_id: int, reservation_id: int, now: datetime | None = None) -> Reservation:
    """Convert held -> booked. booked + held is unchanged, so the ceiling still holds."""
    def _op():
        reservation = _transition(
            org_id, reservation_id, to_status=RESERVATION_CONFIRMED, now=now or utcnow(), reason=None
        )
        ok = _apply_counter_delta(
            bucket_id=reservation.bucket_id,
            pool_id=reservation.counter_pool_id,
            booked_delta=reservation.quantity,
            held_delta=-reservation.quantity,
            enforce_ceiling=False,
        )
        if not ok:
            db.session.rollback()
            raise ConflictError("held counter is lower than the reservation being confirmed")
        db.session.commit()
        return reservation

    return run_with_retry(_op)


def get_reservation(*, org_id: int, reservation_id: int) -> Reservation:
    reservation = scoped_query(Reservation, org_id).filter(Reservation.id == reservation_id).first()
    if reservation is None:
        raise TenantAccessError("Reservation not found")
    return reservation


# =============================================================================
# Release warnings
# =============================================================================

def release_deadline(bucket: AllocationBucket) -> datetime | None:
    if bucket.release_period_hours is None:
        return None
    return datetime.combine(bucket.start_date, time.min) - timedelta(hours=bucket.release_period_hours)


def list_release_warnings(
    *,
    org_id: int,
    now: datetime | None = None,
    window_days: int | None = None,
) -> list[dict]:
    """
    Allocations whose release deadline is inside the look-ahead window and
    that still hold unsold units (units that go back to the supplier unsold).

    potential_loss = available * unit_cost
    """
    now = now or utcnow()
    if window_days is None:
        window_days = int(current_app.config.get("RELEASE_WARNING_WINDOW_DAYS", 30))

    buckets = scoped_query(AllocationBucket, org_id).filter(
        AllocationBucket.release_period_hours.isnot(None),
        AllocationBucket.start_date >= now.date(),
        AllocationBucket.stop_sell.is_(False),
        AllocationBucket.blackout.is_(False),
    ).order_by(AllocationBucket.start_date.asc(), AllocationBucket.id.asc()).all()
    pools = load_pools(buckets)

    earliest = now - timedelta(days=1)
    latest = now + timedelta(days=window_days)
    warnings = []
    for bucket in buckets:
        deadline = release_deadline(bucket)
        if deadline is None or not (earliest <= deadline <= latest):
            continue
        available = get_available(bucket, resolve_counters(bucket, pools))
        if available is UNBOUNDED or available <= 0:
            continue
        warnings.append({
            "bucket_id": bucket.id,
            "variant_id": bucket.variant_id,
            "supplier_id": bucket.supplier_id,
            "start_date": bucket.start_date.isoformat(),
            "release_at": deadline.isoformat() + "Z",
            "hours_until_release": round((deadline - now).total_seconds() / 3600, 1),
            "available": available,
            "unit_cost": str(bucket.unit_cost) if bucket.unit_cost is not None else None,
            "currency": bucket.currency,
            "potential_loss": (
                str(bucket.unit_cost * available) if bucket.unit_cost is not None else None
            ),
        })
    warnings.sort(key=lambda w: (w["release_at"], w["bucket_id"]))
    return warnings
