# Overview: Service-layer operations for bulk edits; uniform mutations across an explicit date set.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AllocationBucket, InventoryPool
from ..models.allocations import ALLOCATION_FREESALE
from ..validation import ConcurrencyError, ValidationError, require_positive_int
from inventory_engine.time_utils import iter_dates
from .concurrency import lock_for_update, run_with_retry
from .tenant_service import require_supplier_in_org, require_variant_in_org, scoped_query


ACTION_CLOSE = "CLOSE"
ACTION_OPEN = "OPEN"
ACTION_ADJUST = "ADJUST"
ACTION_SET = "SET"
ACTION_ANNOTATE = "ANNOTATE"
ACTIONS = (ACTION_CLOSE, ACTION_OPEN, ACTION_ADJUST, ACTION_SET, ACTION_ANNOTATE)

DATE_SUCCESS = "success"
DATE_SKIPPED = "skipped"
DATE_FAILED = "failed"

NOTES_MAX = 2000


@dataclass(frozen=True)
class BulkAction:
    """
    One uniform edit.

    CLOSE / OPEN       toggle stop_sell (blackout is a separate, contractual flag)
    ADJUST(delta)      quantity += delta, floored at 0 unless floor_at_zero=False
    SET(value)         quantity = value
    ANNOTATE(text)     notes = text
    """
    kind: str
    delta: int | None = None
    value: int | None = None
    text: str | None = None
    floor_at_zero: bool = True
    clear_blackout: bool = False

    @classmethod
    def from_payload(cls, action: str, payload: dict | None) -> "BulkAction":
        payload = payload or {}
        kind = str(action or "").strip().upper()
        if kind not in ACTIONS:
            raise ValidationError(f"action must be one of {', '.join(ACTIONS)}")
        if kind == ACTION_ADJUST:
            delta = payload.get("delta")
            if isinstance(delta, bool) or not isinstance(delta, int):
                raise ValidationError("ADJUST requires an integer delta")
            floor = payload.get("floor_at_zero", True)
            if not isinstance(floor, bool):
                raise ValidationError("floor_at_zero must be a boolean")
            return cls(kind, delta=delta, floor_at_zero=floor)
        if kind == ACTION_SET:
            return cls(kind, value=require_positive_int(payload.get("value"), "value", allow_zero=True))
        if kind == ACTION_ANNOTATE:
            text = payload.get("text")
            if text is not None and not isinstance(text, str):
                raise ValidationError("ANNOTATE text must be a string")
            if text is not None and len(text) > NOTES_MAX:
                raise ValidationError(f"text exceeds max length {NOTES_MAX}")
            return cls(kind, text=text)
        if kind == ACTION_OPEN:
            return cls(kind, clear_blackout=bool(payload.get("clear_blackout", False)))
        return cls(kind)


class _DateFailed(Exception):
    pass


def _next_quantity(action: BulkAction, current: int | None, booked: int, held: int, overbooking: int):
    """New quantity for ADJUST/SET, or None to skip. Raises _DateFailed on a rule break."""
    if action.kind == ACTION_ADJUST:
        if current is None:
            return None
        target = current + action.delta
        if target < 0:
            if not action.floor_at_zero:
                raise _DateFailed(f"quantity would become {target}")
            target = 0
    else:
        target = action.value

    if booked + held > target + overbooking:
        raise _DateFailed(
            f"quantity {target} is below committed units (booked {booked} + held {held})"
        )
    return target


def _apply_to_owner(owner, action: BulkAction) -> bool:
    """Mutate the counter owner (bucket or pool). Returns False when skipped."""
    if action.kind in (ACTION_ADJUST, ACTION_SET):
        overbooking = owner.overbooking_limit if owner.allow_overbooking else 0
        target = _next_quantity(action, owner.quantity, owner.booked or 0, owner.held or 0, overbooking)
        if target is None:
            return False
        owner.quantity = target
        return True
    return False


def _apply_to_bucket(bucket: AllocationBucket, action: BulkAction) -> None:
    if action.kind == ACTION_CLOSE:
        bucket.stop_sell = True
    elif action.kind == ACTION_OPEN:
        bucket.stop_sell = False
        if action.clear_blackout:
            bucket.blackout = False
    elif action.kind == ACTION_ANNOTATE:
        bucket.notes = action.text


def _process_batch(
    org_id: int,
    variant_id: int,
    batch: list[date],
    action: BulkAction,
    supplier_id: int | None,
    touched_buckets: set[int],
    touched_pools: set[int],
) -> list[dict]:
    """
    Evaluate each date independently inside one transaction.

    A bucket (or pool) spanning several dates is mutated once; later dates
    that only see already-mutated rows report success with the same ids.
    """
    q = scoped_query(AllocationBucket, org_id).filter(
        AllocationBucket.variant_id == variant_id,
        AllocationBucket.start_date <= max(batch),
        AllocationBucket.end_date >= min(batch),
    )
    if supplier_id is not None:
        q = q.filter(AllocationBucket.supplier_id == supplier_id)
    buckets = lock_for_update(q.order_by(AllocationBucket.id.asc())).all()

    pool_ids = {b.inventory_pool_id for b in buckets if b.inventory_pool_id is not None}
    pools = {}
    if pool_ids:
        pools = {
            p.id: p
            for p in lock_for_update(
                db.session.query(InventoryPool).filter(InventoryPool.id.in_(pool_ids))
            ).all()
        }

    report = []
    for day in batch:
        covering = [b for b in buckets if b.covers(day)]
        if not covering:
            report.append({"date": day.isoformat(), "status": DATE_SKIPPED, "error": "no allocation on this date"})
            continue

        # Stage the date, then apply all-or-nothing so a failed date leaves no trace
        staged = []
        failure = None
        skipped_unconstrained = 0
        for bucket in covering:
            if bucket.id in touched_buckets:
                continue
            if action.kind in (ACTION_ADJUST, ACTION_SET) and bucket.allocation_type == ALLOCATION_FREESALE:
                skipped_unconstrained += 1
                continue
            owner = bucket
            if bucket.inventory_pool_id is not None and action.kind in (ACTION_ADJUST, ACTION_SET):
                if bucket.inventory_pool_id in touched_pools:
                    staged.append((bucket, None))
                    continue
                owner = pools[bucket.inventory_pool_id]
            if action.kind in (ACTION_ADJUST, ACTION_SET):
                overbooking = owner.overbooking_limit if owner.allow_overbooking else 0
                try:
                    target = _next_quantity(action, owner.quantity, owner.booked or 0, owner.held or 0, overbooking)
                except _DateFailed as exc:
                    failure = str(exc)
                    break
                if target is None:
                    skipped_unconstrained += 1
                    continue
            staged.append((bucket, owner))

        bucket_ids = [b.id for b in covering]
        if failure is not None:
            report.append({"date": day.isoformat(), "status": DATE_FAILED, "error": failure, "bucket_ids": bucket_ids})
            continue
        if not staged and skipped_unconstrained:
            report.append({
                "date": day.isoformat(),
                "status": DATE_SKIPPED,
                "error": "allocation is unconstrained (no quantity)",
                "bucket_ids": bucket_ids,
            })
            continue

        for bucket, owner in staged:
            if owner is not None and owner is not bucket:
                if owner.id not in touched_pools:
                    _apply_to_owner(owner, action)
                    touched_pools.add(owner.id)
            elif owner is bucket:
                if action.kind in (ACTION_ADJUST, ACTION_SET):
                    _apply_to_owner(bucket, action)
                else:
                    _apply_to_bucket(bucket, action)
            touched_buckets.add(bucket.id)
        report.append({"date": day.isoformat(), "status": DATE_SUCCESS, "bucket_ids": bucket_ids})

    db.session.commit()
    return report


def bulk_update(
    *,
    org_id: int,
    variant_id: int,
    date_from: date,
    date_to: date,
    action: BulkAction,
    supplier_id: int | None = None,
    days_of_week: list[int] | None = None,
    batch_size: int | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> list[dict]:
    """
    Apply one action to every existing bucket on the selected dates.

    Dates without a bucket are skipped (never auto-created). Each date
    resolves to success / skipped / failed; a failing date does not abort
    the call. Quantity edits on pooled buckets go to the pool, once.
    """
    require_variant_in_org(variant_id, org_id)
    if supplier_id is not None:
        require_supplier_in_org(supplier_id, org_id)
    if date_from > date_to:
        raise ValidationError("date_from cannot be after date_to")
    dates = list(iter_dates(date_from, date_to, days_of_week))
    if not dates:
        raise ValidationError("no dates in range match days_of_week")

    if batch_size is None:
        batch_size = int(current_app.config.get("ALLOCATION_BATCH_SIZE", 100))
    batch_size = max(1, batch_size)

    touched_buckets: set[int] = set()
    touched_pools: set[int] = set()
    report: list[dict] = []
    for start in range(0, len(dates), batch_size):
        batch = dates[start:start + batch_size]
        if should_cancel is not None and should_cancel():
            report.extend(
                {"date": d.isoformat(), "status": DATE_SKIPPED, "error": "cancelled"}
                for d in dates[start:]
            )
            current_app.logger.info("Bulk update cancelled variant_id=%s remaining=%d", variant_id, len(dates) - start)
            break

        def _run(batch=batch):
            # Marks only survive a committed batch
            buckets_seen, pools_seen = set(touched_buckets), set(touched_pools)
            rows = _process_batch(org_id, variant_id, batch, action, supplier_id, buckets_seen, pools_seen)
            return rows, buckets_seen, pools_seen

        try:
            rows, touched_buckets, touched_pools = run_with_retry(_run)
            report.extend(rows)
        except (SQLAlchemyError, ConcurrencyError) as exc:
            db.session.rollback()
            current_app.logger.exception("Bulk update batch failed variant_id=%s batch_start=%d", variant_id, start)
            report.extend(
                {"date": d.isoformat(), "status": DATE_FAILED, "error": exc.__class__.__name__}
                for d in batch
            )

    current_app.logger.info(
        "Bulk %s variant_id=%s dates=%d success=%d skipped=%d failed=%d",
        action.kind, variant_id, len(dates),
        sum(1 for r in report if r["status"] == DATE_SUCCESS),
        sum(1 for r in report if r["status"] == DATE_SKIPPED),
        sum(1 for r in report if r["status"] == DATE_FAILED),
    )
    return report
