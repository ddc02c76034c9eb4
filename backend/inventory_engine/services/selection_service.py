# Overview: Service-layer operations for supplier selection; waterfall fulfilment across supplier allocations.

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from flask import current_app

from ..models import Reservation
from ..models.allocations import RESERVATION_HELD
from ..validation import CapacityError, NotFoundError, ValidationError
from inventory_engine.time_utils import utcnow
from .allocation_service import (
    UNBOUNDED,
    ReservationStateError,
    buckets_for_window,
    confirm_hold,
    get_available,
    load_pools,
    release,
    release_deadline,
    reserve,
    resolve_counters,
)
from .concurrency import RetryExhaustedError
from .rate_service import (
    NoMatchingOccupancyBandError,
    price_for_occupancy,
    resolve_master_rate,
    resolve_supplier_rates,
)
from .tenant_service import require_variant_in_org, scoped_query
"""
Waterfall Invariants (authoritative)

- Sell price comes from the master rate only; NoMasterRateError when absent.
- Candidate order is (priority desc, unit cost asc, supplier_id asc, bucket_id asc).
  The id tie-breaks make the outcome reproducible for equal priority and cost.
- All holds of one selection share a selection_ref.
- The selection is all-or-nothing: a lost race releases every hold already
  taken, then the whole selection is re-planned once (SELECTION_RETRY_ATTEMPTS).
"""


class InsufficientSupplierInventoryError(CapacityError):
    code = "insufficient_supplier_inventory"


@dataclass(frozen=True)
class Candidate:
    supplier_id: int
    bucket_id: int
    rate_id: int
    priority: int
    unit_cost: Decimal
    available: object
    pool_id: int | None = None

    @property
    def sort_key(self):
        return (-self.priority, self.unit_cost, self.supplier_id, self.bucket_id)


@dataclass
class SelectionResult:
    selection_ref: str
    sell_price: Decimal
    currency: str
    pax_count: int
    demand_qty: int
    reservation_ids: list = field(default_factory=list)
    supplier_breakdown: list = field(default_factory=list)

    @property
    def total_margin(self) -> Decimal:
        return sum((line["margin"] * line["qty"] for line in self.supplier_breakdown), Decimal("0.00"))

    def to_dict(self) -> dict:
        return {
            "selection_ref": self.selection_ref,
            "reservation_ids": list(self.reservation_ids),
            "supplier_breakdown": [
                {
                    "supplier_id": line["supplier_id"],
                    "bucket_id": line["bucket_id"],
                    "reservation_id": line["reservation_id"],
                    "qty": line["qty"],
                    "unit_cost": str(line["unit_cost"]),
                    "margin": str(line["margin"]),
                }
                for line in self.supplier_breakdown
            ],
            "sell_price": str(self.sell_price),
            "total_margin": str(self.total_margin),
            "currency": self.currency,
            "pax_count": self.pax_count,
            "demand_qty": self.demand_qty,
        }


class _LostRace(Exception):
    """A planned hold could not be taken; the selection must be re-planned."""


def _occupancy_fits(bucket, pax_count: int) -> bool:
    if bucket.min_occupancy is not None and pax_count < bucket.min_occupancy:
        return False
    if bucket.max_occupancy is not None and pax_count > bucket.max_occupancy:
        return False
    return True


def _price_supplier(rates: list, pax_count: int, currency: str):
    """First plan in waterfall order that sells in currency and has a band for pax_count."""
    for rate in rates:
        if rate.currency != currency:
            continue
        try:
            return rate, price_for_occupancy(rate, pax_count)
        except NoMatchingOccupancyBandError:
            continue
    return None, None


def find_candidates(
    *,
    org_id: int,
    variant_id: int,
    day: date,
    pax_count: int,
    currency: str,
    time_slot_id: int | None = None,
    now: datetime | None = None,
) -> list[Candidate]:
    """
    Supplier buckets on day with sellable units, in waterfall order.

    Each supplier is priced by its best-ranked plan that sells in the sell
    currency and has a band for pax_count; a supplier with no such plan is
    skipped (logged). Buckets whose occupancy bounds exclude pax_count, or
    whose release deadline has passed, are not candidates.
    """
    now = now or utcnow()
    rates_by_supplier: dict[int, list] = {}
    for rate in resolve_supplier_rates(org_id=org_id, variant_id=variant_id, day=day, pax_count=pax_count):
        rates_by_supplier.setdefault(rate.supplier_id, []).append(rate)
    if not rates_by_supplier:
        return []

    buckets = [
        b for b in buckets_for_window(org_id, variant_id, day, day, time_slot_id=time_slot_id)
        if b.supplier_id in rates_by_supplier
    ]
    pools = load_pools(buckets)

    candidates = []
    for supplier_id, rates in rates_by_supplier.items():
        rate, unit_cost = _price_supplier(rates, pax_count, currency)
        if rate is None:
            current_app.logger.info(
                "Selection skips supplier_id=%s: no %s plan with an occupancy band for %s pax",
                supplier_id, currency, pax_count,
            )
            continue

        for bucket in buckets:
            if bucket.supplier_id != supplier_id:
                continue
            if not _occupancy_fits(bucket, pax_count):
                continue
            deadline = release_deadline(bucket)
            if deadline is not None and now >= deadline:
                continue
            counters = resolve_counters(bucket, pools)
            available = get_available(bucket, counters)
            if available is not UNBOUNDED and available <= 0:
                continue
            candidates.append(Candidate(
                supplier_id=supplier_id,
                bucket_id=bucket.id,
                rate_id=rate.id,
                priority=rate.priority,
                unit_cost=unit_cost,
                available=available,
                pool_id=counters.pool_id,
            ))

    candidates.sort(key=lambda c: c.sort_key)
    return candidates


def plan_fulfilment(candidates: list[Candidate], demand_qty: int) -> list[tuple[Candidate, int]]:
    """
    Greedy split of demand over ordered candidates.

    A pool's units are shared by all of its member buckets, so they are
    only handed out once per plan.
    """
    plan = []
    remaining = demand_qty
    pool_left: dict[int, object] = {}
    for candidate in candidates:
        if remaining <= 0:
            break
        cap = remaining if candidate.available is UNBOUNDED else candidate.available
        if candidate.pool_id is not None:
            left = pool_left.setdefault(candidate.pool_id, cap)
            cap = min(cap, left)
        take = min(remaining, cap)
        if take <= 0:
            continue
        plan.append((candidate, take))
        remaining -= take
        if candidate.pool_id is not None:
            pool_left[candidate.pool_id] -= take

    if remaining > 0:
        available = demand_qty - remaining
        raise InsufficientSupplierInventoryError(
            f"insufficient supplier inventory: requested {demand_qty}, available {available}",
            requested=demand_qty,
            available=available,
        )
    return plan


def _compensate(org_id: int, reservations: list[Reservation]) -> None:
    for reservation_id in [r.id for r in reservations]:
        try:
            release(org_id=org_id, reservation_id=reservation_id, reason="selection_rollback")
        except ReservationStateError:
            # Already expired or released by someone else; nothing left to return
            current_app.logger.warning(
                "Selection rollback found reservation_id=%s no longer held", reservation_id
            )


def _attempt(
    *,
    org_id: int,
    variant_id: int,
    day: date,
    pax_count: int,
    demand_qty: int,
    time_slot_id: int | None,
) -> SelectionResult:
    master = resolve_master_rate(org_id=org_id, variant_id=variant_id, day=day, pax_count=pax_count)
    sell_price = price_for_occupancy(master, pax_count)

    candidates = find_candidates(
        org_id=org_id,
        variant_id=variant_id,
        day=day,
        pax_count=pax_count,
        currency=master.currency,
        time_slot_id=time_slot_id,
    )
    plan = plan_fulfilment(candidates, demand_qty)

    result = SelectionResult(
        selection_ref=str(uuid.uuid4()),
        sell_price=sell_price,
        currency=master.currency,
        pax_count=pax_count,
        demand_qty=demand_qty,
    )
    acquired: list[Reservation] = []
    for candidate, qty in plan:
        try:
            reservation = reserve(
                org_id=org_id,
                bucket_id=candidate.bucket_id,
                quantity=qty,
                as_hold=True,
                selection_ref=result.selection_ref,
            )
        except (CapacityError, RetryExhaustedError, NotFoundError) as exc:
            current_app.logger.info(
                "Selection lost race on bucket_id=%s (%s); rolling back %d hold(s)",
                candidate.bucket_id, exc.__class__.__name__, len(acquired),
            )
            _compensate(org_id, acquired)
            raise _LostRace() from exc

        acquired.append(reservation)
        result.reservation_ids.append(reservation.id)
        result.supplier_breakdown.append({
            "supplier_id": candidate.supplier_id,
            "bucket_id": candidate.bucket_id,
            "reservation_id": reservation.id,
            "qty": qty,
            "unit_cost": candidate.unit_cost,
            "margin": sell_price - candidate.unit_cost,
        })
    return result


def select_suppliers(
    *,
    org_id: int,
    variant_id: int,
    day: date,
    pax_count: int,
    demand_qty: int,
    time_slot_id: int | None = None,
) -> SelectionResult:
    """
    Fulfil demand_qty units across suppliers at the best margin.

    Returns held reservations (confirm with confirm_selection). Raises
    NoMasterRateError, InsufficientSupplierInventoryError (with shortfall)
    or RetryExhaustedError when the selection keeps losing races.
    """
    if isinstance(pax_count, bool) or not isinstance(pax_count, int) or pax_count < 1:
        raise ValidationError("pax_count must be a positive integer")
    if isinstance(demand_qty, bool) or not isinstance(demand_qty, int) or demand_qty < 1:
        raise ValidationError("demand_qty must be a positive integer")
    require_variant_in_org(variant_id, org_id)

    attempts = max(1, int(current_app.config.get("SELECTION_RETRY_ATTEMPTS", 2)))
    for attempt in range(attempts):
        try:
            result = _attempt(
                org_id=org_id,
                variant_id=variant_id,
                day=day,
                pax_count=pax_count,
                demand_qty=demand_qty,
                time_slot_id=time_slot_id,
            )
        except _LostRace:
            if attempt < attempts - 1:
                current_app.logger.warning(
                    "Selection retry %d/%d variant_id=%s date=%s",
                    attempt + 2, attempts, variant_id, day.isoformat(),
                )
            continue

        current_app.logger.info(
            "Selection %s variant_id=%s date=%s qty=%d suppliers=%s margin=%s",
            result.selection_ref, variant_id, day.isoformat(), demand_qty,
            [line["supplier_id"] for line in result.supplier_breakdown], result.total_margin,
        )
        return result

    raise RetryExhaustedError(f"supplier selection lost concurrent races {attempts} time(s)")


def _held_for_ref(org_id: int, selection_ref: str) -> list[Reservation]:
    reservations = scoped_query(Reservation, org_id).filter(
        Reservation.selection_ref == selection_ref
    ).order_by(Reservation.id.asc()).all()
    if not reservations:
        raise NotFoundError("Selection not found")
    return [r for r in reservations if r.status == RESERVATION_HELD]


def confirm_selection(*, org_id: int, selection_ref: str) -> list[Reservation]:
    """Convert every hold of a selection into booked units."""
    return [
        confirm_hold(org_id=org_id, reservation_id=r.id)
        for r in _held_for_ref(org_id, selection_ref)
    ]


def release_selection(*, org_id: int, selection_ref: str, reason: str = "released") -> list[Reservation]:
    return [
        release(org_id=org_id, reservation_id=r.id, reason=reason)
        for r in _held_for_ref(org_id, selection_ref)
    ]
