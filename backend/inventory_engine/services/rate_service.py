# Overview: Service-layer operations for the rate plan registry; master vs supplier pricing resolution.

# backend/inventory_engine/services/rate_service.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Union

from flask import current_app

from ..extensions import db
from ..models import RatePlan, RateOccupancy, RateSeason, Supplier
from ..models.rates import (
    INVENTORY_MODELS,
    PRICING_BASE_PLUS_PAX,
    PRICING_FIXED,
    PRICING_MODELS,
    PRICING_PER_PERSON,
)
from ..models.allocations import ALLOCATION_FREESALE
from ..validation import (
    ConflictError,
    MONEY_QUANT,
    NotFoundError,
    ValidationError,
    coerce_amount,
    require_currency,
    require_date,
    require_positive_int,
)
from .tenant_service import require_supplier_in_org, require_variant_in_org, scoped_query


DEFAULT_SUPPLIER_PRIORITY = 100


class InvalidMasterRateConfigurationError(ConflictError):
    code = "invalid_master_rate_configuration"


class NoMatchingOccupancyBandError(ValidationError):
    code = "no_matching_occupancy_band"


class NoMasterRateError(NotFoundError):
    code = "no_master_rate"


class RateNotFoundError(NotFoundError):
    code = "rate_not_found"


# =============================================================================
# In-memory representation: MasterRate | SupplierRate
# =============================================================================

@dataclass(frozen=True)
class OccupancyBand:
    min_occupancy: int
    max_occupancy: int
    pricing_model: str
    base_amount: Decimal | None
    per_person_amount: Decimal | None

    def contains(self, pax_count: int) -> bool:
        return self.min_occupancy <= pax_count <= self.max_occupancy

    def price(self, pax_count: int) -> Decimal:
        base = self.base_amount or Decimal("0")
        per_person = self.per_person_amount or Decimal("0")
        if self.pricing_model == PRICING_FIXED:
            amount = base
        elif self.pricing_model == PRICING_PER_PERSON:
            amount = per_person * pax_count
        else:
            amount = base + per_person * max(0, pax_count - self.min_occupancy)
        return amount.quantize(MONEY_QUANT)


@dataclass(frozen=True)
class SeasonWindow:
    date_from: date
    date_to: date
    dow_mask: str
    min_pax: int | None
    max_pax: int | None

    def applies_on(self, day: date, pax_count: int | None = None) -> bool:
        if not (self.date_from <= day <= self.date_to):
            return False
        if self.dow_mask[day.weekday()] != "1":
            return False
        if pax_count is not None:
            if self.min_pax is not None and pax_count < self.min_pax:
                return False
            if self.max_pax is not None and pax_count > self.max_pax:
                return False
        return True


@dataclass(frozen=True)
class _Rate:
    id: int
    variant_id: int
    currency: str
    valid_from: date
    valid_to: date
    priority: int
    created_at: datetime | None
    bands: tuple
    seasons: tuple

    def is_valid_on(self, day: date, pax_count: int | None = None) -> bool:
        """Inside the validity window and, when seasons exist, inside one of them."""
        if not (self.valid_from <= day <= self.valid_to):
            return False
        if self.seasons:
            return any(s.applies_on(day, pax_count) for s in self.seasons)
        return True

    @property
    def cheapest_base_amount(self) -> Decimal | None:
        amounts = [b.base_amount for b in self.bands if b.base_amount is not None]
        return min(amounts) if amounts else None


@dataclass(frozen=True)
class MasterRate(_Rate):
    """Customer-facing sell price; no supplier by construction."""


@dataclass(frozen=True)
class SupplierRate(_Rate):
    """What one supplier charges us for the variant."""
    supplier_id: int
    contract_ref: str | None
    inventory_model: str


Rate = Union[MasterRate, SupplierRate]


def to_rate(plan: RatePlan) -> Rate:
    """Persistence row -> tagged union. The nullable supplier_id stops here."""
    bands = tuple(
        OccupancyBand(
            min_occupancy=o.min_occupancy,
            max_occupancy=o.max_occupancy,
            pricing_model=o.pricing_model,
            base_amount=o.base_amount,
            per_person_amount=o.per_person_amount,
        )
        for o in sorted(plan.occupancies, key=lambda o: o.min_occupancy)
    )
    seasons = tuple(
        SeasonWindow(s.date_from, s.date_to, s.dow_mask or "1111111", s.min_pax, s.max_pax)
        for s in plan.seasons
    )
    common = dict(
        id=plan.id,
        variant_id=plan.variant_id,
        currency=plan.currency,
        valid_from=plan.valid_from,
        valid_to=plan.valid_to,
        created_at=plan.created_at,
        bands=bands,
        seasons=seasons,
    )
    if plan.supplier_id is None:
        return MasterRate(priority=plan.priority or 0, **common)

    priority = plan.priority
    if priority is None:
        supplier = plan.supplier
        priority = supplier.default_priority if supplier and supplier.default_priority is not None else DEFAULT_SUPPLIER_PRIORITY
    return SupplierRate(
        priority=priority,
        supplier_id=plan.supplier_id,
        contract_ref=plan.contract_ref,
        inventory_model=plan.inventory_model,
        **common,
    )


# =============================================================================
# Pricing
# =============================================================================

def price_for_occupancy(rate, pax_count: int) -> Decimal:
    """
    Price of one unit for pax_count people.

    fixed         -> base_amount
    per_person    -> per_person_amount * pax_count
    base_plus_pax -> base_amount + per_person_amount * max(0, pax_count - min_occupancy)

    Accepts a MasterRate/SupplierRate or a RatePlan row.
    """
    if isinstance(rate, RatePlan):
        rate = to_rate(rate)
    if isinstance(pax_count, bool) or not isinstance(pax_count, int) or pax_count < 1:
        raise ValidationError("pax_count must be a positive integer")
    for band in rate.bands:
        if band.contains(pax_count):
            return band.price(pax_count)
    raise NoMatchingOccupancyBandError(f"no occupancy band covers {pax_count} pax on rate plan {rate.id}")


# =============================================================================
# Write path (validated in full before anything is added to the session)
# =============================================================================

def _validate_bands(raw_bands: list) -> list[dict]:
    if not isinstance(raw_bands, list) or not raw_bands:
        raise ValidationError("at least one occupancy band is required")
    bands = []
    for raw in raw_bands:
        if not isinstance(raw, dict):
            raise ValidationError("occupancy bands must be objects")
        lo = require_positive_int(raw.get("min_occupancy"), "min_occupancy")
        hi = require_positive_int(raw.get("max_occupancy"), "max_occupancy")
        if lo > hi:
            raise ValidationError("min_occupancy cannot exceed max_occupancy")
        model = raw.get("pricing_model", PRICING_FIXED)
        if model not in PRICING_MODELS:
            raise ValidationError(f"pricing_model must be one of {', '.join(PRICING_MODELS)}")
        base = coerce_amount(raw["base_amount"], "base_amount") if raw.get("base_amount") is not None else None
        per_person = (
            coerce_amount(raw["per_person_amount"], "per_person_amount")
            if raw.get("per_person_amount") is not None
            else None
        )
        if (base is not None and base < 0) or (per_person is not None and per_person < 0):
            raise ValidationError("occupancy amounts must be >= 0")
        if model in (PRICING_FIXED, PRICING_BASE_PLUS_PAX) and base is None:
            raise ValidationError(f"{model} pricing requires base_amount")
        if model in (PRICING_PER_PERSON, PRICING_BASE_PLUS_PAX) and per_person is None:
            raise ValidationError(f"{model} pricing requires per_person_amount")
        bands.append({
            "min_occupancy": lo,
            "max_occupancy": hi,
            "pricing_model": model,
            "base_amount": base,
            "per_person_amount": per_person,
        })

    bands.sort(key=lambda b: b["min_occupancy"])
    for prev, nxt in zip(bands, bands[1:]):
        if nxt["min_occupancy"] <= prev["max_occupancy"]:
            raise ValidationError("occupancy bands must not overlap")
    return bands


def _validate_seasons(raw_seasons: list | None, valid_from: date, valid_to: date) -> list[dict]:
    if not raw_seasons:
        return []
    if not isinstance(raw_seasons, list):
        raise ValidationError("seasons must be a list")
    seasons = []
    for raw in raw_seasons:
        if not isinstance(raw, dict):
            raise ValidationError("seasons must be objects")
        d_from = require_date(raw.get("date_from"), "date_from")
        d_to = require_date(raw.get("date_to"), "date_to")
        if d_from > d_to:
            raise ValidationError("season date_from cannot be after date_to")
        if d_from < valid_from or d_to > valid_to:
            raise ValidationError("season must lie inside the rate plan validity window")
        mask = raw.get("dow_mask", "1111111")
        if not isinstance(mask, str) or len(mask) != 7 or set(mask) - {"0", "1"}:
            raise ValidationError("dow_mask must be seven 0/1 characters, Monday first")
        min_pax = raw.get("min_pax")
        max_pax = raw.get("max_pax")
        if min_pax is not None:
            min_pax = require_positive_int(min_pax, "min_pax")
        if max_pax is not None:
            max_pax = require_positive_int(max_pax, "max_pax")
        if min_pax is not None and max_pax is not None and min_pax > max_pax:
            raise ValidationError("min_pax cannot exceed max_pax")
        seasons.append({
            "name": raw.get("name"),
            "date_from": d_from,
            "date_to": d_to,
            "dow_mask": mask,
            "min_pax": min_pax,
            "max_pax": max_pax,
        })
    return seasons


def create_rate_plan(
    *,
    org_id: int,
    variant_id: int,
    currency: str,
    valid_from,
    valid_to,
    occupancies: list,
    supplier_id: int | None = None,
    seasons: list | None = None,
    inventory_model: str = "committed",
    priority: int | None = None,
    preferred: bool = False,
    contract_ref: str | None = None,
    name: str | None = None,
) -> RatePlan:
    """
    Create a rate plan with its seasons and occupancy bands in one commit.

    A master plan (supplier_id None) must be preferred and freesale, otherwise
    InvalidMasterRateConfigurationError and nothing is written.
    """
    require_variant_in_org(variant_id, org_id)
    currency = require_currency(currency)
    valid_from = require_date(valid_from, "valid_from")
    valid_to = require_date(valid_to, "valid_to")
    if valid_from > valid_to:
        raise ValidationError("valid_from cannot be after valid_to")
    if inventory_model not in INVENTORY_MODELS:
        raise ValidationError(f"inventory_model must be one of {', '.join(INVENTORY_MODELS)}")
    if priority is not None and (isinstance(priority, bool) or not isinstance(priority, int)):
        raise ValidationError("priority must be an integer")

    if supplier_id is None:
        if not preferred or inventory_model != ALLOCATION_FREESALE:
            raise InvalidMasterRateConfigurationError(
                "a master rate (no supplier) must be preferred with inventory_model 'freesale'"
            )
        if contract_ref:
            raise InvalidMasterRateConfigurationError("a master rate cannot reference a supplier contract")
    else:
        require_supplier_in_org(supplier_id, org_id)

    band_rows = _validate_bands(occupancies)
    season_rows = _validate_seasons(seasons, valid_from, valid_to)

    plan = RatePlan(
        org_id=org_id,
        variant_id=variant_id,
        supplier_id=supplier_id,
        contract_ref=contract_ref,
        name=name,
        currency=currency,
        valid_from=valid_from,
        valid_to=valid_to,
        inventory_model=inventory_model,
        priority=priority,
        preferred=bool(preferred),
    )
    plan.occupancies = [RateOccupancy(**b) for b in band_rows]
    plan.seasons = [RateSeason(**s) for s in season_rows]

    try:
        db.session.add(plan)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Rate plan created id=%s variant_id=%s kind=%s",
        plan.id, variant_id, "master" if supplier_id is None else "supplier",
    )
    return plan


def get_rate_plan(*, org_id: int, plan_id: int) -> RatePlan:
    plan = scoped_query(RatePlan, org_id).filter(RatePlan.id == plan_id).first()
    if plan is None:
        raise RateNotFoundError("Rate plan not found")
    return plan


# =============================================================================
# Resolution
# =============================================================================

def _plans_for(org_id: int, variant_id: int, day: date, *, master: bool):
    q = scoped_query(RatePlan, org_id).filter(
        RatePlan.variant_id == variant_id,
        RatePlan.valid_from <= day,
        RatePlan.valid_to >= day,
    )
    if master:
        q = q.filter(RatePlan.supplier_id.is_(None), RatePlan.preferred.is_(True))
    else:
        q = q.join(Supplier, Supplier.id == RatePlan.supplier_id).filter(Supplier.is_active.is_(True))
    return q.all()


def resolve_master_rate(*, org_id: int, variant_id: int, day: date, pax_count: int | None = None) -> MasterRate:
    """
    The preferred master plan valid on day.

    Ties: highest priority, then most recently created, then highest id.
    """
    rates = [
        r for r in (to_rate(p) for p in _plans_for(org_id, variant_id, day, master=True))
        if r.is_valid_on(day, pax_count)
    ]
    if not rates:
        raise NoMasterRateError(f"no master rate for variant {variant_id} on {day.isoformat()}")
    rates.sort(key=lambda r: (r.priority, r.created_at or datetime.min, r.id), reverse=True)
    return rates[0]


def supplier_rate_sort_key(rate: SupplierRate):
    cheapest = rate.cheapest_base_amount
    return (
        -rate.priority,
        cheapest is None,
        cheapest if cheapest is not None else Decimal("0"),
        rate.supplier_id,
        rate.id,
    )


def resolve_supplier_rates(
    *, org_id: int, variant_id: int, day: date, pax_count: int | None = None
) -> list[SupplierRate]:
    """All supplier plans valid on day: priority desc, cheapest base amount asc, supplier_id asc."""
    plans = _plans_for(org_id, variant_id, day, master=False)
    supplier_ids = {p.supplier_id for p in plans}
    if supplier_ids:
        # Warm the identity map so default_priority lookups do not query per plan
        db.session.query(Supplier).filter(Supplier.id.in_(supplier_ids)).all()
    rates = [r for r in (to_rate(p) for p in plans) if r.is_valid_on(day, pax_count)]
    rates.sort(key=supplier_rate_sort_key)
    return rates
