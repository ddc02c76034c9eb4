# Overview: Flask API routes for the allocation store; parses input and returns JSON responses.

"""
Allocation Routes

MULTI-TENANT: Every route runs under @require_org_context; all lookups are
filtered by g.org_id and foreign rows answer 404.

Capacity errors (insufficient inventory, closed) answer 409 with the exact
shortfall so callers can fall back to on-request.
"""

from flask import Blueprint, request, g, current_app

from ..decorators import require_org_context
from ..models import AllocationBucket, InventoryPool
from ..models.allocations import SCOPE_DATE, SCOPE_RANGE, SCOPE_SLOT
from ..services import allocation_service
from ..services.allocation_service import BucketScope, BucketTerms
from ..validation import (
    ENGINE_ERRORS,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_allocation,
    error_response,
    require_date,
    require_days_of_week,
    require_positive_int,
    validate_payload,
)


allocations_bp = Blueprint("allocations", __name__, url_prefix="/api")

_TERM_FIELDS = {
    "quantity",
    "allocation_type",
    "unit_cost",
    "currency",
    "stop_sell",
    "blackout",
    "allow_overbooking",
    "overbooking_limit",
    "release_period_hours",
    "min_stay",
    "max_stay",
    "min_occupancy",
    "max_occupancy",
    "inventory_pool_id",
    "alternate_variant_ids",
    "notes",
}

ALLOCATION_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=_TERM_FIELDS | {
        "variant_id",
        "supplier_id",
        # Scope: either one explicit scope or a date range to expand
        "scope",
        "date_from",
        "date_to",
        "days_of_week",
        "time_slot_ids",
    },
    required_on_create={"variant_id"},
)

POOL_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "reference",
        "supplier_id",
        "quantity",
        "allow_overbooking",
        "overbooking_limit",
        "currency",
        "valid_from",
        "valid_to",
    },
    required_on_create={"name"},
)


def _parse_scope(raw) -> BucketScope:
    if not isinstance(raw, dict):
        raise ValidationError("scope must be an object")
    kind = raw.get("type", SCOPE_DATE)
    if kind == SCOPE_RANGE:
        return BucketScope.event(
            require_date(raw.get("start_date"), "scope.start_date"),
            require_date(raw.get("end_date"), "scope.end_date"),
        )
    day = require_date(raw.get("date"), "scope.date")
    if kind == SCOPE_SLOT:
        return BucketScope.slot(day, require_positive_int(raw.get("time_slot_id"), "scope.time_slot_id"))
    return BucketScope(kind, day, day)


def _terms_from_patch(patch: dict) -> BucketTerms:
    alternates = patch.get("alternate_variant_ids")
    if alternates is not None and not isinstance(alternates, list):
        raise ValidationError("alternate_variant_ids must be a list")
    return BucketTerms.from_patch({k: v for k, v in patch.items() if k in _TERM_FIELDS})


@allocations_bp.post("/allocations")
@require_org_context
def create_allocation_route():
    """
    Create or expand an allocation.

    Request body (one of):
    {"variant_id": 1, "supplier_id": 2, "scope": {"type": "date", "date": "2026-03-01"}, "quantity": 20, ...}
    {"variant_id": 1, "supplier_id": 2, "date_from": "2026-03-01", "date_to": "2026-03-31",
     "days_of_week": [4, 5], "time_slot_ids": [3], "quantity": 20, ...}

    A single scope answers 201 with the bucket (409 on duplicate).
    A range answers with per-item results; existing dates report skipped.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=AllocationBucket,
            payload=payload,
            policy=ALLOCATION_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_allocation(patch)
        terms = _terms_from_patch(patch)

        has_scope = patch.get("scope") is not None
        has_range = patch.get("date_from") is not None or patch.get("date_to") is not None
        if has_scope == has_range:
            raise ValidationError("provide either scope or date_from/date_to")

        if has_scope:
            scope = _parse_scope(patch["scope"])
        else:
            time_slot_ids = patch.get("time_slot_ids")
            if time_slot_ids is not None and not isinstance(time_slot_ids, list):
                raise ValidationError("time_slot_ids must be a list")
            scopes = allocation_service.expand_scopes(
                date_from=require_date(patch.get("date_from"), "date_from"),
                date_to=require_date(patch.get("date_to"), "date_to"),
                days_of_week=require_days_of_week(patch.get("days_of_week")),
                time_slot_ids=[require_positive_int(s, "time_slot_ids") for s in time_slot_ids or []],
            )
            if not scopes:
                raise ValidationError("no dates in range match days_of_week")
    except ValidationError as e:
        return {"error": str(e), "code": e.code}, 400

    try:
        if has_scope:
            bucket = allocation_service.create_bucket(
                org_id=g.org_id,
                variant_id=patch["variant_id"],
                supplier_id=patch.get("supplier_id"),
                scope=scope,
                terms=terms,
            )
            return allocation_service.describe_bucket(bucket), 201

        result = allocation_service.bulk_create(
            org_id=g.org_id,
            variant_id=patch["variant_id"],
            supplier_id=patch.get("supplier_id"),
            scopes=scopes,
            terms=terms,
        )
        return result.to_dict(), 201 if result.created else 200
    except ENGINE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create allocation")
        return {"error": "Failed to create allocation"}, 500


@allocations_bp.get("/allocations/release-warnings")
@require_org_context
def release_warnings_route():
    """
    Allocations about to be released back to the supplier with unsold units.

    Query parameters:
    - window_days: look-ahead window (default RELEASE_WARNING_WINDOW_DAYS)
    """
    window_days = request.args.get("window_days", type=int)
    if window_days is not None and window_days < 0:
        return {"error": "window_days must be >= 0"}, 400

    warnings = allocation_service.list_release_warnings(org_id=g.org_id, window_days=window_days)
    return {"items": warnings, "count": len(warnings)}, 200


@allocations_bp.get("/allocations/<int:bucket_id>")
@require_org_context
def get_allocation_route(bucket_id: int):
    try:
        return allocation_service.get_bucket(org_id=g.org_id, bucket_id=bucket_id), 200
    except ENGINE_ERRORS as e:
        return error_response(e)


@allocations_bp.delete("/allocations/<int:bucket_id>")
@require_org_context
def delete_allocation_route(bucket_id: int):
    """Refused with 409 while the allocation has booked/held units or live reservations."""
    try:
        allocation_service.delete_bucket(org_id=g.org_id, bucket_id=bucket_id)
    except ENGINE_ERRORS as e:
        return error_response(e)
    return {"deleted": True, "id": bucket_id}, 200


@allocations_bp.post("/allocations/<int:bucket_id>/reserve")
@require_org_context
def reserve_route(bucket_id: int):
    """
    Reserve units on one allocation.

    Request body:
    {
        "quantity": 2,       // required, > 0
        "as_hold": true      // default true; false books immediately
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        quantity = require_positive_int(payload.get("quantity"), "quantity")
    except ValidationError as e:
        return {"error": str(e), "code": e.code}, 400
    as_hold = payload.get("as_hold", True)
    if not isinstance(as_hold, bool):
        return {"error": "as_hold must be a boolean"}, 400

    try:
        reservation = allocation_service.reserve(
            org_id=g.org_id,
            bucket_id=bucket_id,
            quantity=quantity,
            as_hold=as_hold,
        )
    except ENGINE_ERRORS as e:
        return error_response(e)
    return reservation.to_dict(), 201


@allocations_bp.get("/reservations/<int:reservation_id>")
@require_org_context
def get_reservation_route(reservation_id: int):
    try:
        reservation = allocation_service.get_reservation(org_id=g.org_id, reservation_id=reservation_id)
    except ENGINE_ERRORS as e:
        return error_response(e)
    return reservation.to_dict(), 200


@allocations_bp.post("/reservations/<int:reservation_id>/release")
@require_org_context
def release_reservation_route(reservation_id: int):
    payload = request.get_json(silent=True) or {}
    reason = payload.get("reason") or "released"
    if not isinstance(reason, str) or len(reason) > 32:
        return {"error": "reason must be a string of at most 32 characters"}, 400

    try:
        reservation = allocation_service.release(
            org_id=g.org_id, reservation_id=reservation_id, reason=reason
        )
    except ENGINE_ERRORS as e:
        return error_response(e)
    return reservation.to_dict(), 200


@allocations_bp.post("/reservations/<int:reservation_id>/confirm")
@require_org_context
def confirm_reservation_route(reservation_id: int):
    try:
        reservation = allocation_service.confirm_hold(org_id=g.org_id, reservation_id=reservation_id)
    except ENGINE_ERRORS as e:
        return error_response(e)
    return reservation.to_dict(), 200


@allocations_bp.post("/pools")
@require_org_context
def create_pool_route():
    """
    Create a shared inventory pool. Buckets join it via inventory_pool_id.

    Request body:
    {
        "name": "Block A",          // required
        "quantity": 40,             // null = unconstrained
        "supplier_id": 3,           // optional
        "allow_overbooking": false,
        "overbooking_limit": 0,
        "currency": "EUR",
        "valid_from": "2026-01-01",
        "valid_to": "2026-12-31"
    }
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=InventoryPool,
            payload=payload,
            policy=POOL_CREATE_POLICY,
            partial=False,
        )
    except ValidationError as e:
        return {"error": str(e), "code": e.code}, 400

    try:
        pool = allocation_service.create_pool(
            org_id=g.org_id,
            name=patch["name"],
            quantity=patch.get("quantity"),
            allow_overbooking=bool(patch.get("allow_overbooking", False)),
            overbooking_limit=patch.get("overbooking_limit") or 0,
            supplier_id=patch.get("supplier_id"),
            currency=patch.get("currency"),
            reference=patch.get("reference"),
            valid_from=patch.get("valid_from"),
            valid_to=patch.get("valid_to"),
        )
    except ENGINE_ERRORS as e:
        return error_response(e)
    return allocation_service.get_pool(org_id=g.org_id, pool_id=pool.id), 201


@allocations_bp.get("/pools/<int:pool_id>")
@require_org_context
def get_pool_route(pool_id: int):
    try:
        return allocation_service.get_pool(org_id=g.org_id, pool_id=pool_id), 200
    except ENGINE_ERRORS as e:
        return error_response(e)
