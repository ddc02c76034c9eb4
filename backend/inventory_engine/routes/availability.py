# Overview: Flask API routes for availability; generation, calendar queries and bulk edits.

"""
Availability Routes

- POST /generate       seed daily allocations (idempotent per variant/supplier/date)
- GET  ""              per-day records plus window stats (read-only)
- POST /bulk-update    CLOSE / OPEN / ADJUST / SET / ANNOTATE across a date range

Bulk operations report per item; a failing date never fails the request.
"""

from flask import Blueprint, request, g, current_app

from ..decorators import require_org_context
from ..services import availability_service, bulk_service, stats_service
from ..services.bulk_service import BulkAction
from ..validation import (
    ENGINE_ERRORS,
    ValidationError,
    error_response,
    require_date,
    require_days_of_week,
    require_positive_int,
)


availability_bp = Blueprint("availability", __name__, url_prefix="/api/availability")


@availability_bp.post("/generate")
@require_org_context
def generate_availability_route():
    """
    Generate daily allocations for one or more variants.

    Request body:
    {
        "variant_ids": [1, 2],          // required
        "date_from": "2026-03-01",      // required
        "date_to": "2026-03-31",        // required
        "quantity": 10,                 // default DEFAULT_DAILY_QUANTITY
        "supplier_id": 4,               // optional
        "days_of_week": [0, 1, 2, 3, 4] // optional, 0 = Monday
    }

    Returns:
        {"results": [{variant_id, created, skipped, failed, ...}]}
    """
    payload = request.get_json(silent=True) or {}

    try:
        variant_ids = payload.get("variant_ids")
        if not isinstance(variant_ids, list) or not variant_ids:
            raise ValidationError("variant_ids must be a non-empty list")
        variant_ids = [require_positive_int(v, "variant_ids") for v in variant_ids]
        date_from = require_date(payload.get("date_from"), "date_from")
        date_to = require_date(payload.get("date_to"), "date_to")
        quantity = payload.get("quantity")
        if quantity is not None:
            quantity = require_positive_int(quantity, "quantity", allow_zero=True)
        supplier_id = payload.get("supplier_id")
        if supplier_id is not None:
            supplier_id = require_positive_int(supplier_id, "supplier_id")
        days_of_week = require_days_of_week(payload.get("days_of_week"))
    except ValidationError as e:
        return {"error": str(e), "code": e.code}, 400

    try:
        results = availability_service.generate_availability(
            org_id=g.org_id,
            variant_ids=variant_ids,
            date_from=date_from,
            date_to=date_to,
            quantity=quantity,
            supplier_id=supplier_id,
            days_of_week=days_of_week,
        )
    except ENGINE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to generate availability")
        return {"error": "Failed to generate availability"}, 500

    return {"results": results}, 200


@availability_bp.get("")
@require_org_context
def availability_route():
    """
    Per-day availability and stats for one variant.

    Query parameters: variant_id, date_from, date_to (required);
    supplier_id, time_slot_id (optional)
    """
    variant_id = request.args.get("variant_id", type=int)
    if variant_id is None:
        return {"error": "variant_id is required"}, 400

    try:
        date_from = require_date(request.args.get("date_from"), "date_from")
        date_to = require_date(request.args.get("date_to"), "date_to")
        data = stats_service.availability_with_stats(
            org_id=g.org_id,
            variant_id=variant_id,
            date_from=date_from,
            date_to=date_to,
            supplier_id=request.args.get("supplier_id", type=int),
            time_slot_id=request.args.get("time_slot_id", type=int),
        )
    except ENGINE_ERRORS as e:
        return error_response(e)
    return data, 200


@availability_bp.post("/bulk-update")
@require_org_context
def bulk_update_route():
    """
    Apply one action to every existing allocation on the selected dates.

    Request body:
    {
        "variant_id": 1,
        "date_from": "2026-03-01",
        "date_to": "2026-03-31",
        "action": "ADJUST",
        "payload": {"delta": -2, "floor_at_zero": true},
        "supplier_id": 4,              // optional
        "days_of_week": [5, 6]         // optional
    }

    Returns:
        {"results": [{date, status: success|skipped|failed, error?, bucket_ids?}]}
    """
    payload = request.get_json(silent=True) or {}

    try:
        variant_id = require_positive_int(payload.get("variant_id"), "variant_id")
        date_from = require_date(payload.get("date_from"), "date_from")
        date_to = require_date(payload.get("date_to"), "date_to")
        action_payload = payload.get("payload")
        if action_payload is not None and not isinstance(action_payload, dict):
            raise ValidationError("payload must be an object")
        action = BulkAction.from_payload(payload.get("action"), action_payload)
        supplier_id = payload.get("supplier_id")
        if supplier_id is not None:
            supplier_id = require_positive_int(supplier_id, "supplier_id")
        days_of_week = require_days_of_week(payload.get("days_of_week"))
    except ValidationError as e:
        return {"error": str(e), "code": e.code}, 400

    try:
        results = bulk_service.bulk_update(
            org_id=g.org_id,
            variant_id=variant_id,
            date_from=date_from,
            date_to=date_to,
            action=action,
            supplier_id=supplier_id,
            days_of_week=days_of_week,
        )
    except ENGINE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply bulk update")
        return {"error": "Failed to apply bulk update"}, 500

    return {"results": results}, 200
