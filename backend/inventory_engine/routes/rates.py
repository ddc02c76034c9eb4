# Overview: Flask API routes for the rate plan registry; parses input and returns JSON responses.

"""
Rate Plan Routes

A plan without supplier_id is the master (selling) rate and must be
preferred with inventory_model 'freesale'; anything else answers 409.
"""

from flask import Blueprint, request, g, current_app

from ..decorators import require_org_context
from ..services import rate_service
from ..validation import ENGINE_ERRORS, error_response, require_date


rates_bp = Blueprint("rates", __name__, url_prefix="/api/rate-plans")

_PLAN_FIELDS = {
    "variant_id",
    "supplier_id",
    "currency",
    "valid_from",
    "valid_to",
    "occupancies",
    "seasons",
    "inventory_model",
    "priority",
    "preferred",
    "contract_ref",
    "name",
}


def _rate_payload(rate) -> dict:
    data = {
        "id": rate.id,
        "kind": "master" if isinstance(rate, rate_service.MasterRate) else "supplier",
        "variant_id": rate.variant_id,
        "currency": rate.currency,
        "valid_from": rate.valid_from.isoformat(),
        "valid_to": rate.valid_to.isoformat(),
        "priority": rate.priority,
    }
    if isinstance(rate, rate_service.SupplierRate):
        data["supplier_id"] = rate.supplier_id
    return data


@rates_bp.post("")
@require_org_context
def create_rate_plan_route():
    """
    Create a rate plan with nested seasons and occupancy bands.

    Request body:
    {
        "variant_id": 1,
        "supplier_id": null,             // null = master rate
        "currency": "EUR",
        "valid_from": "2026-01-01",
        "valid_to": "2026-12-31",
        "inventory_model": "freesale",
        "preferred": true,
        "priority": 10,
        "occupancies": [
            {"min_occupancy": 1, "max_occupancy": 1, "pricing_model": "fixed", "base_amount": "100.00"},
            {"min_occupancy": 2, "max_occupancy": 4, "pricing_model": "base_plus_pax",
             "base_amount": "120.00", "per_person_amount": "30.00"}
        ],
        "seasons": [{"date_from": "2026-06-01", "date_to": "2026-08-31", "dow_mask": "1111111"}]
    }
    """
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400

    unknown = sorted(set(payload) - _PLAN_FIELDS)
    if unknown:
        return {"error": f"Field not allowed: {unknown[0]}"}, 400
    missing = sorted(f for f in ("variant_id", "currency", "valid_from", "valid_to", "occupancies") if f not in payload)
    if missing:
        return {"error": f"Missing required fields: {', '.join(missing)}"}, 400

    try:
        plan = rate_service.create_rate_plan(
            org_id=g.org_id,
            variant_id=payload["variant_id"],
            supplier_id=payload.get("supplier_id"),
            currency=payload["currency"],
            valid_from=payload["valid_from"],
            valid_to=payload["valid_to"],
            occupancies=payload["occupancies"],
            seasons=payload.get("seasons"),
            inventory_model=payload.get("inventory_model", "committed"),
            priority=payload.get("priority"),
            preferred=bool(payload.get("preferred", False)),
            contract_ref=payload.get("contract_ref"),
            name=payload.get("name"),
        )
    except ENGINE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create rate plan")
        return {"error": "Failed to create rate plan"}, 500
    return plan.to_dict(), 201


@rates_bp.get("/master")
@require_org_context
def resolve_master_rate_route():
    """
    Resolve the master (selling) rate for a variant on a date.

    Query parameters: variant_id (required), date (required), pax (optional)
    """
    variant_id = request.args.get("variant_id", type=int)
    pax = request.args.get("pax", type=int)
    if variant_id is None:
        return {"error": "variant_id is required"}, 400
    try:
        day = require_date(request.args.get("date"), "date")
        rate = rate_service.resolve_master_rate(org_id=g.org_id, variant_id=variant_id, day=day)
        data = _rate_payload(rate)
        if pax is not None:
            data["pax"] = pax
            data["sell_price"] = str(rate_service.price_for_occupancy(rate, pax))
    except ENGINE_ERRORS as e:
        return error_response(e)
    return data, 200


@rates_bp.get("/<int:plan_id>")
@require_org_context
def get_rate_plan_route(plan_id: int):
    try:
        plan = rate_service.get_rate_plan(org_id=g.org_id, plan_id=plan_id)
    except ENGINE_ERRORS as e:
        return error_response(e)
    return plan.to_dict(), 200


@rates_bp.get("/<int:plan_id>/price")
@require_org_context
def price_route(plan_id: int):
    """Quote one unit for ?pax=N. 400 when no occupancy band covers N."""
    pax = request.args.get("pax", type=int)
    if pax is None:
        return {"error": "pax is required"}, 400

    try:
        plan = rate_service.get_rate_plan(org_id=g.org_id, plan_id=plan_id)
        amount = rate_service.price_for_occupancy(plan, pax)
    except ENGINE_ERRORS as e:
        return error_response(e)

    return {"rate_plan_id": plan.id, "pax": pax, "amount": str(amount), "currency": plan.currency}, 200
