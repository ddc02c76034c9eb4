# Overview: Flask API routes for supplier selection; parses input and returns JSON responses.

from flask import Blueprint, request, g, current_app

from ..decorators import require_org_context
from ..services import selection_service
from ..validation import ENGINE_ERRORS, ValidationError, error_response, require_date, require_positive_int


selection_bp = Blueprint("selection", __name__, url_prefix="/api/selection")


@selection_bp.post("")
@require_org_context
def select_suppliers_route():
    """
    Fulfil demand across suppliers (waterfall) and hold the units.

    Request body:
    {
        "variant_id": 1,
        "date": "2026-03-14",
        "pax_count": 2,
        "demand_qty": 5,
        "time_slot_id": null    // optional
    }

    Returns 201 with reservation_ids, supplier_breakdown, sell_price, total_margin.
    409 with requested/available/shortfall when suppliers cannot cover demand.
    """
    payload = request.get_json(silent=True) or {}

    try:
        variant_id = require_positive_int(payload.get("variant_id"), "variant_id")
        day = require_date(payload.get("date"), "date")
        pax_count = require_positive_int(payload.get("pax_count"), "pax_count")
        demand_qty = require_positive_int(payload.get("demand_qty"), "demand_qty")
        time_slot_id = payload.get("time_slot_id")
        if time_slot_id is not None:
            time_slot_id = require_positive_int(time_slot_id, "time_slot_id")
    except ValidationError as e:
        return {"error": str(e), "code": e.code}, 400

    try:
        result = selection_service.select_suppliers(
            org_id=g.org_id,
            variant_id=variant_id,
            day=day,
            pax_count=pax_count,
            demand_qty=demand_qty,
            time_slot_id=time_slot_id,
        )
    except ENGINE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to select suppliers")
        return {"error": "Failed to select suppliers"}, 500

    return result.to_dict(), 201


@selection_bp.post("/<selection_ref>/confirm")
@require_org_context
def confirm_selection_route(selection_ref: str):
    try:
        reservations = selection_service.confirm_selection(org_id=g.org_id, selection_ref=selection_ref)
    except ENGINE_ERRORS as e:
        return error_response(e)
    return {"selection_ref": selection_ref, "reservations": [r.to_dict() for r in reservations]}, 200


@selection_bp.post("/<selection_ref>/release")
@require_org_context
def release_selection_route(selection_ref: str):
    try:
        reservations = selection_service.release_selection(org_id=g.org_id, selection_ref=selection_ref)
    except ENGINE_ERRORS as e:
        return error_response(e)
    return {"selection_ref": selection_ref, "reservations": [r.to_dict() for r in reservations]}, 200
