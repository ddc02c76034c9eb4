"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

WHY: The engine never resolves a tenant itself; the caller injects org_id.
Every row the engine touches must then be checked against that org_id, and
cross-tenant access must look exactly like a missing row.

SECURITY INVARIANTS:
1. Every request handled by a route has g.org_id set (require_org_context)
2. IDs from client input (variant, supplier, pool, bucket, plan) are validated
   against org_id before use
3. Foreign rows raise TenantAccessError with the same message as missing rows

USAGE:
    from inventory_engine.services.tenant_service import require_variant_in_org

    variant = require_variant_in_org(variant_id, org_id)
"""

from flask import current_app, g, has_request_context, request

from ..extensions import db
from ..models import Organization, ProductVariant, Supplier, InventoryPool, TimeSlot
from ..validation import NotFoundError


class TenantAccessError(NotFoundError):
    """Raised when a row is missing or owned by another organization."""
    code = "not_found"


def get_current_org_id() -> int:
    """
    Get current tenant's org_id from Flask g context.

    SECURITY: Raises TenantAccessError if org_id not set.
    This should never happen after @require_org_context, but is a safety check.
    """
    if not hasattr(g, 'org_id') or g.org_id is None:
        raise TenantAccessError("Tenant context not established")
    return g.org_id


def validate_org_active(org_id: int) -> Organization:
    """
    Validate that an organization exists and is active.

    Raises:
        TenantAccessError if org doesn't exist or is inactive
    """
    org = db.session.get(Organization, org_id)

    if not org:
        raise TenantAccessError("Organization not found")

    if not org.is_active:
        raise TenantAccessError("Organization is not active")

    return org


def _require_owned(model, row_id: int, org_id: int, label: str):
    row = db.session.get(model, row_id) if row_id is not None else None

    if row is None:
        raise TenantAccessError(f"{label} not found")

    if row.org_id != org_id:
        # CRITICAL: Cross-tenant access attempt
        _log_cross_tenant_attempt(
            f"{label} {row_id} belongs to org {row.org_id}, not {org_id}",
            org_id=org_id,
        )
        raise TenantAccessError(f"{label} not found")  # Don't reveal it exists in another org

    return row


def require_variant_in_org(variant_id: int, org_id: int) -> ProductVariant:
    return _require_owned(ProductVariant, variant_id, org_id, "Variant")


def require_variants_in_org(variant_ids: list[int], org_id: int) -> list[ProductVariant]:
    """
    Validate multiple variants belong to the specified organization.

    Raises:
        TenantAccessError if any variant doesn't exist or belongs to different org
    """
    if not variant_ids:
        return []

    variants = db.session.query(ProductVariant).filter(ProductVariant.id.in_(variant_ids)).all()

    found_ids = {v.id for v in variants}
    missing_ids = set(variant_ids) - found_ids
    if missing_ids:
        raise TenantAccessError("One or more variants not found")

    for variant in variants:
        if variant.org_id != org_id:
            _log_cross_tenant_attempt(
                f"Variant {variant.id} belongs to org {variant.org_id}, not {org_id}",
                org_id=org_id,
            )
            raise TenantAccessError("One or more variants not found")

    by_id = {v.id: v for v in variants}
    return [by_id[vid] for vid in variant_ids]


def require_supplier_in_org(supplier_id: int, org_id: int) -> Supplier:
    return _require_owned(Supplier, supplier_id, org_id, "Supplier")


def require_pool_in_org(pool_id: int, org_id: int) -> InventoryPool:
    return _require_owned(InventoryPool, pool_id, org_id, "Inventory pool")


def require_time_slot_for_variant(time_slot_id: int, variant_id: int, org_id: int) -> TimeSlot:
    slot = _require_owned(TimeSlot, time_slot_id, org_id, "Time slot")
    if slot.variant_id != variant_id:
        raise TenantAccessError("Time slot not found")
    return slot


def scoped_query(model, org_id: int = None):
    """
    Create a base query scoped to the tenant via the model's org_id column.

    Usage:
        buckets = scoped_query(AllocationBucket, org_id).filter_by(variant_id=7).all()
    """
    if org_id is None:
        org_id = get_current_org_id()

    return db.session.query(model).filter(model.org_id == org_id)


def _log_cross_tenant_attempt(reason: str, org_id: int | None = None) -> None:
    """
    Log a cross-tenant access attempt.

    SECURITY: These lines should be monitored and alerted on.
    """
    current_app.logger.warning(
        "CROSS_TENANT_ACCESS_DENIED org_id=%s path=%s reason=%s",
        org_id,
        request.path if has_request_context() else None,
        reason,
    )
