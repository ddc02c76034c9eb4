# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .services import tenant_service
from .services.tenant_service import TenantAccessError


def require_org_context(f):
    """
    Establish tenant context from the caller-injected header.

    MULTI-TENANT: Sets g.org_id. The engine never resolves tenants itself;
    an upstream gateway authenticates and forwards the organization id.

    Returns 401 if the header is missing or not an integer, and 404 if the
    organization is unknown or inactive.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        header = current_app.config.get("ORG_CONTEXT_HEADER", "X-Org-Id")
        raw = request.headers.get(header)

        if not raw:
            return jsonify({"error": "Tenant context required"}), 401

        try:
            org_id = int(raw.strip())
        except ValueError:
            return jsonify({"error": "Invalid tenant context"}), 401

        try:
            tenant_service.validate_org_active(org_id)
        except TenantAccessError as e:
            return jsonify({"error": str(e)}), 404

        g.org_id = org_id
        return f(*args, **kwargs)

    return decorated_function
