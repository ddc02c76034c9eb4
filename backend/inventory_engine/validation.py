from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
import re
from inventory_engine.time_utils import parse_iso_datetime, parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, Date, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum money amount: 9,999,999,999.99 (fits Numeric(12, 2))
MAX_AMOUNT = Decimal("9999999999.99")
MONEY_QUANT = Decimal("0.01")

CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


class ValidationError(ValueError):
    """400-level input problem."""
    code = "validation_error"


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate scope)."""
    code = "conflict"


class NotFoundError(LookupError):
    """404-level: missing, or owned by another organization."""
    code = "not_found"


class CapacityError(ValueError):
    """
    409-level: not enough sellable inventory.

    Carries the exact shortfall so callers can offer an on-request fallback.
    """
    code = "capacity"

    def __init__(self, message: str, *, requested: int = 0, available: int = 0):
        super().__init__(message)
        self.requested = requested
        self.available = available

    @property
    def shortfall(self) -> int:
        return max(0, self.requested - self.available)

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "code": self.code,
            "requested": self.requested,
            "available": self.available,
            "shortfall": self.shortfall,
        }


class ConcurrencyError(RuntimeError):
    """Counter write kept conflicting after the bounded retry."""
    code = "retry_exhausted"


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - allow_null_fields: extra allowlist for setting null even if you want to special-case later
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    # Optional: keep for future; currently we just honor SQLAlchemy column.nullable
    allow_null_fields: set[str] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_amount(value: Any, field: str = "amount") -> Decimal:
    """Money input -> Decimal quantized to cents. Floats are rejected."""
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{field} must be a decimal string or integer, not a float")
    try:
        amount = Decimal(str(value).strip()) if isinstance(value, str) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a decimal amount")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a decimal amount")
    if amount.as_tuple().exponent < -2:
        raise ValidationError(f"{field} has more than 2 decimal places")
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds {MAX_AMOUNT}")
    return amount.quantize(MONEY_QUANT)


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        # String input - must be plain digits (with optional leading minus)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            # Reject scientific notation (e.g., "1e15", "1E10")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            # Reject decimal points (e.g., "12.5")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        # Reject floats explicitly
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        # Other types
        raise ValidationError(f"{col.key} must be an integer")

    # Fixed-precision money
    if isinstance(coltype, Numeric):
        return coerce_amount(value, col.key)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except Exception:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Calendar dates
    if isinstance(coltype, Date):
        try:
            d = parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{col.key} must be an ISO-8601 date (YYYY-MM-DD)")
        if d is None:
            raise ValidationError(f"{col.key} must be an ISO-8601 date (YYYY-MM-DD)")
        return d

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols.get(k)
        if col is None:
            # Policy-allowed, non-column fields pass through for the caller to handle
            patch[k] = raw
            continue

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def require_currency(value: Any) -> str:
    if not isinstance(value, str) or not CURRENCY_RE.match(value.strip().upper()):
        raise ValidationError("currency must be a 3-letter ISO-4217 code")
    return value.strip().upper()


def require_date(value: Any, field: str) -> date:
    try:
        d = parse_iso_date(value)
    except ValueError:
        d = None
    if d is None:
        raise ValidationError(f"{field} must be an ISO-8601 date (YYYY-MM-DD)")
    return d


def require_positive_int(value: Any, field: str, *, allow_zero: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            value = int(value.strip())
        else:
            raise ValidationError(f"{field} must be an integer")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'>= 0' if allow_zero else '> 0'}")
    return value


def require_days_of_week(value: Any) -> list[int] | None:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)) or not value:
        raise ValidationError("days_of_week must be a non-empty list of 0-6")
    days = []
    for d in value:
        if isinstance(d, bool) or not isinstance(d, int) or d < 0 or d > 6:
            raise ValidationError("days_of_week entries must be integers 0 (Mon) .. 6 (Sun)")
        days.append(d)
    return sorted(set(days))


def enforce_rules_allocation(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    quantity = patch.get("quantity")
    if quantity is not None and quantity < 0:
        raise ValidationError("quantity must be >= 0")

    if patch.get("overbooking_limit") is not None and patch["overbooking_limit"] < 0:
        raise ValidationError("overbooking_limit must be >= 0")

    if patch.get("release_period_hours") is not None and patch["release_period_hours"] < 0:
        raise ValidationError("release_period_hours must be >= 0")

    if patch.get("unit_cost") is not None and patch["unit_cost"] < 0:
        raise ValidationError("unit_cost must be >= 0")

    if "currency" in patch and patch["currency"] is not None:
        patch["currency"] = require_currency(patch["currency"])

    for low, high in (("min_stay", "max_stay"), ("min_occupancy", "max_occupancy")):
        lo, hi = patch.get(low), patch.get(high)
        if lo is not None and lo < 0:
            raise ValidationError(f"{low} must be >= 0")
        if lo is not None and hi is not None and lo > hi:
            raise ValidationError(f"{low} cannot exceed {high}")


ENGINE_ERRORS = (ValidationError, ConflictError, NotFoundError, CapacityError, ConcurrencyError)


def error_response(exc: Exception) -> tuple[dict, int]:
    """Map an engine error to a JSON body and HTTP status."""
    if isinstance(exc, CapacityError):
        return exc.to_dict(), 409
    body = {"error": str(exc), "code": getattr(exc, "code", "error")}
    if isinstance(exc, ValidationError):
        return body, 400
    if isinstance(exc, ConflictError):
        return body, 409
    if isinstance(exc, NotFoundError):
        return body, 404
    if isinstance(exc, ConcurrencyError):
        return body, 503
    return {"error": "Internal error"}, 500
