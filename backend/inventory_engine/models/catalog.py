from __future__ import annotations

from ..extensions import db
from inventory_engine.time_utils import to_utc_z


class Supplier(db.Model):
    """
    External provider that owns allocated inventory.

    default_priority is the ranking used when a supplier rate plan does not
    carry its own priority (higher wins in the waterfall).
    """
    __tablename__ = "suppliers"
    __table_args__ = (
        db.UniqueConstraint("org_id", "code", name="uq_suppliers_org_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True)

    default_priority = db.Column(db.Integer, nullable=False, default=100)
    default_cost_rank = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} name={self.name!r} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "code": self.code,
            "default_priority": self.default_priority,
            "default_cost_rank": self.default_cost_rank,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class ProductVariant(db.Model):
    """Sellable unit: room category, ticket tier, tour departure, time slot product."""
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("org_id", "code", name="uq_product_variants_org_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    # Catalog lives outside the engine; keep only the reference
    product_ref = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(64), nullable=True)
    variant_type = db.Column(db.String(32), nullable=False, default="room")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    time_slots = db.relationship(
        "TimeSlot",
        back_populates="variant",
        order_by="TimeSlot.start_time",
        lazy=True,
    )

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} name={self.name!r} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "product_ref": self.product_ref,
            "name": self.name,
            "code": self.code,
            "variant_type": self.variant_type,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class TimeSlot(db.Model):
    """Named recurring time-of-day window on a variant (e.g. 09:00 departure)."""
    __tablename__ = "time_slots"
    __table_args__ = (
        db.UniqueConstraint("variant_id", "name", name="uq_time_slots_variant_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    variant = db.relationship("ProductVariant", back_populates="time_slots")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "name": self.name,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "is_active": self.is_active,
        }
