from __future__ import annotations

from ..extensions import db
from inventory_engine.time_utils import to_utc_z, to_iso_date


INVENTORY_MODELS = ("committed", "freesale", "on_request")

PRICING_FIXED = "fixed"
PRICING_PER_PERSON = "per_person"
PRICING_BASE_PLUS_PAX = "base_plus_pax"
PRICING_MODELS = (PRICING_FIXED, PRICING_PER_PERSON, PRICING_BASE_PLUS_PAX)


class RatePlan(db.Model):
    """
    Pricing container for one variant.

    supplier_id NULL   -> master/selling rate (customer-facing price)
    supplier_id set    -> supplier/cost rate (what we pay that supplier)

    The nullable column only exists at this persistence boundary. Services
    work with the MasterRate / SupplierRate union from rate_service, and a
    master row is only valid when preferred and inventory_model='freesale'.
    """
    __tablename__ = "rate_plans"
    __table_args__ = (
        db.Index("ix_rate_plans_variant_window", "org_id", "variant_id", "valid_from", "valid_to"),
        db.CheckConstraint("valid_from <= valid_to", name="ck_rate_plans_window"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    # Contract documents are managed elsewhere; NULL for master rates
    contract_ref = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=True)

    currency = db.Column(db.String(3), nullable=False)
    valid_from = db.Column(db.Date, nullable=False)
    valid_to = db.Column(db.Date, nullable=False)

    inventory_model = db.Column(db.String(16), nullable=False, default="committed")
    # NULL inherits Supplier.default_priority
    priority = db.Column(db.Integer, nullable=True)
    preferred = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    seasons = db.relationship(
        "RateSeason",
        back_populates="rate_plan",
        order_by="RateSeason.date_from",
        cascade="all, delete-orphan",
        lazy=True,
    )
    occupancies = db.relationship(
        "RateOccupancy",
        back_populates="rate_plan",
        order_by="RateOccupancy.min_occupancy",
        cascade="all, delete-orphan",
        lazy=True,
    )
    supplier = db.relationship("Supplier")

    def __repr__(self) -> str:
        return f"<RatePlan id={self.id} variant_id={self.variant_id} supplier_id={self.supplier_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "variant_id": self.variant_id,
            "supplier_id": self.supplier_id,
            "kind": "master" if self.supplier_id is None else "supplier",
            "contract_ref": self.contract_ref,
            "name": self.name,
            "currency": self.currency,
            "valid_from": to_iso_date(self.valid_from),
            "valid_to": to_iso_date(self.valid_to),
            "inventory_model": self.inventory_model,
            "priority": self.priority,
            "preferred": self.preferred,
            "seasons": [s.to_dict() for s in self.seasons],
            "occupancies": [o.to_dict() for o in self.occupancies],
            "created_at": to_utc_z(self.created_at),
        }


class RateSeason(db.Model):
    """
    Date sub-window of a plan.

    dow_mask is seven '0'/'1' characters, Monday first ("1111100" = weekdays).
    A plan with seasons only applies on dates covered by one of them.
    """
    __tablename__ = "rate_seasons"
    __table_args__ = (
        db.CheckConstraint("date_from <= date_to", name="ck_rate_seasons_window"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    rate_plan_id = db.Column(db.Integer, db.ForeignKey("rate_plans.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=True)
    date_from = db.Column(db.Date, nullable=False)
    date_to = db.Column(db.Date, nullable=False)
    dow_mask = db.Column(db.String(7), nullable=False, default="1111111")
    min_pax = db.Column(db.Integer, nullable=True)
    max_pax = db.Column(db.Integer, nullable=True)

    rate_plan = db.relationship("RatePlan", back_populates="seasons")

    def applies_on(self, day, pax_count: int | None = None) -> bool:
        if not (self.date_from <= day <= self.date_to):
            return False
        if (self.dow_mask or "1111111")[day.weekday()] != "1":
            return False
        if pax_count is not None:
            if self.min_pax is not None and pax_count < self.min_pax:
                return False
            if self.max_pax is not None and pax_count > self.max_pax:
                return False
        return True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "date_from": to_iso_date(self.date_from),
            "date_to": to_iso_date(self.date_to),
            "dow_mask": self.dow_mask,
            "min_pax": self.min_pax,
            "max_pax": self.max_pax,
        }


class RateOccupancy(db.Model):
    """Pricing band over an inclusive occupancy range [min_occupancy, max_occupancy]."""
    __tablename__ = "rate_occupancies"
    __table_args__ = (
        db.CheckConstraint("min_occupancy >= 1", name="ck_rate_occupancies_min"),
        db.CheckConstraint("min_occupancy <= max_occupancy", name="ck_rate_occupancies_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    rate_plan_id = db.Column(db.Integer, db.ForeignKey("rate_plans.id"), nullable=False, index=True)
    min_occupancy = db.Column(db.Integer, nullable=False)
    max_occupancy = db.Column(db.Integer, nullable=False)
    pricing_model = db.Column(db.String(16), nullable=False, default=PRICING_FIXED)
    base_amount = db.Column(db.Numeric(12, 2), nullable=True)
    per_person_amount = db.Column(db.Numeric(12, 2), nullable=True)

    rate_plan = db.relationship("RatePlan", back_populates="occupancies")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "min_occupancy": self.min_occupancy,
            "max_occupancy": self.max_occupancy,
            "pricing_model": self.pricing_model,
            "base_amount": str(self.base_amount) if self.base_amount is not None else None,
            "per_person_amount": str(self.per_person_amount) if self.per_person_amount is not None else None,
        }
