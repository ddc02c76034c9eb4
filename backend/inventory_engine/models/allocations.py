from __future__ import annotations

from ..extensions import db
from inventory_engine.time_utils import to_utc_z, to_iso_date, utcnow


ALLOCATION_COMMITTED = "committed"
ALLOCATION_FREESALE = "freesale"
ALLOCATION_ON_REQUEST = "on_request"
ALLOCATION_TYPES = (ALLOCATION_COMMITTED, ALLOCATION_FREESALE, ALLOCATION_ON_REQUEST)

SCOPE_DATE = "date"
SCOPE_RANGE = "range"
SCOPE_SLOT = "slot"
SCOPE_TYPES = (SCOPE_DATE, SCOPE_RANGE, SCOPE_SLOT)

RESERVATION_HELD = "HELD"
RESERVATION_CONFIRMED = "CONFIRMED"
RESERVATION_RELEASED = "RELEASED"
RESERVATION_EXPIRED = "EXPIRED"
RESERVATION_LIVE_STATUSES = (RESERVATION_HELD, RESERVATION_CONFIRMED)

# Ceiling: booked + held <= quantity (+ overbooking_limit when allowed).
# Enforced again in SQL so no writer path can persist a violation.
_CEILING_CHECK = (
    "quantity IS NULL OR booked + held <= quantity + "
    "(CASE WHEN allow_overbooking THEN overbooking_limit ELSE 0 END)"
)


class InventoryPool(db.Model):
    """
    Shared capacity authority.

    When a bucket references a pool, counters (quantity/booked/held and the
    overbooking allowance) live HERE; the member bucket's own counters are
    ignored. Every counter read and write resolves through the pool.
    """
    __tablename__ = "inventory_pools"
    __table_args__ = (
        db.CheckConstraint("booked >= 0", name="ck_inventory_pools_booked_nonneg"),
        db.CheckConstraint("held >= 0", name="ck_inventory_pools_held_nonneg"),
        db.CheckConstraint("overbooking_limit >= 0", name="ck_inventory_pools_overbooking_nonneg"),
        db.CheckConstraint(_CEILING_CHECK, name="ck_inventory_pools_ceiling"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    reference = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=True)
    booked = db.Column(db.Integer, nullable=False, default=0)
    held = db.Column(db.Integer, nullable=False, default=0)
    allow_overbooking = db.Column(db.Boolean, nullable=False, default=False)
    overbooking_limit = db.Column(db.Integer, nullable=False, default=0)

    currency = db.Column(db.String(3), nullable=True)
    valid_from = db.Column(db.Date, nullable=True)
    valid_to = db.Column(db.Date, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryPool id={self.id} name={self.name!r} quantity={self.quantity} booked={self.booked}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "supplier_id": self.supplier_id,
            "name": self.name,
            "reference": self.reference,
            "quantity": self.quantity,
            "booked": self.booked,
            "held": self.held,
            "allow_overbooking": self.allow_overbooking,
            "overbooking_limit": self.overbooking_limit,
            "currency": self.currency,
            "valid_from": to_iso_date(self.valid_from),
            "valid_to": to_iso_date(self.valid_to),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class AllocationBucket(db.Model):
    """
    Atomic inventory record for one (variant, supplier-or-null, time-scope).

    TIME SCOPE (exactly one kind):
    - date:  start_date == end_date, time_slot_id NULL
    - range: event window start_date..end_date (inclusive), time_slot_id NULL
    - slot:  start_date == end_date, time_slot_id set

    scope_key encodes supplier + scope and is unique per (org, variant); it is
    the DuplicateScope guard that makes range expansion idempotent.

    COUNTERS:
    - quantity NULL means unconstrained (freesale); booked/held still count
      reservations for reporting but never limit availability.
    - For pooled buckets the counters live on the pool (see InventoryPool).
    - stop_sell/blackout close the bucket regardless of counters.
    """
    __tablename__ = "allocation_buckets"
    __table_args__ = (
        db.UniqueConstraint("org_id", "variant_id", "scope_key", name="uq_allocation_buckets_scope"),
        db.Index("ix_allocation_buckets_variant_window", "org_id", "variant_id", "start_date", "end_date"),
        db.CheckConstraint("booked >= 0", name="ck_allocation_buckets_booked_nonneg"),
        db.CheckConstraint("held >= 0", name="ck_allocation_buckets_held_nonneg"),
        db.CheckConstraint("overbooking_limit >= 0", name="ck_allocation_buckets_overbooking_nonneg"),
        db.CheckConstraint("start_date <= end_date", name="ck_allocation_buckets_window"),
        db.CheckConstraint(_CEILING_CHECK, name="ck_allocation_buckets_ceiling"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    scope_type = db.Column(db.String(16), nullable=False, default=SCOPE_DATE)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    time_slot_id = db.Column(db.Integer, db.ForeignKey("time_slots.id"), nullable=True, index=True)
    scope_key = db.Column(db.String(96), nullable=False)

    quantity = db.Column(db.Integer, nullable=True)
    booked = db.Column(db.Integer, nullable=False, default=0)
    held = db.Column(db.Integer, nullable=False, default=0)

    allocation_type = db.Column(db.String(16), nullable=False, default=ALLOCATION_COMMITTED)
    stop_sell = db.Column(db.Boolean, nullable=False, default=False)
    blackout = db.Column(db.Boolean, nullable=False, default=False)
    allow_overbooking = db.Column(db.Boolean, nullable=False, default=False)
    overbooking_limit = db.Column(db.Integer, nullable=False, default=0)

    # Fixed precision; never float
    unit_cost = db.Column(db.Numeric(12, 2), nullable=True)
    currency = db.Column(db.String(3), nullable=True)

    release_period_hours = db.Column(db.Integer, nullable=True)

    min_stay = db.Column(db.Integer, nullable=True)
    max_stay = db.Column(db.Integer, nullable=True)
    min_occupancy = db.Column(db.Integer, nullable=True)
    max_occupancy = db.Column(db.Integer, nullable=True)

    inventory_pool_id = db.Column(db.Integer, db.ForeignKey("inventory_pools.id"), nullable=True, index=True)

    # Ordered substitute variant ids; display metadata only
    alternate_variant_ids = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    pool = db.relationship("InventoryPool", backref=db.backref("buckets", lazy=True))
    time_slot = db.relationship("TimeSlot")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_closed(self) -> bool:
        return bool(self.stop_sell or self.blackout)

    def covers(self, day) -> bool:
        return self.start_date <= day <= self.end_date

    def __repr__(self) -> str:
        return (
            f"<AllocationBucket id={self.id} variant_id={self.variant_id} "
            f"supplier_id={self.supplier_id} scope={self.scope_key!r}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "variant_id": self.variant_id,
            "supplier_id": self.supplier_id,
            "scope": {
                "type": self.scope_type,
                "start_date": to_iso_date(self.start_date),
                "end_date": to_iso_date(self.end_date),
                "time_slot_id": self.time_slot_id,
            },
            "quantity": self.quantity,
            "booked": self.booked,
            "held": self.held,
            "allocation_type": self.allocation_type,
            "stop_sell": self.stop_sell,
            "blackout": self.blackout,
            "allow_overbooking": self.allow_overbooking,
            "overbooking_limit": self.overbooking_limit,
            "unit_cost": str(self.unit_cost) if self.unit_cost is not None else None,
            "currency": self.currency,
            "release_period_hours": self.release_period_hours,
            "min_stay": self.min_stay,
            "max_stay": self.max_stay,
            "min_occupancy": self.min_occupancy,
            "max_occupancy": self.max_occupancy,
            "inventory_pool_id": self.inventory_pool_id,
            "alternate_variant_ids": list(self.alternate_variant_ids or []),
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Reservation(db.Model):
    """
    One Reserve() call against one bucket.

    LIFECYCLE:
    HELD -> CONFIRMED (ConfirmHold: held -> booked)
    HELD -> RELEASED  (Release: held returned)
    HELD -> EXPIRED   (release-period sweep)
    CONFIRMED is created directly when reserving without a hold.

    counter_pool_id snapshots which pool absorbed the counters, so release
    and confirm hit the same counter owner even if the bucket is re-pooled.
    """
    __tablename__ = "reservations"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_reservations_quantity_positive"),
        db.Index("ix_reservations_status_expires", "status", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    bucket_id = db.Column(db.Integer, db.ForeignKey("allocation_buckets.id"), nullable=False, index=True)
    counter_pool_id = db.Column(db.Integer, db.ForeignKey("inventory_pools.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=RESERVATION_HELD, index=True)

    # Groups the holds taken by one supplier selection
    selection_ref = db.Column(db.String(36), nullable=True, index=True)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    released_at = db.Column(db.DateTime(timezone=True), nullable=True)
    release_reason = db.Column(db.String(32), nullable=True)

    bucket = db.relationship("AllocationBucket", backref=db.backref("reservations", lazy=True))

    def __repr__(self) -> str:
        return f"<Reservation id={self.id} bucket_id={self.bucket_id} qty={self.quantity} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "bucket_id": self.bucket_id,
            "counter_pool_id": self.counter_pool_id,
            "quantity": self.quantity,
            "status": self.status,
            "selection_ref": self.selection_ref,
            "expires_at": to_utc_z(self.expires_at),
            "created_at": to_utc_z(self.created_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "released_at": to_utc_z(self.released_at),
            "release_reason": self.release_reason,
        }
