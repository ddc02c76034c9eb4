# Overview: Service-layer operations for maintenance; release-period expiry of stale holds.

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Reservation
from ..models.allocations import RESERVATION_HELD
from ..validation import ENGINE_ERRORS
from inventory_engine.time_utils import utcnow
from .allocation_service import ReservationStateError, release


def expire_stale_holds(*, now: datetime | None = None, batch_size: int | None = None) -> dict:
    """
    Release every HELD reservation whose expires_at has passed.

    Runs outside any request (CLI / scheduler). Each hold goes through
    release(), so counters are returned the same way as a manual release;
    a hold confirmed or released concurrently is counted as skipped, and a
    hold whose release keeps failing is counted as failed and left for the
    next sweep.
    """
    now = now or utcnow()
    if batch_size is None:
        batch_size = int(current_app.config.get("ALLOCATION_BATCH_SIZE", 100))

    expired = 0
    skipped = 0
    failed = 0
    last_id = 0
    while True:
        rows = db.session.query(Reservation.id, Reservation.org_id).filter(
            Reservation.status == RESERVATION_HELD,
            Reservation.expires_at.isnot(None),
            Reservation.expires_at <= now,
            Reservation.id > last_id,
        ).order_by(Reservation.id.asc()).limit(batch_size).all()
        if not rows:
            break

        for reservation_id, org_id in rows:
            last_id = reservation_id
            try:
                release(
                    org_id=org_id,
                    reservation_id=reservation_id,
                    reason="release_period_expired",
                    expired=True,
                    now=now,
                )
                expired += 1
            except ReservationStateError:
                skipped += 1
            except ENGINE_ERRORS as exc:
                failed += 1
                current_app.logger.warning(
                    "Hold expiry failed reservation_id=%s org_id=%s: %s", reservation_id, org_id, exc
                )

    current_app.logger.info(
        "Hold expiry sweep now=%s expired=%d skipped=%d failed=%d", now.isoformat(), expired, skipped, failed
    )
    return {"expired": expired, "skipped": skipped, "failed": failed, "now": now.isoformat() + "Z"}
