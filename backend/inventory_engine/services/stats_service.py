# Overview: Service-layer operations for availability stats; pure roll-up over generator output.

from __future__ import annotations

from datetime import date
from typing import Iterable

from .availability_service import AvailabilityDay, AvailabilityGenerator, utilization


def summarize(days: Iterable[AvailabilityDay]) -> dict:
    """
    Roll up per-day records. Pure: no queries, no writes.

    low_availability_days  0 < available/(available + booked + held) < LOW threshold (strict)
    low_availability_days  0 < available/total_inventory < LOW threshold (strict)
    closed_days            every bucket on the day is stop-sell or blackout
    """
    stats = {
        "total_inventory": 0,
        "total_available": 0,
        "total_booked": 0,
        "total_held": 0,
        "utilization_percentage": 0.0,
        "sold_out_days": 0,
        "low_availability_days": 0,
        "closed_days": 0,
        "unbounded_days": 0,
        "days": 0,
    }
    for day in days:
        stats["days"] += 1
        stats["total_inventory"] += day.total_inventory
        stats["total_available"] += day.total_available
        stats["total_booked"] += day.total_booked
        stats["total_held"] += day.total_held
        if day.is_closed:
            stats["closed_days"] += 1
        elif day.is_sold_out:
            stats["sold_out_days"] += 1
        elif day.is_low:
            stats["low_availability_days"] += 1
        if day.has_unbounded:
            stats["unbounded_days"] += 1

    stats["utilization_percentage"] = utilization(stats["total_booked"], stats["total_available"])
    return stats


def availability_with_stats(
    *,
    org_id: int,
    variant_id: int,
    date_from: date,
    date_to: date,
    supplier_id: int | None = None,
    time_slot_id: int | None = None,
) -> dict:
    days = list(AvailabilityGenerator(
        org_id=org_id,
        variant_id=variant_id,
        date_from=date_from,
        date_to=date_to,
        supplier_id=supplier_id,
        time_slot_id=time_slot_id,
    ))
    return {
        "variant_id": variant_id,
        "date_from": date_from.isoformat(),
        "date_to": date_to.isoformat(),
        "days": [d.to_dict() for d in days],
        "stats": summarize(days),
    }
