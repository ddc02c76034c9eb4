from .tenancy import Organization
from .catalog import Supplier, ProductVariant, TimeSlot
from .allocations import InventoryPool, AllocationBucket, Reservation
from .rates import RatePlan, RateSeason, RateOccupancy

__all__ = [
    'Organization',
    'Supplier', 'ProductVariant', 'TimeSlot',
    'InventoryPool', 'AllocationBucket', 'Reservation',
    'RatePlan', 'RateSeason', 'RateOccupancy',
]
