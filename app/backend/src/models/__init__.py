"""ORM models exposed for easy imports."""

from .drive_scan import DriveScan
from .invoice import Invoice
from .part import Part
from .shop import Shop
from .supplier import Supplier

__all__ = [
    "DriveScan",
    "Invoice",
    "Part",
    "Shop",
    "Supplier",
]
