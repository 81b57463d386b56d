"""
inventory/models.py -- Domain dataclasses for the CarLot vehicle inventory.

These are pure data containers with zero logic. Validation of user input
lives in web/forms.py; persistence lives in inventory/store.py.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class VehicleStatus(str, Enum):
    AVAILABLE = "available"
    PENDING_SALE = "pending sale"
    SOLD = "sold"


@dataclass
class Vehicle:
    """A vehicle on the lot.

    Any status may follow any other; the dedicated mark-pending operation and
    a generic update write the same column.

    id is None before the record is written to the database.
    """

    manufacturer: str
    model: str
    year: int
    price: float
    color: str
    engine_type: str
    vin: int
    mileage: int
    fuel_type: str
    transmission_type: str
    images: list[str] = field(default_factory=list)
    status: VehicleStatus = VehicleStatus.AVAILABLE
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class VehicleSearch:
    """Optional, conjunctive search filters.

    A None field is left out of the query entirely. Year and price bounds are
    inclusive and either end of a range may be given alone.
    """

    manufacturer: Optional[str] = None
    model: Optional[str] = None
    min_year: Optional[int] = None
    max_year: Optional[int] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
