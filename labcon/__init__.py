"""
labcon: Lab-Instrument Driver Coordination

Coordinates remote driver agents with control clients. A driver registers
once and receives a token, publishes its state and status, and accepts at
most one pending operation at a time.
"""

__version__ = "0.1.0"

from .client import Driver, LabconClient
from .coordinator import DriverCoordinator
from .errors import (
    AlreadyExistsError,
    DriverBusyError,
    DriverExistsError,
    DriverNotFoundError,
    LabconError,
    StorageError,
    UnauthorizedError,
    ValidationError,
)
from .models import DriverRecord, DriverStatus, Operation
from .repository import DriverRepository
from .storage import Store
from .tokens import generate_token

__all__ = [
    "Driver",
    "LabconClient",
    "DriverCoordinator",
    "DriverRepository",
    "Store",
    "DriverRecord",
    "DriverStatus",
    "Operation",
    "generate_token",
    "LabconError",
    "AlreadyExistsError",
    "DriverBusyError",
    "DriverExistsError",
    "DriverNotFoundError",
    "StorageError",
    "UnauthorizedError",
    "ValidationError",
]
