"""
Driver Models

Records kept for each registered driver and the operations dispatched to it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from .errors import ValidationError

# Opaque application payloads (driver state, operation arguments) are JSON
# documents. The registry stores and returns them without looking inside.
JSONValue = Union[None, bool, int, float, str, list, dict]


class DriverStatus(Enum):
    """Coarse lifecycle flag of a driver."""
    IDLE = "idle"
    BUSY = "busy"
    LOST = "lost"
    ERROR = "error"

    @classmethod
    def parse(cls, value: Any) -> "DriverStatus":
        """Parse a status from its wire value, raising ValidationError."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(s.value for s in cls)
            raise ValidationError(f"Invalid status {value!r}, expected one of: {choices}") from None


@dataclass
class Operation:
    """An action requested of a driver."""
    name: str
    argument: JSONValue = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.argument is not None:
            data["arg"] = self.argument
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Operation":
        """Create an Operation from its wire form."""
        if not isinstance(data, dict):
            raise ValidationError("operation must be a JSON object")
        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise ValidationError("operation name is required")
        return cls(name=name, argument=data.get("arg"))


@dataclass
class DriverRecord:
    """
    Registry entry for one driver.

    `operation` is only meaningful while `status` is BUSY. The token is issued
    once at registration and never changes.
    """
    name: str
    token: str
    state: JSONValue
    status: DriverStatus = DriverStatus.IDLE
    operation: Optional[Operation] = None

    def to_dict(self, include_token: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = {
            "name": self.name,
            "state": self.state,
            "status": self.status.value,
            "operation": self.operation.to_dict() if self.operation else None,
        }
        if include_token:
            data["token"] = self.token
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DriverRecord":
        """Create DriverRecord from dictionary."""
        operation = Operation.from_dict(data["operation"]) if data.get("operation") else None
        return cls(
            name=data["name"],
            token=data["token"],
            state=data.get("state"),
            status=DriverStatus(data.get("status", "idle")),
            operation=operation,
        )
