"""
labcon Error Definitions

Common exceptions used across the registry, the gateway and the client.
"""

from typing import Optional


class LabconError(Exception):
    """Base exception for all labcon errors."""
    code = "internal"


# =============================================================================
# Configuration Errors
# =============================================================================
class ConfigurationError(LabconError):
    """Raised when configuration is missing or invalid."""
    code = "configuration"


# =============================================================================
# Request Errors
# =============================================================================
class ValidationError(LabconError):
    """Raised when a request is missing a required field or carries a bad value."""
    code = "validation"


# =============================================================================
# Storage Errors
# =============================================================================
class StorageError(LabconError):
    """Raised when the storage engine fails."""
    code = "storage"


class KeyNotFoundError(LabconError):
    """Raised by the storage engine when a key is absent."""
    code = "not_found"

    def __init__(self, key: bytes):
        self.key = key
        super().__init__(f"Key not found: {key!r}")


# =============================================================================
# Driver Errors
# =============================================================================
class DriverError(LabconError):
    """Base exception for errors about a specific driver."""
    template = "Driver error: {name}"

    def __init__(self, name: str, message: Optional[str] = None):
        self.name = name
        super().__init__(message or self.template.format(name=name))


class DriverNotFoundError(DriverError):
    """Raised when no driver is registered under a name."""
    code = "not_found"
    template = "Driver not found: {name}"


class AlreadyExistsError(DriverError):
    """Raised when an action would collide with existing registry data."""
    code = "already_exists"
    template = "Driver already exists: {name}"


class DriverExistsError(AlreadyExistsError):
    """Raised when registering a name that is already taken."""


class DriverBusyError(AlreadyExistsError):
    """Raised when dispatching to a driver that already has work outstanding."""
    code = "busy"
    template = "Driver {name} is busy, retry later"


class UnauthorizedError(DriverError):
    """Raised when a presented token does not match the driver's token."""
    code = "unauthorized"
    template = "Invalid token for driver {name}"
