"""
labcon Client

HTTP client for driver agents and control clients.

Usage:
    client = LabconClient("http://localhost:5000")

    # Driver agent side
    with Driver.register(client, "spectrometer-1", {"exposure_ms": 10}) as driver:
        operation = driver.operation()
        if operation is not None:
            ...  # run it
            driver.set_state({"exposure_ms": 20})
            driver.set_status(DriverStatus.IDLE)

    # Control client side
    client.dispatch("spectrometer-1", Operation("scan", {"start": 400, "stop": 700}))
    status = client.get_status("spectrometer-1")
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from .errors import (
    ConfigurationError,
    DriverBusyError,
    DriverError,
    DriverExistsError,
    DriverNotFoundError,
    LabconError,
    StorageError,
    UnauthorizedError,
    ValidationError,
)
from .models import DriverStatus, JSONValue, Operation

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Driver-Token"

ERRORS_BY_CODE = {
    error_type.code: error_type
    for error_type in (
        ConfigurationError,
        ValidationError,
        StorageError,
        DriverNotFoundError,
        DriverExistsError,
        DriverBusyError,
        UnauthorizedError,
    )
}


class LabconClient:
    """
    Client for the labcon API.

    Error responses are raised as the labcon exception matching the error
    code the server reports; transport failures surface as httpx errors.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Root URL of the labcon server
            timeout: Timeout for HTTP requests, in seconds
            transport: Optional httpx transport, e.g. to talk to an app in-process
        """
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=f"{self.base_url}/api/v1",
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        self._client.close()

    @staticmethod
    def _path(name: str, *parts: str) -> str:
        return "/".join(["/drivers", quote(name, safe="")] + list(parts))

    def _request(
        self,
        method: str,
        path: str,
        name: Optional[str] = None,
        token: Optional[str] = None,
        json: Any = None,
    ) -> dict[str, Any]:
        headers = {TOKEN_HEADER: token} if token is not None else None
        response = self._client.request(method, path, headers=headers, json=json)
        if response.is_success:
            return response.json()
        raise self._error(response, name)

    @staticmethod
    def _error(response: httpx.Response, name: Optional[str]) -> LabconError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        message = body.get("error") or f"HTTP {response.status_code}: {response.text}"
        error_type = ERRORS_BY_CODE.get(body.get("code"), LabconError)
        logger.debug("Request %s failed: %s", response.request.url, message)

        if issubclass(error_type, DriverError):
            return error_type(name or "", message)
        return error_type(message)

    # =========================================================================
    # Registry
    # =========================================================================

    def health(self) -> dict[str, Any]:
        return self._request("GET", "/health")

    def list(self) -> list[str]:
        """Names of all registered drivers."""
        return self._request("GET", "/drivers")["drivers"]

    def register(self, name: str, state: JSONValue) -> str:
        """Register a driver and return its token."""
        data = self._request("POST", "/drivers", name=name, json={"name": name, "state": state})
        return data["token"]

    def disconnect(self, name: str, token: str):
        """Remove a driver from the registry."""
        self._request("DELETE", self._path(name), name=name, token=token)

    # =========================================================================
    # State & Status
    # =========================================================================

    def get_state(self, name: str) -> JSONValue:
        return self._request("GET", self._path(name, "state"), name=name)["state"]

    def set_state(self, name: str, token: str, state: JSONValue):
        self._request("PUT", self._path(name, "state"), name=name, token=token, json={"state": state})

    def get_status(self, name: str) -> DriverStatus:
        data = self._request("GET", self._path(name, "status"), name=name)
        return DriverStatus(data["status"])

    def set_status(self, name: str, token: str, status: DriverStatus):
        self._request(
            "PUT",
            self._path(name, "status"),
            name=name,
            token=token,
            json={"status": DriverStatus.parse(status).value},
        )

    # =========================================================================
    # Operations
    # =========================================================================

    def get_operation(self, name: str, token: str) -> Optional[Operation]:
        """Poll for the operation pending on a driver."""
        data = self._request("GET", self._path(name, "operation"), name=name, token=token)
        operation = data.get("operation")
        return Operation.from_dict(operation) if operation else None

    def dispatch(self, name: str, operation: Operation):
        """
        Dispatch an operation to an idle driver.

        Raises:
            DriverBusyError: the driver already has work outstanding
        """
        self._request("POST", self._path(name, "operation"), name=name, json=operation.to_dict())


class Driver:
    """
    Handle held by a driver agent.

    Remembers the driver's name and token so the agent does not pass them on
    every call. Used as a context manager, it disconnects on exit.
    """

    def __init__(self, client: LabconClient, name: str, token: str):
        self.client = client
        self.name = name
        self.token = token

    @classmethod
    def register(cls, client: LabconClient, name: str, state: JSONValue) -> "Driver":
        """Register a new driver and return its handle."""
        token = client.register(name, state)
        return cls(client, name, token)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            self.disconnect()
        except DriverNotFoundError:
            logger.debug("Driver %r was already disconnected", self.name)

    def get_state(self) -> JSONValue:
        return self.client.get_state(self.name)

    def set_state(self, state: JSONValue):
        self.client.set_state(self.name, self.token, state)

    def get_status(self) -> DriverStatus:
        return self.client.get_status(self.name)

    def set_status(self, status: DriverStatus):
        self.client.set_status(self.name, self.token, status)

    def operation(self) -> Optional[Operation]:
        """Poll for this driver's pending operation."""
        return self.client.get_operation(self.name, self.token)

    def dispatch(self, operation: Operation):
        self.client.dispatch(self.name, operation)

    def disconnect(self):
        self.client.disconnect(self.name, self.token)
