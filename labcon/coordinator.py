"""
Driver Coordinator

State machine for registered drivers and the single-flight dispatch gate.

A driver starts IDLE with no pending operation. A successful dispatch moves
it to BUSY and installs exactly one operation; the driver agent then polls
for that operation, runs it, and reports back through set_state/set_status.
Any explicit status write clears the pending operation.
"""

import hmac
import logging
from typing import Callable, Optional

from .errors import DriverBusyError, UnauthorizedError
from .models import DriverRecord, DriverStatus, JSONValue, Operation
from .repository import DriverRepository
from .tokens import generate_token as default_token_generator

logger = logging.getLogger(__name__)

TokenGenerator = Callable[[], str]


class DriverCoordinator:
    """
    Registration, authorization and mutation of drivers.

    Every read-modify-write runs as one repository transaction. Mutating
    methods accept an optional `token`; when given, it is checked inside the
    same transaction as the write. Without it, the caller is expected to have
    passed `authorize` already.
    """

    def __init__(
        self,
        repository: DriverRepository,
        generate_token: TokenGenerator = default_token_generator,
    ):
        self.repository = repository
        self.generate_token = generate_token

    @staticmethod
    def _compare_token(record: DriverRecord, token: Optional[str]):
        if not isinstance(token, str):
            raise UnauthorizedError(record.name)
        if not hmac.compare_digest(record.token.encode("utf-8"), token.encode("utf-8")):
            raise UnauthorizedError(record.name)

    @classmethod
    def _check_token(cls, record: DriverRecord, token: Optional[str]):
        # None means the caller already passed authorize
        if token is not None:
            cls._compare_token(record, token)

    def list(self) -> list[str]:
        """Names of all registered drivers, in storage key order."""
        return self.repository.list()

    def register(self, name: str, state: JSONValue) -> str:
        """
        Register a new driver and issue its token.

        Raises:
            DriverExistsError: the name is already taken
        """
        token = self.generate_token()
        self.repository.create(name, token, state)
        logger.info("Registered driver %r", name)
        return token

    def authorize(self, name: str, token: str):
        """Check a presented token against the driver's token. A missing token never matches."""
        record = self.repository.fetch(name)
        self._compare_token(record, token)

    def get_state(self, name: str) -> JSONValue:
        return self.repository.fetch(name).state

    def set_state(self, name: str, state: JSONValue, token: Optional[str] = None):
        """Replace the driver's state wholesale."""
        def mutate(record: DriverRecord):
            self._check_token(record, token)
            record.state = state

        self.repository.modify(name, mutate)
        logger.debug("Updated state of driver %r", name)

    def get_status(self, name: str) -> DriverStatus:
        return self.repository.fetch(name).status

    def set_status(self, name: str, status: DriverStatus, token: Optional[str] = None):
        """
        Write the driver's status.

        The pending operation is cleared whatever the new status is: the
        status alone says whether work is outstanding.
        """
        def mutate(record: DriverRecord):
            self._check_token(record, token)
            record.status = status
            record.operation = None

        self.repository.modify(name, mutate)
        logger.info("Driver %r is now %s", name, status.value)

    def get_operation(self, name: str, token: Optional[str] = None) -> Optional[Operation]:
        """Return the pending operation, or None when there is none."""
        record = self.repository.fetch(name)
        self._check_token(record, token)
        return record.operation

    def dispatch(self, name: str, operation: Operation):
        """
        Hand an operation to an idle driver.

        Succeeds only if the driver is IDLE with nothing pending; the driver
        becomes BUSY with `operation` installed. Dispatch does not take a
        token: it is issued by control clients, not by the driver itself.

        Raises:
            DriverNotFoundError: no such driver
            DriverBusyError: the driver has work outstanding, retry later
        """
        def mutate(record: DriverRecord):
            if record.status != DriverStatus.IDLE or record.operation is not None:
                raise DriverBusyError(name)
            record.status = DriverStatus.BUSY
            record.operation = operation

        self.repository.modify(name, mutate)
        logger.info("Dispatched operation %r to driver %r", operation.name, name)

    def delete(self, name: str, token: Optional[str] = None):
        """Remove the driver permanently. Its name becomes free again."""
        self.repository.delete(name, guard=lambda record: self._check_token(record, token))
        logger.info("Deleted driver %r", name)
