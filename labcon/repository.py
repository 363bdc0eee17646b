"""
Driver Repository

Maps driver names to serialized driver records in the storage engine.
Each driver is one entry under the key ``driver/<name>``; the value is the
JSON-encoded record without its name, which is recovered from the key.
"""

import json
from typing import Callable, Optional

from .errors import DriverExistsError, DriverNotFoundError, KeyNotFoundError
from .models import DriverRecord, DriverStatus, JSONValue
from .storage import Store, Transaction

DRIVER_PREFIX = b"driver/"


class DriverRepository:
    """
    Persistence for driver records.

    Every method runs in its own storage transaction. `modify` is the atomic
    read-modify-write primitive: fetching, checking and writing a record
    inside a single transaction, so concurrent callers on the same driver
    are serialized.
    """

    def __init__(self, store: Store):
        self.store = store

    @staticmethod
    def key(name: str) -> bytes:
        return DRIVER_PREFIX + name.encode("utf-8")

    @staticmethod
    def _encode(record: DriverRecord) -> bytes:
        data = record.to_dict(include_token=True)
        del data["name"]
        return json.dumps(data).encode("utf-8")

    @staticmethod
    def _decode(name: str, value: bytes) -> DriverRecord:
        data = json.loads(value.decode("utf-8"))
        data["name"] = name
        return DriverRecord.from_dict(data)

    def _get(self, txn: Transaction, name: str) -> DriverRecord:
        try:
            value = txn.get(self.key(name))
        except KeyNotFoundError:
            raise DriverNotFoundError(name) from None
        return self._decode(name, value)

    def list(self) -> list[str]:
        """Return the names of all registered drivers, in key order."""
        with self.store.view() as txn:
            return [
                key[len(DRIVER_PREFIX):].decode("utf-8")
                for key, _ in txn.scan(DRIVER_PREFIX)
            ]

    def create(self, name: str, token: str, state: JSONValue) -> DriverRecord:
        """
        Create a new idle driver record.

        Raises:
            DriverExistsError: a driver with this name is already registered
        """
        record = DriverRecord(
            name=name,
            token=token,
            state=state,
            status=DriverStatus.IDLE,
            operation=None,
        )
        with self.store.transaction() as txn:
            key = self.key(name)
            try:
                txn.get(key)
            except KeyNotFoundError:
                txn.set(key, self._encode(record))
                return record
            raise DriverExistsError(name)

    def fetch(self, name: str) -> DriverRecord:
        """Get a driver record, raising DriverNotFoundError."""
        with self.store.view() as txn:
            return self._get(txn, name)

    def update(self, record: DriverRecord):
        """Overwrite the stored record unconditionally."""
        with self.store.transaction() as txn:
            txn.set(self.key(record.name), self._encode(record))

    def modify(
        self,
        name: str,
        mutate: Callable[[DriverRecord], None],
    ) -> DriverRecord:
        """
        Fetch, mutate and write back a record in one transaction.

        `mutate` receives the current record and changes it in place. If it
        raises, nothing is written and the exception propagates.

        Returns:
            The record as written
        """
        with self.store.transaction() as txn:
            record = self._get(txn, name)
            mutate(record)
            txn.set(self.key(name), self._encode(record))
            return record

    def delete(
        self,
        name: str,
        guard: Optional[Callable[[DriverRecord], None]] = None,
    ):
        """
        Remove a driver record permanently.

        `guard`, if given, sees the record inside the deleting transaction and
        may raise to abort the deletion.
        """
        with self.store.transaction() as txn:
            record = self._get(txn, name)
            if guard is not None:
                guard(record)
            txn.delete(self.key(name))
