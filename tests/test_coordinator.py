"""Tests for the driver coordinator state machine."""

import threading

import pytest

from labcon.coordinator import DriverCoordinator
from labcon.errors import (
    AlreadyExistsError,
    DriverBusyError,
    DriverExistsError,
    DriverNotFoundError,
    UnauthorizedError,
)
from labcon.models import DriverStatus, Operation
from labcon.repository import DriverRepository


class TestRegistration:
    """Tests for register/authorize."""

    def test_register_initial_state(self, coordinator):
        """Test that a new driver is idle with its state and nothing pending."""
        token = coordinator.register("foo", {"exposure": 10})

        assert token
        assert coordinator.get_state("foo") == {"exposure": 10}
        assert coordinator.get_status("foo") == DriverStatus.IDLE
        assert coordinator.get_operation("foo") is None

    def test_register_uses_injected_generator(self, repository):
        coordinator = DriverCoordinator(repository, generate_token=lambda: "FIXED")
        assert coordinator.register("foo", "cfg") == "FIXED"
        coordinator.authorize("foo", "FIXED")

    def test_register_duplicate(self, coordinator):
        token = coordinator.register("foo", "first")

        with pytest.raises(DriverExistsError):
            coordinator.register("foo", "second")

        assert coordinator.get_state("foo") == "first"
        coordinator.authorize("foo", token)

    def test_authorize(self, coordinator):
        token = coordinator.register("foo", "cfg")

        coordinator.authorize("foo", token)
        coordinator.set_state("foo", "cfg2", token=token)
        coordinator.authorize("foo", token)

        with pytest.raises(UnauthorizedError):
            coordinator.authorize("foo", token + "X")
        with pytest.raises(UnauthorizedError):
            coordinator.authorize("foo", "")

    @pytest.mark.parametrize("token", [None, 0, b"FIXED"])
    def test_authorize_rejects_missing_token(self, repository, token):
        """Test that authorize never succeeds without a string token."""
        coordinator = DriverCoordinator(repository, generate_token=lambda: "FIXED")
        coordinator.register("foo", "cfg")

        with pytest.raises(UnauthorizedError):
            coordinator.authorize("foo", token)

    def test_authorize_unknown(self, coordinator):
        with pytest.raises(DriverNotFoundError):
            coordinator.authorize("ghost", "T")

    def test_tokens_differ_per_driver(self, coordinator):
        token_a = coordinator.register("a", 1)
        token_b = coordinator.register("b", 2)

        assert token_a != token_b
        with pytest.raises(UnauthorizedError):
            coordinator.authorize("a", token_b)

    @pytest.mark.parametrize("backend", ["memory", "file"])
    def test_concurrent_register_single_winner(self, backend, store, file_store):
        """Test that exactly one of many concurrent registrations of a name wins."""
        coordinator = DriverCoordinator(DriverRepository(store if backend == "memory" else file_store))

        workers = 8
        barrier = threading.Barrier(workers)
        winners = []
        conflicts = []
        unexpected = []

        def attempt(i):
            barrier.wait()
            try:
                token = coordinator.register("foo", i)
            except DriverExistsError:
                conflicts.append(i)
            except Exception as e:
                unexpected.append(e)
            else:
                winners.append((i, token))

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert unexpected == []
        assert len(winners) == 1
        assert len(conflicts) == workers - 1

        state, token = winners[0]
        assert coordinator.list() == ["foo"]
        assert coordinator.get_state("foo") == state
        coordinator.authorize("foo", token)


class TestStateAndStatus:
    """Tests for state and status mutation."""

    def test_set_state_replaces_wholesale(self, coordinator):
        token = coordinator.register("foo", {"a": 1, "b": 2})

        coordinator.set_state("foo", {"c": 3}, token=token)

        assert coordinator.get_state("foo") == {"c": 3}

    def test_set_state_wrong_token_writes_nothing(self, coordinator):
        coordinator.register("foo", "cfg")

        with pytest.raises(UnauthorizedError):
            coordinator.set_state("foo", "hacked", token="WRONG")

        assert coordinator.get_state("foo") == "cfg"

    def test_unknown_driver(self, coordinator):
        with pytest.raises(DriverNotFoundError):
            coordinator.get_state("ghost")
        with pytest.raises(DriverNotFoundError):
            coordinator.set_state("ghost", "x")
        with pytest.raises(DriverNotFoundError):
            coordinator.get_status("ghost")
        with pytest.raises(DriverNotFoundError):
            coordinator.set_status("ghost", DriverStatus.IDLE)
        with pytest.raises(DriverNotFoundError):
            coordinator.get_operation("ghost")
        with pytest.raises(DriverNotFoundError):
            coordinator.dispatch("ghost", Operation("scan"))

    @pytest.mark.parametrize("status", list(DriverStatus))
    def test_set_status_clears_operation(self, coordinator, status):
        """Test that any status write clears the pending operation."""
        token = coordinator.register("foo", "cfg")
        coordinator.dispatch("foo", Operation("scan"))

        coordinator.set_status("foo", status, token=token)

        assert coordinator.get_status("foo") == status
        assert coordinator.get_operation("foo") is None

    def test_forced_busy_blocks_dispatch(self, coordinator):
        """Test that a driver set busy directly has nothing pending but refuses work."""
        token = coordinator.register("foo", "cfg")
        coordinator.set_status("foo", DriverStatus.BUSY, token=token)

        assert coordinator.get_operation("foo") is None
        with pytest.raises(DriverBusyError):
            coordinator.dispatch("foo", Operation("scan"))

    def test_set_status_wrong_token(self, coordinator):
        coordinator.register("foo", "cfg")
        coordinator.dispatch("foo", Operation("scan"))

        with pytest.raises(UnauthorizedError):
            coordinator.set_status("foo", DriverStatus.IDLE, token="WRONG")

        assert coordinator.get_status("foo") == DriverStatus.BUSY
        assert coordinator.get_operation("foo") == Operation("scan")


class TestDispatch:
    """Tests for the single-flight dispatch gate."""

    def test_dispatch_idle_driver(self, coordinator):
        coordinator.register("foo", "cfg")

        coordinator.dispatch("foo", Operation("scan", {"start": 400}))

        assert coordinator.get_status("foo") == DriverStatus.BUSY
        assert coordinator.get_operation("foo") == Operation("scan", {"start": 400})

    def test_second_dispatch_conflicts(self, coordinator):
        coordinator.register("foo", "cfg")
        coordinator.dispatch("foo", Operation("scan"))

        with pytest.raises(DriverBusyError) as exc_info:
            coordinator.dispatch("foo", Operation("move"))

        assert isinstance(exc_info.value, AlreadyExistsError)
        assert coordinator.get_operation("foo") == Operation("scan")

    @pytest.mark.parametrize("status", [DriverStatus.LOST, DriverStatus.ERROR])
    def test_dispatch_requires_idle(self, coordinator, status):
        token = coordinator.register("foo", "cfg")
        coordinator.set_status("foo", status, token=token)

        with pytest.raises(DriverBusyError):
            coordinator.dispatch("foo", Operation("scan"))

    def test_dispatch_again_after_idle(self, coordinator):
        token = coordinator.register("foo", "cfg")
        coordinator.dispatch("foo", Operation("scan"))
        coordinator.set_status("foo", DriverStatus.IDLE, token=token)

        coordinator.dispatch("foo", Operation("move"))

        assert coordinator.get_operation("foo") == Operation("move")

    def test_get_operation_checks_token(self, coordinator):
        token = coordinator.register("foo", "cfg")
        coordinator.dispatch("foo", Operation("scan"))

        assert coordinator.get_operation("foo", token=token) == Operation("scan")
        with pytest.raises(UnauthorizedError):
            coordinator.get_operation("foo", token="WRONG")

    @pytest.mark.parametrize("backend", ["memory", "file"])
    def test_concurrent_dispatch_single_flight(self, backend, store, file_store):
        """Test that exactly one of many concurrent dispatches wins."""
        coordinator = DriverCoordinator(DriverRepository(store if backend == "memory" else file_store))
        coordinator.register("foo", "cfg")

        workers = 8
        barrier = threading.Barrier(workers)
        winners = []
        conflicts = []
        unexpected = []

        def attempt(i):
            operation = Operation(f"op-{i}", i)
            barrier.wait()
            try:
                coordinator.dispatch("foo", operation)
            except DriverBusyError:
                conflicts.append(operation)
            except Exception as e:
                unexpected.append(e)
            else:
                winners.append(operation)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert unexpected == []
        assert len(winners) == 1
        assert len(conflicts) == workers - 1
        assert coordinator.get_status("foo") == DriverStatus.BUSY
        assert coordinator.get_operation("foo") == winners[0]


class TestDelete:
    """Tests for driver deletion."""

    def test_delete(self, coordinator):
        token = coordinator.register("foo", "cfg")

        coordinator.delete("foo", token=token)

        with pytest.raises(DriverNotFoundError):
            coordinator.get_state("foo")
        with pytest.raises(DriverNotFoundError):
            coordinator.get_status("foo")
        with pytest.raises(DriverNotFoundError):
            coordinator.authorize("foo", token)

    def test_delete_unknown(self, coordinator):
        with pytest.raises(DriverNotFoundError):
            coordinator.delete("ghost")

    def test_delete_wrong_token(self, coordinator):
        coordinator.register("foo", "cfg")

        with pytest.raises(UnauthorizedError):
            coordinator.delete("foo", token="WRONG")

        assert coordinator.list() == ["foo"]

    def test_reregister_after_delete(self, coordinator):
        """Test that a deleted name can be registered fresh."""
        old_token = coordinator.register("foo", "old")
        coordinator.dispatch("foo", Operation("scan"))
        coordinator.delete("foo", token=old_token)

        new_token = coordinator.register("foo", "new")

        assert new_token != old_token
        assert coordinator.get_state("foo") == "new"
        assert coordinator.get_status("foo") == DriverStatus.IDLE
        assert coordinator.get_operation("foo") is None
        with pytest.raises(UnauthorizedError):
            coordinator.set_state("foo", "stale", token=old_token)

    def test_list_after_delete(self, coordinator):
        tokens = {name: coordinator.register(name, name) for name in ["a", "b", "c"]}

        coordinator.delete("b", token=tokens["b"])

        assert coordinator.list() == ["a", "c"]


class TestEndToEnd:
    """Full register/dispatch/report cycle."""

    def test_cycle(self, coordinator):
        token = coordinator.register("spectro-1", "cfg")

        coordinator.dispatch("spectro-1", Operation("scan"))
        assert coordinator.get_status("spectro-1") == DriverStatus.BUSY
        assert coordinator.get_operation("spectro-1", token=token) == Operation("scan")

        coordinator.set_state("spectro-1", "newcfg", token=token)
        coordinator.set_status("spectro-1", DriverStatus.IDLE, token=token)

        assert coordinator.get_operation("spectro-1", token=token) is None
        assert coordinator.get_status("spectro-1") == DriverStatus.IDLE
        assert coordinator.get_state("spectro-1") == "newcfg"
