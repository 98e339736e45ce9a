import threading

import pytest

import protocol
from models import Broadcaster, ConnectionRegistry
from protocol import RegistrationConflict, TransportError


class RecordingConnection:
    def __init__(self):
        self.sent = []

    def send(self, message):
        self.sent.append(message)


class BrokenConnection:
    def send(self, message):
        raise TransportError("broken pipe")


def test_register_and_snapshot():
    registry = ConnectionRegistry()
    a, b = RecordingConnection(), RecordingConnection()
    assert registry.try_register("alice", a)
    assert registry.try_register("bob", b)
    assert dict(registry.snapshot()) == {"alice": a, "bob": b}
    assert registry.names() == ["alice", "bob"]
    assert "alice" in registry
    assert len(registry) == 2
    assert registry.get("bob") is b


@pytest.mark.parametrize("name", ["", "   ", "\t\n"])
def test_blank_names_are_rejected(name):
    registry = ConnectionRegistry()
    assert not registry.try_register(name, RecordingConnection())
    with pytest.raises(RegistrationConflict):
        registry.register(name, RecordingConnection())
    assert len(registry) == 0


def test_taken_name_is_rejected_without_mutation():
    registry = ConnectionRegistry()
    first = RecordingConnection()
    registry.register("alice", first)
    with pytest.raises(RegistrationConflict):
        registry.register("alice", RecordingConnection())
    assert registry.get("alice") is first


def test_names_are_kept_as_given():
    registry = ConnectionRegistry()
    assert registry.try_register(" alice", RecordingConnection())
    assert registry.try_register("alice", RecordingConnection())


def test_removed_name_can_be_reused():
    registry = ConnectionRegistry()
    registry.register("carol", RecordingConnection())
    registry.remove("carol")
    registry.remove("carol")
    second = RecordingConnection()
    assert registry.try_register("carol", second)
    assert registry.get("carol") is second


def test_snapshot_is_not_affected_by_later_changes():
    registry = ConnectionRegistry()
    registry.register("alice", RecordingConnection())
    snapshot = registry.snapshot()
    registry.remove("alice")
    registry.register("bob", RecordingConnection())
    assert [name for name, _ in snapshot] == ["alice"]


def test_concurrent_registration_has_exactly_one_winner():
    registry = ConnectionRegistry()
    threads_count = 16
    barrier = threading.Barrier(threads_count)
    results = []
    results_lock = threading.Lock()

    def attempt():
        connection = RecordingConnection()
        barrier.wait()
        won = registry.try_register("carol", connection)
        with results_lock:
            results.append((won, connection))

    threads = [threading.Thread(target=attempt) for _ in range(threads_count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [connection for won, connection in results if won]
    assert len(winners) == 1
    assert registry.get("carol") is winners[0]


def test_broadcast_reaches_everyone():
    registry = ConnectionRegistry()
    connections = {name: RecordingConnection() for name in ("alice", "bob", "carol")}
    for name, connection in connections.items():
        registry.register(name, connection)
    message = protocol.create_text_message("alice: hi")

    assert Broadcaster(registry).broadcast(message) == []
    for connection in connections.values():
        assert connection.sent == [message]


def test_broadcast_skips_failing_recipient():
    registry = ConnectionRegistry()
    alice, carol = RecordingConnection(), RecordingConnection()
    registry.register("alice", alice)
    registry.register("bob", BrokenConnection())
    registry.register("carol", carol)
    message = protocol.create_user_added_message("dave")

    failed = Broadcaster(registry).broadcast(message)

    assert failed == ["bob"]
    assert alice.sent == [message]
    assert carol.sent == [message]
    # Removal is left to bob's own session.
    assert "bob" in registry


def test_broadcast_to_empty_registry():
    assert Broadcaster(ConnectionRegistry()).broadcast(protocol.create_text_message("x")) == []
