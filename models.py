# models.py
import logging
import threading

from protocol import ProtocolError, RegistrationConflict, TransportError

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    Maps display names to the live Connection of each joined participant.

    The registry only controls visibility: it never opens or closes the
    connections it holds. All reads and writes go through one lock, so a
    name is either absent or fully mapped to its connection.
    """

    def __init__(self):
        self._connections = {}
        self._lock = threading.Lock()

    def register(self, name, connection):
        """
        Adds a participant, checking and inserting in one atomic step.

        Raises:
            RegistrationConflict: If the name is blank or already taken.
        """
        if not isinstance(name, str) or not name.strip():
            raise RegistrationConflict("name is empty")
        with self._lock:
            if name in self._connections:
                raise RegistrationConflict(f"name {name!r} is already in use")
            self._connections[name] = connection

    def try_register(self, name, connection):
        """Same as register(), but reports a conflict by returning False."""
        try:
            self.register(name, connection)
        except RegistrationConflict:
            return False
        return True

    def remove(self, name):
        """Removes the participant if present."""
        with self._lock:
            self._connections.pop(name, None)

    def snapshot(self):
        """Returns a point-in-time list of (name, connection) pairs."""
        with self._lock:
            return list(self._connections.items())

    def names(self):
        with self._lock:
            return sorted(self._connections)

    def get(self, name):
        with self._lock:
            return self._connections.get(name)

    def __contains__(self, name):
        with self._lock:
            return name in self._connections

    def __len__(self):
        with self._lock:
            return len(self._connections)


class Broadcaster:
    """Relays one message to every participant in a registry."""

    def __init__(self, registry):
        self.registry = registry

    def broadcast(self, message):
        """
        Sends a message to all registered participants.

        A failed send is logged and skipped; the failing participant stays
        registered until its own session notices the broken connection.

        Returns:
            list: Names of the participants the message could not be sent to.
        """
        failed = []
        for name, connection in self.registry.snapshot():
            try:
                connection.send(message)
            except (TransportError, ProtocolError) as e:
                logger.warning("[BROADCAST] Could not deliver %s to %s: %s", message.type.name, name, e)
                failed.append(name)
        return failed
