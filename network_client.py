"""
network_client.py

This module manages all network communication for the client side.

ClientSession owns the connection to the server. Its run() method is meant to
be the body of a background thread: it performs the name handshake and then
listens for incoming messages, handing each one to an overridable hook. A
separate input loop waits on the session's HandshakeSignal before it starts
sending chat lines, so nothing is sent until the server has accepted the name.

NetworkThread adapts the same session to PyQt's signal/slot mechanism so the
GUI can receive notifications safely on its own thread.
"""

import enum
import logging
import queue
import threading

from PyQt6.QtCore import QThread, pyqtSignal

import protocol
from protocol import (Connection, EndOfStream, HandshakeAborted, MessageType,
                      ProtocolError, TransportError)

logger = logging.getLogger(__name__)


class HandshakeSignal:
    """
    One-shot hand-off of the handshake result between two threads.

    Only the first resolve() counts; wait() blocks until it has happened.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._ok = False

    def resolve(self, ok):
        """Publishes the result. Returns False if a result was already published."""
        with self._lock:
            if self._event.is_set():
                return False
            self._ok = bool(ok)
            self._event.set()
            return True

    @property
    def resolved(self):
        return self._event.is_set()

    def wait(self, timeout=None):
        """
        Blocks until the handshake has either succeeded or failed.

        Returns:
            bool: True on success, False on failure or timeout.
        """
        if not self._event.wait(timeout):
            return False
        return self._ok


class ClientState(enum.Enum):
    AWAITING_NAME_REQUEST = 'awaiting_name_request'
    AWAITING_ACCEPTANCE = 'awaiting_acceptance'
    ACCEPTED = 'accepted'
    FAILED = 'failed'
    DISCONNECTED = 'disconnected'


class ClientSession:
    """
    Client half of the chat protocol.

    Presentation layers subclass it and override the hooks
    (process_incoming_message, inform_user_added, inform_user_removed,
    notify_connection_status_changed, request_new_name).
    """

    def __init__(self, host, port, user_name):
        self.host = host
        self.port = port
        self.user_name = user_name
        self.connection = None
        self.state = ClientState.AWAITING_NAME_REQUEST
        self.ready = HandshakeSignal()
        self._name_requests = 0

    @property
    def connected(self):
        return self.state is ClientState.ACCEPTED

    def connect(self):
        """Opens the connection to the server."""
        return Connection.connect(self.host, self.port)

    def run(self):
        """
        The socket thread body: connect, handshake, then listen until the
        connection ends. Every failure is turned into a status notification.
        """
        reason = "Connection to server was lost."
        try:
            with self.connect() as connection:
                self.connection = connection
                self.handshake()
                self.main_loop()
        except EndOfStream:
            reason = "Server closed the connection."
        except HandshakeAborted as e:
            reason = str(e)
        except (TransportError, ProtocolError) as e:
            logger.warning("Connection ended: %s", e)
            reason = str(e)
        finally:
            self._finish(reason)

    def handshake(self):
        """
        Answers name requests until the server accepts a name.

        Raises:
            ProtocolError: If the server sends anything other than
                NAME_REQUEST or NAME_ACCEPTED.
            HandshakeAborted: If no new name is available after a rejection.
        """
        while True:
            message = self.connection.receive()
            if message.type is MessageType.NAME_REQUEST:
                name = self.get_user_name()
                if not name:
                    self.state = ClientState.FAILED
                    raise HandshakeAborted("Name is empty or already in use.")
                self.user_name = name
                self.connection.send(protocol.create_user_name_message(name))
                self.state = ClientState.AWAITING_ACCEPTANCE
            elif message.type is MessageType.NAME_ACCEPTED:
                self.state = ClientState.ACCEPTED
                self.ready.resolve(True)
                self.notify_connection_status_changed(True)
                return
            else:
                self.state = ClientState.FAILED
                raise ProtocolError(f"Unexpected message kind during handshake: {message.type.name}")

    def main_loop(self):
        """Dispatches server messages to the presentation hooks."""
        while True:
            message = self.connection.receive()
            if message.type is MessageType.TEXT:
                self.process_incoming_message(message.data)
            elif message.type is MessageType.USER_ADDED:
                self.inform_user_added(message.data)
            elif message.type is MessageType.USER_REMOVED:
                self.inform_user_removed(message.data)
            else:
                raise ProtocolError(f"Unexpected message kind: {message.type.name}")

    def send_text(self, text):
        """
        Sends one chat line. Only allowed once the name has been accepted.

        Returns:
            bool: True if the line was written to the server.
        """
        if not self.connected:
            return False
        try:
            self.connection.send(protocol.create_text_message(text))
        except TransportError as e:
            logger.warning("Send failed: %s", e)
            self.state = ClientState.DISCONNECTED
            self.notify_connection_status_changed(False, "Connection refused.")
            return False
        return True

    def close(self):
        """Closes the connection, which also ends the socket thread."""
        if self.connection is not None:
            self.connection.close()

    def _finish(self, reason):
        was_accepted = self.connected
        if self.state is not ClientState.FAILED:
            self.state = ClientState.DISCONNECTED
        if self.ready.resolve(False) or was_accepted:
            self.notify_connection_status_changed(False, reason)

    # --- Hooks for the presentation layer ---

    def get_user_name(self):
        """Returns the name to offer: the supplied one first, a new one after each rejection."""
        self._name_requests += 1
        if self._name_requests == 1:
            return self.user_name
        return self.request_new_name()

    def request_new_name(self):
        """Called when the server asks again for a name. None gives up."""
        return None

    def process_incoming_message(self, text):
        pass

    def inform_user_added(self, name):
        pass

    def inform_user_removed(self, name):
        pass

    def notify_connection_status_changed(self, connected, reason=None):
        pass


class NetworkThread(QThread):
    """
    The background thread used by the GUI client.

    It runs a ClientSession and re-emits its hooks as Qt signals so
    the UI thread can update widgets safely. When the server turns a name
    down, name_rejected is emitted and the socket thread waits until the UI
    answers through provide_name().
    """
    # --- Signals to communicate with the UI thread ---
    disconnected = pyqtSignal(str)
    message_received = pyqtSignal(str)
    login_successful = pyqtSignal()
    user_joined = pyqtSignal(str)
    user_left = pyqtSignal(str)
    name_rejected = pyqtSignal(str)  # (rejected_name)

    def __init__(self, ip, port, nickname):
        super().__init__()
        self.session = _SignalSession(self, ip, port, nickname)
        self._names = queue.Queue()

    def run(self):
        self.session.run()

    def send_message(self, text):
        """Sends a chat line to the server."""
        return self.session.send_text(text)

    def provide_name(self, name):
        """Answers name_rejected. None gives up on joining."""
        self._names.put(name)

    def next_name(self):
        """Blocks the socket thread until the UI has answered name_rejected."""
        return self._names.get()

    def stop(self):
        # Release a socket thread still waiting for a new name.
        self._names.put(None)
        self.session.close()
        self.wait()


class _SignalSession(ClientSession):
    def __init__(self, thread, host, port, user_name):
        super().__init__(host, port, user_name)
        self.thread = thread

    def request_new_name(self):
        self.thread.name_rejected.emit(self.user_name)
        return self.thread.next_name()

    def process_incoming_message(self, text):
        self.thread.message_received.emit(text)

    def inform_user_added(self, name):
        self.thread.user_joined.emit(name)

    def inform_user_removed(self, name):
        self.thread.user_left.emit(name)

    def notify_connection_status_changed(self, connected, reason=None):
        if connected:
            self.thread.login_successful.emit()
        else:
            self.thread.disconnected.emit(reason or "Connection to server was lost.")
