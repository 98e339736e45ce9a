import socket
import time

import pytest

from protocol import Connection, MessageType, create_user_name_message
from server import ChatServer

TIMEOUT = 5.0


def wait_for(predicate, timeout=TIMEOUT):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def expect(connection, message_type, data=None):
    message = connection.receive()
    assert message.type is message_type, f"expected {message_type.name}, got {message}"
    if data is not None:
        assert message.data == data
    return message


@pytest.fixture
def chat_server():
    server = ChatServer('127.0.0.1', 0).start()
    yield server
    server.stop()


@pytest.fixture
def connect(chat_server):
    """Opens raw protocol connections to the running server."""
    opened = []

    def _connect():
        connection = Connection.connect('127.0.0.1', chat_server.port, timeout=TIMEOUT)
        connection.socket.settimeout(TIMEOUT)
        opened.append(connection)
        return connection

    yield _connect
    for connection in opened:
        connection.close()


@pytest.fixture
def join(connect):
    """Connects and completes the name handshake, consuming the self-announcement."""

    def _join(name):
        connection = connect()
        expect(connection, MessageType.NAME_REQUEST)
        connection.send(create_user_name_message(name))
        expect(connection, MessageType.NAME_ACCEPTED)
        expect(connection, MessageType.USER_ADDED, name)
        return connection

    return _join


@pytest.fixture
def socket_pair():
    left, right = socket.socketpair()
    left.settimeout(TIMEOUT)
    right.settimeout(TIMEOUT)
    yield left, right
    left.close()
    right.close()
