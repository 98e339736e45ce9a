"""
protocol.py

Defines the communication rules (protocol) for the chat relay.

This module contains the Message value type, the error taxonomy shared by the
server and the client, and the Connection class that sends and receives
Messages over a TCP stream. Every Message travels as one frame: a 4-byte
length prefix followed by a JSON body, so a complete message is always
received even when the stream delivers several frames at once.
"""

import contextlib
import enum
import json
import socket
import struct  # Import the struct module for packing/unpacking the message length
import threading
from dataclasses import dataclass
from typing import Optional

ENCODING = 'utf-8'
DEFAULT_HOST = '127.0.0.1'
DEFAULT_PORT = 12989
HEADER = struct.Struct('!I')
MAX_MESSAGE_SIZE = 1024 * 1024


class ChatError(Exception):
    """Base class for every error raised by the chat relay."""


class TransportError(ChatError):
    """I/O failure on the underlying stream."""


class ProtocolError(ChatError):
    """Bytes that do not form a valid message, or a message kind that is not allowed in the current state."""


class EndOfStream(ChatError):
    """The peer closed the connection cleanly between two messages."""


class RegistrationConflict(ChatError):
    """The requested display name is empty or already taken."""


class HandshakeAborted(ChatError):
    """The client gave up on the name handshake."""


class MessageType(enum.Enum):
    NAME_REQUEST = 'NAME_REQUEST'
    USER_NAME = 'USER_NAME'
    NAME_ACCEPTED = 'NAME_ACCEPTED'
    USER_ADDED = 'USER_ADDED'
    USER_REMOVED = 'USER_REMOVED'
    TEXT = 'TEXT'

    @property
    def has_payload(self):
        return self not in (MessageType.NAME_REQUEST, MessageType.NAME_ACCEPTED)


@dataclass(frozen=True)
class Message:
    """One protocol unit: a kind plus an optional string payload."""
    type: MessageType
    data: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.type, MessageType):
            raise TypeError(f"type must be a MessageType, not {type(self.type).__name__}")
        if self.type.has_payload:
            if not isinstance(self.data, str):
                raise TypeError(f"{self.type.value} requires a string payload")
        elif self.data is not None:
            raise ValueError(f"{self.type.value} does not carry a payload")


# --- Message creation functions ---

def create_name_request():
    """Server -> Client: asks the client for a display name."""
    return Message(MessageType.NAME_REQUEST)


def create_user_name_message(name):
    """Client -> Server: the display name the user wants."""
    return Message(MessageType.USER_NAME, name)


def create_name_accepted():
    """Server -> Client: the name was registered."""
    return Message(MessageType.NAME_ACCEPTED)


def create_user_added_message(name):
    """Server -> Client: a participant joined."""
    return Message(MessageType.USER_ADDED, name)


def create_user_removed_message(name):
    """Server -> Client: a participant left."""
    return Message(MessageType.USER_REMOVED, name)


def create_text_message(text):
    """A chat line, in either direction."""
    return Message(MessageType.TEXT, text)


# --- Encoding ---

def encode_message(message):
    """
    Serializes a Message into one length-prefixed frame.

    Args:
        message (Message): The message to encode.

    Returns:
        bytes: The 4-byte header followed by the JSON body.
    """
    body = json.dumps({"type": message.type.value, "data": message.data}).encode(ENCODING)
    if len(body) > MAX_MESSAGE_SIZE:
        raise ProtocolError(f"message of {len(body)} bytes exceeds the {MAX_MESSAGE_SIZE} byte limit")
    return HEADER.pack(len(body)) + body


def decode_message(body):
    """
    Parses the JSON body of one frame back into a Message.

    Raises:
        ProtocolError: If the body is not a valid encoded Message.
    """
    try:
        obj = json.loads(body.decode(ENCODING))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"undecodable message body: {e}") from e
    if not isinstance(obj, dict):
        raise ProtocolError("message body is not an object")
    try:
        message_type = MessageType(obj.get("type"))
    except ValueError:
        raise ProtocolError(f"unknown message type: {obj.get('type')!r}") from None
    try:
        return Message(message_type, obj.get("data"))
    except (TypeError, ValueError) as e:
        raise ProtocolError(str(e)) from e


def recvall(sock, n):
    """
    Helper function to receive exactly 'n' bytes from a socket.

    Args:
        sock (socket.socket): The socket to receive data from.
        n (int): The number of bytes to receive.

    Returns:
        bytearray: The received data. It is shorter than 'n' only when the
        peer closed the connection first.
    """
    data = bytearray()
    while len(data) < n:
        packet = sock.recv(n - len(data))
        if not packet:
            break
        data.extend(packet)
    return data


class Connection:
    """
    Wraps one stream socket and exchanges Messages over it.

    Sends are serialized with a per-connection lock so that a broadcast from
    another thread can never interleave with the owner's own send. Receives
    never take that lock.
    """

    def __init__(self, sock, address=None):
        self.socket = sock
        self.remote_address = address
        self._send_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._closed = False

    @classmethod
    def connect(cls, host, port, timeout=None):
        """Opens a client connection to a chat server."""
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise TransportError(f"could not connect to {host}:{port}: {e}") from e
        # The timeout only bounds the connect itself.
        sock.settimeout(None)
        return cls(sock, (host, port))

    @property
    def closed(self):
        return self._closed

    def send(self, message):
        """
        Writes one Message as a single frame.

        Raises:
            TransportError: If the underlying write fails.
        """
        with self._send_lock:
            self._send_unlocked(message)

    @contextlib.contextmanager
    def exclusive_send(self):
        """
        Holds the send lock for a block of work and yields a send function
        that writes without taking it. Sends from other threads wait until
        the block ends.
        """
        with self._send_lock:
            yield self._send_unlocked

    def _send_unlocked(self, message):
        frame = encode_message(message)
        try:
            self.socket.sendall(frame)
        except OSError as e:
            raise TransportError(f"send to {self.remote_address} failed: {e}") from e

    def receive(self):
        """
        Blocks until one complete Message has arrived and returns it.

        Raises:
            EndOfStream: If the peer closed the connection between frames.
            TransportError: On an I/O failure or a frame cut short by the peer.
            ProtocolError: If the frame does not decode to a valid Message.
        """
        try:
            header = recvall(self.socket, HEADER.size)
            if not header:
                raise EndOfStream(f"{self.remote_address} closed the connection")
            if len(header) < HEADER.size:
                raise TransportError("connection closed inside a message header")
            (length,) = HEADER.unpack(header)
            if length > MAX_MESSAGE_SIZE:
                raise ProtocolError(f"announced message size {length} exceeds the {MAX_MESSAGE_SIZE} byte limit")
            body = recvall(self.socket, length)
        except OSError as e:
            raise TransportError(f"receive from {self.remote_address} failed: {e}") from e
        if len(body) < length:
            raise TransportError("connection closed inside a message body")
        return decode_message(bytes(body))

    def close(self):
        """Releases the socket. Calling it more than once is harmless."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already disconnected by the peer.
            pass
        self.socket.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __repr__(self):
        return f"Connection({self.remote_address})"
