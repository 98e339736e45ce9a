"""
server.py

This module is the core of the chat relay's backend. It defines and runs the
ChatServer, which listens for incoming client connections, and the
ServerSession, which carries one client through the name handshake, relays
its chat lines to everybody, and announces its arrival and departure.

The server uses multithreading: every accepted connection is served by its
own thread, and the only state those threads share is the ConnectionRegistry.
"""

import argparse
import enum
import logging
import socket
import sys
import threading
import time

import protocol
from console_io import ConsoleHelper
from models import Broadcaster, ConnectionRegistry
from protocol import (Connection, EndOfStream, MessageType, ProtocolError, RegistrationConflict,
                      TransportError)

logger = logging.getLogger(__name__)

ACCEPT_RETRY_DELAY = 0.1


class SessionState(enum.Enum):
    AWAITING_NAME = 'awaiting_name'
    ACCEPTED = 'accepted'
    CLOSED = 'closed'


class ServerSession:
    """
    Serves a single client connection. This runs in its own thread.

    The session moves from AWAITING_NAME to ACCEPTED once the client has
    registered a free name, and to CLOSED when its connection ends for any
    reason. Every way out of the session goes through the same cleanup:
    leave the registry, tell everyone, release the socket.
    """

    def __init__(self, connection, registry, broadcaster=None):
        self.connection = connection
        self.registry = registry
        self.broadcaster = broadcaster or Broadcaster(registry)
        self.state = SessionState.AWAITING_NAME
        self.name = None
        self._announced = False

    def run(self):
        """Main entry point of the session thread."""
        logger.info("[NEW CONNECTION] %s connected.", self.connection.remote_address)
        with self.connection:
            try:
                self.handshake()
                self.announce_arrival()
                self.main_loop()
            except EndOfStream:
                logger.info("[DISCONNECTED] %s (%s) closed the connection.",
                            self.connection.remote_address, self.name or 'Unknown')
            except (TransportError, ProtocolError) as e:
                logger.warning("[SESSION ERROR] %s (%s): %s",
                               self.connection.remote_address, self.name or 'Unknown', e)
            finally:
                self.cleanup()

    def handshake(self):
        """
        Asks for a name until the client offers one that can be registered.

        The name is visible in the registry before NAME_ACCEPTED is sent. The
        connection stays locked for sending from registration until the
        acceptance is written, so a broadcast cannot overtake it.

        Returns:
            str: The accepted name.
        """
        while self.state is SessionState.AWAITING_NAME:
            self.connection.send(protocol.create_name_request())
            response = self.connection.receive()
            if response.type is not MessageType.USER_NAME:
                continue
            with self.connection.exclusive_send() as send:
                try:
                    self.registry.register(response.data, self.connection)
                except RegistrationConflict as e:
                    logger.info("[NAME REJECTED] %s: %s", self.connection.remote_address, e)
                    continue
                self.name = response.data
                send(protocol.create_name_accepted())
            self.state = SessionState.ACCEPTED
        logger.info("[NICKNAME SET] %s is now known as %s.", self.connection.remote_address, self.name)
        return self.name

    def announce_arrival(self):
        """Tells everyone about the new user, then tells the new user who else is here."""
        self.broadcaster.broadcast(protocol.create_user_added_message(self.name))
        self._announced = True
        for other_name, _ in self.registry.snapshot():
            if other_name != self.name:
                self.connection.send(protocol.create_user_added_message(other_name))

    def main_loop(self):
        """Relays chat lines, prefixed with the sender's name, until the connection ends."""
        while True:
            message = self.connection.receive()
            if message.type is MessageType.TEXT:
                self.broadcaster.broadcast(protocol.create_text_message(f"{self.name}: {message.data}"))
            else:
                logger.warning("[IGNORED] Unexpected %s from %s.", message.type.name, self.name)

    def cleanup(self):
        if self.name is not None:
            self.registry.remove(self.name)
            if self._announced:
                self.broadcaster.broadcast(protocol.create_user_removed_message(self.name))
            logger.info("[LEFT] %s left the chat.", self.name)
        self.state = SessionState.CLOSED


class ChatServer:
    """
    The main class for the chat server.

    Owns the listening socket and the registry, and spawns a ServerSession
    thread for every client that connects.
    """

    def __init__(self, host='0.0.0.0', port=protocol.DEFAULT_PORT, registry=None):
        self.host = host
        self.port = port
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.broadcaster = Broadcaster(self.registry)
        self.server_socket = None
        self._thread = None
        self._stopping = False

    def bind(self):
        """Creates the listening socket. Port 0 picks a free port."""
        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.server_socket.bind((self.host, self.port))
        self.server_socket.listen()
        self.port = self.server_socket.getsockname()[1]
        logger.info("[LISTENING] Server is listening on %s:%d", self.host, self.port)

    def serve_forever(self):
        """Accepts clients until stop() is called."""
        if self.server_socket is None:
            self.bind()
        while True:
            try:
                conn, addr = self.server_socket.accept()
            except OSError as e:
                if self._stopping:
                    logger.info("[STOPPED] Listening socket closed.")
                    break
                # Transient failures such as EMFILE or ECONNABORTED.
                logger.warning("[ACCEPT FAILED] %s", e)
                time.sleep(ACCEPT_RETRY_DELAY)
                continue
            session = ServerSession(Connection(conn, addr), self.registry, self.broadcaster)
            thread = threading.Thread(target=session.run, name=f"session-{addr[0]}:{addr[1]}", daemon=True)
            thread.start()

    def start(self):
        """Binds and runs the accept loop in a background thread."""
        self.bind()
        self._thread = threading.Thread(target=self.serve_forever, name="accept-loop", daemon=True)
        self._thread.start()
        return self

    def stop(self):
        """Stops accepting new clients. Sessions already running are left alone."""
        self._stopping = True
        if self.server_socket is not None:
            # shutdown() wakes a thread blocked in accept(); close() alone does not on Linux.
            try:
                self.server_socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self.server_socket.close()
        if self._thread is not None:
            self._thread.join(timeout=5)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the chat relay server.")
    parser.add_argument('--host', default='0.0.0.0', help="interface to listen on")
    parser.add_argument('--port', type=int, help="port to listen on (asked for when omitted)")
    parser.add_argument('--log-level', default='INFO', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level, format='[%(asctime)s] %(levelname)s: %(message)s')

    port = args.port
    if port is None:
        console = ConsoleHelper()
        console.write_message("Enter port number")
        try:
            port = console.read_int()
        except EOFError:
            return 1

    chat_server = ChatServer(args.host, port)
    try:
        chat_server.bind()
    except OSError as e:
        logger.error("Could not listen on %s:%s: %s", args.host, port, e)
        return 1
    try:
        chat_server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Server shutting down.")
        chat_server.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
