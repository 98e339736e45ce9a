"""
console.py

Terminal front end for the chat relay.

ConsoleClient is the console client. It runs a ClientSession in a background
socket thread and, once the server has accepted the user's name, forwards
every typed line to the chat until the user types 'exit' or the connection is lost.
"""

import argparse
import logging
import sys
import threading

from console_io import ConsoleHelper
from network_client import ClientSession

EXIT_COMMAND = 'exit'


class ConsoleSession(ClientSession):
    """ClientSession that reports everything on the console."""

    def __init__(self, console, host, port, user_name):
        super().__init__(host, port, user_name)
        self.console = console

    def request_new_name(self):
        self.console.write_message("That name is empty or already in use, enter another name")
        try:
            return self.console.read_string()
        except EOFError:
            return None

    def process_incoming_message(self, text):
        self.console.write_message(text)

    def inform_user_added(self, name):
        self.console.write_message(f"{name} joined")

    def inform_user_removed(self, name):
        self.console.write_message(f"{name} left")

    def notify_connection_status_changed(self, connected, reason=None):
        if not connected and reason:
            self.console.write_message(reason)


class ConsoleClient:
    """
    Two threads: the socket thread runs the session, and the calling
    thread runs the input loop once the handshake has succeeded.
    """

    def __init__(self, console=None):
        self.console = console or ConsoleHelper()
        self.session = None

    def get_server_address(self):
        self.console.write_message("Enter server address")
        return self.console.read_string()

    def get_server_port(self):
        self.console.write_message("Enter server port")
        return self.console.read_int()

    def get_user_name(self):
        self.console.write_message("Enter your name")
        return self.console.read_string()

    def should_send_text_from_console(self):
        return True

    def create_session(self, host, port, user_name):
        return ConsoleSession(self.console, host, port, user_name)

    def run(self, host=None, port=None, user_name=None):
        """
        Runs the client until 'exit', end of input, or loss of connection.

        Returns:
            bool: True if the handshake succeeded.
        """
        try:
            host = host or self.get_server_address()
            port = port or self.get_server_port()
            user_name = user_name or self.get_user_name()
        except EOFError:
            return False

        self.session = self.create_session(host, port, user_name)
        socket_thread = threading.Thread(target=self.session.run, name="socket-thread", daemon=True)
        socket_thread.start()

        if not self.session.ready.wait():
            self.console.write_message("Client error")
            return False

        self.console.write_message(f"Connection established. '{EXIT_COMMAND}' - exit command.")
        self.input_loop()
        self.session.close()
        socket_thread.join(timeout=5)
        return True

    def input_loop(self):
        while self.session.connected:
            try:
                text = self.console.read_string()
            except EOFError:
                break
            if text == EXIT_COMMAND:
                break
            # The connection may have dropped while we were waiting for input.
            if not self.session.connected:
                break
            if self.should_send_text_from_console():
                self.session.send_text(text)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Console chat client.")
    parser.add_argument('--host', help="server address (asked for when omitted)")
    parser.add_argument('--port', type=int, help="server port (asked for when omitted)")
    parser.add_argument('--name', help="display name (asked for when omitted)")
    parser.add_argument('--log-level', default='WARNING', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level, format='[%(asctime)s] %(levelname)s: %(message)s')

    client = ConsoleClient()
    try:
        ok = client.run(args.host, args.port, args.name)
    except KeyboardInterrupt:
        ok = True
        if client.session is not None:
            client.session.close()
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
