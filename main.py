"""
main.py

This is the entry point for the graphical chat client.

It initializes the PyQt6 application, moves the user from the login window to
the chat window, and acts as the controller that connects the user interface
(window.py) with the background network communication (network_client.py).
"""

import logging
import sys

from PyQt6.QtWidgets import QApplication, QInputDialog, QMessageBox

import protocol
from network_client import NetworkThread
from window import ChatWindow, LoginWindow

# --- Configuration ---
# '127.0.0.1' or 'localhost' for a server on the same machine.
SERVER_IP = protocol.DEFAULT_HOST
SERVER_PORT = protocol.DEFAULT_PORT


class ChatApplication:
    """
    The main controller class for the GUI client.

    This class manages the application's windows and the network thread, and
    wires UI signals to network actions and back.
    """

    def __init__(self, server_ip=SERVER_IP, server_port=SERVER_PORT):
        self.app = QApplication.instance() or QApplication(sys.argv)
        self.server_ip = server_ip
        self.server_port = server_port
        self.nickname = None
        self.login_window = LoginWindow()
        self.chat_window = None
        self.network_thread = None

        self.login_window.connect_requested.connect(self.attempt_login)

    def attempt_login(self, nickname):
        """
        Starts connecting to the server with the chosen nickname.

        Args:
            nickname (str): The nickname entered by the user.
        """
        self.nickname = nickname
        self.login_window.set_busy(True)

        self.network_thread = NetworkThread(self.server_ip, self.server_port, self.nickname)

        # Queued signals keep their emission order, so the chat window exists before the first USER_ADDED.
        self.network_thread.login_successful.connect(self.show_chat_window)
        self.network_thread.message_received.connect(self.handle_chat_message)
        self.network_thread.user_joined.connect(self.handle_user_joined)
        self.network_thread.user_left.connect(self.handle_user_left)
        self.network_thread.disconnected.connect(self.handle_disconnection)
        self.network_thread.name_rejected.connect(self.handle_name_rejected)

        self.network_thread.start()

    def handle_name_rejected(self, rejected_name):
        """
        Asks for another nickname when the server turns one down. The network
        thread waits for the answer on the same connection.
        """
        nickname = self.prompt_for_nickname(rejected_name)
        if nickname and nickname.strip():
            self.nickname = nickname
            self.network_thread.provide_name(nickname)
        else:
            self.network_thread.provide_name(None)

    def prompt_for_nickname(self, rejected_name):
        nickname, ok = QInputDialog.getText(
            self.login_window, "Nickname unavailable",
            f"\"{rejected_name}\" is empty or already in use. Choose another nickname:")
        return nickname if ok else None

    def show_chat_window(self):
        """Closes the login window and displays the main chat window."""
        self.chat_window = ChatWindow(self.nickname)
        self.chat_window.send_requested.connect(self.send_message)
        self.login_window.close()
        self.chat_window.show()

    def handle_chat_message(self, text):
        if self.chat_window:
            self.chat_window.append_message(text)

    def handle_user_joined(self, name):
        if self.chat_window:
            self.chat_window.add_user(name)

    def handle_user_left(self, name):
        if self.chat_window:
            self.chat_window.remove_user(name)

    def send_message(self, text):
        self.network_thread.send_message(text)

    def handle_disconnection(self, reason):
        """
        Shows why the connection ended, then either resets the login screen
        (the handshake failed) or quits (the chat was running).
        """
        in_chat = self.chat_window is not None and self.chat_window.isVisible()
        parent_window = self.chat_window if in_chat else self.login_window
        QMessageBox.critical(parent_window, "Disconnected", reason)

        if in_chat:
            self.app.quit()
        else:
            self.login_window.set_busy(False)

    def run(self):
        """Shows the login window and runs the event loop."""
        self.login_window.show()
        code = self.app.exec()
        if self.network_thread is not None:
            self.network_thread.stop()
        return code


def main():
    logging.basicConfig(level=logging.WARNING, format='[%(asctime)s] %(levelname)s: %(message)s')
    chat_app = ChatApplication()
    return chat_app.run()


if __name__ == "__main__":
    sys.exit(main())
