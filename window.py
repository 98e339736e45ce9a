"""
window.py

This module defines the graphical user interface (GUI) windows for the
client application using the PyQt6 framework.

It includes the initial LoginWindow for choosing a nickname and the main
ChatWindow, which shows the relayed chat lines next to the list of people
currently in the chat. The windows are decoupled from the network logic and
communicate user actions via signals.
"""

import html
from datetime import datetime

from PyQt6.QtCore import Qt, pyqtSignal
from PyQt6.QtWidgets import (QHBoxLayout, QLabel, QLineEdit, QListWidget, QPushButton, QTextBrowser,
                             QVBoxLayout, QWidget)


class LoginWindow(QWidget):
    """
    The initial window shown to the user to enter their nickname.
    """
    # Signal emitted when the user clicks the 'Connect' button with a valid nickname.
    connect_requested = pyqtSignal(str)

    def __init__(self):
        """Initializes the LoginWindow UI components."""
        super().__init__()
        self.setWindowTitle("Login to Chat")
        self.setFixedSize(300, 150)

        # --- UI Layout Setup ---
        layout = QVBoxLayout()
        self.setLayout(layout)
        self.nickname_label = QLabel("Choose your nickname:")
        self.nickname_input = QLineEdit()
        self.connect_button = QPushButton("Connect")
        layout.addWidget(self.nickname_label)
        layout.addWidget(self.nickname_input)
        layout.addWidget(self.connect_button)

        self.connect_button.clicked.connect(self.on_connect)
        self.nickname_input.returnPressed.connect(self.on_connect)

    def on_connect(self):
        """Validates the input and emits the connect_requested signal."""
        nickname = self.nickname_input.text()
        if nickname.strip():
            self.connect_requested.emit(nickname)

    def set_busy(self, busy):
        self.connect_button.setEnabled(not busy)
        self.connect_button.setText("Connecting..." if busy else "Connect")


class ChatWindow(QWidget):
    """
    The main chat interface window.

    Left: the people currently in the chat. Right: the chat display and the
    message input.
    """
    send_requested = pyqtSignal(str)  # (message_text)

    def __init__(self, nickname):
        super().__init__()
        self.nickname = nickname
        self.setWindowTitle(f"Chat - {self.nickname}")
        self.setMinimumSize(600, 400)

        main_layout = QHBoxLayout()
        self.setLayout(main_layout)

        # Left Panel (Participants)
        left_panel_layout = QVBoxLayout()
        self.user_list_widget = QListWidget()
        left_panel_layout.addWidget(QLabel("In the chat"))
        left_panel_layout.addWidget(self.user_list_widget)
        left_panel_widget = QWidget()
        left_panel_widget.setLayout(left_panel_layout)

        # Right Panel (Chat Display and Input)
        right_panel_layout = QVBoxLayout()
        self.chat_display = QTextBrowser()
        self.chat_display.setReadOnly(True)

        input_layout = QHBoxLayout()
        self.message_input = QLineEdit()
        self.send_button = QPushButton("Send")
        input_layout.addWidget(self.message_input)
        input_layout.addWidget(self.send_button)

        right_panel_layout.addWidget(self.chat_display)
        right_panel_layout.addLayout(input_layout)
        right_panel_widget = QWidget()
        right_panel_widget.setLayout(right_panel_layout)

        main_layout.addWidget(left_panel_widget, 1)
        main_layout.addWidget(right_panel_widget, 3)

        self.send_button.clicked.connect(self.on_send)
        self.message_input.returnPressed.connect(self.on_send)

    def on_send(self):
        """
        Emits the typed line. The server echoes it back to every participant,
        including us, so it is not displayed locally.
        """
        text = self.message_input.text()
        if text.strip():
            self.send_requested.emit(text)
            self.message_input.clear()

    def append_message(self, text):
        timestamp = datetime.now().strftime('%H:%M:%S')
        # Chat lines are plain text; append() would render anything that looks like HTML.
        self.chat_display.append(f"({timestamp}) {html.escape(text)}")
        self.chat_display.ensureCursorVisible()

    def add_user(self, name):
        if not self.user_list_widget.findItems(name, Qt.MatchFlag.MatchExactly):
            self.user_list_widget.addItem(name)
            self.user_list_widget.sortItems()
        if name != self.nickname:
            self.append_message(f"[{name} joined]")

    def remove_user(self, name):
        for item in self.user_list_widget.findItems(name, Qt.MatchFlag.MatchExactly):
            self.user_list_widget.takeItem(self.user_list_widget.row(item))
        self.append_message(f"[{name} left]")

    def users(self):
        return [self.user_list_widget.item(i).text() for i in range(self.user_list_widget.count())]
