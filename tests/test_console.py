import io
import queue
import threading

import protocol
from conftest import TIMEOUT, expect, wait_for
from console import ConsoleClient
from console_io import ConsoleHelper
from protocol import MessageType


class QueueInput:
    """A stdin replacement whose readline() blocks until the test feeds a line."""

    def __init__(self):
        self.lines = queue.Queue()

    def feed(self, line):
        self.lines.put(line + '\n')

    def end(self):
        self.lines.put('')

    def readline(self):
        return self.lines.get(timeout=TIMEOUT)


def test_read_int_asks_again_on_bad_input():
    out = io.StringIO()
    console = ConsoleHelper(io.StringIO("abc\n 4242 \n"), out)
    assert console.read_int() == 4242
    assert "Invalid number" in out.getvalue()


def test_read_string_strips_line_ending_only():
    console = ConsoleHelper(io.StringIO("  hello world \r\n"), io.StringIO())
    assert console.read_string() == "  hello world "


def test_console_client_session(chat_server, join):
    alice = join("alice")
    stdin, stdout = QueueInput(), io.StringIO()
    client = ConsoleClient(ConsoleHelper(stdin, stdout))
    stdin.feed("127.0.0.1")
    stdin.feed(str(chat_server.port))
    stdin.feed("alice")

    result = []
    runner = threading.Thread(target=lambda: result.append(client.run()), daemon=True)
    runner.start()

    # "alice" is taken, so the session asks for another name.
    assert wait_for(lambda: "That name is empty or already in use" in stdout.getvalue())
    stdin.feed("bob")
    expect(alice, MessageType.USER_ADDED, "bob")
    assert wait_for(lambda: "Connection established." in stdout.getvalue())

    stdin.feed("hello everyone")
    expect(alice, MessageType.TEXT, "bob: hello everyone")
    alice.send(protocol.create_text_message("welcome"))
    assert wait_for(lambda: "alice: welcome" in stdout.getvalue())
    assert "alice joined" in stdout.getvalue()

    stdin.feed("exit")
    runner.join(TIMEOUT)
    assert result == [True]
    expect(alice, MessageType.TEXT, "alice: welcome")
    expect(alice, MessageType.USER_REMOVED, "bob")


def test_console_client_reports_failed_connection():
    stdout = io.StringIO()
    client = ConsoleClient(ConsoleHelper(io.StringIO(), stdout))
    assert client.run('127.0.0.1', 1, "alice") is False
    assert "Client error" in stdout.getvalue()
