"""
console_io.py

Line-oriented terminal I/O shared by the server's startup prompt and the
console client. It has no GUI dependencies.
"""

import sys
import threading


class ConsoleHelper:
    """Line-oriented terminal I/O. The streams can be replaced for testing."""

    def __init__(self, stdin=None, stdout=None):
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self._write_lock = threading.Lock()

    def write_message(self, message):
        with self._write_lock:
            self.stdout.write(message + '\n')
            self.stdout.flush()

    def read_string(self):
        """
        Reads one line, without its line ending.

        Raises:
            EOFError: If the input stream is exhausted.
        """
        line = self.stdin.readline()
        if not line:
            raise EOFError("end of console input")
        return line.rstrip('\r\n')

    def read_int(self):
        """Reads an integer, asking again until one is entered."""
        while True:
            text = self.read_string()
            try:
                return int(text.strip())
            except ValueError:
                self.write_message("Invalid number, please try again.")
