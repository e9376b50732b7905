"""Tests for raw keypress reading on a real pseudo-terminal.

A forked child reads keys through ``Term.getch`` while the parent types
into the pty master, one keypress at a time.
"""

from __future__ import annotations

import os
import select
import sys
import time
import tty
import unittest

import whale

try:
    import pty
except ImportError:  # pragma: no cover - non-POSIX platforms
    pty = None

KEY_GAP_SECONDS = 0.3
READ_TIMEOUT_SECONDS = 5.0


def _read_until(fd: int, marker: bytes) -> bytes:
    data = b""
    deadline = time.monotonic() + READ_TIMEOUT_SECONDS
    while marker not in data and time.monotonic() < deadline:
        if not select.select([fd], [], [], 0.1)[0]:
            continue
        try:
            chunk = os.read(fd, 1024)
        except OSError:
            break
        if not chunk:
            break
        data += chunk
    return data


@unittest.skipIf(pty is None, "pty is not available")
class GetchPtyTests(unittest.TestCase):
    def read_intents(self, keys: list[bytes]) -> list[str]:
        """Type each key into a child running getch, return the intent names it saw"""
        pid, master_fd = pty.fork()
        if pid == 0:
            code = 1
            try:
                sys.stdin = os.fdopen(0, "r", closefd=False)
                tty.setraw(0)
                os.write(1, b"READY\n")
                names = []
                for _ in keys:
                    intent = whale.intent_for_key(whale.Term.getch())
                    names.append(intent.name if intent else "NONE")
                os.write(1, ("INTENTS " + " ".join(names) + " END\n").encode())
                code = 0
            finally:
                os._exit(code)

        try:
            self.assertIn(b"READY", _read_until(master_fd, b"READY"))
            for key in keys:
                os.write(master_fd, key)
                time.sleep(KEY_GAP_SECONDS)
            output = _read_until(master_fd, b"END")
        finally:
            # Closing the master hangs up the child's terminal so it can't block on a read.
            os.close(master_fd)
            _, status = os.waitpid(pid, 0)

        self.assertEqual(os.waitstatus_to_exitcode(status), 0)
        line = output.decode().split("INTENTS ", 1)[1].split(" END", 1)[0]
        return line.split()

    def test_each_keypress_maps_to_one_intent(self) -> None:
        intents = self.read_intents([b"\x1b[A", b"\x1b[B", b"\x1b", b"\r"])

        self.assertEqual(intents, ["MOVE_UP", "MOVE_DOWN", "CANCEL", "COMMIT"])

    def test_arrow_keys_do_not_leak_bracket_into_next_read(self) -> None:
        intents = self.read_intents([b"\x1b[B", b"\x1b[B", b"k", b"\n"])

        self.assertEqual(intents, ["MOVE_DOWN", "MOVE_DOWN", "MOVE_DOWN", "COMMIT"])


if __name__ == "__main__":
    unittest.main()
