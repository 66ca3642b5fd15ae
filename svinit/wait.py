"""Child process reaping and wait status decoding."""

from __future__ import annotations

import os


def wait_nohang() -> tuple[int, int]:
    """Reap any finished child without blocking.

    Returns (pid, wstat); pid is 0 when children exist but none has
    finished. Raises ChildProcessError when there are no children.
    """
    return os.waitpid(-1, os.WNOHANG)


def wait_pid(pid: int) -> int:
    """Block until child pid ends and return its wait status."""
    _, wstat = os.waitpid(pid, 0)
    return wstat


def wait_crashed(wstat: int) -> int:
    """The signal that ended the child, or 0 if it exited."""
    return wstat & 127


def wait_exitcode(wstat: int) -> int:
    """The exit code carried by a wait status."""
    return wstat >> 8