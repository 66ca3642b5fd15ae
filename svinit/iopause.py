"""Wait for descriptors to become ready or for a deadline to pass."""

from __future__ import annotations

import select
from typing import Iterable

from .taia import Taia

IOPAUSE_READ = select.POLLIN
IOPAUSE_WRITE = select.POLLOUT


def pause_timeout(deadline: Taia, stamp: Taia) -> int:
    """Milliseconds to wait from stamp until deadline, capped near 1000 s."""
    if deadline < stamp:
        return 0
    seconds = min((deadline - stamp).approx(), 1000.0)
    return int(seconds * 1000.0 + 20.0)


def iopause(
    fds: Iterable[tuple[int, int]], deadline: Taia, stamp: Taia
) -> list[tuple[int, int]]:
    """Poll (fd, events) pairs until one is ready or the deadline passes.

    Returns the (fd, revents) pairs that became ready.
    """
    poller = select.poll()
    for fd, events in fds:
        poller.register(fd, events)
    return poller.poll(pause_timeout(deadline, stamp))