"""Signal disposition and mask helpers."""

from __future__ import annotations

import signal
from typing import Any, Callable, Union

Handler = Union[Callable[[int, Any], Any], int, signal.Handlers]


def sig_catch(sig: int, handler: Handler) -> Handler:
    """Install handler for sig and return the previous one."""
    return signal.signal(sig, handler)


def sig_block(sig: int) -> None:
    """Add sig to the blocked set."""
    signal.pthread_sigmask(signal.SIG_BLOCK, {sig})


def sig_unblock(sig: int) -> None:
    """Remove sig from the blocked set."""
    signal.pthread_sigmask(signal.SIG_UNBLOCK, {sig})


def sig_blocknone() -> None:
    """Unblock every signal."""
    signal.pthread_sigmask(signal.SIG_SETMASK, set())


def sig_pause() -> None:
    """Wait for a signal with nothing blocked, then restore the mask."""
    pending = signal.sigpending()
    previous = signal.pthread_sigmask(signal.SIG_SETMASK, set())
    try:
        # Pending signals were delivered by the unblock above.
        if not pending:
            signal.pause()
    finally:
        signal.pthread_sigmask(signal.SIG_SETMASK, previous)


def sig_ignore(sig: int) -> Handler:
    """Drop any handler for sig, restoring the default disposition."""
    return sig_catch(sig, signal.SIG_DFL)


def sig_uncatch(sig: int) -> Handler:
    """Drop any handler for sig, restoring the default disposition."""
    return sig_catch(sig, signal.SIG_DFL)