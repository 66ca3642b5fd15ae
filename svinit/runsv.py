"""Supervise one service directory: start ./run, restart it, obey control commands."""

from __future__ import annotations

import enum
import errno
import fcntl
import os
import signal
import stat
import struct
import subprocess
import sys
import time
from dataclasses import dataclass, field

from .iopause import IOPAUSE_READ, iopause
from .log import log_error, log_warn
from .taia import Taia
from .wait import wait_crashed, wait_exitcode, wait_nohang


class State(enum.IntEnum):
    DOWN = 0
    RUN = 1
    FINISH = 2


class Ctrl(enum.IntFlag):
    NOOP = 0
    TERM = 1
    PAUSE = 2


class Want(enum.IntEnum):
    UP = 0
    DOWN = 1
    EXIT = 2


@dataclass
class Service:
    """The supervised process and what is wanted of it."""

    pid: int = 0
    state: State = State.DOWN
    ctrl: Ctrl = Ctrl.NOOP
    want: Want = Want.UP
    start: Taia = field(default_factory=Taia.now)
    wstat: int = 0


class RunsvError(Exception):
    """A failure that stops the supervisor."""

    def __init__(self, message: str, err: int = 0) -> None:
        super().__init__(message)
        self.errno = err


_SIGNALS = {
    "a": signal.SIGALRM,
    "h": signal.SIGHUP,
    "i": signal.SIGINT,
    "q": signal.SIGQUIT,
    "1": signal.SIGUSR1,
    "2": signal.SIGUSR2,
}


def stat_text(service: Service) -> str:
    """The human readable state line, without the trailing newline."""
    text = {State.DOWN: "down", State.RUN: "run", State.FINISH: "finish"}[service.state]
    if service.ctrl & Ctrl.PAUSE:
        text += " paused"
    if service.ctrl & Ctrl.TERM:
        text += ", got TERM"
    if service.state != State.DOWN:
        if service.want == Want.DOWN:
            text += ", want down"
        elif service.want == Want.EXIT:
            text += ", want exit"
    return text


def status_record(service: Service) -> bytes:
    """The 20-byte supervise/status record."""
    return (
        service.start.pack()[:12]
        + struct.pack("<I", service.pid & 0xFFFFFFFF)
        + bytes(
            [
                1 if service.ctrl & Ctrl.PAUSE else 0,
                ord("u") if service.want == Want.UP else ord("d"),
                1 if service.ctrl & Ctrl.TERM else 0,
                int(service.state),
            ]
        )
    )


class Supervisor:
    """Runs and watches the service found in one directory."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = os.fspath(directory)
        self.service = Service()
        if os.path.exists(self._path("down")):
            self.service.want = Want.DOWN
        self.pid_changed = True
        self._sigterm = False
        self._selfpipe: tuple[int, int] | None = None
        self._fds: list[int] = []

    def _path(self, name: str) -> str:
        return os.path.join(self.directory, name)

    def _warn(self, msg1: str, msg2: str | None = None, err: int = 0) -> None:
        log_warn(self.directory, msg1, msg2, err)

    def _kill(self, sig: int) -> None:
        if not self.service.pid:
            return
        try:
            os.kill(self.service.pid, sig)
        except ProcessLookupError:
            pass

    def _replace(self, name: str, data: bytes) -> bool:
        target = self._path(name)
        new = target + ".new"
        try:
            with open(new, "wb") as f:
                f.write(data)
        except OSError as e:
            self._warn("unable to write ", new, e.errno or 0)
            return False
        try:
            os.replace(new, target)
        except OSError as e:
            self._warn(f"unable to rename {os.path.basename(new)} to ", target, e.errno or 0)
            return False
        return True

    def update_status(self) -> None:
        """Write supervise/pid, supervise/stat and supervise/status."""
        s = self.service
        if self.pid_changed:
            if not self._replace("supervise/pid", f"{s.pid}\n".encode() if s.pid else b""):
                return
            self.pid_changed = False
        if not self._replace("supervise/stat", (stat_text(s) + "\n").encode()):
            return
        self._replace("supervise/status", status_record(s))

    def custom(self, c: str) -> bool:
        """Run control/<c> if executable; True when it succeeded."""
        path = self._path(os.path.join("control", c))
        try:
            st = os.stat(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            self._warn("unable to stat ", path, e.errno or 0)
            return False
        if not st.st_mode & stat.S_IXUSR:
            return False
        try:
            result = subprocess.run([path], cwd=self.directory)
        except OSError as e:
            self._warn("unable to fork for ", path, e.errno or 0)
            return False
        # A crashed script carries exit code 0 in its wait status.
        return result.returncode <= 0

    def stop_service(self) -> None:
        s = self.service
        if s.pid and not self.custom("t"):
            self._kill(signal.SIGTERM)
            s.ctrl |= Ctrl.TERM
            self.update_status()
        if s.want == Want.DOWN:
            self._kill(signal.SIGCONT)
            self.custom("d")
            return
        if s.want == Want.EXIT:
            self._kill(signal.SIGCONT)
            self.custom("x")

    def start_service(self) -> None:
        s = self.service
        if s.state == State.FINISH:
            code = "-1" if wait_crashed(s.wstat) else str(wait_exitcode(s.wstat))
            argv = ["./finish", code, str(s.wstat & 0xFF)]
        else:
            argv = ["./run"]
            self.custom("u")
        if s.pid:
            self.stop_service()
        while True:
            try:
                pid = os.fork()
                break
            except OSError as e:
                self._warn("unable to fork, sleeping", None, e.errno or 0)
                time.sleep(5)
        if pid == 0:
            try:
                signal.signal(signal.SIGCHLD, signal.SIG_DFL)
                signal.signal(signal.SIGTERM, signal.SIG_DFL)
                signal.pthread_sigmask(signal.SIG_UNBLOCK, {signal.SIGCHLD, signal.SIGTERM})
                os.chdir(self.directory)
                os.execve(argv[0], argv, os.environ)
            except OSError as e:
                log_error(self.directory, "unable to start ", argv[0], e.errno or 0)
            finally:
                os._exit(111)
        if s.state != State.FINISH:
            s.start = Taia.now()
            s.state = State.RUN
        s.pid = pid
        self.pid_changed = True
        s.ctrl = Ctrl.NOOP
        self.update_status()

    def control(self, c: str) -> bool:
        """Act on one control character."""
        s = self.service
        running = s.state == State.RUN
        if c in ("d", "x"):
            s.want = Want.DOWN if c == "d" else Want.EXIT
            self.update_status()
            if running:
                self.stop_service()
        elif c in ("u", "o"):
            s.want = Want.UP if c == "u" else Want.DOWN
            self.update_status()
            if s.state == State.DOWN:
                self.start_service()
        elif c == "t":
            if running:
                self.stop_service()
        elif c == "k":
            if running and not self.custom(c):
                self._kill(signal.SIGKILL)
            s.state = State.DOWN
        elif c == "p":
            if running and not self.custom(c):
                self._kill(signal.SIGSTOP)
            s.ctrl |= Ctrl.PAUSE
            self.update_status()
        elif c == "c":
            if running and not self.custom(c):
                self._kill(signal.SIGCONT)
            s.ctrl &= ~Ctrl.PAUSE
            self.update_status()
        elif c in _SIGNALS:
            if running and not self.custom(c):
                self._kill(_SIGNALS[c])
        return True

    def _wake(self) -> None:
        if self._selfpipe:
            try:
                os.write(self._selfpipe[1], b"\0")
            except OSError:
                pass

    def _on_term(self, signum: int, frame: object) -> None:
        self._sigterm = True
        self._wake()

    def _setup(self) -> tuple[int, int]:
        read_end, write_end = os.pipe()
        os.set_blocking(read_end, False)
        os.set_blocking(write_end, False)
        self._selfpipe = (read_end, write_end)
        signal.signal(signal.SIGCHLD, lambda signum, frame: self._wake())
        signal.signal(signal.SIGTERM, self._on_term)

        supervise = self._path("supervise")
        try:
            os.mkdir(supervise, 0o700)
        except OSError:
            try:
                target = os.readlink(supervise)
            except OSError as e:
                if e.errno not in (errno.ENOENT, errno.EINVAL):
                    raise RunsvError("unable to readlink ./supervise", e.errno or 0) from e
            else:
                try:
                    os.mkdir(os.path.join(self.directory, target), 0o700)
                except OSError:
                    pass
        try:
            lock = os.open(
                self._path("supervise/lock"),
                os.O_WRONLY | os.O_NONBLOCK | os.O_APPEND | os.O_CREAT,
                0o600,
            )
        except OSError as e:
            raise RunsvError("unable to open supervise/lock", e.errno or 0) from e
        self._fds.append(lock)
        try:
            fcntl.flock(lock, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            raise RunsvError("unable to lock supervise/lock", e.errno or 0) from e

        fifo = self._path("supervise/control")
        try:
            os.mkfifo(fifo, 0o600)
        except OSError:
            pass
        try:
            st = os.stat(fifo)
        except OSError as e:
            raise RunsvError("unable to stat supervise/control", e.errno or 0) from e
        if not stat.S_ISFIFO(st.st_mode):
            raise RunsvError("supervise/control exists but is not a fifo")
        try:
            control = os.open(fifo, os.O_RDONLY | os.O_NONBLOCK)
            self._fds.append(control)
            self._fds.append(os.open(fifo, os.O_WRONLY | os.O_NONBLOCK))
        except OSError as e:
            raise RunsvError("unable to open supervise/control", e.errno or 0) from e
        self.update_status()

        ok = self._path("supervise/ok")
        try:
            os.mkfifo(ok, 0o600)
        except OSError:
            pass
        try:
            self._fds.append(os.open(ok, os.O_RDONLY | os.O_NONBLOCK))
        except OSError as e:
            raise RunsvError("unable to read supervise/ok", e.errno or 0) from e
        return read_end, control

    def _reap(self) -> None:
        s = self.service
        while True:
            try:
                pid, wstat = wait_nohang()
            except ChildProcessError:
                break
            except InterruptedError:
                continue
            if pid == 0:
                break
            if pid != s.pid:
                continue
            s.pid = 0
            self.pid_changed = True
            s.wstat = wstat
            s.ctrl &= ~Ctrl.TERM
            if s.state != State.FINISH:
                try:
                    with open(self._path("finish"), "rb"):
                        pass
                except OSError:
                    pass
                else:
                    s.state = State.FINISH
                    self.update_status()
                    continue
            s.state = State.DOWN
            deadline = s.start + Taia.from_seconds(1)
            s.start = Taia.now()
            self.update_status()
            if s.start < deadline:
                time.sleep(1)

    def run(self) -> int:
        """Supervise until told to exit; returns the exit status."""
        selfpipe, control = self._setup()
        s = self.service
        try:
            while True:
                if not s.pid and (s.want == Want.UP or s.state == State.FINISH):
                    self.start_service()
                now = Taia.now()
                deadline = now + Taia.from_seconds(3600)
                iopause([(selfpipe, IOPAUSE_READ), (control, IOPAUSE_READ)], deadline, now)
                try:
                    while os.read(selfpipe, 64):
                        pass
                except BlockingIOError:
                    pass
                self._reap()
                try:
                    ch = os.read(control, 1)
                except BlockingIOError:
                    ch = b""
                if ch:
                    self.control(ch.decode("latin-1"))
                if self._sigterm:
                    self.control("x")
                    self._sigterm = False
                if s.want == Want.EXIT and s.state == State.DOWN:
                    return 0
        finally:
            for fd in [*self._fds, *self._selfpipe]:
                os.close(fd)
            self._fds.clear()
            self._selfpipe = None


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1:
        log_error(None, "Usage: runsv <service>")
        return 111
    try:
        return Supervisor(args[0]).run()
    except RunsvError as e:
        log_error(args[0], str(e), None, e.errno)
        return 111


if __name__ == "__main__":
    sys.exit(main())