"""Start one supervisor for each service directory and keep the set current."""

from __future__ import annotations

import os
import signal
import stat
import sys
import time
from dataclasses import dataclass

from .iopause import iopause
from .log import log_error, log_warn
from .taia import TAI_UNIX_OFFSET, Taia
from .wait import wait_nohang

MAXSERVICES = 1000
PREFIX = "runsvdir"


@dataclass
class _Entry:
    pid: int = 0
    isgone: bool = False


class RunSvDir:
    """Watches a service directory and runs a supervisor per subdirectory."""

    def __init__(self, svdir: str = "/etc/svdir", runsv_path: str = "/sbin/runsv") -> None:
        self.svdir = os.fspath(svdir)
        self.runsv_path = os.fspath(runsv_path)
        self.services: dict[tuple[int, int], _Entry] = {}
        self.check = True
        self._exitsoon = 0

    def _spawn(self, entry: _Entry, name: str) -> None:
        try:
            pid = os.fork()
        except OSError as e:
            log_warn(PREFIX, "unable to fork for ", name, e.errno or 0)
            return
        if pid == 0:
            try:
                signal.signal(signal.SIGHUP, signal.SIG_DFL)
                signal.signal(signal.SIGTERM, signal.SIG_DFL)
                os.setsid()
                os.chdir(self.svdir)
                os.execve(self.runsv_path, [self.runsv_path, name], os.environ)
            except OSError as e:
                log_error(PREFIX, "unable to start runsv ", name, e.errno or 0)
            finally:
                os._exit(100)
        entry.pid = pid

    def scan(self) -> None:
        """Start supervisors for new directories and stop those for removed ones."""
        try:
            with os.scandir(self.svdir) as it:
                names = [e.name for e in it]
        except OSError as e:
            log_warn(PREFIX, "unable to open directory ", self.svdir, e.errno or 0)
            self.check = True
            return
        for entry in self.services.values():
            entry.isgone = True
        for name in names:
            if name.startswith("."):
                continue
            try:
                st = os.stat(os.path.join(self.svdir, name))
            except OSError as e:
                log_warn(PREFIX, "unable to stat ", name, e.errno or 0)
                continue
            if not stat.S_ISDIR(st.st_mode):
                continue
            key = (st.st_dev, st.st_ino)
            entry = self.services.get(key)
            if entry is not None:
                entry.isgone = False
                if not entry.pid:
                    self._spawn(entry, name)
                continue
            if len(self.services) >= MAXSERVICES:
                log_warn(PREFIX, "too many services: unable to start ", name)
                continue
            entry = _Entry()
            self.services[key] = entry
            self._spawn(entry, name)
            self.check = True
        for key in [k for k, e in self.services.items() if e.isgone]:
            pid = self.services.pop(key).pid
            if pid:
                try:
                    os.kill(pid, signal.SIGTERM)
                except ProcessLookupError:
                    pass
            self.check = True

    def collect(self) -> int:
        """Reap finished supervisors; returns how many of ours were reaped."""
        reaped = 0
        while True:
            try:
                pid, _ = wait_nohang()
            except ChildProcessError:
                break
            if pid <= 0:
                break
            for entry in self.services.values():
                if entry.pid == pid:
                    entry.pid = 0
                    self.check = True
                    reaped += 1
                    break
        return reaped

    def _on_signal(self, signum: int, frame: object) -> None:
        self._exitsoon = 1 if signum == signal.SIGTERM else 2

    def run(self) -> int:
        """Watch the directory until a signal ends the loop; returns the exit status."""
        if not os.path.isdir(self.svdir):
            log_error(PREFIX, "unable to change directory to ", self.svdir)
            return 100
        signal.signal(signal.SIGTERM, self._on_signal)
        signal.signal(signal.SIGHUP, self._on_signal)
        mtime, dev, ino = 0, 0, 0
        stampcheck = Taia.now()
        while True:
            self.collect()
            now = Taia.now()
            if now.sec.x < stampcheck.sec.x - 3:
                log_warn(PREFIX, "time warp", ": resetting time stamp.")
                stampcheck = Taia.now()
                now = Taia.now()
            if not now < stampcheck:
                stampcheck = now + Taia.from_seconds(1)
                try:
                    st = os.stat(self.svdir)
                except OSError as e:
                    log_warn(PREFIX, "unable to stat ", self.svdir, e.errno or 0)
                else:
                    if self.check or int(st.st_mtime) != mtime or st.st_ino != ino or st.st_dev != dev:
                        mtime, dev, ino = int(st.st_mtime), st.st_dev, st.st_ino
                        self.check = False
                        if now.sec.x <= TAI_UNIX_OFFSET + mtime:
                            time.sleep(1)
                        self.scan()
            deadline = now + Taia.from_seconds(1 if self.check else 5)
            iopause([], deadline, now)
            if self._exitsoon == 1:
                return 0
            if self._exitsoon == 2:
                for entry in self.services.values():
                    if entry.pid:
                        try:
                            os.kill(entry.pid, signal.SIGTERM)
                        except ProcessLookupError:
                            pass
                return 111


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    svdir = args[0] if args else "/etc/svdir"
    return RunSvDir(svdir).run()


if __name__ == "__main__":
    sys.exit(main())