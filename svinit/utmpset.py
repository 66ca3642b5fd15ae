"""Mark a terminal line as logged out in the utmp and wtmp files."""

from __future__ import annotations

import contextlib
import fcntl
import os
import struct
import sys
import time
from dataclasses import dataclass, field
from typing import Iterator

from .log import log_error

UTMP_FILE = "/var/run/utmp"
WTMP_FILE = "/var/log/wtmp"
DEAD_PROCESS = 8
LINE_SIZE = 32

_FORMAT = struct.Struct("<h2xi32s4s32s256shhiii16s20s")
UTMP_SIZE = _FORMAT.size


class UtmpError(Exception):
    """A login record could not be updated."""

    def __init__(self, prefix: str, message: str, err: int = 0) -> None:
        super().__init__(message)
        self.prefix = prefix
        self.errno = err


def _encode(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _decode(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", "surrogateescape")


@dataclass
class UtmpRecord:
    """One fixed-size login record."""

    entry_type: int = 0
    pid: int = 0
    line: str = ""
    id: bytes = field(default_factory=lambda: bytes(4))
    user: str = ""
    host: str = ""
    exit_termination: int = 0
    exit_status: int = 0
    session: int = 0
    tv_sec: int = 0
    tv_usec: int = 0
    addr_v6: bytes = field(default_factory=lambda: bytes(16))

    def pack(self) -> bytes:
        return _FORMAT.pack(
            self.entry_type,
            self.pid,
            _encode(self.line),
            self.id,
            _encode(self.user),
            _encode(self.host),
            self.exit_termination,
            self.exit_status,
            self.session,
            self.tv_sec,
            self.tv_usec,
            self.addr_v6,
            b"",
        )

    @classmethod
    def unpack(cls, data: bytes) -> UtmpRecord:
        if len(data) < UTMP_SIZE:
            raise ValueError(f"need {UTMP_SIZE} bytes, got {len(data)}")
        (etype, pid, line, ident, user, host, term, status,
         session, sec, usec, addr, _unused) = _FORMAT.unpack_from(data)
        return cls(
            etype, pid, _decode(line), ident, _decode(user), _decode(host),
            term, status, session, sec, usec, addr,
        )


@contextlib.contextmanager
def _locked(path: str, flags: int, mode: int = 0) -> Iterator[int]:
    try:
        fd = os.open(path, flags, mode)
    except OSError as e:
        raise UtmpError("utmpset", f"unable to open {path}", e.errno or 0) from e
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
        except OSError as e:
            raise UtmpError("utmpset", f"unable to lock {path}", e.errno or 0) from e
        yield fd
    finally:
        os.close(fd)


def utmp_logout(line: str, path: str = UTMP_FILE) -> UtmpRecord:
    """Clear the user of the first logged-in record on line; returns that record."""
    with _locked(path, os.O_RDWR) as fd:
        while True:
            data = os.read(fd, UTMP_SIZE)
            if len(data) != UTMP_SIZE:
                break
            record = UtmpRecord.unpack(data)
            if not record.user or record.line != line:
                continue
            record.user = ""
            record.host = ""
            record.tv_sec = int(time.time())
            record.entry_type = DEAD_PROCESS
            try:
                os.lseek(fd, -UTMP_SIZE, os.SEEK_CUR)
                if os.write(fd, record.pack()) == UTMP_SIZE:
                    return record
            except OSError:
                pass
            break
    raise UtmpError(path, f"unable to logout line {line}")


def wtmp_logout(line: str, path: str = WTMP_FILE) -> UtmpRecord:
    """Append a logout record for line; returns the record written."""
    with _locked(path, os.O_WRONLY | os.O_NDELAY | os.O_APPEND | os.O_CREAT, 0o600) as fd:
        size = os.fstat(fd).st_size
        if len(line) > LINE_SIZE:
            line = line[: LINE_SIZE - 2]
        record = UtmpRecord(entry_type=DEAD_PROCESS, line=line, tv_sec=int(time.time()))
        data = record.pack()
        try:
            written = os.write(fd, data)
        except OSError:
            written = -1
        if written != len(data):
            os.ftruncate(fd, size)
            raise UtmpError(path, f"unable to logout line {line}")
        return record


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1:
        log_error("utmpset", "Usage: utmpset line")
        return 111
    try:
        utmp_logout(args[0])
        wtmp_logout(args[0])
    except UtmpError as e:
        log_error(e.prefix, str(e), None, e.errno)
        return 111
    return 0


if __name__ == "__main__":
    sys.exit(main())