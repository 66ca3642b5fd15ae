"""A small console getty: set up a terminal, ask for a login name, start login."""

from __future__ import annotations

import errno
import fcntl
import os
import signal
import sys
import syslog
import termios
import time
from typing import TextIO

LOGIN_PROGRAM = "/bin/login"
ISSUE_FILE = "/etc/issue"
MAX_LOGNAME = 39


class LogonError(Exception):
    """A failure that ends the logon program."""


def strip_dev(tty: str) -> str:
    """The tty name without a leading /dev/."""
    return tty[5:] if tty.startswith("/dev/") else tty


def _prompt(outfile: TextIO, issue_path: str) -> None:
    outfile.write("\n")
    try:
        with open(issue_path, encoding="latin-1") as issue:
            outfile.write(issue.read())
    except OSError:
        pass
    outfile.write("Login: ")
    outfile.flush()


def read_logname(infile: TextIO, outfile: TextIO, issue_path: str = ISSUE_FILE) -> str:
    """Prompt until a non-empty login name is entered and return it.

    Raises EOFError at end of input and LogonError for a bad name.
    """
    while True:
        _prompt(outfile, issue_path)
        chars: list[str] = []
        while True:
            c = infile.read(1)
            if not c:
                raise EOFError("end of input")
            if c in "\n\r":
                break
            if not " " <= c <= "~":
                raise LogonError(f"invalid character 0x{ord(c):x} in login name")
            if len(chars) >= MAX_LOGNAME:
                raise LogonError("too long login name")
            chars.append(c)
        if chars:
            return "".join(chars)


def _reset(path: str, ignored: int, label: str) -> None:
    try:
        os.chown(path, 0, 0 if ignored == errno.EROFS else 3)
        os.chmod(path, 0o600)
    except OSError as e:
        if e.errno != ignored:
            raise LogonError(f"{label}: {e.strerror}") from e


def _open_ctty(path: str, tty: str) -> int:
    try:
        fd = os.open(path, os.O_RDWR)
    except OSError as e:
        raise LogonError(f"{tty}: cannot open tty: {e.strerror}") from e
    try:
        fcntl.ioctl(fd, termios.TIOCSCTTY, 1)
    except OSError as e:
        os.close(fd)
        raise LogonError(f"{tty}: no controlling tty: {e.strerror}") from e
    return fd


def open_tty(tty: str) -> None:
    """Make /dev/<tty> the controlling terminal and standard input, output and error."""
    path = tty if tty.startswith("/") else "/dev/" + tty
    if path.startswith("/dev/tty") and path[8:9].isdigit():
        for device in ("/dev/vcs", "/dev/vcsa"):
            name = device + path[8:]
            _reset(name, errno.ENOENT, name)
    _reset(path, errno.EROFS, tty)

    previous = signal.signal(signal.SIGHUP, signal.SIG_IGN)
    try:
        fd = _open_ctty(path, tty)
        if not os.isatty(fd):
            raise LogonError(f"{tty}: not a tty")
        for stale in {2, 1, 0, fd}:
            try:
                os.close(stale)
            except OSError:
                pass
        fd = _open_ctty(path, tty)
        if fd != 0:
            raise LogonError(f"{tty}: cannot open tty: descriptor {fd}")
        try:
            os.dup2(fd, 1)
            os.dup2(fd, 2)
        except OSError as e:
            raise LogonError(f"{tty}: dup2(): {e.strerror}") from e
    finally:
        signal.signal(signal.SIGHUP, previous)


def _report(progname: str, message: str) -> int:
    syslog.openlog(progname, syslog.LOG_PID, syslog.LOG_AUTH)
    syslog.syslog(syslog.LOG_ERR, message)
    time.sleep(5)
    return 1


def main(argv: list[str] | None = None) -> int:
    """Usage: logon <tty name>."""
    progname = "logon"
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1 or not args[0]:
        return _report(progname, f"Usage: {progname} <tty name>")
    tty = strip_dev(args[0])
    try:
        open_tty(tty)
        logname = read_logname(sys.stdin, sys.stdout)
    except EOFError:
        return 0
    except LogonError as e:
        message = str(e)
        if not message.startswith(tty):
            message = f"{tty}: {message}"
        return _report(progname, message)
    try:
        os.execv(LOGIN_PROGRAM, [LOGIN_PROGRAM, "--", logname])
    except OSError as e:
        return _report(progname, f"{tty}: can't exec {LOGIN_PROGRAM}: {e.strerror}")
    return 1


if __name__ == "__main__":
    sys.exit(main())