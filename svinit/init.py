"""Process 1: run the boot, supervision and shutdown stages, then stop the machine."""

from __future__ import annotations

import enum
import fcntl
import os
import select
import signal
import sys
import termios
import time

from .log import log_error, log_info, log_warn
from .sig import sig_block, sig_catch, sig_unblock
from .wait import wait_crashed, wait_exitcode, wait_nohang, wait_pid

PREFIX = "init"
RUN_DIR = "/run"
CONSOLE = "/dev/console"
SYSRQ_TRIGGER = "/proc/sys/../sysrq-trigger".replace("/sys/..", "")
CTRL_ALT_DEL = "/proc/sys/kernel/ctrl-alt-del"

HALT_FLAG = "shutdown.halt"
POWEROFF_FLAG = "shutdown.poweroff"
REBOOT_FLAG = "shutdown.reboot"
FLAGS = (HALT_FLAG, POWEROFF_FLAG, REBOOT_FLAG)

STAGES = ("/etc/startup", "/sbin/runsvdir", "/etc/shutdown")

_BLOCKED = (
    signal.SIGALRM,
    signal.SIGCHLD,
    signal.SIGCONT,
    signal.SIGHUP,
    signal.SIGINT,
    signal.SIGPIPE,
    signal.SIGTERM,
)
_WAKE = (signal.SIGCHLD, signal.SIGCONT, signal.SIGINT)


class RebootMode(enum.IntEnum):
    """What happens to the machine once everything has stopped."""

    AUTOBOOT = 0x01234567
    HALT = 0xCDEF0123
    POWER_OFF = 0x4321FEDC


def flag_for_name(name: str) -> str:
    """The flag file requested by a program invoked under name."""
    base = os.path.basename(name)
    if base == "poweroff":
        return POWEROFF_FLAG
    if base == "reboot":
        return REBOOT_FLAG
    return HALT_FLAG


def request_shutdown(name: str, run_dir: str = RUN_DIR) -> str:
    """Leave a flag for the mode named by name and wake process 1.

    Returns the path of the flag file; raises OSError when it cannot be made.
    """
    for flag in FLAGS:
        try:
            os.unlink(os.path.join(run_dir, flag))
        except OSError:
            pass
    path = os.path.join(run_dir, flag_for_name(name))
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    os.close(fd)
    try:
        os.kill(1, signal.SIGCONT)
    except OSError:
        pass
    return path


def reboot_mode(run_dir: str = RUN_DIR) -> RebootMode:
    """The mode chosen by the flag files; halt wins over power off."""
    if os.path.exists(os.path.join(run_dir, HALT_FLAG)):
        return RebootMode.HALT
    if os.path.exists(os.path.join(run_dir, POWEROFF_FLAG)):
        return RebootMode.POWER_OFF
    return RebootMode.AUTOBOOT


def _console(stderr_only: bool) -> None:
    try:
        fd = os.open(CONSOLE, os.O_WRONLY | os.O_NONBLOCK)
    except OSError:
        return
    for target in (2,) if stderr_only else (0, 1, 2):
        os.dup2(fd, target)
    if fd > 2:
        os.close(fd)


def _sysrq(command: str) -> bool:
    try:
        with open(SYSRQ_TRIGGER, "w") as f:
            f.write(command)
    except OSError:
        return False
    return True


def _stop_machine(mode: RebootMode) -> None:
    os.sync()
    if mode == RebootMode.HALT:
        while True:
            signal.pause()
    _sysrq("o" if mode == RebootMode.POWER_OFF else "b")


class Init:
    """Runs each stage in turn and reacts to shutdown requests in stage 2."""

    def __init__(self, stages: tuple[str, ...] | list[str] = STAGES) -> None:
        self.stages = tuple(stages)
        self.run_dir = RUN_DIR
        self.mode: RebootMode | None = None
        self.sigc = 0
        self.sigi = 0
        self._selfpipe: tuple[int, int] | None = None

    def _wake(self) -> None:
        if self._selfpipe:
            try:
                os.write(self._selfpipe[1], b"\0")
            except OSError:
                pass

    def _on_child(self, signum: int, frame: object) -> None:
        self._wake()

    def _on_cont(self, signum: int, frame: object) -> None:
        self.sigc += 1
        self._wake()

    def _on_int(self, signum: int, frame: object) -> None:
        self.sigi += 1
        self._wake()

    def _make_selfpipe(self) -> None:
        while True:
            try:
                read_end, write_end = os.pipe()
                break
            except OSError as e:
                log_warn(PREFIX, "unable to create selfpipe, pausing", None, e.errno or 0)
                time.sleep(5)
        os.set_blocking(read_end, False)
        os.set_blocking(write_end, False)
        self._selfpipe = (read_end, write_end)

    def _drain(self) -> None:
        assert self._selfpipe
        try:
            while os.read(self._selfpipe[0], 64):
                pass
        except BlockingIOError:
            pass

    def _exec_stage(self, st: int) -> None:
        stage = self.stages[st]
        try:
            if st == 0:
                try:
                    fd = os.open(CONSOLE, os.O_RDWR)
                except OSError as e:
                    log_warn(PREFIX, "unable to open /dev/console: ", None, e.errno or 0)
                else:
                    ioctl = getattr(termios, "TIOCSCTTY", None)
                    if ioctl is not None:
                        try:
                            fcntl.ioctl(fd, ioctl, 0)
                        except OSError:
                            pass
                    os.dup2(fd, 0)
                    if fd > 2:
                        os.close(fd)
            else:
                os.setsid()
            for sig in (signal.SIGCHLD, signal.SIGCONT, signal.SIGINT):
                signal.signal(sig, signal.SIG_DFL)
            signal.pthread_sigmask(signal.SIG_UNBLOCK, set(_BLOCKED))
            log_info(PREFIX, "enter stage: ", stage)
            os.execve(stage, [stage], os.environ)
        except OSError as e:
            log_error(PREFIX, "unable to start child: ", stage, e.errno or 0)
        finally:
            os._exit(1)

    def _spawn(self, st: int) -> int:
        while True:
            try:
                pid = os.fork()
                break
            except OSError as e:
                log_warn(PREFIX, "unable to fork for ", self.stages[st], e.errno or 0)
                time.sleep(5)
        if pid == 0:
            self._exec_stage(st)
        return pid

    def _stop_stage(self, pid: int) -> None:
        log_info(PREFIX, "sending sigterm...")
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            pass
        waited = 0
        while waited < 5:
            try:
                child, _ = wait_nohang()
            except ChildProcessError as e:
                log_warn(PREFIX, "wait_nohang: ", None, e.errno or 0)
                return
            if child == pid:
                log_info(PREFIX, "stage 2 terminated.")
                return
            if child:
                continue
            log_info(PREFIX, "waiting...")
            time.sleep(1)
            waited += 1
        log_info(PREFIX, "stage 2 not terminated, sending sigkill...")
        try:
            os.kill(pid, signal.SIGKILL)
            wait_pid(pid)
        except OSError as e:
            log_warn(PREFIX, "wait_pid...", None, e.errno or 0)

    def _supervise(self, st: int, pid: int) -> int:
        """Watch stage st until it ends; returns the index of the next stage."""
        assert self._selfpipe
        stage = self.stages[st]
        poller = select.poll()
        poller.register(self._selfpipe[0], select.POLLIN)
        while True:
            for sig in _WAKE:
                sig_unblock(sig)
            poller.poll(14000)
            for sig in _WAKE:
                sig_block(sig)
            self._drain()

            child, wstat = 0, 0
            while True:
                try:
                    child, wstat = wait_nohang()
                except ChildProcessError as e:
                    child = -1
                    log_warn(PREFIX, "wait_nohang, pausing: ", None, e.errno or 0)
                    time.sleep(5)
                    break
                if child <= 0 or child == pid:
                    break
            _console(stderr_only=True)

            if child == pid:
                code, crashed = wait_exitcode(wstat), wait_crashed(wstat)
                if code != 0:
                    log_warn(PREFIX, "child crashed: " if crashed else "child failed: ", stage)
                    if st == 0 and (crashed or code == 100):
                        log_info(PREFIX, "leave stage: ", stage)
                        log_warn(PREFIX, "skipping stage 2...")
                        return st + 2
                    if st == 1 and (crashed or code == 111):
                        log_info(PREFIX, "killing all processes in stage 2...")
                        try:
                            os.killpg(pid, signal.SIGKILL)
                        except OSError:
                            pass
                        time.sleep(5)
                        log_info(PREFIX, "restarting.")
                        return st
                log_info(PREFIX, "leave stage: ", stage)
                return st + 1
            if child != 0:
                self._wake()
                continue

            if not self.sigc and not self.sigi:
                continue
            if st != 1:
                log_info(PREFIX, "signals only work in stage 2.")
                self.sigc = self.sigi = 0
                continue
            if self.sigi:
                log_info(PREFIX, "ctrl-alt-del request...")
                self.sigi = 0
                self.sigc += 1
            self.mode = reboot_mode(self.run_dir)
            self._stop_stage(pid)
            self.sigc = 0
            log_info(PREFIX, "leave stage: ", stage)
            return st + 1

    def run(self) -> RebootMode:
        """Run all stages, stop every process and return the reboot mode."""
        try:
            os.setsid()
        except OSError:
            pass
        for sig in _BLOCKED:
            sig_block(sig)
        sig_catch(signal.SIGCHLD, self._on_child)
        sig_catch(signal.SIGCONT, self._on_cont)
        sig_catch(signal.SIGINT, self._on_int)
        _console(stderr_only=False)
        self._make_selfpipe()
        try:
            with open(CTRL_ALT_DEL, "w") as f:
                f.write("0\n")
        except OSError:
            pass

        log_info(PREFIX, "booting in progress ...")
        st = 0
        while st < len(self.stages):
            st = self._supervise(st, self._spawn(st))

        _console(stderr_only=True)
        log_info(PREFIX, "sending KILL signal to all processes ...")
        try:
            os.kill(-1, signal.SIGKILL)
        except OSError:
            pass
        log_info(PREFIX, "shutdown in progress ...")
        os.sync()
        if _sysrq("u"):
            log_info(PREFIX, "umount root fs")
        else:
            log_warn(PREFIX, "umount root error")
        log_info(PREFIX, "system is down.")
        return self.mode if self.mode is not None else reboot_mode(self.run_dir)


def main(argv: list[str] | None = None) -> int:
    """Run as process 1, or, under any other pid, request a shutdown.

    argv[0] is the name the program was invoked under.
    """
    args = sys.argv if argv is None else list(argv)
    progname = args[0] if args else PREFIX
    if os.getpid() != 1:
        try:
            request_shutdown(progname)
        except OSError as e:
            log_error(PREFIX, "unable to create ", str(e.filename), e.errno or 0)
            return 1
        return 0
    _stop_machine(Init().run())
    return 0


if __name__ == "__main__":
    sys.exit(main())