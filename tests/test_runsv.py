import os
import struct

import pytest

from svinit.runsv import (
    Ctrl,
    Service,
    State,
    Supervisor,
    Want,
    main,
    stat_text,
    status_record,
)
from svinit.wait import wait_exitcode, wait_pid


def _script(path, body):
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)


@pytest.fixture
def svdir(tmp_path):
    (tmp_path / "supervise").mkdir()
    return tmp_path


def test_stat_text_down():
    assert stat_text(Service()) == "down"


def test_stat_text_run_flags():
    s = Service(state=State.RUN, ctrl=Ctrl.PAUSE | Ctrl.TERM, want=Want.DOWN)
    assert stat_text(s) == "run paused, got TERM, want down"


def test_stat_text_finish_exit():
    assert stat_text(Service(state=State.FINISH, want=Want.EXIT)) == "finish, want exit"


def test_stat_text_down_ignores_want():
    assert stat_text(Service(want=Want.EXIT)) == "down"


def test_status_record_layout():
    s = Service(pid=1234, state=State.RUN, ctrl=Ctrl.PAUSE, want=Want.UP)
    rec = status_record(s)
    assert len(rec) == 20
    assert rec[:12] == s.start.pack()[:12]
    assert struct.unpack("<I", rec[12:16])[0] == 1234
    assert rec[16:] == bytes([1, ord("u"), 0, 1])


def test_status_record_want_down():
    rec = status_record(Service(want=Want.DOWN, ctrl=Ctrl.TERM))
    assert rec[17] == ord("d")
    assert rec[18] == 1


def test_down_file_sets_want(svdir):
    (svdir / "down").write_text("")
    assert Supervisor(svdir).service.want == Want.DOWN


def test_update_status_writes_files(svdir):
    sup = Supervisor(svdir)
    sup.update_status()
    assert (svdir / "supervise" / "stat").read_text() == "down\n"
    assert (svdir / "supervise" / "pid").read_text() == ""
    assert (svdir / "supervise" / "status").read_bytes() == status_record(sup.service)
    assert sup.pid_changed is False


def test_custom_missing_is_false(svdir):
    assert Supervisor(svdir).custom("t") is False


def test_custom_runs_script(svdir):
    (svdir / "control").mkdir()
    _script(svdir / "control" / "t", "exit 0\n")
    _script(svdir / "control" / "h", "exit 1\n")
    sup = Supervisor(svdir)
    assert sup.custom("t") is True
    assert sup.custom("h") is False


def test_control_pause_and_continue(svdir):
    sup = Supervisor(svdir)
    sup.control("p")
    assert sup.service.ctrl & Ctrl.PAUSE
    assert (svdir / "supervise" / "stat").read_text() == "down paused\n"
    sup.control("c")
    assert not sup.service.ctrl & Ctrl.PAUSE


def test_control_down_and_exit(svdir):
    sup = Supervisor(svdir)
    assert sup.control("d") is True
    assert sup.service.want == Want.DOWN
    sup.control("x")
    assert sup.service.want == Want.EXIT
    assert status_record(sup.service)[17] == ord("d")


def test_control_kill_sets_down(svdir):
    sup = Supervisor(svdir)
    sup.service.state = State.FINISH
    sup.control("k")
    assert sup.service.state == State.DOWN


def test_start_service_runs_script(svdir):
    _script(svdir / "run", "exit 3\n")
    sup = Supervisor(svdir)
    sup.start_service()
    pid = sup.service.pid
    assert pid > 0
    assert sup.service.state == State.RUN
    assert (svdir / "supervise" / "pid").read_text() == f"{pid}\n"
    assert (svdir / "supervise" / "stat").read_text() == "run\n"
    assert wait_exitcode(wait_pid(pid)) == 3


def test_start_service_finish_arguments(svdir):
    _script(svdir / "finish", 'echo "$@" > args\n')
    sup = Supervisor(svdir)
    sup.service.state = State.FINISH
    sup.service.wstat = 3 << 8
    sup.start_service()
    wait_pid(sup.service.pid)
    assert (svdir / "args").read_text() == "3 0\n"
    assert sup.service.state == State.FINISH


def test_main_usage():
    assert main([]) == 111
    assert main(["a", "b"]) == 111


def test_main_missing_directory(tmp_path):
    assert main([os.fspath(tmp_path / "missing")]) == 111