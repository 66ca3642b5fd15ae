import os
import time

from svinit.iopause import IOPAUSE_READ, iopause, pause_timeout
from svinit.taia import Tai, Taia


def test_timeout_zero_when_deadline_passed():
    stamp = Taia(Tai(100), 5, 0)
    deadline = Taia(Tai(99), 0, 0)
    assert pause_timeout(deadline, stamp) == 0


def test_timeout_equal_adds_slack():
    stamp = Taia(Tai(100), 0, 0)
    assert pause_timeout(stamp, stamp) == 20


def test_timeout_capped():
    stamp = Taia.now()
    deadline = stamp + Taia.from_seconds(3600)
    assert pause_timeout(deadline, stamp) == 1000020


def test_timeout_half_second():
    stamp = Taia(Tai(100), 0, 0)
    deadline = Taia(Tai(100), 500_000_000, 0)
    assert pause_timeout(deadline, stamp) == 520


def test_timeout_grows_with_deadline():
    stamp = Taia(Tai(100))
    values = [pause_timeout(stamp + Taia.from_seconds(n), stamp) for n in range(5)]
    assert values == sorted(values)
    assert len(set(values)) == 5


def test_iopause_reports_readable_pipe():
    r, w = os.pipe()
    try:
        os.write(w, b"x")
        stamp = Taia.now()
        ready = iopause([(r, IOPAUSE_READ)], stamp + Taia.from_seconds(5), stamp)
        assert [fd for fd, _ in ready] == [r]
        assert ready[0][1] & IOPAUSE_READ
    finally:
        os.close(r)
        os.close(w)


def test_iopause_times_out_on_idle_pipe():
    r, w = os.pipe()
    try:
        stamp = Taia.now()
        start = time.monotonic()
        ready = iopause([(r, IOPAUSE_READ)], stamp, stamp)
        assert ready == []
        assert time.monotonic() - start < 1.0
    finally:
        os.close(r)
        os.close(w)


def test_iopause_without_descriptors():
    stamp = Taia.now()
    start = time.monotonic()
    assert iopause([], stamp, stamp) == []
    assert time.monotonic() - start < 1.0