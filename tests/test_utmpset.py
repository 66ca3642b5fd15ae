import io
from contextlib import redirect_stderr

import pytest

from svinit.utmpset import (
    DEAD_PROCESS,
    UTMP_SIZE,
    UtmpError,
    UtmpRecord,
    main,
    utmp_logout,
    wtmp_logout,
)


def _write(path, records):
    path.write_bytes(b"".join(r.pack() for r in records))


def _read(path):
    data = path.read_bytes()
    return [UtmpRecord.unpack(data[i:i + UTMP_SIZE]) for i in range(0, len(data), UTMP_SIZE)]


def test_record_size_is_fixed():
    assert len(UtmpRecord().pack()) == 384


def test_record_round_trip():
    record = UtmpRecord(
        entry_type=7, pid=42, line="tty3", id=b"t3\0\0", user="alice",
        host="example.com", session=5, tv_sec=1000, tv_usec=20,
    )
    assert UtmpRecord.unpack(record.pack()) == record


def test_unpack_rejects_short_data():
    with pytest.raises(ValueError):
        UtmpRecord.unpack(b"\0" * (UTMP_SIZE - 1))


def test_utmp_logout_clears_matching_line(tmp_path):
    path = tmp_path / "utmp"
    _write(path, [
        UtmpRecord(entry_type=7, pid=10, line="tty1", user="alice", host="example.com"),
        UtmpRecord(entry_type=7, pid=11, line="tty2", user="bob"),
    ])
    result = utmp_logout("tty1", str(path))
    first, second = _read(path)
    assert first == result
    assert first.user == "" and first.host == ""
    assert first.entry_type == DEAD_PROCESS
    assert first.pid == 10
    assert second.user == "bob" and second.entry_type == 7


def test_utmp_logout_skips_entries_without_user(tmp_path):
    path = tmp_path / "utmp"
    _write(path, [UtmpRecord(line="tty1"), UtmpRecord(line="tty1", user="carol")])
    utmp_logout("tty1", str(path))
    first, second = _read(path)
    assert first.entry_type == 0
    assert second.user == "" and second.entry_type == DEAD_PROCESS


def test_utmp_logout_without_match_raises(tmp_path):
    path = tmp_path / "utmp"
    _write(path, [UtmpRecord(line="tty2", user="bob")])
    with pytest.raises(UtmpError) as info:
        utmp_logout("tty1", str(path))
    assert info.value.prefix == str(path)
    assert _read(path)[0].user == "bob"


def test_utmp_logout_missing_file_raises(tmp_path):
    with pytest.raises(UtmpError):
        utmp_logout("tty1", str(tmp_path / "missing"))


def test_wtmp_logout_appends_records(tmp_path):
    path = tmp_path / "wtmp"
    wtmp_logout("tty1", str(path))
    wtmp_logout("tty2", str(path))
    records = _read(path)
    assert [r.line for r in records] == ["tty1", "tty2"]
    assert all(r.entry_type == DEAD_PROCESS and r.user == "" for r in records)
    assert path.stat().st_size == 2 * UTMP_SIZE


def test_wtmp_logout_truncates_long_line(tmp_path):
    path = tmp_path / "wtmp"
    long_line = "x" * 40
    record = wtmp_logout(long_line, str(path))
    assert record.line == long_line[:30]
    assert _read(path)[0].line == long_line[:30]


def test_main_usage_error():
    err = io.StringIO()
    with redirect_stderr(err):
        assert main([]) == 111
    assert "Usage: utmpset line" in err.getvalue()