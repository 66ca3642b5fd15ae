import io
from unittest import mock

import pytest

from svinit.logon import LogonError, main, read_logname, strip_dev


@pytest.mark.parametrize(
    "given, expected",
    [("/dev/tty1", "tty1"), ("tty2", "tty2"), ("/devices/x", "/devices/x")],
)
def test_strip_dev(given, expected):
    assert strip_dev(given) == expected


def test_read_logname_returns_name_and_shows_issue(tmp_path):
    issue = tmp_path / "issue"
    issue.write_text("Welcome\n")
    out = io.StringIO()
    name = read_logname(io.StringIO("alice\n"), out, str(issue))
    assert name == "alice"
    assert out.getvalue() == "\nWelcome\nLogin: "


def test_read_logname_without_issue_file(tmp_path):
    out = io.StringIO()
    assert read_logname(io.StringIO("bob\r"), out, str(tmp_path / "none")) == "bob"
    assert out.getvalue() == "\nLogin: "


def test_read_logname_prompts_again_on_empty_lines(tmp_path):
    out = io.StringIO()
    name = read_logname(io.StringIO("\n\ncarol\n"), out, str(tmp_path / "none"))
    assert name == "carol"
    assert out.getvalue().count("Login: ") == 3


def test_read_logname_rejects_control_characters(tmp_path):
    with pytest.raises(LogonError, match="invalid character 0x7 in login name"):
        read_logname(io.StringIO("ab\x07c\n"), io.StringIO(), str(tmp_path / "none"))


def test_read_logname_rejects_long_names(tmp_path):
    with pytest.raises(LogonError, match="too long login name"):
        read_logname(io.StringIO("a" * 60 + "\n"), io.StringIO(), str(tmp_path / "none"))


def test_read_logname_accepts_longest_name(tmp_path):
    longest = "z" * 39
    assert read_logname(io.StringIO(longest + "\n"), io.StringIO(), str(tmp_path / "none")) == longest


def test_read_logname_end_of_input(tmp_path):
    with pytest.raises(EOFError):
        read_logname(io.StringIO("dave"), io.StringIO(), str(tmp_path / "none"))


@mock.patch("time.sleep")
@mock.patch("syslog.syslog")
@mock.patch("syslog.openlog")
def test_main_usage_error(openlog, log, sleep):
    assert main([]) == 1
    message = log.call_args[0][1]
    assert message == "Usage: logon <tty name>"
    sleep.assert_called_once_with(5)