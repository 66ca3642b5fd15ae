import os
import time

import pytest

from svinit.runsvdir import RunSvDir, main


@pytest.fixture
def runsv_script(tmp_path):
    path = tmp_path / "runsv.sh"
    path.write_text("#!/bin/sh\nexit 0\n")
    path.chmod(0o755)
    return os.fspath(path)


@pytest.fixture
def svdir(tmp_path):
    d = tmp_path / "sv"
    d.mkdir()
    (d / "a").mkdir()
    (d / "b").mkdir()
    (d / ".hidden").mkdir()
    (d / "plain").write_text("x")
    return d


def _reap_all(rd):
    limit = time.monotonic() + 10
    while any(e.pid for e in rd.services.values()) and time.monotonic() < limit:
        rd.collect()
        time.sleep(0.05)


def test_scan_starts_directories_only(svdir, runsv_script):
    rd = RunSvDir(svdir, runsv_script)
    rd.check = False
    rd.scan()
    assert len(rd.services) == 2
    assert all(e.pid > 0 for e in rd.services.values())
    assert rd.check is True
    _reap_all(rd)


def test_collect_clears_pids(svdir, runsv_script):
    rd = RunSvDir(svdir, runsv_script)
    rd.scan()
    _reap_all(rd)
    assert all(e.pid == 0 for e in rd.services.values())


def test_rescan_restarts_and_drops_removed(svdir, runsv_script):
    rd = RunSvDir(svdir, runsv_script)
    rd.scan()
    _reap_all(rd)
    (svdir / "a").rmdir()
    rd.check = False
    rd.scan()
    assert len(rd.services) == 1
    assert rd.check is True
    assert all(e.pid > 0 for e in rd.services.values())
    _reap_all(rd)


def test_scan_missing_directory_sets_check(tmp_path, runsv_script):
    rd = RunSvDir(tmp_path / "missing", runsv_script)
    rd.check = False
    rd.scan()
    assert rd.services == {}
    assert rd.check is True


def test_run_missing_directory(tmp_path, runsv_script):
    assert RunSvDir(tmp_path / "missing", runsv_script).run() == 100


def test_main_missing_directory(tmp_path):
    assert main([os.fspath(tmp_path / "missing")]) == 100