import os
import signal
import subprocess

import pytest

from cnd_harness.registry import NodeRegistry, kill_all, process_exists, write_pid_file


@pytest.fixture
def sleeper():
    proc = subprocess.Popen(["sleep", "30"])
    yield proc
    if proc.poll() is None:
        proc.kill()
        proc.wait()


def _dead_pid():
    proc = subprocess.Popen(["true"])
    proc.wait()
    return proc.pid


# ---------------------------------------------------------------------------
# process_exists / write_pid_file
# ---------------------------------------------------------------------------


def test_process_exists_for_self_and_dead_pid():
    assert process_exists(os.getpid()) is True
    assert process_exists(_dead_pid()) is False
    assert process_exists(0) is False
    assert process_exists(-5) is False


def test_write_pid_file_creates_parents(tmp_path):
    pid_file = tmp_path / "a" / "b" / "node.pid"
    write_pid_file(pid_file, 4242)
    assert pid_file.read_text() == "4242"


# ---------------------------------------------------------------------------
# kill_all
# ---------------------------------------------------------------------------


def test_kill_all_on_missing_dir_is_a_noop(tmp_path):
    kill_all(tmp_path / "does-not-exist")


def test_kill_all_on_empty_dir_removes_it(tmp_path):
    locks = tmp_path / "locks"
    locks.mkdir()

    kill_all(locks)

    assert not locks.exists()


def test_kill_all_terminates_live_process_and_removes_tree(tmp_path, sleeper):
    locks = tmp_path / "locks"
    write_pid_file(locks / "bitcoind" / "bitcoind.pid", sleeper.pid)
    (locks / "bitcoind" / "data").mkdir()

    kill_all(locks)

    assert sleeper.wait(timeout=5) == -signal.SIGTERM
    assert not locks.exists()


def test_kill_all_tolerates_stale_and_malformed_pid_files(tmp_path, sleeper):
    locks = tmp_path / "locks"
    write_pid_file(locks / "stale.pid", _dead_pid())
    (locks / "garbage.pid").write_text("not a pid")
    (locks / "empty.pid").write_text("")
    write_pid_file(locks / "nested" / "deep" / "live.pid", sleeper.pid)

    kill_all(locks)

    assert sleeper.wait(timeout=5) == -signal.SIGTERM
    assert not locks.exists()


def test_kill_all_ignores_non_pid_files(tmp_path, sleeper):
    locks = tmp_path / "locks"
    locks.mkdir()
    (locks / "notes.txt").write_text(str(sleeper.pid))

    kill_all(locks)

    assert sleeper.poll() is None
    assert not locks.exists()


# ---------------------------------------------------------------------------
# NodeRegistry
# ---------------------------------------------------------------------------


def test_registry_nests_everything_under_locks_dir(tmp_path):
    registry = NodeRegistry(tmp_path / "locks")

    assert registry.data_dir("parity") == tmp_path / "locks" / "parity" / "data"
    assert registry.data_dir("parity").is_dir()
    assert registry.pid_file("parity") == tmp_path / "locks" / "parity" / "parity.pid"
    assert registry.log_file("parity") == tmp_path / "locks" / "parity" / "parity.log"


def test_registry_keeps_logs_outside_locks_dir_when_given_log_dir(tmp_path):
    registry = NodeRegistry(tmp_path / "locks", tmp_path / "log")
    log_file = registry.log_file("lnd")
    log_file.write_text("kept")

    registry.sweep()

    assert log_file == tmp_path / "log" / "lnd.log"
    assert log_file.read_text() == "kept"
    assert not (tmp_path / "locks").exists()
