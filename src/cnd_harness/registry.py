# registry.py
# PID-file bookkeeping and the kill switch.
#
# A PID file is written only once a node is confirmed alive, and it is the
# only record of that node that survives the harness crashing. The next run
# sweeps the locks directory before starting anything new.
#
# Cleanup is best-effort: nothing in this module raises on a stale, missing
# or malformed PID, so teardown never masks the real test outcome.

import os
import shutil
import signal
from pathlib import Path

from cnd_harness import display


def process_exists(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Alive, but owned by someone else.
        return True
    except OSError:
        return False
    return True


def write_pid_file(path: Path, pid: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(pid), encoding="utf-8")


def _read_pid(pid_file: Path) -> int | None:
    try:
        content = pid_file.read_text(encoding="utf-8")
    except OSError:
        # Deleted between the scan and the read.
        return None
    try:
        return int(content.strip())
    except ValueError:
        display.kill_malformed_pid(pid_file, content)
        return None


def kill_all(locks_dir: Path) -> None:
    """
    SIGTERM every live process named by a *.pid file under `locks_dir`, then
    delete `locks_dir` together with any data directories nested in it.
    """
    locks_dir = Path(locks_dir)

    try:
        pid_files = sorted(locks_dir.rglob("*.pid"))
    except OSError:
        pid_files = []

    for pid_file in pid_files:
        pid = _read_pid(pid_file)
        if pid is None or not process_exists(pid):
            continue

        display.kill_signal_sent(pid_file, pid)
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            continue
        except OSError as exc:
            display.kill_failed(pid_file, str(exc))

    if locks_dir.exists():
        shutil.rmtree(locks_dir, ignore_errors=True)
        display.locks_removed(locks_dir)


class NodeRegistry:
    """
    Hands out per-instance paths nested under one locks directory.

    Everything an instance writes (data dir, log, PID file) lives under
    `locks_dir/<name>/`, so `sweep()` removes all of it in one go. Logs go
    to `log_dir` instead when one is given, so they outlive the sweep.
    """

    def __init__(self, locks_dir: Path, log_dir: Path | None = None) -> None:
        self.locks_dir = Path(locks_dir)
        self.log_dir = Path(log_dir) if log_dir else None

    def instance_dir(self, name: str) -> Path:
        path = self.locks_dir / name
        path.mkdir(parents=True, exist_ok=True)
        return path

    def data_dir(self, name: str) -> Path:
        path = self.instance_dir(name) / "data"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def pid_file(self, name: str) -> Path:
        return self.instance_dir(name) / f"{name}.pid"

    def log_file(self, name: str) -> Path:
        if self.log_dir is None:
            return self.instance_dir(name) / f"{name}.log"
        self.log_dir.mkdir(parents=True, exist_ok=True)
        return self.log_dir / f"{name}.log"

    def sweep(self) -> None:
        kill_all(self.locks_dir)
