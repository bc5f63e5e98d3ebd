# log_watcher.py
# Tails a node log until a readiness marker shows up.
#
# Node startup happens once per test, so a plain poll loop over the file is
# good enough. Only the unread tail is read on each tick.

import asyncio
import time
from pathlib import Path

from cnd_harness.errors import ReadinessTimeoutError

POLL_INTERVAL = 0.2


async def wait_for_marker(
    log_path: Path,
    marker: str,
    timeout: float,
    poll_interval: float = POLL_INTERVAL,
    offset: int = 0,
) -> None:
    """
    Return once `marker` appears in `log_path` after byte `offset`.

    A missing file is treated as empty; nodes often create their log a moment
    after the process starts. Raises ReadinessTimeoutError after `timeout`.
    """
    deadline = time.monotonic() + timeout
    # Keep enough of the previous chunk to match a marker split across reads.
    carry = ""

    while True:
        try:
            with open(log_path, "r", encoding="utf-8", errors="replace") as fh:
                fh.seek(offset)
                chunk = fh.read()
                offset = fh.tell()
        except FileNotFoundError:
            chunk = ""

        if chunk:
            window = carry + chunk
            if marker in window:
                return
            carry = window[-(len(marker) - 1):] if len(marker) > 1 else ""

        if time.monotonic() >= deadline:
            raise ReadinessTimeoutError(
                f"{marker!r} did not appear in {log_path} within {timeout}s"
            )
        await asyncio.sleep(poll_interval)
