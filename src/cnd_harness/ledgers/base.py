# base.py
# Lifecycle shared by every locally spawned ledger node.
#
#   NOT_STARTED → STARTING → RUNNING → STOPPED
#
# start() runs its steps strictly in order. Subclasses only supply the
# ledger-specific pieces: ports, config file, command line, readiness marker,
# credentials, and the connection descriptor.

import asyncio
import shutil
import subprocess
from pathlib import Path
from typing import IO

from cnd_harness import display
from cnd_harness.binaries import BinaryResolver
from cnd_harness.config import HarnessConfig
from cnd_harness.errors import (
    HarnessError,
    NotReadyError,
    ReadinessTimeoutError,
    StartupTimeoutError,
)
from cnd_harness.log_watcher import wait_for_marker
from cnd_harness.models import InstanceState, LedgerConfig, LedgerKind
from cnd_harness.ports import PortAllocator
from cnd_harness.registry import NodeRegistry, write_pid_file


class LedgerInstance:
    """One external node process, owned exclusively by this object."""

    kind: LedgerKind
    default_name: str = "node"
    readiness_marker: str = ""

    def __init__(
        self,
        config: HarnessConfig,
        registry: NodeRegistry,
        ports: PortAllocator,
        resolver: BinaryResolver,
        name: str | None = None,
        version: str | None = None,
    ) -> None:
        self.harness_config = config
        self.name = name or self.default_name
        self.version = version
        self._ports = ports
        self._resolver = resolver

        self.data_dir: Path = registry.data_dir(self.name)
        self.pid_file: Path = registry.pid_file(self.name)
        self.log_path: Path = registry.log_file(self.name)

        self.state = InstanceState.NOT_STARTED
        self.binary: Path | None = None
        self.process: asyncio.subprocess.Process | None = None
        self._log_fh: IO[bytes] | None = None
        self._exit_observer: asyncio.Task | None = None
        self._ledger_config: LedgerConfig | None = None

    # ------------------------------------------------------------------
    # Ledger-specific hooks
    # ------------------------------------------------------------------

    async def allocate_ports(self) -> None:
        raise NotImplementedError

    def write_config_file(self) -> None:
        raise NotImplementedError

    def arguments(self) -> list[str]:
        raise NotImplementedError

    def build_config(self) -> LedgerConfig:
        raise NotImplementedError

    def readiness_log(self) -> Path:
        """Log file the readiness marker is written to."""
        return self.log_path

    def working_dir(self) -> Path:
        return self.data_dir

    def extract_credentials(self) -> None:
        """Read credentials the node writes once it is ready. Nothing by default."""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> LedgerConfig:
        if self.state is not InstanceState.NOT_STARTED:
            raise HarnessError(f"{self.name} was already started (state: {self.state.value})")
        self.state = InstanceState.STARTING

        self.binary = await self._resolver.resolve(self.kind, self.version)
        await self.allocate_ports()
        # Nothing from an earlier run may survive into this one.
        shutil.rmtree(self.data_dir, ignore_errors=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.write_config_file()

        # Logs outlive runs; only what this process writes counts.
        readiness_log = self.readiness_log()
        offset = readiness_log.stat().st_size if readiness_log.exists() else 0

        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._log_fh = open(self.log_path, "ab")
        self.process = await asyncio.create_subprocess_exec(
            str(self.binary),
            *self.arguments(),
            cwd=self.working_dir(),
            stdin=subprocess.DEVNULL,
            stdout=self._log_fh,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
        display.instance_spawned(self.name, self.process.pid, self.log_path)
        self._exit_observer = asyncio.create_task(self._observe_exit())

        display.instance_waiting(self.name, self.readiness_marker)
        try:
            await wait_for_marker(
                readiness_log,
                self.readiness_marker,
                self.harness_config.startup_timeout,
                offset=offset,
            )
        except ReadinessTimeoutError as exc:
            display.instance_startup_failed(self.name, str(exc))
            raise StartupTimeoutError(f"{self.name} did not become ready: {exc}") from exc

        self.extract_credentials()

        if self.process.returncode is not None:
            raise HarnessError(
                f"{self.name} exited with code {self.process.returncode} right after becoming ready"
            )
        write_pid_file(self.pid_file, self.process.pid)
        display.pid_file_written(self.pid_file, self.process.pid)

        self._ledger_config = self.build_config()
        self.state = InstanceState.RUNNING
        display.instance_ready(self.name, self._ledger_config)
        return self._ledger_config

    async def _observe_exit(self) -> None:
        """Diagnostics only. Startup never waits on this."""
        returncode = await self.process.wait()
        signal = -returncode if returncode < 0 else None
        display.instance_exited(self.name, returncode, signal)
        if self.state is InstanceState.RUNNING:
            self.state = InstanceState.STOPPED
        if self._log_fh is not None:
            self._log_fh.close()
            self._log_fh = None

    async def stop(self, timeout: float = 10.0) -> None:
        """Terminate the process, escalating to SIGKILL after `timeout`."""
        if self.process is None:
            return
        if self.process.returncode is None:
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self.process.wait(), timeout)
            except asyncio.TimeoutError:
                self.process.kill()
                await self.process.wait()
        if self._exit_observer is not None:
            await self._exit_observer
        self.state = InstanceState.STOPPED

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> LedgerConfig:
        if self.state is not InstanceState.RUNNING or self._ledger_config is None:
            raise NotReadyError(f"{self.name} is not running (state: {self.state.value})")
        return self._ledger_config

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process else None
