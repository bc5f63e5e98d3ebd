# environment.py
# Stands up the ledger nodes a test run needs and tears them down again.
#
# Setup sweeps PID files left by an earlier, possibly crashed, run before
# starting anything. Teardown always sweeps again, whatever the outcome of
# the scenarios in between.

import asyncio
import json
from pathlib import Path
from typing import Any, Iterable

from cnd_harness import display
from cnd_harness.binaries import BinaryResolver
from cnd_harness.config import HarnessConfig
from cnd_harness.errors import ConfigurationError, HarnessError
from cnd_harness.ledgers.base import LedgerInstance
from cnd_harness.ledgers.bitcoind import BitcoindInstance
from cnd_harness.ledgers.lnd import LndInstance
from cnd_harness.ledgers.miner import BitcoinMiner, BitcoinRpc
from cnd_harness.ledgers.parity import ParityInstance
from cnd_harness.models import BitcoinNodeConfig, LedgerConfig, LedgerKind
from cnd_harness.ports import PortAllocator
from cnd_harness.registry import NodeRegistry, kill_all


class HarnessEnvironment:
    """
    Async context manager owning every node process of one run.

    Example:
        async with HarnessEnvironment(config, ["bitcoin", "ethereum"]) as env:
            btc = env.ledgers_config["bitcoin"]
    """

    def __init__(
        self,
        config: HarnessConfig,
        ledgers: Iterable[LedgerKind | str],
        resolver: BinaryResolver | None = None,
        ports: PortAllocator | None = None,
        mine: bool = True,
        config_file: Path | None = None,
    ) -> None:
        self.config = config
        self.ledgers = [LedgerKind(kind) for kind in ledgers]
        if LedgerKind.LIGHTNING in self.ledgers and LedgerKind.BITCOIN not in self.ledgers:
            raise ConfigurationError("lnd needs a bitcoin ledger to run against")

        self.resolver = resolver or BinaryResolver(config)
        self.ports = ports or PortAllocator()
        self.registry = NodeRegistry(config.locks_dir, config.log_dir)
        self.mine = mine
        self.config_file = config_file

        self.instances: dict[LedgerKind, LedgerInstance] = {}
        self.ledgers_config: dict[str, LedgerConfig] = {}
        self._miner_task: asyncio.Task | None = None
        self._miner_rpc: BitcoinRpc | None = None

    async def __aenter__(self) -> "HarnessEnvironment":
        try:
            await self.start()
        except BaseException:
            try:
                await self.stop()
            except HarnessError as cleanup:
                display.cleanup_failed(str(cleanup))
            raise
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def _instance(self, kind: LedgerKind, **extra: Any) -> LedgerInstance:
        classes = {
            LedgerKind.BITCOIN: BitcoindInstance,
            LedgerKind.ETHEREUM: ParityInstance,
            LedgerKind.LIGHTNING: LndInstance,
        }
        instance = classes[kind](self.config, self.registry, self.ports, self.resolver, **extra)
        self.instances[kind] = instance
        return instance

    async def _start_all(self, instances: list[LedgerInstance]) -> None:
        results = await asyncio.gather(*(i.start() for i in instances), return_exceptions=True)
        for instance, result in zip(instances, results):
            if isinstance(result, BaseException):
                raise result
            self.ledgers_config[instance.kind.value] = result

    async def start(self) -> dict[str, LedgerConfig]:
        display.environment_start([kind.value for kind in self.ledgers])
        kill_all(self.config.locks_dir)

        first_wave = [self._instance(k) for k in self.ledgers if k is not LedgerKind.LIGHTNING]
        await self._start_all(first_wave)

        if LedgerKind.LIGHTNING in self.ledgers:
            bitcoind = self.ledgers_config[LedgerKind.BITCOIN.value]
            await self._start_all([self._instance(LedgerKind.LIGHTNING, bitcoind=bitcoind)])

        bitcoin = self.ledgers_config.get(LedgerKind.BITCOIN.value)
        if self.mine and isinstance(bitcoin, BitcoinNodeConfig):
            self._miner_rpc = BitcoinRpc(bitcoin, timeout=self.config.http_timeout)
            miner = BitcoinMiner(self._miner_rpc)
            self._miner_task = asyncio.create_task(miner.run(bitcoin.rpc_url), name="bitcoin-miner")

        if self.config_file is not None:
            self.write_config_file(self.config_file)

        display.ledgers_ready(self.ledgers_config)
        return self.ledgers_config

    def write_config_file(self, path: Path) -> None:
        """Dump the connection descriptors as JSON for out-of-process tools."""
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {kind: config.model_dump() for kind, config in self.ledgers_config.items()}
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """
        Stop the miner and every node, then sweep the locks directory.

        Raises HarnessError after the sweep if a node could not be stopped or
        the miner had crashed.
        """
        display.environment_stop()
        failures: list[str] = []

        if self._miner_task is not None:
            self._miner_task.cancel()
            try:
                await self._miner_task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                failures.append(f"miner: {exc}")
            self._miner_task = None
        if self._miner_rpc is not None:
            await self._miner_rpc.aclose()
            self._miner_rpc = None

        # lnd goes down before the bitcoind it depends on.
        for kind in sorted(self.instances, key=lambda k: k is not LedgerKind.LIGHTNING):
            try:
                await self.instances[kind].stop()
            except Exception as exc:
                failures.append(f"{kind.value}: {exc}")

        self.registry.sweep()

        if failures:
            raise HarnessError(f"Cleanup did not complete: {'; '.join(failures)}")
