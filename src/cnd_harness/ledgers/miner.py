# miner.py
# Keeps a regtest chain moving.
#
# Mines 101 blocks up front (coinbase outputs mature after 100), then one
# block per interval until the task running it is cancelled.

import asyncio
import itertools
from typing import Any

import httpx

from cnd_harness import display
from cnd_harness.errors import TransportError
from cnd_harness.models import BitcoinNodeConfig

MATURITY_BLOCKS = 101


class BitcoinRpc:
    """Minimal bitcoind JSON-RPC client."""

    def __init__(
        self,
        config: BitcoinNodeConfig,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        url = config.rpc_url
        if config.miner_wallet:
            url = f"{url}/wallet/{config.miner_wallet}"
        auth = (config.username, config.password) if config.username else None
        self._ids = itertools.count(1)
        self._client = httpx.AsyncClient(base_url=url, auth=auth, timeout=timeout, transport=transport)

    async def call(self, method: str, *params: Any) -> Any:
        payload = {"jsonrpc": "1.0", "id": next(self._ids), "method": method, "params": list(params)}
        try:
            response = await self._client.post("", json=payload)
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TransportError(f"bitcoind {method} failed: {exc}", cause=exc) from exc

        if data.get("error"):
            raise TransportError(f"bitcoind {method} returned error: {data['error']}")
        return data.get("result")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BitcoinRpc":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


class BitcoinMiner:
    def __init__(self, rpc: BitcoinRpc, interval: float = 1.0) -> None:
        self._rpc = rpc
        self._interval = interval
        self.blocks_mined = 0

    async def generate(self, count: int, address: str) -> list[str]:
        hashes = await self._rpc.call("generatetoaddress", count, address)
        self.blocks_mined += len(hashes)
        return hashes

    async def run(self, rpc_url: str = "") -> None:
        """Mine forever. Start with asyncio.create_task and cancel to stop."""
        display.miner_started(rpc_url)
        address = await self._rpc.call("getnewaddress")
        await self.generate(MATURITY_BLOCKS, address)
        while True:
            await self.generate(1, address)
            await asyncio.sleep(self._interval)
