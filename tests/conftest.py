import json
import stat
import textwrap
from pathlib import Path

import httpx
import pytest

from cnd_harness.config import HarnessConfig

# ---------------------------------------------------------------------------
# Harness config + fake node binaries
# ---------------------------------------------------------------------------


@pytest.fixture
def harness_config(tmp_path):
    return HarnessConfig(
        project_root=tmp_path / "project",
        locks_dir=tmp_path / "locks",
        log_dir=tmp_path / "log",
        cache_dir=tmp_path / "cache",
        startup_timeout=5.0,
        poll_interval=0.01,
        http_timeout=2.0,
    )


@pytest.fixture
def write_script(tmp_path):
    """Write an executable shell script standing in for a node binary."""

    def _write(name: str, body: str) -> Path:
        path = tmp_path / "bin" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("#!/bin/sh\n" + textwrap.dedent(body))
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _write


FAKE_BITCOIND = """\
DATADIR="${1#-datadir=}"
mkdir -p "$DATADIR/regtest"
printf '__cookie__:s3cret' > "$DATADIR/regtest/.cookie"
echo "init message: Done loading" >> "$DATADIR/regtest/debug.log"
exec sleep 30
"""


@pytest.fixture
def fake_bitcoind(write_script):
    return write_script("bitcoind", FAKE_BITCOIND)


@pytest.fixture
def fake_parity(write_script, harness_config):
    base = harness_config.project_root / "blockchain_nodes/parity/home/parity"
    share = base / ".local/share/io.parity.ethereum"
    share.mkdir(parents=True)
    (share / "config.toml").write_text("[parity]\n")
    (share / "chain.json").write_text("{}")
    (base / "authorities").mkdir()
    (base / "authorities" / "authority.pwd").write_text("pwd")
    return write_script(
        "parity",
        """\
        echo "Starting Parity-Ethereum"
        echo "Public node URL: enode://abc@127.0.0.1:30303"
        exec sleep 30
        """,
    )


# ---------------------------------------------------------------------------
# Fake cnd daemons
# ---------------------------------------------------------------------------


class SwapWorld:
    """Shared swap state two fake daemons report from their own side."""

    def __init__(self):
        self.communication = "Sent"
        self.alpha = "NotDeployed"
        self.beta = "NotDeployed"
        self.calls: list[tuple[str, str]] = []

    def apply(self, role: str, action: str) -> None:
        self.calls.append((role, action))
        if action == "accept":
            self.communication = "Accepted"
        elif action == "deploy":
            self.alpha = "Deployed"
        elif action == "fund":
            if role == "alice":
                self.alpha = "Funded"
            else:
                self.beta = "Funded"
        elif action == "redeem":
            if role == "alice":
                self.beta = "Redeemed"
            else:
                self.alpha = "Redeemed"

    def state(self) -> dict:
        return {
            "communication": {"status": self.communication},
            "alpha_ledger": {"status": self.alpha},
            "beta_ledger": {"status": self.beta},
        }


class FakeCnd:
    """
    In-memory cnd HTTP API served through httpx.MockTransport.

    Offers every action named in `offered` on its single swap.
    """

    def __init__(self, name, world=None, offered=("accept", "deploy", "fund", "redeem")):
        self.name = name
        self.world = world or SwapWorld()
        self.offered = list(offered)
        self.peers: set[str] = set()
        self.swap_id = None
        self.posted: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.action_requests: list[httpx.Request] = []
        self.gate = None
        self.counterparties: list["FakeCnd"] = []

    @property
    def peer_id(self):
        return f"Qm{self.name}"

    @property
    def address(self):
        return f"/ip4/127.0.0.1/tcp/{abs(hash(self.name)) % 10000}"

    def swap_body(self):
        location = f"/swaps/rfc003/{self.swap_id}"
        return {
            "id": self.swap_id,
            "role": self.name,
            "state": self.world.state(),
            "actions": [
                {"name": name, "href": f"{location}/{name}", "method": "POST"}
                for name in self.offered
            ],
            "unknown_field": {"kept": True},
        }

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "GET" and path == "/":
            return httpx.Response(200, json={"id": self.peer_id, "listen_addresses": [self.address]})
        if request.method == "GET" and path == "/peers":
            return httpx.Response(200, json={"peers": [{"id": p} for p in sorted(self.peers)]})
        if request.method == "POST" and path.startswith("/swaps/"):
            if path.count("/") == 2:
                self.posted.append(json.loads(request.content))
                self.swap_id = "abc123"
                for other in self.counterparties:
                    other.swap_id = self.swap_id
                return httpx.Response(201, headers={"Location": f"/swaps/rfc003/{self.swap_id}"})
            action = path.rsplit("/", 1)[-1]
            self.action_requests.append(request)
            if action == "fund" and self.gate is not None:
                await self.gate.wait()
            self.world.apply(self.name, action)
            return httpx.Response(200, json={"done": action})
        if request.method == "GET" and path == "/swaps":
            if self.swap_id is None:
                return httpx.Response(200, json={"_embedded": {"swaps": []}})
            entry = {"_links": {"self": {"href": f"/swaps/rfc003/{self.swap_id}"}}}
            return httpx.Response(200, json={"_embedded": {"swaps": [entry]}})
        if request.method == "GET" and self.swap_id and path == f"/swaps/rfc003/{self.swap_id}":
            return httpx.Response(200, json=self.swap_body())
        return httpx.Response(404, json={"title": "not found"})

    def transport(self):
        return httpx.MockTransport(self.handler)


@pytest.fixture
def swap_world():
    return SwapWorld()


@pytest.fixture
def fake_cnd():
    return FakeCnd
