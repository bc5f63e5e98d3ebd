# binaries.py
# Locates or downloads node executables.
#
# Resolution order:
#   1. environment override (BITCOIND_BIN, PARITY_BIN, LND_BIN), used verbatim
#   2. content cache keyed by {ledger kind, version}
#   3. download from the fixed table below, unpack, chmod +x
#
# A cache entry only ever appears through an atomic directory rename, so a
# reader never sees a half-extracted archive, even across processes.

import asyncio
import os
import shutil
import stat
import sys
import tarfile
import tempfile
from pathlib import Path

import httpx
from pydantic import BaseModel, ConfigDict

from cnd_harness import display
from cnd_harness.config import HarnessConfig
from cnd_harness.errors import DownloadError, UnsupportedPlatformError
from cnd_harness.models import LedgerKind


class Download(BaseModel):
    """Where a binary comes from and where it lands inside its cache dir."""

    model_config = ConfigDict(frozen=True)

    url: str
    binary: str
    archive: bool = True


PACKAGE_NAMES: dict[LedgerKind, str] = {
    LedgerKind.BITCOIN: "bitcoin-core",
    LedgerKind.ETHEREUM: "parity",
    LedgerKind.LIGHTNING: "lnd",
}

DEFAULT_VERSIONS: dict[LedgerKind, str] = {
    LedgerKind.BITCOIN: "0.17.0",
    LedgerKind.ETHEREUM: "2.7.2",
    LedgerKind.LIGHTNING: "0.9.0-beta",
}

DOWNLOADS: dict[tuple[str, LedgerKind, str], Download] = {
    ("darwin", LedgerKind.BITCOIN, "0.17.0"): Download(
        url="https://bitcoincore.org/bin/bitcoin-core-0.17.0/bitcoin-0.17.0-osx64.tar.gz",
        binary="bitcoin-0.17.0/bin/bitcoind",
    ),
    ("linux", LedgerKind.BITCOIN, "0.17.0"): Download(
        url="https://bitcoincore.org/bin/bitcoin-core-0.17.0/bitcoin-0.17.0-x86_64-linux-gnu.tar.gz",
        binary="bitcoin-0.17.0/bin/bitcoind",
    ),
    ("darwin", LedgerKind.ETHEREUM, "2.7.2"): Download(
        url="https://releases.parity.io/ethereum/v2.7.2/x86_64-apple-darwin/parity",
        binary="parity",
        archive=False,
    ),
    ("linux", LedgerKind.ETHEREUM, "2.7.2"): Download(
        url="https://releases.parity.io/ethereum/v2.7.2/x86_64-unknown-linux-gnu/parity",
        binary="parity",
        archive=False,
    ),
    ("darwin", LedgerKind.LIGHTNING, "0.9.0-beta"): Download(
        url="https://github.com/lightningnetwork/lnd/releases/download/v0.9.0-beta/lnd-darwin-amd64-v0.9.0-beta.tar.gz",
        binary="lnd-darwin-amd64-v0.9.0-beta/lnd",
    ),
    ("linux", LedgerKind.LIGHTNING, "0.9.0-beta"): Download(
        url="https://github.com/lightningnetwork/lnd/releases/download/v0.9.0-beta/lnd-linux-amd64-v0.9.0-beta.tar.gz",
        binary="lnd-linux-amd64-v0.9.0-beta/lnd",
    ),
}


def current_platform() -> str:
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


def _make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def _unpack(payload: Path, target: Path) -> None:
    with tarfile.open(payload, "r:*") as archive:
        archive.extractall(target, filter="data")


class BinaryResolver:
    """
    Resolves the executable for a ledger kind and version.

    Share one resolver between concurrently starting instances: downloads of
    the same {kind, version} are serialised behind a per-key lock so the
    second caller becomes a cache hit.
    """

    def __init__(
        self,
        config: HarnessConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        platform: str | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._platform = platform or current_platform()
        self._locks: dict[tuple[LedgerKind, str], asyncio.Lock] = {}

    def cache_dir(self, kind: LedgerKind, version: str) -> Path:
        return self._config.cache_dir / f"{PACKAGE_NAMES[kind]}-{version}"

    def lookup(self, kind: LedgerKind, version: str) -> Download:
        try:
            return DOWNLOADS[(self._platform, kind, version)]
        except KeyError:
            raise UnsupportedPlatformError(
                f"No {PACKAGE_NAMES[kind]} {version} download for platform {self._platform!r}"
            ) from None

    async def resolve(self, kind: LedgerKind, version: str | None = None) -> Path:
        version = version or DEFAULT_VERSIONS[kind]
        name = PACKAGE_NAMES[kind]

        override = self._config.binary_overrides.get(kind)
        if override:
            display.binary_override(name, override)
            return override

        download = self.lookup(kind, version)
        cache_dir = self.cache_dir(kind, version)
        binary = cache_dir / download.binary

        if binary.exists():
            display.binary_cached(name, binary)
            return binary

        lock = self._locks.setdefault((kind, version), asyncio.Lock())
        async with lock:
            # Another coroutine may have finished the download while we waited.
            if binary.exists():
                display.binary_cached(name, binary)
                return binary

            display.binary_downloading(name, download.url)
            await self._download(download, cache_dir)
            display.binary_downloaded(name, binary)

        return binary

    # ------------------------------------------------------------------
    # Download + atomic install
    # ------------------------------------------------------------------

    async def _fetch(self, url: str, dest: Path) -> None:
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                follow_redirects=True,
                timeout=httpx.Timeout(self._config.http_timeout, read=None),
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with open(dest, "wb") as fh:
                        async for chunk in response.aiter_bytes():
                            fh.write(chunk)
        except httpx.HTTPError as exc:
            raise DownloadError(f"Failed to download {url}: {exc}") from exc

    async def _download(self, download: Download, cache_dir: Path) -> None:
        cache_dir.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{cache_dir.name}-", dir=cache_dir.parent))
        try:
            if download.archive:
                payload = staging.parent / f"{staging.name}.download"
                try:
                    await self._fetch(download.url, payload)
                    await asyncio.to_thread(_unpack, payload, staging)
                except tarfile.TarError as exc:
                    raise DownloadError(f"Failed to unpack {download.url}: {exc}") from exc
                finally:
                    payload.unlink(missing_ok=True)
            else:
                await self._fetch(download.url, staging / download.binary)

            staged_binary = staging / download.binary
            if not staged_binary.exists():
                raise DownloadError(f"{download.url} did not contain {download.binary}")
            _make_executable(staged_binary)

            # A directory without the binary is a leftover, not a cache entry.
            if cache_dir.exists() and not (cache_dir / download.binary).exists():
                shutil.rmtree(cache_dir, ignore_errors=True)
            try:
                os.replace(staging, cache_dir)
            except OSError as exc:
                # Another process installed it first.
                if not (cache_dir / download.binary).exists():
                    raise DownloadError(f"Could not install into {cache_dir}: {exc}") from exc
        finally:
            shutil.rmtree(staging, ignore_errors=True)
