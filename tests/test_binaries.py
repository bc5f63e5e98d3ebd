import asyncio
import io
import os
import tarfile

import httpx
import pytest

from cnd_harness.binaries import DOWNLOADS, BinaryResolver
from cnd_harness.errors import DownloadError, UnsupportedPlatformError
from cnd_harness.models import LedgerKind


def _tarball(members: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


class CountingTransport(httpx.MockTransport):
    def __init__(self, handler):
        self.calls = 0

        def counted(request):
            self.calls += 1
            return handler(request)

        super().__init__(counted)


# ---------------------------------------------------------------------------
# Overrides + table lookups
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_override_is_returned_verbatim_without_network(harness_config, tmp_path):
    override = tmp_path / "somewhere" / "bitcoind"
    config = harness_config.model_copy(update={"binary_overrides": {LedgerKind.BITCOIN: override}})
    transport = CountingTransport(lambda request: httpx.Response(500))

    resolver = BinaryResolver(config, transport=transport, platform="linux")

    assert await resolver.resolve(LedgerKind.BITCOIN) == override
    assert transport.calls == 0


@pytest.mark.asyncio
async def test_unsupported_platform(harness_config):
    resolver = BinaryResolver(harness_config, platform="win32")

    with pytest.raises(UnsupportedPlatformError, match="win32"):
        await resolver.resolve(LedgerKind.ETHEREUM)


@pytest.mark.asyncio
async def test_unknown_version_is_unsupported(harness_config):
    resolver = BinaryResolver(harness_config, platform="linux")

    with pytest.raises(UnsupportedPlatformError):
        await resolver.resolve(LedgerKind.BITCOIN, "0.1.0")


def test_every_ledger_kind_has_linux_and_darwin_downloads():
    for kind in LedgerKind:
        platforms = {platform for platform, k, _ in DOWNLOADS if k is kind}
        assert platforms == {"linux", "darwin"}


# ---------------------------------------------------------------------------
# Download + cache
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_archive_download_is_extracted_and_cached(harness_config):
    payload = _tarball({"bitcoin-0.17.0/bin/bitcoind": b"#!/bin/sh\n"})
    transport = CountingTransport(lambda request: httpx.Response(200, content=payload))
    resolver = BinaryResolver(harness_config, transport=transport, platform="linux")

    binary = await resolver.resolve(LedgerKind.BITCOIN, "0.17.0")

    assert binary == harness_config.cache_dir / "bitcoin-core-0.17.0" / "bitcoin-0.17.0" / "bin" / "bitcoind"
    assert binary.read_bytes() == b"#!/bin/sh\n"
    assert os.access(binary, os.X_OK)
    assert transport.calls == 1

    # Second resolution is a cache hit.
    assert await resolver.resolve(LedgerKind.BITCOIN, "0.17.0") == binary
    assert transport.calls == 1


@pytest.mark.asyncio
async def test_cache_survives_a_fresh_resolver(harness_config):
    payload = _tarball({"bitcoin-0.17.0/bin/bitcoind": b"bin"})
    first = CountingTransport(lambda request: httpx.Response(200, content=payload))
    await BinaryResolver(harness_config, transport=first, platform="linux").resolve(LedgerKind.BITCOIN)

    second = CountingTransport(lambda request: httpx.Response(500))
    binary = await BinaryResolver(harness_config, transport=second, platform="linux").resolve(LedgerKind.BITCOIN)

    assert binary.exists()
    assert second.calls == 0


@pytest.mark.asyncio
async def test_bare_binary_download_gets_executable_bit(harness_config):
    transport = CountingTransport(lambda request: httpx.Response(200, content=b"\x7fELF"))
    resolver = BinaryResolver(harness_config, transport=transport, platform="darwin")

    binary = await resolver.resolve(LedgerKind.ETHEREUM)

    assert binary == harness_config.cache_dir / "parity-2.7.2" / "parity"
    assert os.access(binary, os.X_OK)


@pytest.mark.asyncio
async def test_concurrent_first_use_downloads_once(harness_config):
    payload = _tarball({"lnd-linux-amd64-v0.9.0-beta/lnd": b"lnd"})
    transport = CountingTransport(lambda request: httpx.Response(200, content=payload))
    resolver = BinaryResolver(harness_config, transport=transport, platform="linux")

    paths = await asyncio.gather(*(resolver.resolve(LedgerKind.LIGHTNING) for _ in range(5)))

    assert len(set(paths)) == 1
    assert paths[0].read_bytes() == b"lnd"
    assert transport.calls == 1


@pytest.mark.asyncio
async def test_http_error_raises_download_error_and_leaves_no_cache(harness_config):
    transport = CountingTransport(lambda request: httpx.Response(404))
    resolver = BinaryResolver(harness_config, transport=transport, platform="linux")

    with pytest.raises(DownloadError):
        await resolver.resolve(LedgerKind.BITCOIN)

    assert not resolver.cache_dir(LedgerKind.BITCOIN, "0.17.0").exists()
    assert list(harness_config.cache_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_network_failure_raises_download_error(harness_config):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    resolver = BinaryResolver(harness_config, transport=httpx.MockTransport(refuse), platform="linux")

    with pytest.raises(DownloadError, match="connection refused"):
        await resolver.resolve(LedgerKind.ETHEREUM)


@pytest.mark.asyncio
async def test_archive_without_expected_binary_is_rejected(harness_config):
    payload = _tarball({"something-else/README": b"hi"})
    transport = CountingTransport(lambda request: httpx.Response(200, content=payload))
    resolver = BinaryResolver(harness_config, transport=transport, platform="linux")

    with pytest.raises(DownloadError, match="did not contain"):
        await resolver.resolve(LedgerKind.BITCOIN)


@pytest.mark.asyncio
async def test_corrupt_archive_raises_download_error(harness_config):
    transport = CountingTransport(lambda request: httpx.Response(200, content=b"not a tarball"))
    resolver = BinaryResolver(harness_config, transport=transport, platform="linux")

    with pytest.raises(DownloadError, match="unpack"):
        await resolver.resolve(LedgerKind.BITCOIN)


@pytest.mark.asyncio
async def test_archive_member_outside_cache_is_refused(harness_config):
    payload = _tarball({"../escaped": b"#!/bin/sh\n", "bitcoin-0.17.0/bin/bitcoind": b"#!/bin/sh\n"})
    transport = CountingTransport(lambda request: httpx.Response(200, content=payload))
    resolver = BinaryResolver(harness_config, transport=transport, platform="linux")

    with pytest.raises(DownloadError, match="unpack"):
        await resolver.resolve(LedgerKind.BITCOIN)

    assert not (harness_config.cache_dir / "escaped").exists()
    assert not resolver.cache_dir(LedgerKind.BITCOIN, "0.17.0").exists()
