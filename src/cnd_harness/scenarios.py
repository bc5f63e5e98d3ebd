# scenarios.py
# Reusable actor setups and peer-discovery checks.
#
# These cover behaviour every cnd build must keep: a swap request addressed
# to the wrong peer id must not connect anyone, and a correctly addressed
# one must make both sides see each other.

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Any

import httpx

from cnd_harness.actor import Actor, Body
from cnd_harness.config import HarnessConfig
from cnd_harness.errors import ConfigurationError

DEFAULT_SETTLE = 1.0

# Deliberately unrelated to any running daemon.
UNKNOWN_PEER_ID = "QmXfGiwNESAFWUvDVJ4NLaKYYVopYdV5HbpDSgz5TSypkb"


@asynccontextmanager
async def actor_test(
    cnd_urls: dict[str, str],
    config: HarnessConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[dict[str, Actor]]:
    """Create one Actor per name for the duration of a test, then close them."""
    if not cnd_urls:
        raise ConfigurationError("At least one actor is needed")

    options: dict[str, Any] = {"transport": transport}
    if config is not None:
        options.update(poll_interval=config.poll_interval, http_timeout=config.http_timeout)

    async with AsyncExitStack() as stack:
        actors = {}
        for name, url in cnd_urls.items():
            actors[name] = await stack.enter_async_context(Actor(name, url, **options))
        yield actors


# ---------------------------------------------------------------------------
# Peer assertions
# ---------------------------------------------------------------------------


async def assert_no_peers(actor: Actor, message: str) -> None:
    peers = await actor.list_peers()
    if peers:
        raise AssertionError(f"{message} (peers: {sorted(peers)})")


async def assert_peers_available(actor: Actor, other: Actor, message: str) -> None:
    peers = await actor.list_peers()
    other_id = await other.peer_id()
    if other_id not in peers:
        raise AssertionError(f"{message} (expected {other_id}, peers: {sorted(peers)})")


async def swap_request_for(counterparty: Actor, request: Body) -> Body:
    """`request` addressed to the counterparty's real peer id and address."""
    addresses = await counterparty.listen_addresses()
    peer = {"peer_id": await counterparty.peer_id()}
    if addresses:
        peer["address_hint"] = addresses[0]
    return {**request, "peer": peer}


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


async def peer_id_mismatch_scenario(
    alice: Actor,
    bob: Actor,
    charlie: Actor,
    request: Body,
    protocol: str = "rfc003",
    settle: float = DEFAULT_SETTLE,
) -> None:
    """Alice dials Bob's address with a peer id that is not Bob's."""
    await assert_no_peers(alice, f"[{alice.name}] Should not see any peers yet")

    addressed = await swap_request_for(bob, request)
    addressed["peer"]["peer_id"] = UNKNOWN_PEER_ID
    await alice.post_swap(addressed, protocol=protocol)

    await asyncio.sleep(settle)

    await assert_no_peers(
        alice, f"[{alice.name}] Should not see any peers because the address did not resolve to the given peer id"
    )
    await assert_no_peers(
        bob, f"[{bob.name}] Should not see {alice.name} because a different peer id was dialed"
    )
    await assert_no_peers(
        charlie, f"[{charlie.name}] Should not see anyone because there was no communication"
    )


async def peer_discovery_scenario(
    alice: Actor,
    charlie: Actor,
    bob: Actor,
    request: Body,
    protocol: str = "rfc003",
    settle: float = DEFAULT_SETTLE,
) -> None:
    """Alice sends a correctly addressed swap request to Charlie; Bob stays out of it."""
    await assert_no_peers(alice, f"[{alice.name}] Should not see any peers yet")

    await alice.post_swap(await swap_request_for(charlie, request), protocol=protocol)

    await asyncio.sleep(settle)

    await assert_no_peers(bob, f"[{bob.name}] Should not see any peer ids")
    await assert_peers_available(
        alice, charlie, f"[{alice.name}] Should see {charlie.name} after sending a swap request"
    )
    await assert_peers_available(
        charlie, alice, f"[{charlie.name}] Should see {alice.name} after receiving a swap request"
    )


def within_tolerance(received: int, expected: int, max_fee: int) -> bool:
    """True if `received` is `expected` less at most `max_fee`."""
    return expected - max_fee <= received <= expected
