# actor.py
# One party of a swap, talking to its own cnd daemon over HTTP.
#
# Action methods fire a single request and return. They never wait for the
# swap to progress. Tests synchronise explicitly through poll_until().
#
# Transport failures are never retried. A daemon that stopped answering must
# surface as an error, not as a swap that is slow to converge.

import asyncio
import time
from typing import Any, Callable

import httpx

from cnd_harness import display
from cnd_harness.errors import ActionError, ConfigurationError, PollTimeoutError, TransportError
from cnd_harness.models import ActionKind, LedgerKind
from cnd_harness.wallets import Wallet, Wallets

Body = dict[str, Any]
Predicate = Callable[[Body], bool]


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def _self_href(entry: Body) -> str | None:
    """Self link of a swap entry, in any of the shapes cnd has emitted."""
    links = entry.get("_links")
    if isinstance(links, dict) and isinstance(links.get("self"), dict):
        return links["self"].get("href")
    for link in entry.get("links") or []:
        if "self" in (link.get("rel") or []):
            return link.get("href")
    return entry.get("href")


def _swap_entries(body: Body) -> list[Body]:
    embedded = body.get("_embedded")
    if isinstance(embedded, dict) and "swaps" in embedded:
        return embedded["swaps"]
    if "entities" in body:
        return body["entities"]
    return body.get("swaps") or []


def swap_locations(body: Body) -> list[str]:
    """Locations of the swaps listed in a `GET /swaps` body."""
    return [href for href in map(_self_href, _swap_entries(body)) if href]


def _find_action(swap: Body, kind: ActionKind) -> Body | None:
    for action in swap.get("actions") or []:
        if action.get("name") == kind.value:
            return action
    return None


class Actor:
    """
    A named swap party: a cnd HTTP client plus zero or more wallets.

    Use as an async context manager so the underlying connection pool is
    closed at the end of the test.
    """

    def __init__(
        self,
        name: str,
        cnd_url: str,
        wallets: Wallets | dict[LedgerKind, Wallet] | None = None,
        poll_interval: float = 0.5,
        http_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not name:
            raise ConfigurationError("An actor needs a name")
        if not cnd_url:
            raise ConfigurationError(f"cnd url for {name} is needed")

        self.name = name
        self.cnd_url = cnd_url.rstrip("/")
        self.wallets = wallets if isinstance(wallets, Wallets) else Wallets(name, wallets)
        self._poll_interval = poll_interval
        self._client = httpx.AsyncClient(base_url=self.cnd_url, timeout=http_timeout, transport=transport)

    def __repr__(self) -> str:
        return f"Actor({self.name!r}, {self.cnd_url!r})"

    async def __aenter__(self) -> "Actor":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def wallet(self, kind: LedgerKind | str) -> Wallet:
        return self.wallets.get_wallet_for_ledger(kind)

    # ------------------------------------------------------------------
    # Low-level HTTP
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"[{self.name}] {method} {url} failed: {exc}", cause=exc) from exc

    async def _get_json(self, url: str) -> Body:
        response = await self._request("GET", url)
        try:
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"[{self.name}] GET {url} returned {response.status_code}: {response.text}",
                cause=exc,
            ) from exc
        except ValueError as exc:
            raise TransportError(f"[{self.name}] GET {url} returned invalid JSON", cause=exc) from exc

    # ------------------------------------------------------------------
    # Daemon queries
    # ------------------------------------------------------------------

    async def info(self) -> Body:
        return await self._get_json("/")

    async def peer_id(self) -> str:
        return (await self.info())["id"]

    async def listen_addresses(self) -> list[str]:
        return (await self.info()).get("listen_addresses", [])

    async def list_peers(self) -> set[str]:
        body = await self._get_json("/peers")
        return {peer["id"] for peer in body.get("peers", [])}

    async def list_swaps(self, list_url: str = "/swaps") -> list[str]:
        """Locations of every swap this daemon knows about."""
        return swap_locations(await self._get_json(list_url))

    async def get_swap(self, location: str) -> Body:
        return await self._get_json(location)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll_until(
        self,
        location: str,
        predicate: Predicate,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> Body:
        """
        GET `location` until `predicate` holds and return that body.

        Without a timeout this polls forever. With one, PollTimeoutError
        carries the last body seen. Transport errors abort immediately.
        """
        interval = self._poll_interval if interval is None else interval
        started = time.monotonic()
        display.polling(self.name, location)

        while True:
            body = await self._get_json(location)
            if predicate(body):
                return body

            elapsed = time.monotonic() - started
            if timeout is not None:
                if elapsed >= timeout:
                    raise PollTimeoutError(location, body, elapsed)
                await asyncio.sleep(min(interval, timeout - elapsed))
            else:
                await asyncio.sleep(interval)

    async def poll_until_state(
        self,
        location: str,
        state: Any,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> Body:
        return await self.poll_until(
            location, lambda body: body.get("state") == state, interval=interval, timeout=timeout
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def post_swap(self, body: Body, protocol: str = "rfc003") -> str:
        """Send a swap request and return the location cnd assigned to it."""
        url = f"/swaps/{protocol}"
        display.step_request("POST", url, body)
        response = await self._request("POST", url, json=body)
        if response.is_error:
            raise ActionError(
                f"[{self.name}] POST {url} returned {response.status_code}: {response.text}"
            )

        location = response.headers.get("location")
        if not location:
            raise ActionError(f"[{self.name}] POST {url} did not return a Location header")
        display.swap_created(self.name, location)
        return location

    async def do_action(
        self,
        location: str,
        kind: ActionKind,
        body: Body | None = None,
        query: dict[str, Any] | None = None,
    ) -> Body | None:
        """Invoke the action named `kind` listed on the swap resource."""
        swap = await self._get_json(location)
        action = _find_action(swap, kind)
        if action is None or not action.get("href"):
            offered = [a.get("name") for a in swap.get("actions") or []]
            raise ActionError(
                f"[{self.name}] action {kind.value!r} not offered on {location} (offered: {offered})"
            )

        method = (action.get("method") or "POST").upper()
        href = action["href"]
        display.step_request(method, href, body)

        kwargs: dict[str, Any] = {"params": query}
        if method != "GET" and body is not None:
            kwargs["json"] = body
        response = await self._request(method, href, **kwargs)
        if response.is_error:
            raise ActionError(
                f"[{self.name}] {kind.value} on {location} returned {response.status_code}: {response.text}"
            )

        if "json" in response.headers.get("content-type", "") and response.content:
            return response.json()
        return None

    async def accept(self, location: str, body: Body | None = None) -> Body | None:
        return await self.do_action(location, ActionKind.ACCEPT, body=body)

    async def decline(self, location: str, body: Body | None = None) -> Body | None:
        return await self.do_action(location, ActionKind.DECLINE, body=body)

    async def deploy(self, location: str, query: dict[str, Any] | None = None) -> Body | None:
        return await self.do_action(location, ActionKind.DEPLOY, query=query)

    async def fund(self, location: str, query: dict[str, Any] | None = None) -> Body | None:
        return await self.do_action(location, ActionKind.FUND, query=query)

    async def redeem(self, location: str, query: dict[str, Any] | None = None) -> Body | None:
        return await self.do_action(location, ActionKind.REDEEM, query=query)

    async def refund(self, location: str, query: dict[str, Any] | None = None) -> Body | None:
        return await self.do_action(location, ActionKind.REFUND, query=query)
