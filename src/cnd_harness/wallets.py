# wallets.py
# Capability interface for ledger wallets.
#
# Wallet implementations live outside the harness. Actors only rely on the
# three operations below, keyed by ledger kind.

from typing import Any, Protocol, runtime_checkable

from cnd_harness.errors import ConfigurationError
from cnd_harness.models import LedgerKind


@runtime_checkable
class Wallet(Protocol):
    async def fund(self, quantity: Any) -> Any: ...

    async def get_balance(self) -> Any: ...

    async def get_peers(self) -> list[Any]: ...


class Wallets:
    """Wallet handles of one actor, keyed by ledger kind."""

    def __init__(self, owner: str, wallets: dict[LedgerKind, Wallet] | None = None) -> None:
        self._owner = owner
        self._wallets: dict[LedgerKind, Wallet] = dict(wallets or {})

    def add(self, kind: LedgerKind, wallet: Wallet) -> None:
        self._wallets[kind] = wallet

    def get_wallet_for_ledger(self, kind: LedgerKind | str) -> Wallet:
        kind = LedgerKind(kind)
        try:
            return self._wallets[kind]
        except KeyError:
            raise ConfigurationError(f"{self._owner} has no {kind.value} wallet") from None

    def __contains__(self, kind: object) -> bool:
        return kind in self._wallets

    def __len__(self) -> int:
        return len(self._wallets)
