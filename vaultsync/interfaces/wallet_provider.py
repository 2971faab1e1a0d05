"""Wallet provider protocol — EIP-1193 style signer boundary."""
from typing import Any, Protocol


class WalletProvider(Protocol):
    """Abstract interface for an external signer.

    ``eth_accounts`` must not prompt the user; ``eth_requestAccounts`` may.
    Both return a list of account strings, empty when nothing is authorized.
    """

    async def request(self, method: str, params: list[Any] | None = None) -> Any: ...
