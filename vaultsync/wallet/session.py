"""Wallet connection state reconciled against an external signer."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from eth_utils import is_address, to_checksum_address

from ..config import ChainParams, WalletConfig
from ..errors import ConnectionAbandoned, ProviderError, ProviderUnavailable, WalletError
from ..interfaces.wallet_provider import WalletProvider
from ..models import WalletIdentity, WalletState
from .provider import UNRECOGNIZED_CHAIN_CODE, RpcError

logger = logging.getLogger(__name__)

ProviderDetector = Callable[[], Awaitable["WalletProvider | None"]]
SessionListener = Callable[["WalletSession"], None]
Sleep = Callable[[float], Awaitable[Any]]


def normalize_address(raw: Any) -> str:
    """Return the EIP-55 checksummed form of ``raw``.

    Raises:
        ProviderError: if ``raw`` is not a 20-byte hex address.
    """
    if not isinstance(raw, str) or not is_address(raw):
        raise ProviderError(f"Provider returned an invalid address: {raw!r}")
    return to_checksum_address(raw)


def _parse_accounts(result: Any) -> list[str]:
    if not isinstance(result, list):
        raise ProviderError(f"Expected an account list, got {result!r}")
    return [normalize_address(a) for a in result]


class WalletSession:
    """Single source of truth for the connected address.

    States: DISCONNECTED -> CONNECTING -> CONNECTED(address) | ERROR(message).
    While CONNECTED a poll task re-reads ``eth_accounts`` every
    ``poll_interval_seconds``; an empty list disconnects, a different first
    account replaces the address in place.
    """

    def __init__(
        self,
        detector: ProviderDetector,
        config: WalletConfig | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._detector = detector
        self._config = config or WalletConfig()
        self._sleep = sleep

        self._state = WalletState.DISCONNECTED
        self._identity = WalletIdentity.disconnected()
        self._provider: WalletProvider | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._attempt = 0
        self._listeners: list[SessionListener] = []
        self.error: str | None = None

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> WalletState:
        return self._state

    @property
    def identity(self) -> WalletIdentity:
        return self._identity

    @property
    def address(self) -> str | None:
        return self._identity.address

    @property
    def is_connected(self) -> bool:
        return self._state is WalletState.CONNECTED

    @property
    def is_loading(self) -> bool:
        return self._state is WalletState.CONNECTING

    @property
    def provider(self) -> WalletProvider | None:
        """Read-capable handle to the signer while connected."""
        return self._provider

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def add_listener(self, callback: SessionListener) -> Callable[[], None]:
        """Call ``callback(session)`` after every state or address change."""
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception:
                logger.exception("Wallet session listener failed")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _set_connected(self, provider: WalletProvider, address: str) -> None:
        self._provider = provider
        self._identity = WalletIdentity(address=address, connected=True)
        self._state = WalletState.CONNECTED
        self.error = None
        self._start_polling()
        logger.info("Wallet connected: %s", address)
        self._notify()

    def _clear(self, state: WalletState) -> None:
        self._stop_polling()
        self._provider = None
        self._identity = WalletIdentity.disconnected()
        self._state = state

    async def connect(self) -> str:
        """Ask the provider for account access (may prompt the user).

        Returns the connected address. A ``disconnect()`` issued while the
        request is pending wins: the attempt is abandoned and raises
        ``ConnectionAbandoned`` without touching the session.

        Raises:
            ProviderUnavailable: no wallet provider was detected.
            UserRejected: the user declined the request.
            ProviderError: the provider failed or returned no usable account.
        """
        if self._state is WalletState.CONNECTED and self.address:
            return self.address
        if self._state is WalletState.CONNECTING:
            raise WalletError("A connection request is already in progress")

        self._attempt += 1
        attempt = self._attempt
        self._state = WalletState.CONNECTING
        self.error = None
        self._notify()

        try:
            provider = await self._detector()
            self._check_attempt(attempt)
            if provider is None:
                raise ProviderUnavailable("No wallet provider detected. Please install a wallet.")
            result = await provider.request("eth_requestAccounts")
            self._check_attempt(attempt)
            accounts = _parse_accounts(result)
            if not accounts:
                raise ProviderError("Wallet returned no accounts")
        except ConnectionAbandoned:
            logger.info("Wallet connection attempt abandoned after disconnect")
            raise
        except asyncio.CancelledError:
            if attempt == self._attempt and self._state is WalletState.CONNECTING:
                self._clear(WalletState.DISCONNECTED)
                self._notify()
            raise
        except WalletError as e:
            self._fail(attempt, e)
            raise
        except Exception as e:
            error = ProviderError(f"Wallet provider failed: {e}")
            self._fail(attempt, error)
            raise error from e

        self._set_connected(provider, accounts[0])

        if self._config.chain is not None:
            try:
                await self.ensure_chain(self._config.chain)
            except WalletError as e:
                if attempt == self._attempt:
                    self.error = f"Failed to switch network: {e}"
                    logger.warning("%s", self.error)
                    self._notify()

        return accounts[0]

    def _check_attempt(self, attempt: int) -> None:
        if attempt != self._attempt or self._state is not WalletState.CONNECTING:
            raise ConnectionAbandoned("Connection request was cancelled by disconnect")

    def _fail(self, attempt: int, error: WalletError) -> None:
        if attempt != self._attempt:
            return
        self._clear(WalletState.ERROR)
        self.error = str(error) or type(error).__name__
        logger.error("Wallet connection error: %s", self.error)
        self._notify()

    def disconnect(self) -> None:
        """Forget the local session. Wallet permissions are left untouched.

        Also abandons any ``connect()`` still waiting on the provider.
        """
        was = self._state
        self._attempt += 1
        self._clear(WalletState.DISCONNECTED)
        self.error = None
        if was is not WalletState.DISCONNECTED:
            logger.info("Wallet disconnected")
            self._notify()

    async def check_existing_session(self) -> bool:
        """Restore a previously authorized session without prompting.

        Returns True if the session is now connected. Failures are logged
        and leave the session disconnected.
        """
        if self._state is not WalletState.DISCONNECTED:
            return self.is_connected

        attempt = self._attempt
        try:
            provider = await self._detector()
            if provider is None:
                return False
            accounts = _parse_accounts(await provider.request("eth_accounts"))
        except WalletError as e:
            logger.error("Error checking existing wallet session: %s", e)
            return False
        except Exception as e:
            logger.error("Wallet provider failed while checking session: %s", e)
            return False

        # A connect() or disconnect() may have run while we were waiting.
        if attempt != self._attempt or self._state is not WalletState.DISCONNECTED or not accounts:
            return self.is_connected

        self._set_connected(provider, accounts[0])
        return True

    async def ensure_chain(self, chain: ChainParams) -> None:
        """Make sure the wallet is on ``chain``, adding the network if needed."""
        provider = self._provider
        if provider is None:
            raise ProviderUnavailable("Wallet is not connected")

        current = await provider.request("eth_chainId")
        try:
            current_id = int(str(current), 0)
        except ValueError as e:
            raise ProviderError(f"Invalid chain id from provider: {current!r}") from e
        if current_id == chain.chain_id:
            return

        logger.info("Wallet on chain %s, switching to %s", current_id, chain.chain_id)
        try:
            await provider.request(
                "wallet_switchEthereumChain", [{"chainId": chain.chain_id_hex}]
            )
            return
        except RpcError as e:
            if e.code != UNRECOGNIZED_CHAIN_CODE:
                raise

        await provider.request(
            "wallet_addEthereumChain",
            [
                {
                    "chainId": chain.chain_id_hex,
                    "chainName": chain.chain_name,
                    "nativeCurrency": {
                        "name": chain.native_name,
                        "symbol": chain.native_symbol,
                        "decimals": chain.native_decimals,
                    },
                    "rpcUrls": list(chain.rpc_urls),
                    "blockExplorerUrls": list(chain.explorer_urls),
                }
            ],
        )

    # ------------------------------------------------------------------
    # Account polling
    # ------------------------------------------------------------------

    def _start_polling(self) -> None:
        self._stop_polling()
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    def _stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _poll_loop(self) -> None:
        interval = self._config.poll_interval_seconds
        while self._state is WalletState.CONNECTED:
            await self._sleep(interval)
            if self._state is not WalletState.CONNECTED:
                break
            await self.poll_once()

    async def poll_once(self) -> None:
        """Reconcile with the provider's current account list.

        Runs inside the poll loop, so ticks never overlap. A failed query is
        logged and retried on the next tick.
        """
        provider = self._provider
        if provider is None or self._state is not WalletState.CONNECTED:
            return

        try:
            accounts = _parse_accounts(await provider.request("eth_accounts"))
        except Exception as e:
            logger.warning("Error polling wallet accounts: %s", e)
            return

        if self._state is not WalletState.CONNECTED or self._provider is not provider:
            return

        if not accounts:
            logger.info("Wallet reported no accounts, disconnecting")
            self._clear(WalletState.DISCONNECTED)
            self._notify()
        elif accounts[0] != self.address:
            logger.info("Wallet account changed: %s -> %s", self.address, accounts[0])
            self._identity = WalletIdentity(address=accounts[0], connected=True)
            self._notify()
