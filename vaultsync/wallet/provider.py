"""JSON-RPC wallet provider with endpoint fallback."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ..config import WalletConfig
from ..errors import ProviderError, UserRejected

logger = logging.getLogger(__name__)

# EIP-1193 provider error codes.
USER_REJECTED_CODE = 4001
UNRECOGNIZED_CHAIN_CODE = 4902


class RpcError(ProviderError):
    """Error object returned by the provider, with its JSON-RPC code."""

    def __init__(self, code: int | None, message: str) -> None:
        super().__init__(f"RPC Error {code}: {message}")
        self.code = code
        self.message = message


def _raise_for_error(error: Any) -> None:
    if isinstance(error, dict):
        code = error.get("code")
        message = str(error.get("message", "unknown error"))
    else:
        code, message = None, str(error)
    if code == USER_REJECTED_CODE:
        raise UserRejected(message)
    raise RpcError(code, message)


class JsonRpcWalletProvider:
    """Wallet provider reached over HTTP JSON-RPC (e.g. a desktop wallet bridge).

    Tries each configured endpoint in turn, starting from the last one that
    answered. Errors returned by a reachable endpoint are final; only
    transport failures move on to the next endpoint.
    """

    def __init__(self, config: WalletConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.current_rpc_index = 0
        self._request_id = 0

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        """Send one JSON-RPC request and return its ``result``.

        Raises:
            UserRejected: the user declined in their wallet.
            ProviderError: the provider returned any other error, or every
                endpoint was unreachable.
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                last_error = e
                logger.warning("Wallet endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to wallet endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index

            if not isinstance(result, dict):
                raise ProviderError(f"Unexpected response to {method}: {result!r}")
            if "error" in result:
                _raise_for_error(result["error"])
            return result.get("result")

        raise ProviderError(f"All wallet endpoints failed. Last error: {last_error}")


async def detect_provider(config: WalletConfig) -> JsonRpcWalletProvider | None:
    """Return a provider for the first endpoint that answers, or ``None``.

    Detection uses ``eth_chainId``, which never prompts the user.
    """
    if not config.rpc_endpoints:
        return None

    provider = JsonRpcWalletProvider(config)
    try:
        await provider.request("eth_chainId")
    except UserRejected:
        return provider
    except RpcError:
        # Reachable but refused the detection request; still a provider.
        return provider
    except ProviderError as e:
        logger.info("No wallet provider detected: %s", e)
        return None
    return provider

