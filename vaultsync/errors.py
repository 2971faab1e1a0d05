"""Error hierarchy for the wallet, channel and risk subsystems.

Wallet and channel errors are surfaced only when local recovery is over
(retries exhausted, or the user has to act). Risk errors are reported
immediately to the caller.
"""
from __future__ import annotations


class VaultSyncError(Exception):
    """Base class for all vaultsync exceptions."""


# ---------------------------------------------------------------------------
# Wallet session
# ---------------------------------------------------------------------------


class WalletError(VaultSyncError):
    """Raised for failures talking to the external signer."""


class ProviderUnavailable(WalletError):
    """No compatible wallet provider was detected."""


class UserRejected(WalletError):
    """The user declined the request in their wallet (EIP-1193 code 4001)."""


class ProviderError(WalletError):
    """The provider answered with an error or an unusable result."""


class ConnectionAbandoned(WalletError):
    """A pending connect() was superseded by a disconnect()."""


# ---------------------------------------------------------------------------
# Realtime channel
# ---------------------------------------------------------------------------


class ChannelError(VaultSyncError):
    """Raised for realtime channel failures."""


class TransportError(ChannelError):
    """The underlying socket failed to open, read or write."""


class ReconnectExhausted(ChannelError):
    """The channel gave up after the configured number of reconnects."""


class MalformedMessage(ChannelError):
    """An inbound frame was not a valid ``{type, data, timestamp}`` object."""


# ---------------------------------------------------------------------------
# Position risk
# ---------------------------------------------------------------------------


class RiskError(VaultSyncError):
    """Raised when a risk metric cannot be derived from the given inputs."""


class InvalidInput(RiskError, ValueError):
    """A value was missing, negative or not a number."""


class RateUnavailable(RiskError, LookupError):
    """No conversion path exists between two currencies."""
