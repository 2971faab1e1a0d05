"""Wallet session, realtime channel and position risk synchronization."""
from .errors import (
    ConnectionAbandoned,
    InvalidInput,
    MalformedMessage,
    ProviderError,
    ProviderUnavailable,
    RateUnavailable,
    ReconnectExhausted,
    TransportError,
    UserRejected,
)

__version__ = "0.1.0"

__all__ = [
    "ConnectionAbandoned",
    "InvalidInput",
    "MalformedMessage",
    "ProviderError",
    "ProviderUnavailable",
    "RateUnavailable",
    "ReconnectExhausted",
    "TransportError",
    "UserRejected",
]
