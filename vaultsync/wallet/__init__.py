"""Wallet session and provider boundary."""
from .provider import JsonRpcWalletProvider, detect_provider
from .session import WalletSession, normalize_address

__all__ = ["JsonRpcWalletProvider", "WalletSession", "detect_provider", "normalize_address"]
