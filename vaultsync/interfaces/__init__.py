"""Protocol interfaces for the external collaborators."""
from .transport import Transport
from .wallet_provider import WalletProvider

__all__ = ["Transport", "WalletProvider"]
