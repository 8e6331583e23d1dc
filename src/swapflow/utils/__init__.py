"""Utility modules for SwapFlow."""

from swapflow.utils.locks import SignerLock, get_signer_lock, signer_lock
from swapflow.utils.retry import retry_async

__all__ = ["SignerLock", "get_signer_lock", "signer_lock", "retry_async"]
