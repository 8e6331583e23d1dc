"""Per-signer locking for swap execution.

Only one execution attempt per signer address may be in flight. A second
attempt for the same signer fails fast with ``AttemptInProgress`` instead of
queuing behind the first.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from swapflow.errors import AttemptInProgress

logger = logging.getLogger(__name__)

# Global lock registry: normalized signer address -> asyncio.Lock
_signer_locks: dict[str, asyncio.Lock] = {}


def get_signer_lock(signer_address: str) -> asyncio.Lock:
    """Get or create the lock for a signer address.

    Args:
        signer_address: Wallet address (case-insensitive for EVM)

    Returns:
        asyncio.Lock for the signer
    """
    key = signer_address.strip().lower() if signer_address.startswith("0x") else signer_address.strip()
    lock = _signer_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _signer_locks[key] = lock
    return lock


class SignerLock:
    """Context manager for exclusive execution rights of one signer.

    Example:
        async with SignerLock(address, operation="swap"):
            # Build, sign and confirm
            ...
    """

    def __init__(
        self,
        signer_address: str,
        timeout: Optional[float] = None,
        operation: str = "swap",
    ):
        """Initialize the lock.

        Args:
            signer_address: Wallet address
            timeout: Wait for the lock up to this long (None = fail fast)
            operation: Description of the operation for logging
        """
        self.signer_address = signer_address
        self.timeout = timeout
        self.operation = operation
        self._lock: Optional[asyncio.Lock] = None
        self._acquired = False

    async def __aenter__(self) -> "SignerLock":
        """Acquire the lock."""
        self._lock = get_signer_lock(self.signer_address)

        if self._lock.locked() and not self.timeout:
            logger.warning(f"Attempt already in progress for {self.signer_address}: {self.operation}")
            raise AttemptInProgress()

        try:
            if self.timeout:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
            else:
                await self._lock.acquire()
            self._acquired = True
        except asyncio.TimeoutError:
            logger.warning(
                f"Lock timeout for {self.signer_address} after {self.timeout}s: {self.operation}"
            )
            raise AttemptInProgress(
                f"Another swap for this wallet did not finish within {self.timeout}s."
            )

        logger.debug(f"Lock acquired for {self.signer_address}: {self.operation}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Release the lock."""
        if self._acquired and self._lock:
            self._lock.release()
            self._acquired = False
            logger.debug(f"Lock released for {self.signer_address}: {self.operation}")
        return False


@asynccontextmanager
async def signer_lock(
    signer_address: str,
    timeout: Optional[float] = None,
    operation: str = "swap",
):
    """Functional form of ``SignerLock``.

    Example:
        async with signer_lock(address, operation="swap"):
            pass
    """
    async with SignerLock(signer_address, timeout=timeout, operation=operation):
        yield


def clear_signer_locks() -> None:
    """Clear all signer locks (useful for testing)."""
    _signer_locks.clear()
