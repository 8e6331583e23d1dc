"""Wallet provider and balance reader interfaces."""

from swapflow.wallet.base import BalanceReader, Receipt, WalletProvider

__all__ = ["BalanceReader", "Receipt", "WalletProvider"]
