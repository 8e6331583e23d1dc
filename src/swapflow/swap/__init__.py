"""Swap execution: transaction building, execution attempts and recovery.

Submodules are imported directly (``swapflow.swap.executor``) to keep the
wallet and routing layers free of import cycles.
"""
