"""Utility modules for payroute."""

from payroute.utils.locks import AddressLockRegistry

__all__ = ["AddressLockRegistry"]
