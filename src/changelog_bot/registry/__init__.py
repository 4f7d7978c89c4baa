"""Recipient workspace registry."""

from .recipients import RecipientRegistry

__all__ = ["RecipientRegistry"]
