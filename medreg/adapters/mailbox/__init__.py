"""Mailbox adapters - Fetch verification emails from the inbox service."""

from .http import HttpMailbox

__all__ = ["HttpMailbox"]
