"""Notification adapters - Deliver registration instructions to users."""

from .console import ConsoleInstructionNotifier

__all__ = ["ConsoleInstructionNotifier"]
