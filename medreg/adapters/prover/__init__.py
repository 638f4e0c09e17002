"""Proof adapters - Remote proving service and local keyed prover."""

from .http import HttpProofService
from .local import LocalProofService

__all__ = ["HttpProofService", "LocalProofService"]
