"""Persistence adapters: transaction store and ledger gateway."""

from .memory import InMemoryTransactionStore
from .ledger import InMemoryLedger, LedgerGateway

__all__ = ["InMemoryTransactionStore", "InMemoryLedger", "LedgerGateway"]
