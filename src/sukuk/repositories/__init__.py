"""Repository layer for the sukuk sync service.

Provides data access abstractions for all projection entities.
No base classes - each repository is self-contained.
"""

from sukuk.repositories.blockchain_event import BlockchainEventRepository
from sukuk.repositories.investment import InvestmentRepository
from sukuk.repositories.redemption import RedemptionRepository
from sukuk.repositories.sukuk import SukukRepository
from sukuk.repositories.system_state import SystemStateRepository
from sukuk.repositories.yield_claim import YieldRepository

__all__ = [
    "BlockchainEventRepository",
    "InvestmentRepository",
    "RedemptionRepository",
    "SukukRepository",
    "SystemStateRepository",
    "YieldRepository",
]
