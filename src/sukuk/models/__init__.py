"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from sukuk.models.blockchain_event import BlockchainEvent
from sukuk.models.investment import Investment, InvestmentStatus
from sukuk.models.redemption import Redemption, RedemptionStatus
from sukuk.models.sukuk import InvalidStateTransition, Sukuk, SukukStatus
from sukuk.models.system_state import SystemState
from sukuk.models.yield_claim import Yield, YieldStatus

__all__ = [
    "BlockchainEvent",
    "InvalidStateTransition",
    "Investment",
    "InvestmentStatus",
    "Redemption",
    "RedemptionStatus",
    "Sukuk",
    "SukukStatus",
    "SystemState",
    "Yield",
    "YieldStatus",
]
