"""Data store access for the settlement pipeline."""

from furlong.services.store.base import (
    BANKROLL_CREDIT_RPC,
    PENDING_RACES_VIEW,
    PROPAGATION_TABLES,
    UNSETTLED_RACES_VIEW,
    SettlementStore,
)
from furlong.services.store.rest import RestStore

__all__ = [
    "BANKROLL_CREDIT_RPC",
    "PENDING_RACES_VIEW",
    "PROPAGATION_TABLES",
    "RestStore",
    "SettlementStore",
    "UNSETTLED_RACES_VIEW",
]
