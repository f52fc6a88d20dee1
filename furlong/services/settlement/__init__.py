"""Race settlement services."""

from furlong.services.settlement.bets import BetSettlementEngine, settle_outcome
from furlong.services.settlement.finder import PendingRaceFinder
from furlong.services.settlement.model_accuracy import ModelAccuracyAggregator, pick_top
from furlong.services.settlement.pipeline import (
    RunReport,
    SettlementRunner,
    open_settlement_runner,
    open_store,
)
from furlong.services.settlement.propagation import ResultPropagator

__all__ = [
    "BetSettlementEngine",
    "ModelAccuracyAggregator",
    "PendingRaceFinder",
    "ResultPropagator",
    "RunReport",
    "SettlementRunner",
    "open_settlement_runner",
    "open_store",
    "pick_top",
    "settle_outcome",
]
