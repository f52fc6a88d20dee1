"""Record types for Furlong."""

from furlong.models.records import (
    Bankroll,
    BankrollLedgerEntry,
    Bet,
    BetStatus,
    LedgerEntryType,
    MLModelPerformance,
    MLModelRaceResult,
    Race,
    RaceEntry,
    RaceResult,
    RaceRunner,
    Record,
)

__all__ = [
    # Base
    "Record",
    # Racing
    "Race",
    "RaceEntry",
    "RaceResult",
    "RaceRunner",
    # Wagers
    "Bet",
    "BetStatus",
    "Bankroll",
    "BankrollLedgerEntry",
    "LedgerEntryType",
    # Model accuracy
    "MLModelRaceResult",
    "MLModelPerformance",
]
