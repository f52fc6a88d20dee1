"""Data store interface used by the settlement pipeline.

Every write is keyed by a natural identity (an upsert with a conflict key,
or a patch guarded by a filter), so repeating any call leaves the store in
the same state as performing it once.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any

from furlong.models.records import (
    Bankroll,
    BankrollLedgerEntry,
    BetStatus,
    MLModelPerformance,
    MLModelRaceResult,
    Race,
    RaceEntry,
    RaceResult,
    RaceRunner,
)

# Tables that denormalize a horse's finishing position
PROPAGATION_TABLES: tuple[str, ...] = ("race_entries", "selections", "shortlist")

PENDING_RACES_VIEW = "races_pending_results"

# Races with a stored result whose bets are still pending
UNSETTLED_RACES_VIEW = "races_with_pending_bets"

BANKROLL_CREDIT_RPC = "apply_bankroll_credit"


class SettlementStore(ABC):
    """Row-oriented access to the racing tables."""

    # Races

    @abstractmethod
    async def list_pending_races(
        self,
        date_from: date,
        date_to: date,
        race_id: str | None = None,
    ) -> list[Race]:
        """
        Races without a recorded result, read from the pending-results view.

        Rows that do not validate are skipped.
        """

    @abstractmethod
    async def list_unsettled_races(
        self,
        date_from: date,
        date_to: date,
        race_id: str | None = None,
    ) -> list[Race]:
        """Races with a stored result that still have pending bets."""

    @abstractmethod
    async def get_race(self, race_id: str) -> Race | None:
        """A single race by id."""

    @abstractmethod
    async def get_race_result(self, race_id: str) -> RaceResult | None:
        """The stored result summary for a race, if any."""

    @abstractmethod
    async def list_runners(self, race_id: str) -> list[RaceRunner]:
        """Per-horse outcomes of a race ordered by finishing position."""

    @abstractmethod
    async def list_entries(self, race_id: str) -> list[RaceEntry]:
        """Race-card entries with model probabilities."""

    # Propagation

    @abstractmethod
    async def set_finishing_position(
        self,
        table: str,
        race_id: str,
        horse_id: str,
        position: int,
        updated_at: datetime,
    ) -> int:
        """
        Write a finishing position into a derived table.

        Only rows whose stored position differs are touched. Returns the
        number of rows changed.
        """

    # Bets and bankroll

    @abstractmethod
    async def list_pending_bets(self, race_id: str) -> list[dict[str, Any]]:
        """Raw rows of the bets on a race still in the pending state."""

    @abstractmethod
    async def mark_bet_settled(
        self,
        bet_id: str,
        status: BetStatus,
        settled_at: datetime,
    ) -> bool:
        """
        Move a pending bet to a terminal status.

        Guarded by ``status = pending``; returns False when the bet had
        already left the pending state.
        """

    @abstractmethod
    async def apply_ledger_entry(self, entry: BankrollLedgerEntry) -> Bankroll | None:
        """
        Record a ledger entry and add its amount to the user's balance.

        Both writes happen in one transaction. Returns the updated balance,
        or None when an entry with the same reference already exists and
        nothing was changed.
        """

    # Model accuracy

    @abstractmethod
    async def upsert_model_race_results(self, rows: list[MLModelRaceResult]) -> None:
        """Upsert top-pick rows keyed by (race_id, horse_id, model_name)."""

    @abstractmethod
    async def delete_stale_model_race_results(
        self,
        race_id: str,
        model_name: str,
        keep_horse_id: str,
    ) -> int:
        """Remove a model's rows for a race that name a horse other than its current pick."""

    @abstractmethod
    async def list_model_race_results(
        self,
        race_date: date | None = None,
        created_since: datetime | None = None,
    ) -> list[MLModelRaceResult]:
        """Top-pick rows for a race day, or created since a point in time."""

    @abstractmethod
    async def upsert_model_performance(self, rows: list[MLModelPerformance]) -> None:
        """Upsert accuracy rows keyed by (model_name, analysis_date)."""
