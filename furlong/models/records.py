"""Typed records for rows exchanged with the data store and result provider.

Rows arrive as loosely-typed JSON. Every row is validated into one of these
records at the boundary; a row that does not fit raises
RecordValidationError instead of leaking an untyped value downstream.
"""

import datetime as dt
from collections.abc import Iterable
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from furlong.services.errors import RecordValidationError
from furlong.services.odds import parse_decimal_odds

logger = structlog.get_logger(__name__)

R = TypeVar("R", bound="Record")


class BetStatus(str, Enum):
    """Lifecycle of a wager. WON and LOST are terminal."""

    PENDING = "pending"
    WON = "won"
    LOST = "lost"


class Record(BaseModel):
    """Base class for store rows."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @classmethod
    def parse_row(cls: type[R], row: Any) -> R:
        """Validate a single row, raising RecordValidationError on mismatch."""
        try:
            return cls.model_validate(row)
        except ValidationError as e:
            raise RecordValidationError(cls.__name__, str(e)) from e

    @classmethod
    def parse_rows(cls: type[R], rows: Iterable[Any]) -> list[R]:
        """Validate a list of rows."""
        return [cls.parse_row(row) for row in rows]

    @classmethod
    def parse_valid_rows(cls: type[R], rows: Iterable[Any]) -> list[R]:
        """Validate a list of rows, skipping and logging any that do not fit."""
        records: list[R] = []
        for row in rows:
            try:
                records.append(cls.parse_row(row))
            except RecordValidationError as e:
                logger.warning("record_row_skipped", record_type=cls.__name__, error=e.detail)
        return records


def _id_to_str(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (int, str)):
        text = str(value).strip()
        return text or None
    return value


class Race(Record):
    """A scheduled race."""

    race_id: str
    date: dt.date
    off_time: str = ""
    course: str | None = None
    course_id: str | None = None

    @field_validator("off_time", mode="before")
    @classmethod
    def blank_off_time(cls, value: Any) -> Any:
        return "" if value is None else value


class RaceEntry(Record):
    """One horse on a race card with its model probabilities."""

    race_id: str
    horse_id: str | None = None
    horse_name: str = ""
    mlp_proba: float | None = Field(default=None, ge=0, le=1)
    rf_proba: float | None = Field(default=None, ge=0, le=1)
    xgboost_proba: float | None = Field(default=None, ge=0, le=1)
    benter_proba: float | None = Field(default=None, ge=0, le=1)
    ensemble_proba: float | None = Field(default=None, ge=0, le=1)
    predicted_winner: bool | None = None
    current_odds: str | float | None = None
    finishing_position: int | None = None
    result_updated_at: dt.datetime | None = None

    @field_validator("horse_id", mode="before")
    @classmethod
    def horse_id_text(cls, value: Any) -> Any:
        return _id_to_str(value)

    @field_validator("horse_name", mode="before")
    @classmethod
    def blank_name(cls, value: Any) -> Any:
        return "" if value is None else value

    def probability(self, column: str) -> float:
        """Probability stored in the given model column (0.0 when absent)."""
        value = getattr(self, column, None)
        return float(value) if value else 0.0

    @property
    def decimal_odds(self) -> Decimal | None:
        return parse_decimal_odds(self.current_odds)


class RaceResult(Record):
    """Authoritative summary of a finished race."""

    race_id: str
    date: dt.date | None = None
    course: str | None = None
    course_id: str | None = None
    off_time: str | None = Field(default=None, alias="off")
    race_name: str | None = None
    race_class: str | None = Field(default=None, alias="class")
    going: str | None = None
    surface: str | None = None
    dist: str | None = None


class RaceRunner(Record):
    """Actual outcome for one horse in a finished race."""

    race_id: str | None = None
    horse_id: str | None = None
    horse: str = ""
    position: int | None = None
    sp: str | None = None
    sp_dec: float | None = None
    jockey: str | None = None
    trainer: str | None = None

    @field_validator("horse_id", mode="before")
    @classmethod
    def horse_id_text(cls, value: Any) -> Any:
        return _id_to_str(value)

    @field_validator("position", mode="before")
    @classmethod
    def numeric_position(cls, value: Any) -> Any:
        # Non-finishers come through as "PU", "F", "UR" and similar
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value if value >= 1 else None
        text = str(value).strip()
        if text.isdigit() and int(text) >= 1:
            return int(text)
        return None

    @field_validator("horse", mode="before")
    @classmethod
    def blank_horse(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def finished(self) -> bool:
        return self.position is not None


class Bet(Record):
    """A user's wager on a horse."""

    id: str
    user_id: str
    race_id: str
    horse_id: str | None = None
    horse_name: str | None = None
    bet_amount: Decimal = Field(ge=0)
    odds: Decimal | None = None
    potential_return: Decimal | None = None
    status: BetStatus = BetStatus.PENDING

    @field_validator("id", "user_id", "horse_id", mode="before")
    @classmethod
    def ids_text(cls, value: Any) -> Any:
        return _id_to_str(value)

    @model_validator(mode="after")
    def derive_potential_return(self) -> "Bet":
        if self.potential_return is None and self.odds is not None:
            self.potential_return = self.bet_amount * self.odds
        return self


class Bankroll(Record):
    """A user's notional balance as returned by a credit."""

    user_id: str
    current_amount: Decimal = Decimal("0")


class LedgerEntryType(str, Enum):
    """Kinds of bankroll ledger movement."""

    SETTLEMENT = "settlement"


class BankrollLedgerEntry(Record):
    """An append-only bankroll movement keyed by a natural reference."""

    reference: str
    user_id: str
    bet_id: str | None = None
    entry_type: LedgerEntryType = LedgerEntryType.SETTLEMENT
    amount: Decimal
    created_at: dt.datetime | None = None

    @classmethod
    def for_settlement(cls, bet: Bet) -> "BankrollLedgerEntry":
        """Winnings credit for a settled bet; one per bet id."""
        return cls(
            reference=f"settlement:{bet.id}",
            user_id=bet.user_id,
            bet_id=bet.id,
            entry_type=LedgerEntryType.SETTLEMENT,
            amount=bet.potential_return if bet.potential_return is not None else Decimal("0"),
        )


class MLModelRaceResult(Record):
    """A model's top pick in one race and how it finished."""

    race_id: str
    race_date: dt.date
    horse_id: str
    horse_name: str = ""
    model_name: str
    predicted_probability: float = Field(ge=0, le=1)
    actual_position: int = Field(ge=1)
    is_winner: bool
    is_top3: bool
    prediction_correct: bool | None = None
    created_at: dt.datetime | None = None


class MLModelPerformance(Record):
    """Accuracy of one model over one race day, recomputed from source rows."""

    model_name: str
    analysis_date: dt.date
    total_predictions: int = 0
    correct_winner_predictions: int = 0
    correct_top3_predictions: int = 0
    winner_accuracy_percentage: float = 0.0
    top3_accuracy_percentage: float = 0.0
    average_confidence_percentage: float = 0.0
    average_confidence_when_correct: float = 0.0
    average_confidence_when_incorrect: float = 0.0
    ensemble_winner_predictions_correct: int = 0
    ensemble_winner_predictions_incorrect: int = 0
