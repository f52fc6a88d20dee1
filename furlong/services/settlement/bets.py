"""Bet settlement.

Pending bets on a finished race are resolved against the winning runner.
Winnings are credited through the bankroll ledger: each winning bet records
one entry keyed by ``settlement:<bet_id>`` and adds its amount to the
user's balance in the same transaction. An entry that already exists adds
nothing, so settling the same bet twice never credits twice.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from furlong.models.records import Bankroll, BankrollLedgerEntry, Bet, BetStatus, RaceRunner
from furlong.services.store.base import SettlementStore

logger = structlog.get_logger(__name__)


def normalize_horse_name(name: str | None) -> str:
    """Lowercase, trimmed horse name for comparisons."""
    return (name or "").strip().lower()


def _row_value(row: Any, key: str) -> str | None:
    value = row.get(key) if isinstance(row, dict) else None
    return str(value) if value is not None else None


def find_winner(runners: list[RaceRunner]) -> RaceRunner | None:
    """The first runner placed 1st, if any."""
    return next((runner for runner in runners if runner.position == 1), None)


def settle_outcome(bet: Bet, winner: RaceRunner) -> BetStatus:
    """
    Decide a bet against the winning runner.

    Horse ids are compared when both sides carry one; otherwise the
    normalized names are. Never returns PENDING.
    """
    bet_horse_id = (bet.horse_id or "").strip()
    winner_horse_id = (winner.horse_id or "").strip()
    if bet_horse_id and winner_horse_id:
        matched = bet_horse_id == winner_horse_id
    else:
        bet_name = normalize_horse_name(bet.horse_name)
        winner_name = normalize_horse_name(winner.horse)
        matched = bool(bet_name and winner_name) and bet_name == winner_name
    return BetStatus.WON if matched else BetStatus.LOST


@dataclass
class SettlementSummary:
    """Counts from settling one race's bets."""

    race_id: str
    winner: str | None = None
    bets_found: int = 0
    won: int = 0
    lost: int = 0
    already_settled: int = 0
    failed: int = 0
    bankroll_updates: int = 0
    failed_bet_ids: list[str] = field(default_factory=list)

    @property
    def settled(self) -> int:
        return self.won + self.lost

    def to_dict(self) -> dict[str, object]:
        return {
            "winner": self.winner,
            "bets_found": self.bets_found,
            "won": self.won,
            "lost": self.lost,
            "already_settled": self.already_settled,
            "failed": self.failed,
            "bankroll_updates": self.bankroll_updates,
        }


class BetSettlementEngine:
    """Moves pending bets on a finished race to won or lost."""

    def __init__(
        self,
        store: SettlementStore,
        now: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def settle(self, race_id: str, runners: list[RaceRunner]) -> SettlementSummary:
        """
        Settle every pending bet on a race.

        Nothing is settled when no runner finished first (an abandoned or
        void race). Each bet is independent: a failure is logged and the
        bet stays pending for the next run.

        Raises:
            StoreError: If the pending bets cannot be listed
        """
        summary = SettlementSummary(race_id=race_id)
        winner = find_winner(runners)
        if winner is None:
            logger.info("settlement_skipped_no_winner", race_id=race_id, runners=len(runners))
            return summary
        summary.winner = winner.horse or winner.horse_id

        rows = await self.store.list_pending_bets(race_id)
        summary.bets_found = len(rows)
        settled_at = self._now()

        for row in rows:
            try:
                bet = Bet.parse_row(row)
                await self._settle_bet(bet, winner, settled_at, summary)
            except Exception as e:
                bet_id = _row_value(row, "id")
                summary.failed += 1
                if bet_id is not None:
                    summary.failed_bet_ids.append(bet_id)
                logger.error(
                    "bet_settlement_failed",
                    race_id=race_id,
                    bet_id=bet_id,
                    user_id=_row_value(row, "user_id"),
                    error=str(e),
                )

        logger.info(
            "race_bets_settled",
            race_id=race_id,
            winner=summary.winner,
            bets_found=summary.bets_found,
            won=summary.won,
            lost=summary.lost,
            already_settled=summary.already_settled,
            failed=summary.failed,
        )
        return summary

    async def _settle_bet(
        self,
        bet: Bet,
        winner: RaceRunner,
        settled_at: datetime,
        summary: SettlementSummary,
    ) -> None:
        status = settle_outcome(bet, winner)
        logger.debug(
            "bet_matched",
            bet_id=bet.id,
            bet_horse_id=bet.horse_id,
            bet_horse_name=bet.horse_name,
            winner_horse_id=winner.horse_id,
            winner_horse_name=winner.horse,
            status=status.value,
        )

        # The credit goes in before the status flips; once a bet leaves
        # pending it is never picked up again.
        if status == BetStatus.WON:
            if await self.credit_winnings(bet) is not None:
                summary.bankroll_updates += 1

        changed = await self.store.mark_bet_settled(bet.id, status, settled_at)
        if not changed:
            summary.already_settled += 1
            logger.info("bet_already_settled", bet_id=bet.id, race_id=bet.race_id)
            return

        if status == BetStatus.WON:
            summary.won += 1
        else:
            summary.lost += 1

    async def credit_winnings(self, bet: Bet) -> Bankroll | None:
        """
        Credit a winning bet's return to its user.

        Returns the new balance, or None if this bet was credited before.
        """
        entry = BankrollLedgerEntry.for_settlement(bet)
        bankroll = await self.store.apply_ledger_entry(entry)
        if bankroll is None:
            logger.info("bankroll_credit_already_applied", user_id=bet.user_id, bet_id=bet.id)
            return None
        logger.info(
            "bankroll_credited",
            user_id=bet.user_id,
            bet_id=bet.id,
            amount=str(entry.amount),
            balance=str(bankroll.current_amount),
        )
        return bankroll
