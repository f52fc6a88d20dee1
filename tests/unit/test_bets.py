"""Unit tests for bet settlement and the bankroll ledger."""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from furlong.models.records import Bet, BetStatus, RaceRunner
from furlong.services.settlement.bets import (
    BetSettlementEngine,
    find_winner,
    normalize_horse_name,
    settle_outcome,
)

STAMP = datetime(2026, 6, 12, 14, 30, tzinfo=timezone.utc)


def make_bet(**values) -> Bet:
    row = {"id": "B1", "user_id": "u1", "race_id": "R1", "bet_amount": "10", "odds": "4.0"}
    row.update(values)
    return Bet.parse_row(row)


def winner(horse_id="H1", horse="Horse 1") -> RaceRunner:
    return RaceRunner.parse_row({"horse_id": horse_id, "horse": horse, "position": 1})


class TestSettleOutcome:
    """Test matching a bet against the winner."""

    def test_match_by_id(self):
        assert settle_outcome(make_bet(horse_id="H1", horse_name="Other"), winner()) == BetStatus.WON

    def test_id_mismatch_loses_even_with_same_name(self):
        bet = make_bet(horse_id="H9", horse_name="Horse 1")
        assert settle_outcome(bet, winner()) == BetStatus.LOST

    def test_name_fallback_when_bet_has_no_id(self):
        bet = make_bet(horse_id=None, horse_name="  HORSE 1 ")
        assert settle_outcome(bet, winner()) == BetStatus.WON

    def test_name_fallback_when_winner_has_no_id(self):
        bet = make_bet(horse_id="H1", horse_name="Horse 1")
        assert settle_outcome(bet, winner(horse_id=None)) == BetStatus.WON

    def test_empty_names_lose(self):
        bet = make_bet(horse_id=None, horse_name="")
        assert settle_outcome(bet, winner(horse_id=None, horse="")) == BetStatus.LOST

    @pytest.mark.parametrize(
        "name,expected",
        [(" Frankel ", "frankel"), ("SEA THE STARS", "sea the stars"), (None, "")],
    )
    def test_normalize_horse_name(self, name, expected):
        assert normalize_horse_name(name) == expected

    def test_find_winner(self):
        runners = RaceRunner.parse_rows(
            [
                {"horse_id": "H2", "position": 2},
                {"horse_id": "H1", "position": 1},
                {"horse_id": "H3", "position": "F"},
            ]
        )
        assert find_winner(runners).horse_id == "H1"
        assert find_winner(runners[:1]) is None


class TestBetSettlementEngine:
    """Test settling a race's pending bets."""

    def setup_method(self):
        self.runners = RaceRunner.parse_rows(
            [
                {"horse_id": "H1", "horse": "Horse 1", "position": 1},
                {"horse_id": "H2", "horse": "Horse 2", "position": 2},
            ]
        )

    def settle(self, store, runners=None):
        engine = BetSettlementEngine(store, now=lambda: STAMP)
        return asyncio.run(engine.settle("R1", runners or self.runners))

    def test_winning_and_losing_bets(self, store):
        store.add_bet("B1", "R1", horse_id="H1", bet_amount="10", odds="4.0")
        store.add_bet("B2", "R1", horse_id="H2", bet_amount="5", odds="3")

        summary = self.settle(store)

        assert (summary.won, summary.lost, summary.failed) == (1, 1, 0)
        assert store.bets["B1"]["status"] == "won"
        assert store.bets["B2"]["status"] == "lost"
        assert store.balance("u1") == Decimal("40")
        assert list(store.ledger) == ["settlement:B1"]

    def test_no_winner_settles_nothing(self, store):
        store.add_bet("B1", "R1", horse_id="H1", bet_amount="10", odds="4.0")
        void = RaceRunner.parse_rows([{"horse_id": "H1", "position": "PU"}])

        summary = self.settle(store, void)

        assert summary.winner is None
        assert summary.settled == 0
        assert store.bets["B1"]["status"] == "pending"
        assert "list_pending_bets" not in store.calls

    def test_resettling_never_credits_twice(self, store):
        store.add_bet("B1", "R1", horse_id="H1", bet_amount="10", odds="4.0")

        self.settle(store)
        second = self.settle(store)

        assert second.bets_found == 0
        assert store.balance("u1") == Decimal("40")
        assert len(store.ledger) == 1

    def test_credit_replayed_after_status_write_failure(self, store):
        """A crash between credit and status flip is repaired without a double credit."""
        store.add_bet("B1", "R1", horse_id="H1", bet_amount="10", odds="4.0")
        store.fail_on("mark_bet_settled:B1")

        first = self.settle(store)
        assert first.failed == 1
        assert store.bets["B1"]["status"] == "pending"

        store._failures.clear()
        second = self.settle(store)

        assert second.won == 1
        assert store.bets["B1"]["status"] == "won"
        assert store.balance("u1") == Decimal("40")

    def test_balance_accumulates_across_wins(self, store):
        store.add_bet("B1", "R1", horse_id="H1", bet_amount="10", odds="4.0")
        store.add_bet("B2", "R1", horse_id="H1", bet_amount="2.50", odds="2")
        store.add_bet("B3", "R1", user_id="u2", horse_id="H1", bet_amount="1", odds="7.5")

        summary = self.settle(store)

        assert summary.won == 3
        assert summary.bankroll_updates == 3
        assert store.balance("u1") == Decimal("45")
        assert store.balance("u2") == Decimal("7.5")

    def test_failed_bet_does_not_block_others(self, store):
        store.add_bet("B1", "R1", horse_id="H1", bet_amount="10", odds="4.0")
        store.add_bet("B2", "R1", horse_id="H2", bet_amount="5", odds="3")
        store.fail_on("mark_bet_settled:B1")

        summary = self.settle(store)

        assert summary.failed == 1
        assert summary.failed_bet_ids == ["B1"]
        assert summary.lost == 1
        assert store.bets["B2"]["status"] == "lost"

    def test_settled_bet_status_never_reverted(self, store):
        """A bet settled by a concurrent run after it was listed stays as it is."""
        store.add_bet("B1", "R1", horse_id="H2", bet_amount="10", odds="4.0")
        listed = [dict(store.bets["B1"])]
        store.bets["B1"]["status"] = "won"

        async def stale_listing(race_id):
            return listed

        store.list_pending_bets = stale_listing
        summary = self.settle(store)

        assert summary.already_settled == 1
        assert summary.lost == 0
        assert store.bets["B1"]["status"] == "won"

    def test_bets_on_other_races_untouched(self, store):
        store.add_bet("B1", "R2", horse_id="H1", bet_amount="10", odds="4.0")

        summary = self.settle(store)

        assert summary.bets_found == 0
        assert store.bets["B1"]["status"] == "pending"

    def test_malformed_bet_does_not_block_others(self, store):
        store.add_bet("B1", "R1", horse_id="H1", bet_amount="10", odds="4.0")
        store.add_bet("B2", "R1", horse_id="H1", bet_amount=None, odds="2")

        summary = self.settle(store)

        assert summary.bets_found == 2
        assert summary.won == 1
        assert summary.failed == 1
        assert summary.failed_bet_ids == ["B2"]
        assert store.bets["B1"]["status"] == "won"
        assert store.bets["B2"]["status"] == "pending"
        assert store.balance("u1") == Decimal("40")

    def test_win_adds_to_existing_balance(self, store):
        store.set_balance("u1", "100.00")
        store.add_bet("B1", "R1", horse_id="H1", bet_amount="10", odds="4.0")

        summary = self.settle(store)

        assert summary.bankroll_updates == 1
        assert store.balance("u1") == Decimal("140")

    def test_replayed_credit_leaves_existing_balance(self, store):
        store.set_balance("u1", "100.00")
        store.add_bet("B1", "R1", horse_id="H1", bet_amount="10", odds="4.0")
        store.fail_on("mark_bet_settled:B1")
        self.settle(store)

        store._failures.clear()
        # a top-up written directly between the two runs
        store.set_balance("u1", str(store.balance("u1") + Decimal("5")))
        summary = self.settle(store)

        assert summary.won == 1
        assert summary.bankroll_updates == 0
        assert store.balance("u1") == Decimal("145")
