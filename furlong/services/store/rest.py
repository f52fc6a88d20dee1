"""REST row-API implementation of the settlement store.

Talks to a PostgREST-shaped HTTP API:
- GET with column filters (``col=eq.value``) for selects
- PATCH with filters for guarded updates
- POST with ``on_conflict`` and ``Prefer: resolution=...`` for upserts
- DELETE with filters
- POST to ``rpc/<function>`` for writes that must be one transaction
"""

from datetime import date, datetime, timezone
from typing import Any

import httpx
import structlog

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
from furlong.services.errors import StoreError
from furlong.services.store.base import (
    BANKROLL_CREDIT_RPC,
    PENDING_RACES_VIEW,
    UNSETTLED_RACES_VIEW,
    SettlementStore,
)

logger = structlog.get_logger(__name__)

Params = list[tuple[str, str]]

MERGE_DUPLICATES = "resolution=merge-duplicates,return=minimal"
RETURN_REPRESENTATION = "return=representation"


def eq(value: Any) -> str:
    """PostgREST equality filter."""
    if isinstance(value, (date, datetime)):
        value = value.isoformat()
    return f"eq.{value}"


class RestStore(SettlementStore):
    """
    Settlement store backed by a REST row API.

    Usable as an async context manager; an httpx client may be injected
    for testing.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "RestStore":
        await self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        params: Params | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        """
        Make a request against one table or view.

        Raises:
            StoreError: On transport failure, timeout, error status or a
                body that is not JSON.
        """
        url = f"{self.base_url}/rest/v1/{table}"
        client = await self._get_client()

        try:
            response = await client.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(prefer),
            )
        except httpx.TimeoutException as e:
            raise StoreError(f"{method} {table} timed out", table=table) from e
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {table} failed: {e}", table=table) from e

        if response.status_code >= 400:
            logger.warning(
                "store_request_failed",
                method=method,
                table=table,
                status_code=response.status_code,
                response_text=response.text[:500] if response.text else "",
            )
            raise StoreError(
                f"{method} {table} failed: HTTP {response.status_code}",
                table=table,
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise StoreError(f"{method} {table} returned non-JSON body", table=table) from e

    async def _select(self, table: str, params: Params) -> list[dict[str, Any]]:
        data = await self._request("GET", table, params=params)
        if not isinstance(data, list):
            raise StoreError(f"GET {table} returned {type(data).__name__}, expected list", table=table)
        return data

    async def _patch(self, table: str, params: Params, values: dict[str, Any]) -> int:
        data = await self._request(
            "PATCH", table, params=params, json=values, prefer=RETURN_REPRESENTATION
        )
        return len(data) if isinstance(data, list) else 0

    async def _upsert(
        self,
        table: str,
        on_conflict: str,
        rows: list[dict[str, Any]],
        prefer: str = MERGE_DUPLICATES,
    ) -> None:
        if not rows:
            return
        await self._request(
            "POST",
            table,
            params=[("on_conflict", on_conflict)],
            json=rows,
            prefer=prefer,
        )

    # Races

    async def _list_races(
        self,
        view: str,
        date_from: date,
        date_to: date,
        race_id: str | None,
    ) -> list[Race]:
        params: Params = [
            ("select", "race_id,date,off_time,course,course_id"),
            ("date", f"gte.{date_from.isoformat()}"),
            ("date", f"lte.{date_to.isoformat()}"),
            ("order", "date.asc,off_time.asc"),
        ]
        if race_id:
            params.append(("race_id", eq(race_id)))
        rows = await self._select(view, params)
        return Race.parse_valid_rows(rows)

    async def list_pending_races(
        self,
        date_from: date,
        date_to: date,
        race_id: str | None = None,
    ) -> list[Race]:
        return await self._list_races(PENDING_RACES_VIEW, date_from, date_to, race_id)

    async def list_unsettled_races(
        self,
        date_from: date,
        date_to: date,
        race_id: str | None = None,
    ) -> list[Race]:
        return await self._list_races(UNSETTLED_RACES_VIEW, date_from, date_to, race_id)

    async def get_race(self, race_id: str) -> Race | None:
        rows = await self._select(
            "races",
            [("select", "race_id,date,off_time,course,course_id"), ("race_id", eq(race_id)), ("limit", "1")],
        )
        return Race.parse_row(rows[0]) if rows else None

    async def get_race_result(self, race_id: str) -> RaceResult | None:
        rows = await self._select(
            "race_results", [("select", "*"), ("race_id", eq(race_id)), ("limit", "1")]
        )
        return RaceResult.parse_row(rows[0]) if rows else None

    async def list_runners(self, race_id: str) -> list[RaceRunner]:
        rows = await self._select(
            "race_runners",
            [("select", "*"), ("race_id", eq(race_id)), ("order", "position.asc.nullslast")],
        )
        return RaceRunner.parse_rows(rows)

    async def list_entries(self, race_id: str) -> list[RaceEntry]:
        rows = await self._select("race_entries", [("select", "*"), ("race_id", eq(race_id))])
        return RaceEntry.parse_rows(rows)

    # Propagation

    async def set_finishing_position(
        self,
        table: str,
        race_id: str,
        horse_id: str,
        position: int,
        updated_at: datetime,
    ) -> int:
        params: Params = [
            ("race_id", eq(race_id)),
            ("horse_id", eq(horse_id)),
            ("or", f"(finishing_position.is.null,finishing_position.neq.{int(position)})"),
        ]
        return await self._patch(
            table,
            params,
            {"finishing_position": position, "result_updated_at": updated_at.isoformat()},
        )

    # Bets and bankroll

    async def list_pending_bets(self, race_id: str) -> list[dict[str, Any]]:
        # Rows are validated one by one by the settlement engine
        return await self._select(
            "bets",
            [("select", "*"), ("race_id", eq(race_id)), ("status", eq(BetStatus.PENDING.value))],
        )

    async def mark_bet_settled(
        self,
        bet_id: str,
        status: BetStatus,
        settled_at: datetime,
    ) -> bool:
        changed = await self._patch(
            "bets",
            [("id", eq(bet_id)), ("status", eq(BetStatus.PENDING.value))],
            {"status": status.value, "updated_at": settled_at.isoformat()},
        )
        return changed > 0

    async def apply_ledger_entry(self, entry: BankrollLedgerEntry) -> Bankroll | None:
        data = await self._request(
            "POST",
            f"rpc/{BANKROLL_CREDIT_RPC}",
            json={
                "p_reference": entry.reference,
                "p_user_id": entry.user_id,
                "p_bet_id": entry.bet_id,
                "p_entry_type": entry.entry_type.value,
                "p_amount": str(entry.amount),
            },
        )
        if not isinstance(data, list):
            raise StoreError(
                f"rpc {BANKROLL_CREDIT_RPC} returned {type(data).__name__}, expected list",
                table="user_bankroll",
            )
        return Bankroll.parse_row(data[0]) if data else None

    # Model accuracy

    async def upsert_model_race_results(self, rows: list[MLModelRaceResult]) -> None:
        # created_at is left to the column default so a re-run keeps the original timestamp
        await self._upsert(
            "ml_model_race_results",
            "race_id,horse_id,model_name",
            [row.model_dump(mode="json", exclude={"created_at"}) for row in rows],
        )

    async def delete_stale_model_race_results(
        self,
        race_id: str,
        model_name: str,
        keep_horse_id: str,
    ) -> int:
        data = await self._request(
            "DELETE",
            "ml_model_race_results",
            params=[
                ("race_id", eq(race_id)),
                ("model_name", eq(model_name)),
                ("horse_id", f"neq.{keep_horse_id}"),
            ],
            prefer=RETURN_REPRESENTATION,
        )
        return len(data) if isinstance(data, list) else 0

    async def list_model_race_results(
        self,
        race_date: date | None = None,
        created_since: datetime | None = None,
    ) -> list[MLModelRaceResult]:
        params: Params = [("select", "*"), ("order", "race_id.asc,model_name.asc")]
        if race_date is not None:
            params.append(("race_date", eq(race_date)))
        if created_since is not None:
            params.append(("created_at", f"gte.{created_since.isoformat()}"))
        rows = await self._select("ml_model_race_results", params)
        return MLModelRaceResult.parse_rows(rows)

    async def upsert_model_performance(self, rows: list[MLModelPerformance]) -> None:
        updated_at = datetime.now(timezone.utc).isoformat()
        await self._upsert(
            "ml_model_performance",
            "model_name,analysis_date",
            [
                {**row.model_dump(mode="json"), "updated_at": updated_at}
                for row in rows
            ],
        )
