"""Result provider client.

The provider is an HTTP function that fetches one race's result from the
upstream racing API and persists the RaceResult/RaceRunner rows itself.
It answers with a JSON envelope ``{success, code?, message?}``; this client
only classifies that answer.
"""

import asyncio
import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import structlog

logger = structlog.get_logger(__name__)

RESULT_NOT_AVAILABLE = "RESULT_NOT_AVAILABLE"
UPSTREAM_OR_INSERT_ERROR = "UPSTREAM_OR_INSERT_ERROR"
TIMEOUT = "TIMEOUT"
TRANSPORT_ERROR = "TRANSPORT_ERROR"

_NOT_AVAILABLE_PATTERN = re.compile(r"not available", re.IGNORECASE)


class FetchStatus(Enum):
    """Classification of one provider call."""

    SAVED = "saved"
    NOT_READY = "not_ready"
    FAILED = "failed"


@dataclass
class FetchOutcome:
    """Result of asking the provider for one race."""

    race_id: str
    status: FetchStatus
    code: str | None = None
    message: str | None = None
    error: str | None = None
    http_status: int | None = None

    @property
    def success(self) -> bool:
        return self.status == FetchStatus.SAVED


def _safe_json(text: str) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def _error_text(body: dict[str, Any], text: str, status_code: int | None) -> str:
    detail = body.get("detail")
    error = body.get("error")
    if isinstance(detail, str):
        base = detail
    elif isinstance(error, str):
        base = error
    elif error:
        base = json.dumps(error)
    else:
        base = text or ""
    return f"{base} [http {status_code}]" if status_code else base


def classify_response(race_id: str, status_code: int, text: str) -> FetchOutcome:
    """
    Classify a provider response as saved, not ready or failed.

    Not-ready is recognised by the envelope's code or message, never by
    HTTP status alone: the provider may report it with a 404 or a 200.
    """
    body = _safe_json(text)
    code = body.get("code")
    message = body.get("message")
    code = str(code) if code is not None else None
    message = str(message) if message is not None else None

    not_ready = code == RESULT_NOT_AVAILABLE or bool(
        message and _NOT_AVAILABLE_PATTERN.search(message)
    )
    if not_ready:
        return FetchOutcome(
            race_id=race_id,
            status=FetchStatus.NOT_READY,
            code=RESULT_NOT_AVAILABLE,
            message=message or "Result not available yet",
            http_status=status_code,
        )

    if 200 <= status_code < 300 and body.get("success") is True:
        return FetchOutcome(
            race_id=race_id,
            status=FetchStatus.SAVED,
            code=code,
            message=message,
            http_status=status_code,
        )

    return FetchOutcome(
        race_id=race_id,
        status=FetchStatus.FAILED,
        code=code or UPSTREAM_OR_INSERT_ERROR,
        message=message,
        error=_error_text(body, text, status_code),
        http_status=status_code,
    )


class ResultProviderClient:
    """
    Client for the fetch-and-save result function.

    One POST per race with a hard per-call timeout. Calls are never
    retried here; a race that fails stays pending for the next run.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the provider client.

        Args:
            url: Provider function URL
            api_key: Bearer credential for the provider
            timeout: Per-call timeout in seconds
            http_client: Optional injected HTTP client
        """
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "ResultProviderClient":
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

    async def fetch(self, race_id: str) -> FetchOutcome:
        """
        Ask the provider to fetch and persist one race result.

        Transport failures and timeouts are returned as FAILED outcomes
        rather than raised.
        """
        client = await self._get_client()
        try:
            response = await asyncio.wait_for(
                client.post(
                    self.url,
                    json={"race_id": race_id},
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                ),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("result_fetch_timeout", race_id=race_id, timeout=self.timeout)
            return FetchOutcome(
                race_id=race_id,
                status=FetchStatus.FAILED,
                code=TIMEOUT,
                message=f"Result fetch timed out after {self.timeout:g}s",
            )
        except httpx.HTTPError as e:
            logger.warning("result_fetch_transport_error", race_id=race_id, error=str(e))
            return FetchOutcome(
                race_id=race_id,
                status=FetchStatus.FAILED,
                code=TRANSPORT_ERROR,
                message=str(e) or type(e).__name__,
            )

        outcome = classify_response(race_id, response.status_code, response.text)
        logger.debug(
            "result_fetch_classified",
            race_id=race_id,
            status=outcome.status.value,
            code=outcome.code,
            http_status=response.status_code,
        )
        return outcome
