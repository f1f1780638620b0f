"""Read-only access to the checklist/evaluation platform."""
from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from invoicematch.core.errors import EvaluationUnavailable

logger = logging.getLogger(__name__)


class EvaluationClient(Protocol):
    """Contract for fetching a completed evaluation by id."""

    async def get_evaluation(self, evaluation_id: int) -> dict[str, Any]:
        """Return the full evaluation document."""


class HttpEvaluationClient:
    """Client for the evaluation platform's REST API."""

    def __init__(
        self,
        api_base: str,
        token: str | None = None,
        *,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_base.startswith(("http://", "https://")):
            raise ValueError("api_base must include scheme and host")
        self._api_base = api_base.rstrip("/")
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._headers = headers
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def get_evaluation(self, evaluation_id: int) -> dict[str, Any]:
        url = f"{self._api_base}/evaluations/{evaluation_id}"
        try:
            response = await self._client.get(url, headers=self._headers)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise EvaluationUnavailable(
                f"evaluation {evaluation_id} fetch failed with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise EvaluationUnavailable(f"evaluation platform unreachable: {exc}") from exc
        except ValueError as exc:
            raise EvaluationUnavailable(f"evaluation {evaluation_id} returned malformed JSON") from exc

        # some deployments wrap the document in {"data": {...}}
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        if not isinstance(payload, dict):
            raise EvaluationUnavailable(f"evaluation {evaluation_id} returned an unexpected document")
        logger.debug("Fetched evaluation %s (checklist %s)", evaluation_id, (payload.get("checklist") or {}).get("name"))
        return payload

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class InMemoryEvaluationClient:
    """Evaluation source backed by a dict, used when no platform is configured and in tests."""

    def __init__(self, evaluations: dict[int, dict[str, Any]] | None = None) -> None:
        self._evaluations: dict[int, dict[str, Any]] = dict(evaluations or {})

    def add(self, evaluation: dict[str, Any]) -> None:
        self._evaluations[int(evaluation["id"])] = evaluation

    async def get_evaluation(self, evaluation_id: int) -> dict[str, Any]:
        try:
            return self._evaluations[evaluation_id]
        except KeyError as exc:
            raise EvaluationUnavailable(f"evaluation {evaluation_id} not found") from exc

    def reset(self) -> None:
        self._evaluations.clear()


_client: EvaluationClient = InMemoryEvaluationClient()


def configure_evaluation_client(client: EvaluationClient) -> None:
    """Install the evaluation client used by the webhook handler."""

    global _client
    _client = client


def get_evaluation_client() -> EvaluationClient:
    """Return the currently configured evaluation client."""

    return _client
