"""
Pipedrive CRM Gateway.

All outbound HTTP calls to the Pipedrive REST API go through this class.
Services and blueprints never call ``requests`` directly.

  - Auth: personal API token passed as the ``api_token`` query parameter
  - Retry: max 2 retries, backoff 1 s → 4 s
  - Timeout: 30 s (configurable per call)
  - 4xx responses other than 429 are not retried
  - List endpoints are paged with ``start`` / ``limit`` until Pipedrive
    reports no ``more_items_in_collection``
  - Structured GatewayResult from ``request``; the typed operations raise
    ExternalServiceError when the call ultimately fails

Testability: pass a mock ``session`` to PipedriveGateway() in tests instead
of letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timezone
from typing import Any

import requests

from flowreport.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.pipedrive.com/v1"

# ── Retry constants ────────────────────────────────────────────────────────
_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = [1, 4]

_DEFAULT_TIMEOUT = 30

# ── Pagination ─────────────────────────────────────────────────────────────
_PAGE_SIZE = 500
_MAX_PAGES = 200


class GatewayResult:
    """Structured return value from PipedriveGateway.request.

    Attributes:
        ok:           True if the call succeeded (HTTP 2xx + ``success`` flag).
        status_code:  HTTP status code (None on network-level failure).
        data:         The ``data`` member of the Pipedrive envelope.
        error:        Human-readable error message or None.
        duration_ms:  Round-trip latency of the last attempt.
        attempts:     Number of HTTP attempts made.
        additional_data: The ``additional_data`` member (pagination info).
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: Any,
        error: str | None,
        duration_ms: int,
        attempts: int = 1,
        additional_data: dict | None = None,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms
        self.attempts = attempts
        self.additional_data = additional_data or {}

    def raise_for_error(self, operation: str) -> None:
        if not self.ok:
            raise ExternalServiceError(
                f"Pipedrive {operation} failed: {self.error}",
                status_code=self.status_code,
            )


class PipedriveGateway:
    """Pipedrive REST API gateway.

    Instantiated once at module level. Configuration is read from the
    environment at call time unless given explicitly, so tests can set
    PIPEDRIVE_API_TOKEN after import.

    Usage:
        from flowreport.integrations.pipedrive_gateway import pipedrive_gateway
        pipelines = pipedrive_gateway.list_pipelines()
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        api_token: str | None = None,
        base_url: str | None = None,
    ) -> None:
        self._session: requests.Session | None = session
        self._api_token = api_token
        self._base_url = base_url

    def init_app(self, app) -> None:
        """Take token and base URL from the Flask config."""
        self._api_token = app.config.get("PIPEDRIVE_API_TOKEN")
        self._base_url = app.config.get("PIPEDRIVE_BASE_URL")

    # ── HTTP session & settings ──────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({
                "Accept": "application/json",
                "User-Agent": "flow-metrics-report/1.0",
            })
        return self._session

    @property
    def api_token(self) -> str | None:
        return self._api_token or os.getenv("PIPEDRIVE_API_TOKEN")

    @property
    def base_url(self) -> str:
        return (self._base_url or os.getenv("PIPEDRIVE_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")

    # ── Core request dispatcher ──────────────────────────────────────────────

    def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> GatewayResult:
        """Execute a request against ``{base_url}{endpoint}`` with retries.

        Returns:
            GatewayResult; never raises. Callers check ``.ok``.
        """
        token = self.api_token
        if not token:
            return GatewayResult(
                ok=False, status_code=None, data=None,
                error="PIPEDRIVE_API_TOKEN not configured", duration_ms=0, attempts=0,
            )

        url = f"{self.base_url}{endpoint}"
        query = dict(params or {})
        query["api_token"] = token

        last_error = "Unknown error"
        last_status: int | None = None
        duration_ms = 0

        for attempt in range(_RETRY_MAX + 1):
            try:
                t0 = time.perf_counter()
                resp = self.session.request(method, url, params=query, timeout=timeout)
                duration_ms = int((time.perf_counter() - t0) * 1000)
                last_status = resp.status_code

                if resp.ok:
                    try:
                        body = resp.json() if resp.content else {}
                    except ValueError:
                        body = None
                    if not isinstance(body, dict) or body.get("success") is False:
                        last_error = "Unexpected response body"
                        logger.warning("Pipedrive returned an unexpected body url=%s", endpoint)
                        return GatewayResult(
                            ok=False, status_code=resp.status_code, data=None,
                            error=last_error, duration_ms=duration_ms, attempts=attempt + 1,
                        )
                    return GatewayResult(
                        ok=True, status_code=resp.status_code, data=body.get("data"),
                        error=None, duration_ms=duration_ms, attempts=attempt + 1,
                        additional_data=body.get("additional_data"),
                    )

                last_error = f"HTTP {resp.status_code}: {resp.text[:500]}"
                logger.warning(
                    "Pipedrive request failed attempt=%d/%d status=%d endpoint=%s",
                    attempt + 1, _RETRY_MAX + 1, resp.status_code, endpoint,
                )
                if 400 <= resp.status_code < 500 and resp.status_code != 429:
                    return GatewayResult(
                        ok=False, status_code=resp.status_code, data=None,
                        error=last_error, duration_ms=duration_ms, attempts=attempt + 1,
                    )

            except requests.Timeout:
                duration_ms = int(timeout * 1000)
                last_error = f"Request timed out after {timeout}s"
                logger.warning(
                    "Pipedrive request timed out attempt=%d/%d endpoint=%s",
                    attempt + 1, _RETRY_MAX + 1, endpoint,
                )

            except requests.RequestException as exc:
                last_error = str(exc)[:500]
                logger.warning(
                    "Pipedrive network error attempt=%d/%d endpoint=%s error=%s",
                    attempt + 1, _RETRY_MAX + 1, endpoint, last_error,
                )

            if attempt < _RETRY_MAX:
                sleep_s = _RETRY_BACKOFF_SECONDS[min(attempt, len(_RETRY_BACKOFF_SECONDS) - 1)]
                logger.info("Retrying Pipedrive request in %ss (attempt %d)", sleep_s, attempt + 2)
                time.sleep(sleep_s)

        logger.error("Pipedrive request exhausted retries endpoint=%s error=%s", endpoint, last_error)
        return GatewayResult(
            ok=False, status_code=last_status, data=None,
            error=last_error, duration_ms=duration_ms, attempts=_RETRY_MAX + 1,
        )

    # ── Pipedrive operations ─────────────────────────────────────────────────

    def list_pipelines(self) -> list[dict]:
        """GET /pipelines → raw pipeline dicts."""
        result = self.request("GET", "/pipelines")
        result.raise_for_error("list_pipelines")
        return result.data or []

    def list_stages(self, pipeline_id: int | None = None) -> list[dict]:
        """GET /stages, optionally limited to one pipeline."""
        params = {"pipeline_id": pipeline_id} if pipeline_id is not None else None
        result = self.request("GET", "/stages", params=params)
        result.raise_for_error("list_stages")
        return result.data or []

    def iter_pages(
        self,
        endpoint: str,
        operation: str,
        *,
        params: dict | None = None,
        page_size: int = _PAGE_SIZE,
    ):
        """Yield successive ``data`` pages of a paginated list endpoint.

        Follows ``additional_data.pagination.next_start`` until
        ``more_items_in_collection`` is false. A 404 on the first page
        yields nothing.
        """
        start = 0
        for page in range(_MAX_PAGES):
            query = dict(params or {}, start=start, limit=page_size)
            result = self.request("GET", endpoint, params=query)
            if page == 0 and result.status_code == 404:
                return
            result.raise_for_error(operation)
            yield result.data or []

            pagination = result.additional_data.get("pagination") or {}
            if not pagination.get("more_items_in_collection"):
                return
            next_start = pagination.get("next_start")
            if next_start is None or next_start <= start:
                next_start = start + page_size
            start = next_start

        logger.warning("Pagination stopped after %d pages endpoint=%s", _MAX_PAGES, endpoint)

    def get_deal_flow(self, deal_id: int) -> list[dict]:
        """GET /deals/{id}/flow → raw flow events (all kinds, all pages)."""
        events: list[dict] = []
        for page in self.iter_pages(f"/deals/{deal_id}/flow", "get_deal_flow"):
            events.extend(page)
        return events

    def list_deals_updated_since(self, since: datetime) -> list[dict]:
        """Deals whose ``update_time`` is at or after *since* (UTC).

        Pages through GET /deals sorted by ``update_time DESC`` and stops at
        the first page that reaches past *since*.
        """
        cutoff = since.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        deals: list[dict] = []
        params = {"status": "all_not_deleted", "sort": "update_time DESC"}
        for page in self.iter_pages("/deals", "list_deals_updated_since", params=params):
            recent = [d for d in page if (d.get("update_time") or "") >= cutoff]
            deals.extend(recent)
            if len(recent) < len(page):
                break
        return deals


# Module-level singleton
pipedrive_gateway = PipedriveGateway()
