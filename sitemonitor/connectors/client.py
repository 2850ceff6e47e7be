"""httpx-based clients for the platform collaborators.

- ``RestTableClient``: PostgREST-style filtered reads, exact counts, inserts.
- ``TriggerClient``: fire-and-forget function invocations and the redeploy hook.

All methods return plain data or raise UpstreamUnavailableError / UpstreamError.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_CONTENT_RANGE_TOTAL = re.compile(r"/(\d+)\s*$")


class UpstreamUnavailableError(Exception):
    """Raised when the upstream is unreachable or the request timed out."""

    def __init__(self, message: str, timed_out: bool = False) -> None:
        self.timed_out = timed_out
        super().__init__(message)


class UpstreamError(Exception):
    """Raised when the upstream answers with an error status."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Upstream error {status_code}: {detail}")


def _raise_for_status(resp: httpx.Response) -> None:
    if resp.status_code >= 400:
        detail = resp.text
        try:
            body = resp.json()
            if isinstance(body, dict):
                detail = body.get("message") or body.get("detail") or resp.text
        except Exception:
            pass
        raise UpstreamError(resp.status_code, str(detail)[:500])


def parse_content_range_total(header: str | None) -> int:
    """Total row count from a ``Content-Range: 0-0/123`` header (0 if absent)."""
    if not header:
        return 0
    match = _CONTENT_RANGE_TOTAL.search(header)
    return int(match.group(1)) if match else 0


class RestTableClient:
    """Synchronous client for the database's filtered-read REST interface."""

    def __init__(self, base_url: str, service_key: str, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._key = service_key
        self._timeout = timeout

    @property
    def _headers(self) -> dict[str, str]:
        h = {"Content-Type": "application/json"}
        if self._key:
            h["apikey"] = self._key
            h["Authorization"] = f"Bearer {self._key}"
        return h

    def _request(
        self,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        json_data: Any = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        try:
            with httpx.Client(timeout=timeout or self._timeout) as client:
                resp = client.request(
                    method,
                    f"{self._base_url}/{table}",
                    params=params,
                    headers={**self._headers, **(headers or {})},
                    json=json_data,
                )
        except httpx.TimeoutException as e:
            raise UpstreamUnavailableError(f"Request to {table} timed out", timed_out=True) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(f"{type(e).__name__}: {e}") from e
        _raise_for_status(resp)
        return resp

    # ── High-level methods ───────────────────────────────────────────────

    def select(
        self,
        table: str,
        columns: str = "id",
        filters: dict[str, str] | None = None,
        limit: int | None = None,
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        """GET /{table}?select=...&<col>=<op>.<value>&limit=N

        ``filters`` maps a column to an operator expression, e.g.
        ``{"created_at": "gte.2025-01-01T00:00:00Z"}``.
        """
        params = {"select": columns, **(filters or {})}
        if limit is not None:
            params["limit"] = str(limit)
        resp = self._request("GET", table, params=params, timeout=timeout)
        body = resp.json()
        return body if isinstance(body, list) else []

    def count(self, table: str, timeout: float | None = None) -> int:
        """Exact row count via ``Prefer: count=exact`` and a zero-width range."""
        resp = self._request(
            "GET", table,
            params={"select": "id"},
            headers={"Prefer": "count=exact", "Range": "0-0"},
            timeout=timeout,
        )
        return parse_content_range_total(resp.headers.get("content-range"))

    def insert(self, table: str, rows: list[dict[str, Any]], timeout: float | None = None) -> None:
        """Append rows; the response body is not requested."""
        if not rows:
            return
        self._request(
            "POST", table,
            headers={"Prefer": "return=minimal"},
            json_data=rows,
            timeout=timeout,
        )


class TriggerClient:
    """Fires remediation triggers: function invocations and the redeploy hook.

    Both are single POSTs without business payload, safe to repeat.
    """

    def __init__(self, functions_url: str, service_key: str = "") -> None:
        self._functions_url = functions_url.rstrip("/")
        self._key = service_key

    def _post(self, url: str, timeout: float, headers: dict[str, str] | None = None) -> int:
        try:
            with httpx.Client(timeout=timeout) as client:
                resp = client.post(url, headers=headers or {}, json={})
        except httpx.TimeoutException as e:
            raise UpstreamUnavailableError(f"Trigger timed out after {timeout}s", timed_out=True) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(f"{type(e).__name__}: {e}") from e
        _raise_for_status(resp)
        return resp.status_code

    def trigger_function(self, name: str, timeout: float) -> int:
        """POST /functions/v1/{name} — returns the accepted status code."""
        headers = {"Content-Type": "application/json"}
        if self._key:
            headers["Authorization"] = f"Bearer {self._key}"
        logger.info("Triggering function %s", name)
        return self._post(f"{self._functions_url}/{name}", timeout, headers)

    def trigger_redeploy(self, hook_url: str, timeout: float) -> int:
        """POST the deploy hook — returns the accepted status code."""
        logger.info("Triggering redeploy hook")
        return self._post(hook_url, timeout)
