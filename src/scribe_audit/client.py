"""
AuditClient SDK — sync client for Scribe-Audit.

Used by operator tooling and dashboards to trigger verification passes
and read run history.  Appends are not exposed over HTTP.
"""

import json
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import httpx


@dataclass
class ClientVerification:
    """Result of verify() / verify_incremental()."""

    intact: bool
    status: str = ""
    total_entries: int = 0
    verified_entries: int = 0
    broken_at_id: Optional[str] = None
    expected: Optional[str] = None
    actual: Optional[str] = None
    reason: Optional[str] = None
    chain_id: Optional[str] = None
    chains_checked: int = 0
    error: Optional[str] = None
    run_id: Optional[str] = None


@dataclass
class ClientRun:
    """A recorded verification run."""

    id: str
    kind: str
    status: str
    intact: bool
    run_at: Optional[datetime] = None
    chain_id: Optional[str] = None
    total_entries: int = 0
    verified_entries: int = 0
    broken_at_id: Optional[str] = None
    reason: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


class AuditClient:
    """
    Synchronous HTTP client for Scribe-Audit.

    Can be wrapped in async by consumers; designed for simplicity in sync contexts.
    """

    def __init__(
        self,
        server_url: str = "http://localhost:8080",
        api_key: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        retry_backoff_base: float = 0.5,
    ):
        self.server_url = server_url.rstrip("/")
        self.api_key = api_key
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base
        self._http = httpx.Client(
            base_url=self.server_url,
            timeout=timeout,
        )

    def _headers(self) -> dict[str, str]:
        headers = {}
        if self.api_key:
            headers["X-Audit-Api-Key"] = self.api_key
        return headers

    def _request(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Central HTTP method with retry and structured error handling.

        Retries on:
        - httpx.TimeoutException
        - 5xx status codes
        - 429 (rate limit)

        No retry on other 4xx errors.

        Returns parsed JSON on success, or structured error dict on failure.
        """
        kwargs.setdefault("headers", self._headers())
        last_error = None
        for attempt in range(self.max_retries):
            try:
                resp = getattr(self._http, method)(path, **kwargs)
                if resp.status_code >= 500 or resp.status_code == 429:
                    last_error = f"HTTP {resp.status_code}"
                    if attempt < self.max_retries - 1:
                        time.sleep(self.retry_backoff_base * (2 ** attempt))
                        continue
                    return {
                        "error": f"Server error: {resp.status_code}",
                        "code": "SERVER_ERROR",
                    }
                if resp.status_code >= 400:
                    return {
                        "error": f"Client error: {resp.status_code}",
                        "code": "CLIENT_ERROR",
                    }
                return resp.json()
            except httpx.TimeoutException:
                last_error = "timeout"
                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_backoff_base * (2 ** attempt))
                    continue
            except httpx.HTTPError as e:
                last_error = str(e)
                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_backoff_base * (2 ** attempt))
                    continue
            except json.JSONDecodeError:
                return {"error": "Invalid JSON response", "code": "JSON_ERROR"}

        return {"error": f"All {self.max_retries} retries exhausted: {last_error}", "code": "CONNECTION_ERROR"}

    @staticmethod
    def _parse_verification(data: dict) -> ClientVerification:
        if "error" in data and "intact" not in data:
            return ClientVerification(intact=False, status="error", error=data["error"])
        return ClientVerification(
            intact=data.get("intact", False),
            status=data.get("status", ""),
            total_entries=data.get("total_entries", 0),
            verified_entries=data.get("verified_entries", 0),
            broken_at_id=data.get("broken_at_id"),
            expected=data.get("expected"),
            actual=data.get("actual"),
            reason=data.get("reason"),
            chain_id=data.get("chain_id"),
            chains_checked=data.get("chains_checked", 0),
            error=data.get("error"),
            run_id=data.get("run_id"),
        )

    @staticmethod
    def _parse_run(data: dict) -> ClientRun:
        run_at = None
        if data.get("run_at"):
            try:
                run_at = datetime.fromisoformat(data["run_at"])
            except (ValueError, TypeError):
                pass
        return ClientRun(
            id=data.get("id", ""),
            kind=data.get("kind", ""),
            status=data.get("status", ""),
            intact=data.get("intact", False),
            run_at=run_at,
            chain_id=data.get("chain_id"),
            total_entries=data.get("total_entries", 0),
            verified_entries=data.get("verified_entries", 0),
            broken_at_id=data.get("broken_at_id"),
            reason=data.get("reason"),
            details=data.get("details", {}),
        )

    def health(self) -> dict[str, Any]:
        return self._request("get", "/health")

    def verify(self, chain_id: Optional[str] = None, record: bool = False) -> ClientVerification:
        """Full verification of one chain, or all chains."""
        params: dict[str, Any] = {"record": str(record).lower()}
        if chain_id:
            params["chain_id"] = chain_id
        return self._parse_verification(self._request("post", "/audit/verify", params=params))

    def verify_incremental(
        self, chain_id: Optional[str] = None, record: bool = False,
    ) -> ClientVerification:
        params: dict[str, Any] = {"record": str(record).lower()}
        if chain_id:
            params["chain_id"] = chain_id
        return self._parse_verification(
            self._request("post", "/audit/verify/incremental", params=params)
        )

    def latest_run(self, kind: Optional[str] = None) -> Optional[ClientRun]:
        params = {"kind": kind} if kind else {}
        data = self._request("get", "/audit/runs/latest", params=params)
        if "error" in data and "id" not in data:
            return None
        return self._parse_run(data)

    def runs_summary(self, days: int = 7) -> dict[str, Any]:
        return self._request("get", "/audit/runs/summary", params={"days": days})

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
