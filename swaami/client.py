"""Async HTTP client for the Swaami API.

Server errors come back as the same exception types the services raise, so
callers can tell a lost claim race (AlreadyMatched) from a transport hiccup
(TransientStoreError). Transient failures are retried; a retried claim first
checks whether the earlier attempt already went through.
"""

from __future__ import annotations

import logging

import httpx

from swaami.errors import (
    AlreadyMatched,
    AuthorizationError,
    FatalStoreError,
    ForbiddenError,
    InvalidTransition,
    NotFoundError,
    OwnTaskClaim,
    StateConflictError,
    SwaamiError,
    TaskNotFound,
    TaskUnavailable,
    TransientStoreError,
    ValidationError,
)
from swaami.retry import RetryConfig, with_retry

logger = logging.getLogger("swaami.client")

LIVE_MATCH_STATUSES = ("pending", "accepted", "arrived")


class ClaimInFlight(SwaamiError):
    """This client is already claiming the task; the second tap is refused."""

    code = "claim_in_flight"
    status_code = 409
    user_message = "Already sending your offer"

    def __init__(self, task_id: str):
        super().__init__(f"Claim for task {task_id} already in flight")
        self.task_id = task_id


class NotAuthenticated(SwaamiError):
    code = "unauthorized"
    status_code = 401
    user_message = "Please sign in again"


_TASK_ERRORS = {
    AlreadyMatched.code: AlreadyMatched,
    OwnTaskClaim.code: OwnTaskClaim,
    TaskNotFound.code: TaskNotFound,
}


def error_from_response(resp: httpx.Response) -> SwaamiError:
    """Rebuild the typed error from an error response body."""
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    code = body.get("code")
    message = body.get("error") or resp.reason_phrase

    if code in _TASK_ERRORS:
        return _TASK_ERRORS[code](body.get("task_id", ""))
    if code == TaskUnavailable.code:
        return TaskUnavailable(body.get("task_id", ""))
    if code == AuthorizationError.code:
        return AuthorizationError(
            body.get("action", ""),
            body.get("tier", ""),
            body.get("required_tier", ""),
            missing=body.get("missing", []),
        )
    if code == InvalidTransition.code:
        return InvalidTransition(
            body.get("entity", ""), body.get("current", ""), body.get("target", "")
        )

    status = resp.status_code
    if status == 400:
        return ValidationError(message)
    if status == 401:
        return NotAuthenticated(message)
    if status == 403:
        return ForbiddenError(message)
    if status == 404:
        return NotFoundError("resource", str(resp.request.url.path))
    if status == 409:
        return StateConflictError(message)
    if status in (429, 502, 503, 504):
        return TransientStoreError(f"HTTP {status}: {message}")
    return FatalStoreError(f"HTTP {status}: {message}", reference=body.get("reference"))


class SwaamiClient:
    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        timeout: float = 10.0,
        retry: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.retry = retry or RetryConfig()
        self._profile_id: str | None = None
        self._claims_in_flight: set[str] = set()
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> SwaamiClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _send(self, method: str, path: str, **kwargs) -> dict:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            resp = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientStoreError(f"timeout calling {method} {path}") from exc
        except httpx.TransportError as exc:
            raise TransientStoreError(f"network error calling {method} {path}: {exc}") from exc

        if resp.status_code >= 400:
            raise error_from_response(resp)
        return resp.json()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        config = self.retry.for_writes() if method != "GET" else self.retry
        return await with_retry(
            lambda: self._send(method, path, **kwargs), config, name=f"{method} {path}"
        )

    # --- profile ---

    async def register(self, display_name: str) -> dict:
        # Not retried: a lost response would leave an orphaned account
        data = await self._send("POST", "/v1/register", json={"display_name": display_name})
        self.api_key = data["api_key"]
        self._profile_id = data["profile_id"]
        return data

    async def me(self) -> dict:
        data = await self._request("GET", "/v1/me")
        self._profile_id = data["id"]
        return data

    async def update_profile(self, **changes) -> dict:
        return await self._request("PATCH", "/v1/me", json=changes)

    async def onboarding(self) -> dict:
        return await self._request("GET", "/v1/me/onboarding")

    async def trust(self) -> dict:
        return await self._request("GET", "/v1/me/trust")

    async def credits(self) -> dict:
        return await self._request("GET", "/v1/me/credits")

    # --- tasks ---

    async def activity(self) -> dict:
        return await self._request("GET", "/v1/activity")

    async def browse_tasks(self, **params) -> dict:
        return await self._request("GET", "/v1/tasks", params=params)

    async def get_task(self, task_id: str) -> dict:
        return await self._request("GET", f"/v1/tasks/{task_id}")

    async def post_task(self, title: str, **fields) -> dict:
        # Not retried: a retry after a lost response would post the request twice
        return await self._send("POST", "/v1/tasks", json={"title": title, **fields})

    async def cancel_task(self, task_id: str) -> dict:
        return await self._request("POST", f"/v1/tasks/{task_id}/cancel")

    async def claim_task(self, task_id: str) -> dict:
        """Offer to help with a task.

        Raises ClaimInFlight if this client is already claiming it, and
        AlreadyMatched if someone else got there first.
        """
        if task_id in self._claims_in_flight:
            raise ClaimInFlight(task_id)
        self._claims_in_flight.add(task_id)
        try:
            return await with_retry(
                lambda: self._send("POST", f"/v1/tasks/{task_id}/claim"),
                self.retry.for_writes(),
                reconcile=lambda: self._claimed_already(task_id),
                name=f"claim {task_id}",
            )
        finally:
            self._claims_in_flight.discard(task_id)

    async def _claimed_already(self, task_id: str) -> dict | None:
        if self._profile_id is None:
            await self.me()
        data = await self._send("GET", "/v1/matches", params={"limit": 100})
        for match in data["matches"]:
            if (
                match["task_id"] == task_id
                and match["helper_id"] == self._profile_id
                and match["status"] in LIVE_MATCH_STATUSES
            ):
                logger.info("Claim for %s already went through as %s", task_id, match["id"])
                return {"match": match, "task_id": task_id, "task_status": "matched"}
        return None

    # --- matches ---

    async def list_matches(self, **params) -> dict:
        return await self._request("GET", "/v1/matches", params=params)

    async def accept_match(self, match_id: str) -> dict:
        return await self._request("POST", f"/v1/matches/{match_id}/accept")

    async def mark_arrived(self, match_id: str) -> dict:
        return await self._request("POST", f"/v1/matches/{match_id}/arrive")

    async def complete_match(self, match_id: str) -> dict:
        return await self._request("POST", f"/v1/matches/{match_id}/complete")

    async def cancel_match(self, match_id: str) -> dict:
        return await self._request("POST", f"/v1/matches/{match_id}/cancel")

    async def send_message(self, match_id: str, content: str) -> dict:
        # Not retried: a lost response would post the message twice
        return await self._send(
            "POST", f"/v1/matches/{match_id}/messages", json={"content": content}
        )

    async def list_messages(self, match_id: str, **params) -> dict:
        return await self._request("GET", f"/v1/matches/{match_id}/messages", params=params)
