"""JiraClient - REST v2 access to the issue tracker."""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import TYPE_CHECKING, Any

import httpx

from ticketpilot.exceptions import AuthenticationError, TransientAPIError
from ticketpilot.logging import get_logger, truncate_output
from ticketpilot.tracker.exceptions import (
    FieldNotFoundError,
    TicketNotFoundError,
    TrackerError,
    TransitionNotFoundError,
)
from ticketpilot.tracker.models import SecurityLevel, Ticket

if TYPE_CHECKING:
    from collections.abc import Callable

MAX_ATTEMPTS = 3
MAX_RETRY_WAIT_SECONDS = 60
INITIAL_BACKOFF_SECONDS = 1
MAX_BACKOFF_SECONDS = 16
MAX_JITTER_SECONDS = 1.0
MAX_ERROR_BODY = 200

SEARCH_FIELDS = [
    "summary",
    "description",
    "status",
    "issuetype",
    "project",
    "components",
    "labels",
    "assignee",
    "created",
    "updated",
]


class JiraClient:
    """Client for the Jira REST API (v2).

    Authenticates with basic auth when a username is given (Jira Cloud) and
    with a bearer personal access token otherwise (Jira Data Center).
    Rate-limited requests are retried honouring ``Retry-After``.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        username: str = "",
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the Jira client.

        Args:
            base_url: Jira site URL (e.g. https://example.atlassian.net).
            api_token: API token or personal access token.
            username: Account name for basic auth; empty selects bearer auth.
            logger: Logger to use. Defaults to 'ticketpilot.tracker'.
            sleep: Sleep function, replaceable in tests.
        """
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.username = username
        self.logger = logger or get_logger("tracker")
        self._sleep = sleep
        self._client: httpx.Client | None = None
        self._field_ids: dict[str, str] | None = None
        self._field_lock = threading.Lock()

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client for the Jira API."""
        if self._client is None:
            headers = {"Accept": "application/json", "Content-Type": "application/json"}
            auth: httpx.Auth | None = None
            if self.username:
                auth = httpx.BasicAuth(self.username, self.api_token)
            else:
                headers["Authorization"] = f"Bearer {self.api_token}"
            self._client = httpx.Client(
                base_url=self.base_url,
                headers=headers,
                auth=auth,
                timeout=30.0,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def _request(
        self,
        method: str,
        path: str,
        *,
        ok: tuple[int, ...] = (200,),
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, retrying on HTTP 429.

        Raises:
            TransientAPIError: Network failure, 5xx, or rate limit not lifted.
            AuthenticationError: HTTP 401.
            TrackerError: Any other unexpected status.
        """
        self.logger.debug("%s %s", method, path)
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = self.client.request(method, path, **kwargs)
            except httpx.TransportError as e:
                raise TransientAPIError(f"Jira unreachable for {method} {path}: {e}") from e

            if response.status_code in ok:
                return response

            if response.status_code == 429 and attempt < MAX_ATTEMPTS:
                wait = self._retry_wait(response, attempt)
                self.logger.info(
                    "Rate limited by Jira on %s %s (attempt %d), retrying in %.1fs",
                    method,
                    path,
                    attempt,
                    wait,
                )
                self._sleep(wait)
                continue

            body = truncate_output(response.text, MAX_ERROR_BODY)
            message = f"Failed to {method} {path}: {response.status_code} - {body}"
            if response.status_code == 401:
                raise AuthenticationError(message)
            if response.status_code == 429 or response.status_code >= 500:
                raise TransientAPIError(message)
            if response.status_code == 404:
                raise TicketNotFoundError(message)
            raise TrackerError(message)

        raise TransientAPIError(f"Failed to {method} {path} after {MAX_ATTEMPTS} attempts")

    def _retry_wait(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After", "")
        try:
            seconds = int(retry_after)
        except ValueError:
            seconds = 0
        if seconds > 0:
            return float(min(seconds, MAX_RETRY_WAIT_SECONDS))
        backoff = min(INITIAL_BACKOFF_SECONDS * 2 ** (attempt - 1), MAX_BACKOFF_SECONDS)
        return backoff + random.uniform(0, MAX_JITTER_SECONDS)

    def get_ticket(self, key: str) -> Ticket:
        """Fetch a ticket.

        Args:
            key: Ticket key.

        Returns:
            The ticket, without comments.
        """
        response = self._request("GET", f"/rest/api/2/issue/{key}")
        return Ticket.from_api(response.json())

    def get_ticket_with_comments(self, key: str) -> Ticket:
        """Fetch a ticket with its comment thread expanded."""
        response = self._request("GET", f"/rest/api/2/issue/{key}", params={"expand": "comment"})
        return Ticket.from_api(response.json())

    def search_tickets(self, jql: str, max_results: int = 100) -> list[Ticket]:
        """Search tickets with JQL.

        Args:
            jql: The JQL query.
            max_results: Page size for the single search request.

        Returns:
            Matching tickets.
        """
        response = self._request(
            "POST",
            "/rest/api/2/search",
            json={
                "jql": jql,
                "startAt": 0,
                "maxResults": max_results,
                "fields": SEARCH_FIELDS,
            },
        )
        issues = response.json().get("issues") or []
        return [Ticket.from_api(issue) for issue in issues]

    def update_ticket_status(self, key: str, status: str) -> None:
        """Move a ticket to a status via the matching workflow transition.

        Raises:
            TransitionNotFoundError: If no transition targets the status.
        """
        path = f"/rest/api/2/issue/{key}/transitions"
        transitions = self._request("GET", path).json().get("transitions") or []
        transition_id = None
        for transition in transitions:
            target = (transition.get("to") or {}).get("name", "")
            if target.lower() == status.lower():
                transition_id = transition.get("id")
                break
        if transition_id is None:
            raise TransitionNotFoundError(f"No transition found for status: {status}")

        self._request(
            "POST",
            path,
            json={"transition": {"id": transition_id}},
            ok=(200, 204),
        )
        self.logger.info("Moved %s to status %s", key, status)

    def update_ticket_labels(self, key: str, add: list[str], remove: list[str]) -> None:
        """Add and remove labels on a ticket."""
        ticket = self.get_ticket(key)
        labels = [label for label in ticket.labels if label not in remove]
        labels.extend(label for label in add if label not in labels)
        self.update_ticket_field(key, "labels", labels)

    def update_ticket_field(self, key: str, field_id: str, value: Any) -> None:
        """Set a single field on a ticket."""
        self._request(
            "PUT",
            f"/rest/api/2/issue/{key}",
            json={"fields": {field_id: value}},
            ok=(200, 204),
        )

    def update_ticket_field_by_name(self, key: str, field_name: str, value: Any) -> None:
        """Set a field on a ticket, resolving its ID from the display name."""
        self.update_ticket_field(key, self.get_field_id_by_name(field_name), value)

    def get_field_id_by_name(self, field_name: str) -> str:
        """Resolve a field display name to its ID (cached).

        Raises:
            FieldNotFoundError: If no field carries the name.
        """
        with self._field_lock:
            if self._field_ids is None:
                fields = self._request("GET", "/rest/api/2/field").json()
                self._field_ids = {f.get("name", ""): f.get("id", "") for f in fields}
            field_id = self._field_ids.get(field_name)
        if not field_id:
            raise FieldNotFoundError(f"Field with name '{field_name}' not found")
        return field_id

    def get_field_value_by_name(self, key: str, field_name: str) -> Any:
        """Read a field value from a ticket by display name."""
        field_id = self.get_field_id_by_name(field_name)
        response = self._request("GET", f"/rest/api/2/issue/{key}", params={"fields": field_id})
        return (response.json().get("fields") or {}).get(field_id)

    def add_comment(self, key: str, body: str) -> None:
        """Post a comment on a ticket."""
        self._request(
            "POST",
            f"/rest/api/2/issue/{key}/comment",
            json={"body": body},
            ok=(200, 201),
        )
        self.logger.debug("Added comment to %s", key)

    def get_ticket_security_level(self, key: str) -> SecurityLevel | None:
        """Get the security level of a ticket.

        Reads the standard ``security`` field first, then looks for a field
        named "Security Level" in the expanded field names.
        """
        ticket = self.get_ticket(key)
        if ticket.security is not None:
            return ticket.security

        response = self._request("GET", f"/rest/api/2/issue/{key}", params={"expand": "names"})
        data = response.json()
        names: dict[str, str] = data.get("names") or {}
        fields: dict[str, Any] = data.get("fields") or {}
        for field_id, name in names.items():
            if name.lower() not in ("security level", "security"):
                continue
            value = fields.get(field_id)
            if isinstance(value, dict):
                return SecurityLevel(
                    id=str(value.get("id", "")),
                    name=value.get("name") or "",
                    description=value.get("description") or "",
                )
            if isinstance(value, str) and value:
                return SecurityLevel(name=value)
        return None

    def has_security_level(self, key: str) -> bool:
        """Whether a ticket carries a security level other than "None"."""
        security = self.get_ticket_security_level(key)
        return security is not None and security.is_restricted
