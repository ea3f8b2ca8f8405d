"""Unit tests for JiraClient."""

import json
from collections.abc import Callable
from unittest.mock import MagicMock

import httpx
import pytest

from ticketpilot.exceptions import AuthenticationError, TransientAPIError
from ticketpilot.tracker import (
    FieldNotFoundError,
    JiraClient,
    TicketNotFoundError,
    TransitionNotFoundError,
)

BASE_URL = "https://jira.example.com"

ISSUE = {
    "key": "PROJ-7",
    "fields": {
        "summary": "Login fails",
        "description": "Stack trace attached",
        "status": {"name": "Open"},
        "issuetype": {"name": "Bug"},
        "project": {"key": "PROJ"},
        "components": [{"name": "backend"}, {"name": "web"}],
        "labels": ["ai"],
        "assignee": {
            "name": "jdoe",
            "displayName": "Jane Doe",
            "emailAddress": "jane@example.com",
        },
        "comment": {
            "comments": [
                {
                    "id": "100",
                    "body": "Happens on Safari",
                    "author": {"name": "qa", "displayName": "QA"},
                    "created": "2025-07-07T08:29:32.000+0000",
                }
            ]
        },
    },
}


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> tuple[JiraClient, MagicMock]:
    sleep = MagicMock()
    jira = JiraClient(BASE_URL, "token", username="ai-bot", sleep=sleep)
    jira._client = httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return jira, sleep


@pytest.mark.unit
class TestGetTicket:
    """Tests for ticket reads."""

    def test_get_ticket_with_comments_parses_payload(self) -> None:
        """Fields, assignee and comments are mapped onto Ticket."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=ISSUE)

        jira, _ = _client(handler)
        ticket = jira.get_ticket_with_comments("PROJ-7")

        assert seen[0].url.path == "/rest/api/2/issue/PROJ-7"
        assert seen[0].url.params["expand"] == "comment"
        assert ticket.key == "PROJ-7"
        assert ticket.ticket_type == "Bug"
        assert ticket.components == ["backend", "web"]
        assert ticket.assignee is not None
        assert ticket.assignee.email == "jane@example.com"
        assert ticket.comments[0].body == "Happens on Safari"
        assert ticket.comments[0].created is not None
        assert ticket.comments[0].created.year == 2025

    def test_missing_ticket_raises_not_found(self) -> None:
        """HTTP 404 is TicketNotFoundError."""
        jira, _ = _client(lambda r: httpx.Response(404, text="Issue does not exist"))

        with pytest.raises(TicketNotFoundError, match="404"):
            jira.get_ticket("PROJ-404")

    def test_unauthorized_raises_authentication_error(self) -> None:
        """HTTP 401 is AuthenticationError."""
        jira, _ = _client(lambda r: httpx.Response(401, text="nope"))

        with pytest.raises(AuthenticationError):
            jira.get_ticket("PROJ-7")

    def test_server_error_is_transient(self) -> None:
        """5xx responses are TransientAPIError."""
        jira, _ = _client(lambda r: httpx.Response(503, text="maintenance"))

        with pytest.raises(TransientAPIError):
            jira.get_ticket("PROJ-7")

    def test_connection_error_is_transient(self) -> None:
        """Transport failures are TransientAPIError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        jira, _ = _client(handler)

        with pytest.raises(TransientAPIError, match="unreachable"):
            jira.get_ticket("PROJ-7")


@pytest.mark.unit
class TestRateLimiting:
    """Tests for HTTP 429 handling."""

    def test_retries_after_retry_after(self) -> None:
        """A 429 waits Retry-After seconds and retries."""
        responses = iter(
            [httpx.Response(429, headers={"Retry-After": "7"}), httpx.Response(200, json=ISSUE)]
        )
        jira, sleep = _client(lambda r: next(responses))

        ticket = jira.get_ticket("PROJ-7")

        assert ticket.key == "PROJ-7"
        sleep.assert_called_once_with(7.0)

    def test_retry_after_is_capped(self) -> None:
        """Huge Retry-After values are capped at 60 seconds."""
        responses = iter(
            [httpx.Response(429, headers={"Retry-After": "3600"}), httpx.Response(200, json=ISSUE)]
        )
        jira, sleep = _client(lambda r: next(responses))

        jira.get_ticket("PROJ-7")

        sleep.assert_called_once_with(60.0)

    def test_backoff_without_retry_after(self) -> None:
        """Without Retry-After, exponential backoff with jitter is used."""
        responses = iter([httpx.Response(429), httpx.Response(429), httpx.Response(200, json=ISSUE)])
        jira, sleep = _client(lambda r: next(responses))

        jira.get_ticket("PROJ-7")

        waits = [call.args[0] for call in sleep.call_args_list]
        assert 1.0 <= waits[0] <= 2.0
        assert 2.0 <= waits[1] <= 3.0

    def test_exhausted_rate_limit_is_transient(self) -> None:
        """Still limited after three attempts raises TransientAPIError."""
        jira, sleep = _client(lambda r: httpx.Response(429, headers={"Retry-After": "1"}))

        with pytest.raises(TransientAPIError, match="429"):
            jira.get_ticket("PROJ-7")
        assert sleep.call_count == 2


@pytest.mark.unit
class TestSearch:
    """Tests for search_tickets."""

    def test_posts_jql_and_returns_tickets(self) -> None:
        """The JQL is sent in the body and issues are parsed."""
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"issues": [ISSUE], "total": 1})

        jira, _ = _client(handler)
        tickets = jira.search_tickets('project = "PROJ"')

        assert bodies[0]["jql"] == 'project = "PROJ"'
        assert "components" in bodies[0]["fields"]
        assert [t.key for t in tickets] == ["PROJ-7"]


@pytest.mark.unit
class TestUpdates:
    """Tests for status, field and comment writes."""

    def test_update_status_uses_matching_transition(self) -> None:
        """The transition whose target matches (case-insensitively) is executed."""
        posted: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(
                    200,
                    json={
                        "transitions": [
                            {"id": "11", "to": {"name": "In Progress"}},
                            {"id": "21", "to": {"name": "Code Review"}},
                        ]
                    },
                )
            posted.append(json.loads(request.content))
            return httpx.Response(204)

        jira, _ = _client(handler)
        jira.update_ticket_status("PROJ-7", "code review")

        assert posted == [{"transition": {"id": "21"}}]

    def test_update_status_without_transition_raises(self) -> None:
        """No matching transition is TransitionNotFoundError."""
        jira, _ = _client(lambda r: httpx.Response(200, json={"transitions": []}))

        with pytest.raises(TransitionNotFoundError, match="Done"):
            jira.update_ticket_status("PROJ-7", "Done")

    def test_field_by_name_resolves_and_caches_id(self) -> None:
        """Field IDs are looked up once and reused."""
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(f"{request.method} {request.url.path}")
            if request.url.path == "/rest/api/2/field":
                return httpx.Response(
                    200, json=[{"id": "customfield_10100", "name": "Git Pull Request"}]
                )
            return httpx.Response(204)

        jira, _ = _client(handler)
        jira.update_ticket_field_by_name("PROJ-7", "Git Pull Request", "https://x")
        jira.update_ticket_field_by_name("PROJ-8", "Git Pull Request", "https://y")

        assert calls.count("GET /rest/api/2/field") == 1
        assert calls.count("PUT /rest/api/2/issue/PROJ-8") == 1

    def test_unknown_field_raises(self) -> None:
        """An unknown field name is FieldNotFoundError."""
        jira, _ = _client(lambda r: httpx.Response(200, json=[]))

        with pytest.raises(FieldNotFoundError, match="Git Pull Request"):
            jira.get_field_id_by_name("Git Pull Request")

    def test_get_field_value_by_name(self) -> None:
        """The value of the named field is returned."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/rest/api/2/field":
                return httpx.Response(200, json=[{"id": "customfield_1", "name": "PR"}])
            assert request.url.params["fields"] == "customfield_1"
            return httpx.Response(200, json={"fields": {"customfield_1": "https://pr"}})

        jira, _ = _client(handler)

        assert jira.get_field_value_by_name("PROJ-7", "PR") == "https://pr"

    def test_update_labels_adds_and_removes(self) -> None:
        """Labels are merged into the ticket's current set."""
        written: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json=ISSUE)
            written.append(json.loads(request.content))
            return httpx.Response(204)

        jira, _ = _client(handler)
        jira.update_ticket_labels("PROJ-7", add=["ai-done"], remove=["ai"])

        assert written == [{"fields": {"labels": ["ai-done"]}}]

    def test_add_comment_accepts_201(self) -> None:
        """Comments are posted to the issue comment endpoint."""
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(201, json={"id": "1"})

        jira, _ = _client(handler)
        jira.add_comment("PROJ-7", "hello")

        assert paths == ["/rest/api/2/issue/PROJ-7/comment"]


@pytest.mark.unit
class TestSecurityLevel:
    """Tests for security level detection."""

    def test_standard_security_field(self) -> None:
        """The built-in security field is read first."""
        issue = {**ISSUE, "fields": {**ISSUE["fields"], "security": {"id": "1", "name": "Internal"}}}
        jira, _ = _client(lambda r: httpx.Response(200, json=issue))

        assert jira.has_security_level("PROJ-7") is True

    def test_named_custom_field(self) -> None:
        """A custom field named 'Security Level' is used as a fallback."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("expand") == "names":
                return httpx.Response(
                    200,
                    json={
                        "names": {"customfield_5": "Security Level"},
                        "fields": {"customfield_5": {"name": "Confidential"}},
                    },
                )
            return httpx.Response(200, json=ISSUE)

        jira, _ = _client(handler)

        level = jira.get_ticket_security_level("PROJ-7")
        assert level is not None
        assert level.name == "Confidential"

    def test_none_level_is_not_restricted(self) -> None:
        """A level literally named 'None' does not count."""
        issue = {**ISSUE, "fields": {**ISSUE["fields"], "security": {"name": "None"}}}
        jira, _ = _client(lambda r: httpx.Response(200, json=issue))

        assert jira.has_security_level("PROJ-7") is False


@pytest.mark.unit
class TestAuth:
    """Tests for authentication headers."""

    def test_basic_auth_with_username(self) -> None:
        """A username selects basic auth."""
        jira = JiraClient(BASE_URL, "token", username="ai-bot")

        assert isinstance(jira.client.auth, httpx.BasicAuth)
        jira.close()

    def test_bearer_without_username(self) -> None:
        """No username selects a bearer token."""
        jira = JiraClient(BASE_URL, "pat")

        assert jira.client.headers["Authorization"] == "Bearer pat"
        jira.close()
