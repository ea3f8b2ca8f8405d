"""Data models for the issue tracker client."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

JIRA_TIME_FORMATS = ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%dT%H:%M:%S%z")


def parse_jira_time(value: str | None) -> datetime | None:
    """Parse Jira's timestamp format (e.g. 2025-07-07T08:29:32.000+0000)."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+0000"
    for fmt in JIRA_TIME_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


@dataclass
class JiraUser:
    """A Jira account."""

    name: str = ""
    display_name: str = ""
    email: str = ""
    account_id: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any] | None) -> JiraUser | None:
        if not data:
            return None
        return cls(
            name=data.get("name") or "",
            display_name=data.get("displayName") or "",
            email=data.get("emailAddress") or "",
            account_id=data.get("accountId") or "",
        )


@dataclass
class TicketComment:
    """A comment on a ticket."""

    id: str
    body: str
    author: JiraUser
    created: datetime | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> TicketComment:
        return cls(
            id=str(data.get("id", "")),
            body=data.get("body") or "",
            author=JiraUser.from_api(data.get("author")) or JiraUser(),
            created=parse_jira_time(data.get("created")),
        )

    def is_authored_by(self, username: str) -> bool:
        """Whether the author matches ``username`` by account name or email."""
        if not username:
            return False
        wanted = username.lower()
        return wanted in (self.author.name.lower(), self.author.email.lower())


@dataclass
class SecurityLevel:
    """Ticket security classification."""

    id: str = ""
    name: str = ""
    description: str = ""

    @property
    def is_restricted(self) -> bool:
        return bool(self.name) and self.name.lower() != "none"


@dataclass
class Ticket:
    """A ticket as seen by the processor and reconciler.

    Attributes:
        key: Project-prefixed identifier (e.g. "PROJ-7").
        summary: One-line title.
        description: Body text.
        ticket_type: Issue type name (e.g. "Bug").
        status: Current status name.
        project_key: Key of the owning project.
        components: Component names, in tracker order.
        labels: Ticket labels.
        assignee: Assigned user, if any.
        comments: Comment thread, oldest first.
        security: Security level, if one is set.
        fields: Raw field mapping, for custom field access.
    """

    key: str
    summary: str = ""
    description: str = ""
    ticket_type: str = ""
    status: str = ""
    project_key: str = ""
    components: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    assignee: JiraUser | None = None
    comments: list[TicketComment] = field(default_factory=list)
    security: SecurityLevel | None = None
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def has_security_level(self) -> bool:
        return self.security is not None and self.security.is_restricted

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Ticket:
        """Build a Ticket from a Jira REST v2 issue payload."""
        fields = data.get("fields") or {}
        comment_block = fields.get("comment") or {}
        security_data = fields.get("security")
        security = None
        if isinstance(security_data, dict):
            security = SecurityLevel(
                id=str(security_data.get("id", "")),
                name=security_data.get("name") or "",
                description=security_data.get("description") or "",
            )
        return cls(
            key=data.get("key", ""),
            summary=fields.get("summary") or "",
            description=fields.get("description") or "",
            ticket_type=(fields.get("issuetype") or {}).get("name", ""),
            status=(fields.get("status") or {}).get("name", ""),
            project_key=(fields.get("project") or {}).get("key", ""),
            components=[c.get("name", "") for c in fields.get("components") or []],
            labels=list(fields.get("labels") or []),
            assignee=JiraUser.from_api(fields.get("assignee")),
            comments=[TicketComment.from_api(c) for c in comment_block.get("comments") or []],
            security=security,
            fields=fields,
        )
