"""JQL builders for the ticket and PR feedback scans."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from ticketpilot.config import ProjectConfig, StatusTransitions

DEFAULT_TICKET_TYPE = "default"


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _status_conditions(
    projects: list[ProjectConfig], status_of: Callable[[StatusTransitions], str]
) -> list[str]:
    """One condition per distinct (type, status) pair, in configuration order.

    The "default" entry matches any issue type.
    """
    conditions: list[str] = []
    for project in projects:
        for ticket_type, transitions in project.status_transitions.items():
            status = _quote(status_of(transitions))
            if ticket_type.lower() == DEFAULT_TICKET_TYPE:
                condition = f"(status = {status})"
            else:
                condition = f"(issuetype = {_quote(ticket_type)} AND status = {status})"
            if condition not in conditions:
                conditions.append(condition)
    return conditions


def _project_filter(projects: list[ProjectConfig]) -> str:
    keys: list[str] = []
    for project in projects:
        for key in project.project_keys:
            if key not in keys:
                keys.append(key)
    return " OR ".join(f"project = {_quote(key)}" for key in keys)


def build_ticket_jql(projects: list[ProjectConfig]) -> str:
    """Query for tickets in a todo status across all configured projects.

    Example:
        Contributors = currentUser() AND ((issuetype = "Bug" AND status = "Open"))
        AND (project = "PROJ") ORDER BY updated DESC
    """
    conditions = " OR ".join(_status_conditions(projects, lambda t: t.todo))
    return (
        f"Contributors = currentUser() AND ({conditions}) "
        f"AND ({_project_filter(projects)}) ORDER BY updated DESC"
    )


def build_feedback_jql(projects: list[ProjectConfig]) -> list[str]:
    """Queries for tickets in review that may carry PR feedback.

    Projects are grouped by their PR URL field, one query per field. A
    project without the field is matched on status alone and its PR is
    found through the ticket's comments.
    """
    by_field: dict[str, list[ProjectConfig]] = {}
    for project in projects:
        by_field.setdefault(project.pr_url_field_name, []).append(project)

    queries = []
    for field_name, group in by_field.items():
        conditions = " OR ".join(_status_conditions(group, lambda t: t.in_review))
        jql = f"Contributors = currentUser() AND ({conditions})"
        if field_name:
            jql += f" AND {_quote(field_name)} IS NOT EMPTY"
        jql += f" AND ({_project_filter(group)}) ORDER BY updated DESC"
        queries.append(jql)
    return queries
