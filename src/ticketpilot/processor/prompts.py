"""Prompt and PR text for ticket runs."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ticketpilot.tracker.models import Ticket


def build_ticket_prompt(ticket: Ticket, jira_username: str) -> str:
    """Task prompt from the ticket summary, description and human comments."""
    prompt = f"Please help me fix the issue described in Jira ticket {ticket.key}.\n\n"
    prompt += f"Summary: {ticket.summary}\n\n"
    prompt += f"Description: {ticket.description}\n\n"

    comments = [c for c in ticket.comments if not c.is_authored_by(jira_username)]
    if comments:
        prompt += "Comments:\n"
        for comment in comments:
            prompt += f"- {comment.author.display_name}: {comment.body}\n"
        prompt += "\n"

    prompt += (
        "Please analyze the codebase and implement the necessary changes to fix this issue. "
        "Make sure to follow the existing code style and patterns in the codebase."
    )
    return prompt


def commit_message(ticket: Ticket, secure: bool) -> str:
    if secure:
        return f"{ticket.key}: Security-related changes"
    return f"{ticket.key}: {ticket.summary}"


def pr_title_and_body(ticket: Ticket, jira_base_url: str, secure: bool) -> tuple[str, str]:
    """PR title and body linking back to the ticket; redacted for secured tickets."""
    if secure:
        return f"{ticket.key}: Update", f"This PR addresses ticket {ticket.key}."

    title = f"{ticket.key}: {ticket.summary}"
    body = (
        f"This PR addresses the issue described in "
        f"[{ticket.key}]({jira_base_url}/browse/{ticket.key}).\n\n"
        f"**Summary:** {ticket.summary}\n\n"
        f"**Description:** {ticket.description}"
    )
    if ticket.assignee is not None:
        body += f"\n\n**Assignee:** {ticket.assignee.display_name} ({ticket.assignee.email})"
    return title, body
