"""Prompt building and response parsing for PR feedback runs."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from ticketpilot.logging import get_logger

if TYPE_CHECKING:
    from datetime import datetime

    from ticketpilot.feedback.models import FeedbackGroup
    from ticketpilot.host.models import PRComment, PRDetails

RESPONSE_MARKER = re.compile(r"((?:COMMENT|REVIEW)_\d+)_RESPONSE:\s*")
HANDLED_HEADER = "Previously addressed (for context only - do not re-fix):"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

logger = get_logger("feedback.prompts")


def truncate_text(text: str, max_len: int) -> str:
    """Flatten newlines and cut to ``max_len`` characters with a trailing "..."."""
    text = text.replace("\n", " ").strip()
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def build_handled_summary(items: list[str]) -> str:
    """Bullet list of feedback handled in earlier passes, or "" when there is none."""
    if not items:
        return ""
    lines = [HANDLED_HEADER, *(f"- {item}" for item in items)]
    return "\n".join(lines) + "\n"


def format_group_feedback(group: FeedbackGroup, comment_by_id: dict[int, PRComment]) -> str:
    """Render the new feedback of one group with its identifiers.

    Threaded replies carry the parent comment for context.
    """
    text = "## NEW Review Feedback (Action Required)\n\n"
    if group.path:
        text += f"**File: {group.path}**\n\n"

    for item in group.items:
        text += f"### {item.ref}\n"
        if item.review is not None:
            text += f"**Review by {item.review.user} ({item.review.state}):**\n"
            text += f"{item.review.body}\n\n"
            continue

        comment = item.comment
        if comment is None:
            continue
        text += f"**Comment by {comment.user} {comment.location()}:**\n"
        parent = comment_by_id.get(comment.in_reply_to_id) if comment.in_reply_to_id else None
        if parent is not None:
            text += "*(Follow-up to previous discussion)*\n"
            text += f'Previous comment by {parent.user}: "{truncate_text(parent.body, 150)}"\n\n'
        text += f"{comment.body}\n\n"

    if not group.items:
        text += "No new feedback.\n"
    return text


def build_feedback_prompt(
    details: PRDetails,
    group: FeedbackGroup,
    handled_summary: str,
    comment_by_id: dict[int, PRComment],
) -> str:
    """Prompt asking the agent to fix one group of feedback and answer each item.

    Args:
        details: The PR, for title, description, URL and changed files.
        group: The feedback to address.
        handled_summary: Digest of feedback from earlier passes.
        comment_by_id: Every PR comment, for reply context.

    Returns:
        The full prompt text.
    """
    prompt = (
        "You are a code reviewer and developer. You need to fix the code based on NEW PR "
        "review feedback and provide individual responses.\n\n"
    )
    prompt += "## Original PR Information\n"
    prompt += f"**Title:** {details.title}\n"
    prompt += f"**Description:** {details.body}\n"
    prompt += f"**PR URL:** {details.html_url}\n\n"

    prompt += "## Changed Files\n"
    for f in details.files:
        prompt += f"- {f.filename} ({f.status}): +{f.additions} -{f.deletions}\n"
        if f.patch:
            prompt += f"```diff\n{f.patch}\n```\n"
    prompt += "\n"

    if handled_summary:
        prompt += f"## {handled_summary}\n"

    prompt += format_group_feedback(group, comment_by_id)
    prompt += "\n"

    prompt += (
        "## Instructions\n"
        "1. Analyze the NEW feedback carefully (marked with COMMENT_X or REVIEW_X IDs)\n"
        "2. Apply the necessary fixes to address each piece of feedback\n"
        "3. After fixing, provide a brief response (1-3 sentences) for EACH comment/review "
        "explaining what you changed\n\n"
        "## Response Format\n"
        "IMPORTANT: After making your code changes, provide individual responses in this "
        "exact format:\n\n"
        "For each COMMENT_X or REVIEW_X, include a section like:\n"
        "```\n"
        "COMMENT_1_RESPONSE:\n"
        "Brief 1-3 sentence explanation of what you changed to address this comment.\n\n"
        "COMMENT_2_RESPONSE:\n"
        "Brief 1-3 sentence explanation of what you changed.\n"
        "```\n\n"
        "NOTE: Each response should end with a double newline (\\n\\n) to separate it from "
        "the next response.\n"
        "The parser stops at the first double newline, so keep responses concise "
        "(1-3 sentences).\n\n"
        "Now please:\n"
        "1. Apply all the fixes to the code\n"
        "2. Provide individual responses in the format shown above\n"
    )
    return prompt


def parse_comment_responses(output: str, expected: list[str] | None = None) -> dict[str, str]:
    """Extract ``<ID>_RESPONSE:`` sections from agent output.

    A response runs from its marker to the first blank line, the next
    marker, or the end of the output, whichever comes first. Empty responses
    are dropped.

    Args:
        output: Agent summary text.
        expected: Identifiers the agent was asked to answer; missing ones are
            logged.

    Returns:
        Identifier to response text.
    """
    responses: dict[str, str] = {}
    matches = list(RESPONSE_MARKER.finditer(output))
    for i, match in enumerate(matches):
        start = match.end()
        end = matches[i + 1].start() if i + 1 < len(matches) else len(output)
        blank = output.find("\n\n", start, end)
        if blank != -1:
            end = blank
        text = output[start:end].strip()
        if text:
            responses[match.group(1)] = text
        else:
            logger.warning("Parsed empty response for %s", match.group(1))

    missing = [ref for ref in expected or [] if ref not in responses]
    if missing:
        logger.warning(
            "AI did not respond to %s (found %d of %d)",
            ", ".join(missing),
            len(responses),
            len(expected or []),
        )
    return responses


def timestamp_comment(key: str, at: datetime, secure: bool) -> str:
    """PR comment marking the point up to which feedback has been handled."""
    stamp = f"🤖 AI Processing Timestamp: {at.strftime(TIMESTAMP_FORMAT)}"
    if secure:
        return stamp
    return (
        f"{stamp}\n\n"
        f"AI has processed feedback for ticket {key} at this time. Future processing will "
        f"only consider feedback submitted after this timestamp."
    )
