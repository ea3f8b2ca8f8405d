"""Data models for PR feedback reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ticketpilot.host.models import PRComment, PRDetails, PRRef, PRReview

GENERAL_GROUP = ""


class ReconcileOutcome(StrEnum):
    """How a reconcile pass for one ticket ended."""

    NO_PR = "no_pr"
    PR_CLOSED = "pr_closed"
    NO_CHANGES_REQUESTED = "no_changes_requested"
    NO_NEW_FEEDBACK = "no_new_feedback"
    LEGACY_PR = "legacy_pr"
    APPLIED = "applied"


@dataclass
class FeedbackItem:
    """One review or comment the agent must address.

    Exactly one of ``review`` and ``comment`` is set.

    Attributes:
        ref: Prompt identifier, e.g. "COMMENT_3" or "REVIEW_1".
        review: The review, for review items.
        comment: The comment, for comment items.
    """

    ref: str
    review: PRReview | None = None
    comment: PRComment | None = None

    @property
    def user(self) -> str:
        if self.review is not None:
            return self.review.user
        return self.comment.user if self.comment is not None else ""

    @property
    def body(self) -> str:
        if self.review is not None:
            return self.review.body
        return self.comment.body if self.comment is not None else ""


@dataclass
class FeedbackGroup:
    """Feedback handled by one agent run: one file, or the general group."""

    path: str
    items: list[FeedbackItem] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.path or "general/reviews"

    @property
    def refs(self) -> list[str]:
        return [item.ref for item in self.items]


@dataclass
class PRFeedbackBundle:
    """New feedback on a linked PR, grouped for the agent.

    Attributes:
        pr: Where the PR lives.
        details: PR details as fetched for this pass.
        groups: Groups in processing order; the general group comes first.
        handled_summary: Digest of feedback addressed in earlier passes.
    """

    pr: PRRef
    details: PRDetails
    groups: list[FeedbackGroup] = field(default_factory=list)
    handled_summary: str = ""

    @property
    def is_empty(self) -> bool:
        return not any(group.items for group in self.groups)

    @property
    def items(self) -> list[FeedbackItem]:
        return [item for group in self.groups for item in group.items]

    @property
    def head_branch(self) -> str:
        return self.details.head_ref

    @property
    def head_clone_url(self) -> str:
        return self.details.head_clone_url


@dataclass
class ReplyStats:
    """Counts of replies posted for one pass."""

    posted: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass
class ReconcileResult:
    """Outcome of ``FeedbackReconciler.reconcile``."""

    key: str
    outcome: ReconcileOutcome
    pr_url: str = ""
    commit_sha: str | None = None
    skipped_groups: list[str] = field(default_factory=list)
    replies: ReplyStats = field(default_factory=ReplyStats)
