"""PR feedback reconciliation: apply review feedback to linked pull requests."""

from ticketpilot.feedback.models import (
    FeedbackGroup,
    FeedbackItem,
    PRFeedbackBundle,
    ReconcileOutcome,
    ReconcileResult,
    ReplyStats,
)
from ticketpilot.feedback.prompts import build_feedback_prompt, parse_comment_responses
from ticketpilot.feedback.reconciler import FeedbackReconciler

__all__ = [
    "FeedbackGroup",
    "FeedbackItem",
    "FeedbackReconciler",
    "PRFeedbackBundle",
    "ReconcileOutcome",
    "ReconcileResult",
    "ReplyStats",
    "build_feedback_prompt",
    "parse_comment_responses",
]
