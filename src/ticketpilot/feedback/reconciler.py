"""FeedbackReconciler - applies review feedback to an existing pull request."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ticketpilot.agents.models import AgentOptions
from ticketpilot.agents.retry import RetryPolicy
from ticketpilot.exceptions import AIGenerationEmpty, AIGenerationFailure, TicketPilotError
from ticketpilot.feedback.models import (
    GENERAL_GROUP,
    FeedbackGroup,
    FeedbackItem,
    PRFeedbackBundle,
    ReconcileOutcome,
    ReconcileResult,
    ReplyStats,
)
from ticketpilot.feedback.prompts import (
    TIMESTAMP_FORMAT,
    build_feedback_prompt,
    build_handled_summary,
    parse_comment_responses,
    timestamp_comment,
    truncate_text,
)
from ticketpilot.host.git import GitWorkspace, authenticated_url
from ticketpilot.host.models import CommitAuthor, PRRef, RepoInfo
from ticketpilot.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from ticketpilot.agents.base import AgentAdapter
    from ticketpilot.agents.models import AgentResult
    from ticketpilot.config import Config, ProjectConfig
    from ticketpilot.host.commit import CommitStrategy
    from ticketpilot.host.github import GitHubClient
    from ticketpilot.host.models import PRComment, PRDetails
    from ticketpilot.tracker.client import JiraClient
    from ticketpilot.tracker.models import Ticket

PR_LINK_PATTERN = re.compile(r"\[AI-BOT-PR\]\s+(https://github\.com/[^/\s]+/[^/\s]+/pull/\d+)")
TIMESTAMP_PATTERN = re.compile(r"AI Processing Timestamp: (\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z)")
CHANGES_REQUESTED = "CHANGES_REQUESTED"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _first_url(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        for item in value:
            if isinstance(item, str) and item.strip():
                return item.strip()
    return ""


def _is_new(at: datetime | None, last_processed: datetime | None) -> bool:
    if last_processed is None:
        return True
    return at is not None and at > last_processed


class FeedbackReconciler:
    """Brings a linked pull request in line with its newest review feedback.

    Acts only when the PR's most recent review requests changes. New
    reviews and comments since the last processing timestamp are grouped
    by file, handed to the agent one group at a time, and committed to the
    PR's existing head branch. The agent's per-item answers are posted back
    as replies, followed by a new timestamp comment. The ticket's status is
    never touched.
    """

    def __init__(
        self,
        config: Config,
        tracker: JiraClient,
        github: GitHubClient,
        agent: AgentAdapter,
        commit_strategy: CommitStrategy,
        retry_policy: RetryPolicy | None = None,
        logger: logging.Logger | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the reconciler.

        Args:
            config: Loaded configuration.
            tracker: Jira client.
            github: GitHub client.
            agent: The active AI backend.
            commit_strategy: How changes reach the head branch.
            retry_policy: Agent retry policy. Defaults to the ``ai`` config.
            logger: Logger to use. Defaults to 'ticketpilot.feedback'.
            now: Clock returning an aware UTC datetime, replaceable in tests.
        """
        self.config = config
        self.tracker = tracker
        self.github = github
        self.agent = agent
        self.commit_strategy = commit_strategy
        self.logger = logger or get_logger("feedback")
        self.retry_policy = retry_policy or RetryPolicy.from_config(config.ai)
        self._now = now

    def reconcile(self, key: str) -> ReconcileResult:
        """Process new PR feedback for a ticket.

        Args:
            key: Ticket key.

        Returns:
            ReconcileResult describing what happened.

        Raises:
            TicketPilotError: A tracker, host or agent failure; nothing is
                reported on the ticket.
        """
        ticket = self.tracker.get_ticket_with_comments(key)
        project = self.config.get_project_config_for_ticket(key)

        pr_url = self.resolve_pr_url(ticket, project)
        ref = PRRef.from_url(pr_url)
        if ref is None:
            self.logger.info("No PR linked to %s, skipping feedback check", key)
            return ReconcileResult(key=key, outcome=ReconcileOutcome.NO_PR)

        started_at = self._now()
        details = self.github.get_pr_details(ref.owner, ref.repo, ref.number)
        if not details.is_open:
            self.logger.info("PR %s for %s is not open, skipping", pr_url, key)
            return ReconcileResult(key=key, outcome=ReconcileOutcome.PR_CLOSED, pr_url=pr_url)

        latest = details.latest_review()
        if latest is None or latest.state != CHANGES_REQUESTED:
            self.logger.debug("PR %s has no outstanding change request", pr_url)
            return ReconcileResult(
                key=key, outcome=ReconcileOutcome.NO_CHANGES_REQUESTED, pr_url=pr_url
            )

        bundle = self.collect_feedback(ref, details)
        if bundle.is_empty:
            self.logger.info("No new feedback on %s for %s", pr_url, key)
            return ReconcileResult(key=key, outcome=ReconcileOutcome.NO_NEW_FEEDBACK, pr_url=pr_url)

        if not bundle.head_clone_url:
            self.logger.warning(
                "Head repository of %s is gone, skipping legacy PR for %s", pr_url, key
            )
            return ReconcileResult(key=key, outcome=ReconcileOutcome.LEGACY_PR, pr_url=pr_url)

        return self._apply(ticket, bundle, pr_url, started_at)

    def resolve_pr_url(self, ticket: Ticket, project: ProjectConfig) -> str:
        """Find the PR linked to a ticket.

        The configured PR URL field wins; otherwise the newest "[AI-BOT-PR]"
        comment posted by our tracker account is used.

        Returns:
            The PR URL, or "" when none is linked.
        """
        if project.pr_url_field_name:
            try:
                value = self.tracker.get_field_value_by_name(ticket.key, project.pr_url_field_name)
            except TicketPilotError as e:
                self.logger.warning(
                    "Failed to read %s on %s: %s", project.pr_url_field_name, ticket.key, e
                )
            else:
                url = _first_url(value)
                if url:
                    return url

        username = self.config.jira.username
        for comment in reversed(ticket.comments):
            if username and not comment.is_authored_by(username):
                continue
            match = PR_LINK_PATTERN.search(comment.body)
            if match:
                return match.group(1)
        return ""

    def collect_feedback(self, ref: PRRef, details: PRDetails) -> PRFeedbackBundle:
        """Select and group the feedback not handled in an earlier pass.

        Items by the bot itself and items with empty bodies are dropped.
        Items at or before the newest processing timestamp go into the
        handled summary instead. Reviews land in the general group, inline
        comments in a group per file.
        """
        last_processed = self.last_processed_at(details.comments)
        reviews = sorted(details.reviews, key=lambda r: r.id)
        comments = sorted(details.comments, key=lambda c: c.id)

        handled: list[str] = []
        groups: dict[str, FeedbackGroup] = {GENERAL_GROUP: FeedbackGroup(GENERAL_GROUP)}

        review_count = 0
        for review in reviews:
            if self.is_self(review.user) or not review.body:
                continue
            if not _is_new(review.submitted_at, last_processed):
                handled.append(f"{truncate_text(review.body, 80)} (review)")
                continue
            review_count += 1
            groups[GENERAL_GROUP].items.append(FeedbackItem(f"REVIEW_{review_count}", review=review))

        comment_count = 0
        for comment in comments:
            if self.is_self(comment.user) or not comment.body:
                continue
            if not _is_new(comment.created_at, last_processed):
                handled.append(truncate_text(comment.body, 80))
                continue
            comment_count += 1
            path = comment.path if comment.is_inline else GENERAL_GROUP
            group = groups.setdefault(path, FeedbackGroup(path))
            group.items.append(FeedbackItem(f"COMMENT_{comment_count}", comment=comment))

        bundle = PRFeedbackBundle(
            pr=ref,
            details=details,
            groups=[group for group in groups.values() if group.items],
            handled_summary=build_handled_summary(handled),
        )
        self.logger.info(
            "Collected %d new reviews and %d new comments in %d groups on PR #%d",
            review_count,
            comment_count,
            len(bundle.groups),
            details.number,
        )
        return bundle

    def last_processed_at(self, comments: list[PRComment]) -> datetime | None:
        """Newest processing timestamp posted by the bot, if any."""
        latest: datetime | None = None
        for comment in comments:
            if not self.is_self(comment.user):
                continue
            match = TIMESTAMP_PATTERN.search(comment.body)
            if match is None:
                continue
            at = datetime.strptime(match.group(1), TIMESTAMP_FORMAT).replace(tzinfo=UTC)
            if latest is None or at > latest:
                latest = at
        return latest

    def is_self(self, login: str) -> bool:
        bot = self.config.github.bot_username.lower()
        return bool(bot) and login.lower() in (bot, f"{bot}[bot]")

    def is_known_bot(self, login: str) -> bool:
        name = login.lower().removesuffix("[bot]")
        return any(name == bot.lower() for bot in self.config.github.known_bot_usernames)

    def thread_depth(self, comment: PRComment, comment_by_id: dict[int, PRComment]) -> int:
        """Number of bot comments in the reply chain ending at ``comment``."""
        depth = 0
        seen: set[int] = set()
        current: PRComment | None = comment
        while current is not None and current.id not in seen:
            seen.add(current.id)
            if self.is_self(current.user):
                depth += 1
            if not current.in_reply_to_id:
                break
            current = comment_by_id.get(current.in_reply_to_id)
        return depth

    def reply_skip_reason(
        self, comment: PRComment, comment_by_id: dict[int, PRComment]
    ) -> str | None:
        """Why replying to ``comment`` would risk a bot loop, or None if it is safe."""
        if self.is_known_bot(comment.user) and comment.in_reply_to_id:
            parent = comment_by_id.get(comment.in_reply_to_id)
            if parent is None:
                return f"bot '{comment.user}' replying to missing parent {comment.in_reply_to_id}"
            if self.is_self(parent.user):
                return f"bot '{comment.user}' is replying to our own comment"
        depth = self.thread_depth(comment, comment_by_id)
        if depth >= self.config.github.max_thread_depth:
            return f"thread depth {depth} reaches max {self.config.github.max_thread_depth}"
        return None

    def post_replies(self, bundle: PRFeedbackBundle, responses: dict[str, str]) -> ReplyStats:
        """Answer each addressed item on the PR.

        Inline comments get threaded replies; conversation comments and
        reviews get a PR comment mentioning their author. A failed reply is
        logged and counted, and does not stop the others.
        """
        stats = ReplyStats()
        pr = bundle.pr
        comment_by_id = {c.id: c for c in bundle.details.comments}

        for item in bundle.items:
            response = responses.get(item.ref)
            if not response:
                self.logger.warning("No AI response for %s by %s", item.ref, item.user)
                continue

            comment = item.comment
            if comment is not None:
                reason = self.reply_skip_reason(comment, comment_by_id)
                if reason:
                    stats.skipped += 1
                    self.logger.info("Skipping reply to %s: %s", item.ref, reason)
                    continue

            try:
                if comment is not None and comment.is_inline:
                    self.github.reply_to_pr_comment(
                        pr.owner, pr.repo, pr.number, comment.id, response
                    )
                else:
                    self.github.add_pr_comment(
                        pr.owner, pr.repo, pr.number, f"@{item.user} {response}"
                    )
            except TicketPilotError as e:
                stats.failed += 1
                self.logger.error("Failed to reply to %s on PR #%d: %s", item.ref, pr.number, e)
            else:
                stats.posted += 1

        self.logger.info(
            "Replies on PR #%d: %d posted, %d failed, %d skipped",
            pr.number,
            stats.posted,
            stats.failed,
            stats.skipped,
        )
        return stats

    def _apply(
        self, ticket: Ticket, bundle: PRFeedbackBundle, pr_url: str, started_at: datetime
    ) -> ReconcileResult:
        key = ticket.key
        head = RepoInfo.from_url(bundle.head_clone_url)
        branch = bundle.head_branch
        workspace = GitWorkspace(
            Path(self.config.runtime.temp_dir) / f"{key}-feedback", logger=self.logger
        )
        try:
            token = self.github.token_for(head.owner, head.name)
            workspace.reset_fork(authenticated_url(head.owner, head.name, token))
            workspace.configure_identity(
                self.config.github.bot_username,
                self.config.github.get_bot_email(),
                self.config.github.ssh_key_path,
            )
            workspace.switch_to_branch(branch)

            responses, skipped = self._run_groups(key, bundle, workspace)

            message = f"{key}: Apply PR feedback fixes"
            if skipped:
                message += f" (skipped: {', '.join(skipped)})"
            co_author = None
            if ticket.assignee is not None and ticket.assignee.email:
                co_author = CommitAuthor(ticket.assignee.display_name, ticket.assignee.email)
            sha = self.commit_strategy.commit(workspace, head, branch, branch, message, co_author)
            if sha is None:
                self.logger.info("Feedback for %s needed no code changes", key)

            replies = self.post_replies(bundle, responses)
            self._post_timestamp(key, bundle, started_at)
        finally:
            workspace.cleanup()

        self.logger.info("Applied PR feedback for %s on %s", key, pr_url)
        return ReconcileResult(
            key=key,
            outcome=ReconcileOutcome.APPLIED,
            pr_url=pr_url,
            commit_sha=sha,
            skipped_groups=skipped,
            replies=replies,
        )

    def _run_groups(
        self, key: str, bundle: PRFeedbackBundle, workspace: GitWorkspace
    ) -> tuple[dict[str, str], list[str]]:
        """Run the agent for each group.

        Returns:
            Parsed responses of the successful groups and labels of the
            groups that failed.

        Raises:
            AIGenerationFailure: If no group succeeded.
        """
        comment_by_id = {c.id: c for c in bundle.details.comments}
        responses: dict[str, str] = {}
        skipped: list[str] = []

        def answered(result: AgentResult) -> bool:
            return result.changed or bool(parse_comment_responses(result.summary))

        for group in bundle.groups:
            prompt = build_feedback_prompt(
                bundle.details, group, bundle.handled_summary, comment_by_id
            )
            label = f"{key} feedback [{group.label}]"
            try:
                result = self.retry_policy.run(
                    lambda attempt, prompt=prompt, label=label: self.agent.invoke(
                        prompt, workspace.path, AgentOptions(label=f"{label} attempt {attempt}")
                    ),
                    label=label,
                    accept=answered,
                )
            except (AIGenerationEmpty, AIGenerationFailure) as e:
                self.logger.warning("Skipping feedback group %s for %s: %s", group.label, key, e)
                skipped.append(group.label)
                continue
            responses.update(parse_comment_responses(result.summary, group.refs))

        if len(skipped) == len(bundle.groups):
            raise AIGenerationFailure(f"AI failed to address any feedback group on {key}")
        return responses, skipped

    def _post_timestamp(self, key: str, bundle: PRFeedbackBundle, at: datetime) -> None:
        secure = self._has_security_level(key)
        pr = bundle.pr
        self.github.add_pr_comment(
            pr.owner, pr.repo, pr.number, timestamp_comment(key, at, secure)
        )

    def _has_security_level(self, key: str) -> bool:
        try:
            return self.tracker.has_security_level(key)
        except TicketPilotError as e:
            self.logger.warning("Failed to check security level for %s: %s", key, e)
            return False
