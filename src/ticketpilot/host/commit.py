"""Commit strategies: push local commits, or build verified commits via the API."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from ticketpilot.exceptions import ConfigError
from ticketpilot.host.exceptions import CommitError
from ticketpilot.host.models import TreeEntry
from ticketpilot.logging import get_logger

if TYPE_CHECKING:
    from ticketpilot.config import GitHubConfig
    from ticketpilot.host.git import GitWorkspace
    from ticketpilot.host.github import GitHubClient
    from ticketpilot.host.models import CommitAuthor, RepoInfo

MODE_FILE = "100644"
MODE_EXECUTABLE = "100755"
MODE_SYMLINK = "120000"


class CommitStrategy(ABC):
    """Turns the changes in a working copy into a commit on the fork branch."""

    def __init__(self, github: GitHubClient, logger: logging.Logger | None = None) -> None:
        self.github = github
        self.logger = logger or get_logger("host.commit")

    @abstractmethod
    def commit(
        self,
        workspace: GitWorkspace,
        repo: RepoInfo,
        branch: str,
        target_branch: str,
        message: str,
        co_author: CommitAuthor | None = None,
    ) -> str | None:
        """Publish the working copy's changes to ``repo``'s ``branch``.

        Args:
            workspace: Working copy holding the changes.
            repo: Fork the branch lives on.
            branch: Branch to update or create.
            target_branch: Branch a new ``branch`` starts from.
            message: Commit message.
            co_author: Person credited with a Co-authored-by trailer.

        Returns:
            SHA of the published head, or None when there was nothing to publish.
        """


class LocalCommitStrategy(CommitStrategy):
    """``git add`` + ``git commit`` locally, then push with a lease."""

    def commit(
        self,
        workspace: GitWorkspace,
        repo: RepoInfo,
        branch: str,
        target_branch: str,
        message: str,
        co_author: CommitAuthor | None = None,
    ) -> str | None:
        workspace.commit_changes(message, co_author)
        head = workspace.head_sha()
        if head == workspace.remote_branch_sha(branch):
            self.logger.info("Branch %s already up to date on %s", branch, repo.full_name)
            return None
        token = self.github.token_for(repo.owner, repo.name)
        workspace.push_changes(repo.owner, repo.name, branch, token)
        return head


class ApiCommitStrategy(CommitStrategy):
    """Create blobs, a tree, a commit and a ref through the git data API.

    Commits made this way carry no explicit author, so GitHub attributes them
    to the authenticated bot and marks them verified. Every path that differs
    between the remote branch head and the working tree ends up in one
    commit, which also covers commits the agent made locally.
    """

    def commit(
        self,
        workspace: GitWorkspace,
        repo: RepoInfo,
        branch: str,
        target_branch: str,
        message: str,
        co_author: CommitAuthor | None = None,
    ) -> str | None:
        owner, name = repo.owner, repo.name
        base = self.github.get_branch_head(owner, name, branch)
        new_branch = base is None
        if base is None:
            base = self.github.get_branch_head(owner, name, target_branch)
            if base is None:
                raise CommitError(f"Target branch {target_branch} not found on {repo.full_name}")

        entries = self._tree_entries(workspace, repo, base)
        if not entries:
            self.logger.info("No changes relative to %s; nothing to commit", base[:12])
            return None

        base_tree = self.github.get_commit_tree(owner, name, base)
        tree = self.github.create_tree(owner, name, base_tree, entries)
        if co_author is not None:
            message = f"{message}\n\n{co_author.trailer()}"
        sha = self.github.create_commit(owner, name, message, tree, [base])
        if new_branch:
            self.github.create_ref(owner, name, branch, sha)
        else:
            self.github.update_ref(owner, name, branch, sha)
        self.logger.info(
            "Created verified commit %s on %s:%s (%d files)",
            sha[:12],
            repo.full_name,
            branch,
            len(entries),
        )
        return sha

    def _tree_entries(
        self, workspace: GitWorkspace, repo: RepoInfo, base: str
    ) -> list[TreeEntry]:
        entries: list[TreeEntry] = []
        for changed in workspace.changed_files(since=base):
            if changed.deleted:
                entries.append(TreeEntry(path=changed.path, sha=None))
                continue
            path = workspace.path / changed.path
            if path.is_symlink():
                content = os.readlink(path).encode()
                mode = MODE_SYMLINK
            elif path.is_file():
                content = path.read_bytes()
                mode = MODE_EXECUTABLE if os.access(path, os.X_OK) else MODE_FILE
            else:
                self.logger.debug("Skipping non-file path %s", changed.path)
                continue
            sha = self.github.create_blob(repo.owner, repo.name, content)
            entries.append(TreeEntry(path=changed.path, sha=sha, mode=mode))
        return entries


def build_commit_strategy(
    config: GitHubConfig, github: GitHubClient, logger: logging.Logger | None = None
) -> CommitStrategy:
    """Select the commit strategy named by ``github.commit_strategy``.

    Raises:
        ConfigError: For an unknown strategy name.
    """
    if config.commit_strategy == "local":
        return LocalCommitStrategy(github, logger)
    if config.commit_strategy == "api":
        return ApiCommitStrategy(github, logger)
    raise ConfigError(f"Unknown commit strategy: {config.commit_strategy}")
