"""Unit tests for the commit strategies."""

import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from ticketpilot.config import GitHubConfig
from ticketpilot.exceptions import ConfigError
from ticketpilot.host import (
    ApiCommitStrategy,
    ChangedFile,
    CommitAuthor,
    CommitError,
    GitWorkspace,
    LocalCommitStrategy,
    RepoInfo,
    TreeEntry,
    build_commit_strategy,
)

FORK = RepoInfo(owner="ai-bot", name="backend")


@pytest.fixture
def github() -> MagicMock:
    """Create a mock GitHub client."""
    client = MagicMock()
    client.token_for.return_value = "tok"
    return client


@pytest.fixture
def workspace(tmp_path: Path) -> MagicMock:
    """Create a mock workspace rooted at a real directory."""
    ws = MagicMock(spec=GitWorkspace)
    ws.path = tmp_path
    return ws


@pytest.mark.unit
class TestLocalCommitStrategy:
    """Tests for commit-and-push."""

    def test_commits_and_pushes(self, github: MagicMock, workspace: MagicMock) -> None:
        """New local commits are pushed to the fork branch."""
        workspace.head_sha.return_value = "new"
        workspace.remote_branch_sha.return_value = None
        author = CommitAuthor("Jane", "jane@example.com")

        sha = LocalCommitStrategy(github).commit(
            workspace, FORK, "feature/x", "main", "PROJ-7: Fix", author
        )

        assert sha == "new"
        workspace.commit_changes.assert_called_once_with("PROJ-7: Fix", author)
        workspace.push_changes.assert_called_once_with("ai-bot", "backend", "feature/x", "tok")

    def test_up_to_date_branch_is_not_pushed(
        self, github: MagicMock, workspace: MagicMock
    ) -> None:
        """When HEAD already matches the remote there is nothing to publish."""
        workspace.head_sha.return_value = "same"
        workspace.remote_branch_sha.return_value = "same"

        sha = LocalCommitStrategy(github).commit(workspace, FORK, "feature/x", "main", "msg")

        assert sha is None
        workspace.push_changes.assert_not_called()


@pytest.mark.unit
class TestApiCommitStrategy:
    """Tests for verified commits through the git data API."""

    def test_updates_existing_branch(
        self, github: MagicMock, workspace: MagicMock, tmp_path: Path
    ) -> None:
        """Changed files become blobs in one commit on the branch head."""
        (tmp_path / "a.py").write_text("print('hi')\n")
        script = tmp_path / "run.sh"
        script.write_text("#!/bin/sh\n")
        script.chmod(0o755)
        workspace.changed_files.return_value = [
            ChangedFile("a.py"),
            ChangedFile("run.sh"),
            ChangedFile("gone.py", deleted=True),
        ]
        github.get_branch_head.return_value = "head1"
        github.create_blob.side_effect = ["blobA", "blobB"]
        github.get_commit_tree.return_value = "tree0"
        github.create_tree.return_value = "tree1"
        github.create_commit.return_value = "commit1"

        sha = ApiCommitStrategy(github).commit(
            workspace, FORK, "feature/x", "main", "PROJ-7: Fix", CommitAuthor("Jane", "j@e.com")
        )

        assert sha == "commit1"
        workspace.changed_files.assert_called_once_with(since="head1")
        entries = github.create_tree.call_args.args[3]
        assert entries == [
            TreeEntry(path="a.py", sha="blobA", mode="100644"),
            TreeEntry(path="run.sh", sha="blobB", mode="100755"),
            TreeEntry(path="gone.py", sha=None),
        ]
        github.create_commit.assert_called_once_with(
            "ai-bot",
            "backend",
            "PROJ-7: Fix\n\nCo-authored-by: Jane <j@e.com>",
            "tree1",
            ["head1"],
        )
        github.update_ref.assert_called_once_with("ai-bot", "backend", "feature/x", "commit1")
        github.create_ref.assert_not_called()

    def test_new_branch_starts_from_target(
        self, github: MagicMock, workspace: MagicMock, tmp_path: Path
    ) -> None:
        """A missing branch is created on top of the target branch."""
        (tmp_path / "a.py").write_text("x")
        workspace.changed_files.return_value = [ChangedFile("a.py")]
        github.get_branch_head.side_effect = lambda owner, repo, branch: (
            "main1" if branch == "main" else None
        )
        github.create_blob.return_value = "blob"
        github.create_commit.return_value = "commit1"

        ApiCommitStrategy(github).commit(workspace, FORK, "feature/x", "main", "msg")

        workspace.changed_files.assert_called_once_with(since="main1")
        github.create_ref.assert_called_once_with("ai-bot", "backend", "feature/x", "commit1")

    def test_missing_target_branch_raises(self, github: MagicMock, workspace: MagicMock) -> None:
        """Without a branch or target there is no base commit."""
        github.get_branch_head.return_value = None

        with pytest.raises(CommitError, match="main"):
            ApiCommitStrategy(github).commit(workspace, FORK, "feature/x", "main", "msg")

    def test_no_changes_returns_none(self, github: MagicMock, workspace: MagicMock) -> None:
        """An unchanged working tree publishes nothing."""
        github.get_branch_head.return_value = "head1"
        workspace.changed_files.return_value = []

        assert ApiCommitStrategy(github).commit(workspace, FORK, "b", "main", "msg") is None
        github.create_commit.assert_not_called()

    def test_symlink_is_uploaded_as_link(
        self, github: MagicMock, workspace: MagicMock, tmp_path: Path
    ) -> None:
        """Symlinks are stored with their target as content."""
        (tmp_path / "target.txt").write_text("x")
        os.symlink("target.txt", tmp_path / "link")
        workspace.changed_files.return_value = [ChangedFile("link")]
        github.get_branch_head.return_value = "head1"
        github.create_blob.return_value = "blob"

        ApiCommitStrategy(github).commit(workspace, FORK, "b", "main", "msg")

        github.create_blob.assert_called_once_with("ai-bot", "backend", b"target.txt")
        assert github.create_tree.call_args.args[3][0].mode == "120000"


@pytest.mark.unit
class TestBuildCommitStrategy:
    """Tests for strategy selection."""

    def test_selects_by_name(self, github: MagicMock) -> None:
        """Both strategy names map to their class."""
        assert isinstance(
            build_commit_strategy(GitHubConfig(commit_strategy="local"), github),
            LocalCommitStrategy,
        )
        assert isinstance(
            build_commit_strategy(GitHubConfig(commit_strategy="api"), github),
            ApiCommitStrategy,
        )

    def test_unknown_name_raises(self, github: MagicMock) -> None:
        """Unknown strategy names are a ConfigError."""
        with pytest.raises(ConfigError, match="rsync"):
            build_commit_strategy(GitHubConfig(commit_strategy="rsync"), github)
