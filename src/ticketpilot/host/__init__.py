"""Code host client - GitHub REST API, local working copies and commit strategies."""

from ticketpilot.host.auth import AppTokenProvider, StaticTokenProvider, TokenProvider
from ticketpilot.host.commit import (
    ApiCommitStrategy,
    CommitStrategy,
    LocalCommitStrategy,
    build_commit_strategy,
)
from ticketpilot.host.exceptions import (
    BranchError,
    CloneError,
    CommitError,
    ForkError,
    HostError,
    PRError,
    PushError,
)
from ticketpilot.host.git import GitWorkspace, authenticated_url
from ticketpilot.host.github import GitHubClient
from ticketpilot.host.models import (
    PR,
    ChangedFile,
    CommitAuthor,
    PRComment,
    PRDetails,
    PRFile,
    PRRef,
    PRReview,
    RepoInfo,
    TreeEntry,
)

__all__ = [
    "PR",
    "ApiCommitStrategy",
    "AppTokenProvider",
    "BranchError",
    "ChangedFile",
    "CloneError",
    "CommitAuthor",
    "CommitError",
    "CommitStrategy",
    "ForkError",
    "GitHubClient",
    "GitWorkspace",
    "HostError",
    "LocalCommitStrategy",
    "PRComment",
    "PRDetails",
    "PRError",
    "PRFile",
    "PRRef",
    "PRReview",
    "PushError",
    "RepoInfo",
    "StaticTokenProvider",
    "TokenProvider",
    "TreeEntry",
    "authenticated_url",
    "build_commit_strategy",
]
