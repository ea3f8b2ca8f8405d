"""Data models for the code host client."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ticketpilot.host.exceptions import HostError

PR_URL_PATTERN = re.compile(r"https://github\.com/([^/\s]+)/([^/\s]+)/pull/(\d+)")


def parse_github_time(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp as returned by the GitHub API."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True)
class RepoInfo:
    """Owner and name of a GitHub repository."""

    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def from_url(cls, url: str) -> RepoInfo:
        """Parse SSH (git@github.com:o/r.git) or HTTPS (https://github.com/o/r) URLs.

        Raises:
            HostError: If the URL is not a GitHub repository URL.
        """
        path = url.strip()
        for prefix in ("git@github.com:", "https://github.com/", "http://github.com/"):
            if path.startswith(prefix):
                path = path[len(prefix) :]
                break
        else:
            raise HostError(f"Unsupported repository URL: {url}")
        path = path.rstrip("/")
        if path.endswith(".git"):
            path = path[: -len(".git")]
        parts = path.split("/")
        if len(parts) != 2 or not all(parts):
            raise HostError(f"Invalid repository URL format: {url}")
        return cls(owner=parts[0], name=parts[1])


@dataclass(frozen=True)
class PRRef:
    """A pull request located by URL."""

    owner: str
    repo: str
    number: int

    @classmethod
    def from_url(cls, url: str) -> PRRef | None:
        match = PR_URL_PATTERN.search(url or "")
        if match is None:
            return None
        return cls(owner=match.group(1), repo=match.group(2), number=int(match.group(3)))


@dataclass
class PR:
    """Pull request data."""

    id: int
    url: str
    number: int


@dataclass
class PRReview:
    """A submitted pull request review."""

    id: int
    user: str
    state: str
    body: str = ""
    submitted_at: datetime | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> PRReview:
        return cls(
            id=int(data.get("id", 0)),
            user=(data.get("user") or {}).get("login", ""),
            state=(data.get("state") or "").upper(),
            body=data.get("body") or "",
            submitted_at=parse_github_time(data.get("submitted_at")),
        )


@dataclass
class PRComment:
    """A pull request comment.

    Inline review comments carry ``path`` and ``line``; conversation comments
    leave them empty.
    """

    id: int
    user: str
    body: str
    path: str = ""
    line: int = 0
    start_line: int = 0
    in_reply_to_id: int = 0
    html_url: str = ""
    created_at: datetime | None = None

    @property
    def is_inline(self) -> bool:
        return bool(self.path) and self.line > 0

    def location(self) -> str:
        if not self.is_inline:
            return "General comment"
        if self.start_line and self.start_line != self.line:
            return f"on {self.path}:{self.start_line}-{self.line}"
        return f"on {self.path}:{self.line}"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> PRComment:
        return cls(
            id=int(data.get("id", 0)),
            user=(data.get("user") or {}).get("login", ""),
            body=data.get("body") or "",
            path=data.get("path") or "",
            line=int(data.get("line") or data.get("original_line") or 0),
            start_line=int(data.get("start_line") or 0),
            in_reply_to_id=int(data.get("in_reply_to_id") or 0),
            html_url=data.get("html_url") or "",
            created_at=parse_github_time(data.get("created_at")),
        )


@dataclass
class PRFile:
    """A file changed by a pull request."""

    filename: str
    status: str
    additions: int = 0
    deletions: int = 0
    patch: str = ""


@dataclass
class PRDetails:
    """Pull request details with reviews, comments and files.

    Attributes:
        number: PR number.
        title: PR title.
        body: PR description.
        html_url: Web URL of the PR.
        state: "open" or "closed".
        merged: Whether the PR was merged.
        head_ref: Head branch name.
        head_clone_url: Clone URL of the head repository; empty if deleted.
        head_owner: Owner login of the head repository.
        base_ref: Base branch name.
        reviews: Submitted reviews, oldest first.
        comments: Inline and conversation comments.
        files: Changed files.
    """

    number: int
    title: str
    body: str
    html_url: str
    state: str
    merged: bool
    head_ref: str
    head_clone_url: str
    head_owner: str
    base_ref: str
    reviews: list[PRReview] = field(default_factory=list)
    comments: list[PRComment] = field(default_factory=list)
    files: list[PRFile] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.state == "open" and not self.merged

    def latest_review(self) -> PRReview | None:
        """The most recently submitted review, ignoring pending ones."""
        submitted = [r for r in self.reviews if r.state != "PENDING"]
        if not submitted:
            return None
        return max(
            submitted,
            key=lambda r: (r.submitted_at is not None, r.submitted_at or datetime.min, r.id),
        )


@dataclass
class TreeEntry:
    """An entry for the git trees API. ``sha`` None deletes the path."""

    path: str
    sha: str | None
    mode: str = "100644"
    type: str = "blob"

    def to_api(self) -> dict[str, Any]:
        return {"path": self.path, "mode": self.mode, "type": self.type, "sha": self.sha}


@dataclass
class CommitAuthor:
    """Name and email for commit attribution."""

    name: str
    email: str

    def trailer(self) -> str:
        return f"Co-authored-by: {self.name} <{self.email}>"


@dataclass(frozen=True)
class ChangedFile:
    """A path that differs from a base commit in the working copy."""

    path: str
    deleted: bool = False
