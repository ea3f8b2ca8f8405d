"""GitHubClient - REST access to forks, pull requests and the git data API."""

from __future__ import annotations

import base64
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

from ticketpilot.exceptions import AuthenticationError, ForkConflict, TransientAPIError
from ticketpilot.host.exceptions import CommitError, ForkError, HostError, PRError
from ticketpilot.host.models import PR, CommitAuthor, PRComment, PRDetails, PRFile, PRReview
from ticketpilot.logging import get_logger, truncate_output

if TYPE_CHECKING:
    from collections.abc import Callable

    from ticketpilot.host.auth import TokenProvider
    from ticketpilot.host.models import TreeEntry

PER_PAGE = 100
MAX_PAGES = 100
BLOB_MAX_RETRIES = 3
BLOB_BASE_DELAY_SECONDS = 2.0


class GitHubClient:
    """Client for the GitHub REST API.

    Every call is authorized with a token for the repository it acts on, so
    the same client serves personal access tokens and GitHub App
    installations alike.
    """

    def __init__(
        self,
        tokens: TokenProvider,
        bot_username: str,
        base_url: str = "https://api.github.com",
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the GitHub client.

        Args:
            tokens: Source of per-repository API tokens.
            bot_username: Login of the bot account that owns forks.
            base_url: GitHub API base URL (for testing/enterprise).
            logger: Logger to use. Defaults to 'ticketpilot.host.github'.
            sleep: Sleep function, replaceable in tests.
        """
        self.tokens = tokens
        self.bot_username = bot_username
        self.base_url = base_url.rstrip("/")
        self.logger = logger or get_logger("host.github")
        self._sleep = sleep
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client for GitHub API."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers={
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
                timeout=30.0,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def token_for(self, owner: str, repo: str) -> str:
        return self.tokens.token_for(owner, repo)

    def _request(
        self,
        method: str,
        path: str,
        owner: str | None = None,
        repo: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send an API request authorized for ``owner/repo``.

        Requests without an owner are sent unauthenticated.

        Raises:
            TransientAPIError: Network failure or 5xx response.
            AuthenticationError: HTTP 401.
        """
        headers = dict(kwargs.pop("headers", None) or {})
        if owner and repo:
            headers["Authorization"] = f"Bearer {self.tokens.token_for(owner, repo)}"
        try:
            response = self.client.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise TransientAPIError(f"GitHub unreachable for {method} {path}: {e}") from e
        if response.status_code == 401:
            raise AuthenticationError(f"GitHub rejected credentials for {method} {path}")
        if response.status_code >= 500:
            raise TransientAPIError(
                f"GitHub error for {method} {path}: {response.status_code} - "
                f"{truncate_output(response.text, 200)}"
            )
        return response

    def _paginate(self, path: str, owner: str, repo: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        for page in range(1, MAX_PAGES + 1):
            response = self._request(
                "GET", path, owner, repo, params={"per_page": PER_PAGE, "page": page}
            )
            if response.status_code != 200:
                raise PRError(f"Failed to list {path}: {response.status_code} - {response.text}")
            batch = response.json()
            items.extend(batch)
            if len(batch) < PER_PAGE:
                return items
        self.logger.warning("Pagination limit reached for %s (%d items)", path, len(items))
        return items

    # Forks

    def _get_repository(
        self, owner: str, repo: str, upstream: tuple[str, str]
    ) -> dict[str, Any] | None:
        # Read with the upstream credentials; an App may not be installed on the fork.
        response = self._request("GET", f"/repos/{owner}/{repo}", *upstream)
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ForkError(
                f"Failed to get repository {owner}/{repo}: "
                f"{response.status_code} - {response.text}"
            )
        return response.json()

    def check_fork_exists_for_user(self, owner: str, repo: str, fork_owner: str) -> bool:
        """Check whether ``fork_owner/repo`` is a fork of ``owner/repo``.

        Returns:
            False if no repository with that name exists.

        Raises:
            ForkConflict: If the repository exists but is not a fork of upstream.
        """
        data = self._get_repository(fork_owner, repo, (owner, repo))
        if data is None:
            return False
        if not data.get("fork"):
            raise ForkConflict(f"Repository {fork_owner}/{repo} exists but is not a fork")
        parent = (data.get("parent") or {}).get("full_name", "")
        if parent.lower() != f"{owner}/{repo}".lower():
            raise ForkConflict(
                f"Repository {fork_owner}/{repo} is a fork of {parent}, not {owner}/{repo}"
            )
        return True

    def check_fork_exists(self, owner: str, repo: str) -> tuple[bool, str]:
        """Check whether the bot already has a fork of ``owner/repo``.

        Returns:
            (exists, clone_url); clone_url is empty when the fork is absent.
        """
        if not self.check_fork_exists_for_user(owner, repo, self.bot_username):
            return False, ""
        return True, self.get_fork_clone_url_for_user(owner, repo, self.bot_username)

    def get_fork_clone_url_for_user(self, owner: str, repo: str, fork_owner: str) -> str:
        """Clone URL of ``fork_owner``'s fork.

        Raises:
            ForkError: If the fork does not exist.
        """
        data = self._get_repository(fork_owner, repo, (owner, repo))
        if data is None:
            raise ForkError(f"Fork {fork_owner}/{repo} of {owner}/{repo} not found")
        return data.get("clone_url", "")

    def fork_repository(self, owner: str, repo: str) -> str:
        """Fork ``owner/repo`` into the bot account.

        Returns:
            Clone URL of the fork.

        Raises:
            ForkError: If the fork request fails.
        """
        self.logger.info("Forking %s/%s", owner, repo)
        response = self._request("POST", f"/repos/{owner}/{repo}/forks", owner, repo)
        if response.status_code not in (200, 202):
            raise ForkError(
                f"Failed to fork repository {owner}/{repo}: "
                f"{response.status_code} - {response.text}"
            )
        return response.json().get("clone_url", "")

    def sync_fork_with_upstream(self, fork_owner: str, repo: str, branch: str) -> None:
        """Bring the fork's branch up to date with upstream (merge-upstream).

        Raises:
            ForkConflict: If the fork branch diverged and cannot be fast-forwarded.
            ForkError: On any other failure.
        """
        response = self._request(
            "POST",
            f"/repos/{fork_owner}/{repo}/merge-upstream",
            fork_owner,
            repo,
            json={"branch": branch},
        )
        if response.status_code == 409:
            raise ForkConflict(
                f"Fork {fork_owner}/{repo} branch '{branch}' conflicts with upstream"
            )
        if response.status_code not in (200, 202):
            raise ForkError(
                f"Failed to sync fork {fork_owner}/{repo}: "
                f"{response.status_code} - {response.text}"
            )
        self.logger.info("Synced fork %s/%s (%s) with upstream", fork_owner, repo, branch)

    def get_installation_id_for_repo(self, owner: str, repo: str) -> int:
        """GitHub App installation ID for a repository.

        Raises:
            HostError: If no App installation covers the repository.
        """
        installation_id = self.tokens.installation_id_for(owner, repo)
        if installation_id is None:
            raise HostError(f"GitHub App is not installed on {owner}/{repo}")
        return installation_id

    # Pull requests

    def create_pull_request(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
        label: str = "",
    ) -> PR:
        """Create a pull request and tag it with a label.

        Args:
            owner: Upstream repository owner.
            repo: Upstream repository name.
            title: PR title.
            body: PR description.
            head: Head in "forkOwner:branch" form.
            base: Base branch to merge into.
            label: Label to add; a labelling failure only logs a warning.

        Returns:
            PR object with id, url, and number.

        Raises:
            PRError: If PR creation fails.
        """
        self.logger.info("Creating PR: %s (%s -> %s)", title, head, base)
        response = self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            owner,
            repo,
            json={
                "title": title,
                "body": body,
                "head": head,
                "base": base,
                "maintainer_can_modify": False,
            },
        )
        if response.status_code != 201:
            raise PRError(f"Failed to create PR: {response.status_code} - {response.text}")

        data = response.json()
        pr = PR(id=data["id"], url=data["html_url"], number=data["number"])
        self.logger.info("Created PR #%d: %s", pr.number, pr.url)

        if label:
            label_response = self._request(
                "POST",
                f"/repos/{owner}/{repo}/issues/{pr.number}/labels",
                owner,
                repo,
                json={"labels": [label]},
            )
            if label_response.status_code != 200:
                self.logger.warning(
                    "Failed to add label %s to PR #%d: %s",
                    label,
                    pr.number,
                    label_response.text,
                )
        return pr

    def list_pr_reviews(self, owner: str, repo: str, number: int) -> list[PRReview]:
        """All submitted reviews on a PR, oldest first."""
        items = self._paginate(f"/repos/{owner}/{repo}/pulls/{number}/reviews", owner, repo)
        return [PRReview.from_api(item) for item in items]

    def list_pr_comments(self, owner: str, repo: str, number: int) -> list[PRComment]:
        """Inline review comments plus conversation comments on a PR."""
        inline = self._paginate(f"/repos/{owner}/{repo}/pulls/{number}/comments", owner, repo)
        conversation = self._paginate(
            f"/repos/{owner}/{repo}/issues/{number}/comments", owner, repo
        )
        return [PRComment.from_api(item) for item in [*inline, *conversation]]

    def get_pr_details(self, owner: str, repo: str, number: int) -> PRDetails:
        """Fetch a PR with its reviews, comments and changed files.

        Raises:
            PRError: If the PR cannot be read.
        """
        response = self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}", owner, repo)
        if response.status_code != 200:
            raise PRError(
                f"Failed to get PR {number}: {response.status_code} - {response.text}"
            )
        data = response.json()
        head = data.get("head") or {}
        head_repo = head.get("repo") or {}
        files = self._paginate(f"/repos/{owner}/{repo}/pulls/{number}/files", owner, repo)
        return PRDetails(
            number=data["number"],
            title=data.get("title") or "",
            body=data.get("body") or "",
            html_url=data.get("html_url") or "",
            state=data.get("state") or "",
            merged=bool(data.get("merged")),
            head_ref=head.get("ref") or "",
            head_clone_url=head_repo.get("clone_url") or "",
            head_owner=(head_repo.get("owner") or {}).get("login", ""),
            base_ref=(data.get("base") or {}).get("ref") or "",
            reviews=self.list_pr_reviews(owner, repo, number),
            comments=self.list_pr_comments(owner, repo, number),
            files=[
                PRFile(
                    filename=f.get("filename", ""),
                    status=f.get("status", ""),
                    additions=int(f.get("additions") or 0),
                    deletions=int(f.get("deletions") or 0),
                    patch=f.get("patch") or "",
                )
                for f in files
            ],
        )

    def add_pr_comment(self, owner: str, repo: str, number: int, body: str) -> None:
        """Post a conversation comment on a PR."""
        response = self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            owner,
            repo,
            json={"body": body},
        )
        if response.status_code != 201:
            raise PRError(
                f"Failed to comment on PR {number}: {response.status_code} - {response.text}"
            )

    def reply_to_pr_comment(
        self, owner: str, repo: str, number: int, comment_id: int, body: str
    ) -> None:
        """Reply in the thread of an inline review comment."""
        response = self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls/{number}/comments/{comment_id}/replies",
            owner,
            repo,
            json={"body": body},
        )
        if response.status_code != 201:
            raise PRError(
                f"Failed to reply to comment {comment_id}: "
                f"{response.status_code} - {response.text}"
            )

    # Git data API

    def get_branch_head(self, owner: str, repo: str, branch: str) -> str | None:
        """SHA the branch points to, or None if the branch does not exist."""
        response = self._request(
            "GET", f"/repos/{owner}/{repo}/git/ref/heads/{branch}", owner, repo
        )
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise CommitError(
                f"Failed to get branch {branch}: {response.status_code} - {response.text}"
            )
        return response.json()["object"]["sha"]

    def get_commit_tree(self, owner: str, repo: str, commit_sha: str) -> str:
        """Tree SHA of a commit."""
        response = self._request(
            "GET", f"/repos/{owner}/{repo}/git/commits/{commit_sha}", owner, repo
        )
        if response.status_code != 200:
            raise CommitError(
                f"Failed to get commit {commit_sha}: {response.status_code} - {response.text}"
            )
        return response.json()["tree"]["sha"]

    def create_blob(self, owner: str, repo: str, content: bytes) -> str:
        """Upload file content as a blob.

        Secondary rate limits (429, or 403 mentioning "rate limit") are
        retried with 2/4/8 second backoff.

        Returns:
            The blob SHA.

        Raises:
            CommitError: If the blob cannot be created.
        """
        payload = {"content": base64.b64encode(content).decode("ascii"), "encoding": "base64"}
        for attempt in range(BLOB_MAX_RETRIES + 1):
            if attempt > 0:
                delay = BLOB_BASE_DELAY_SECONDS * 2 ** (attempt - 1)
                self.logger.info("Blob creation rate limited, retrying in %.0fs", delay)
                self._sleep(delay)
            response = self._request(
                "POST", f"/repos/{owner}/{repo}/git/blobs", owner, repo, json=payload
            )
            if response.status_code == 201:
                return response.json()["sha"]
            rate_limited = response.status_code == 429 or (
                response.status_code == 403 and "rate limit" in response.text.lower()
            )
            if not rate_limited:
                raise CommitError(
                    f"Failed to create blob: {response.status_code} - {response.text}"
                )
        raise CommitError(f"Blob creation still rate limited after {BLOB_MAX_RETRIES} retries")

    def create_tree(
        self, owner: str, repo: str, base_tree: str, entries: list[TreeEntry]
    ) -> str:
        """Create a tree on top of ``base_tree``. Returns the tree SHA."""
        response = self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/trees",
            owner,
            repo,
            json={"base_tree": base_tree, "tree": [e.to_api() for e in entries]},
        )
        if response.status_code != 201:
            raise CommitError(f"Failed to create tree: {response.status_code} - {response.text}")
        return response.json()["sha"]

    def create_commit(
        self,
        owner: str,
        repo: str,
        message: str,
        tree: str,
        parents: list[str],
        author: CommitAuthor | None = None,
    ) -> str:
        """Create a commit object. Returns the commit SHA.

        Without an explicit author GitHub attributes the commit to the
        authenticated identity and marks it verified.
        """
        payload: dict[str, Any] = {"message": message, "tree": tree, "parents": parents}
        if author is not None:
            payload["author"] = {"name": author.name, "email": author.email}
            payload["committer"] = {"name": author.name, "email": author.email}
        response = self._request(
            "POST", f"/repos/{owner}/{repo}/git/commits", owner, repo, json=payload
        )
        if response.status_code != 201:
            raise CommitError(
                f"Failed to create commit: {response.status_code} - {response.text}"
            )
        return response.json()["sha"]

    def update_ref(
        self, owner: str, repo: str, branch: str, sha: str, force: bool = False
    ) -> None:
        """Move an existing branch to ``sha``."""
        response = self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/git/refs/heads/{branch}",
            owner,
            repo,
            json={"sha": sha, "force": force},
        )
        if response.status_code != 200:
            raise CommitError(
                f"Failed to update branch '{branch}': {response.status_code} - {response.text}"
            )

    def create_ref(self, owner: str, repo: str, branch: str, sha: str) -> None:
        """Create a new branch pointing at ``sha``."""
        response = self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/refs",
            owner,
            repo,
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        if response.status_code != 201:
            raise CommitError(
                f"Failed to create branch '{branch}': {response.status_code} - {response.text}"
            )
