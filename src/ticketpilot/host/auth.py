"""GitHub credential providers: personal access token or GitHub App."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

import httpx
import jwt

from ticketpilot.exceptions import AuthenticationError, TransientAPIError
from ticketpilot.logging import get_logger, truncate_output

GITHUB_API_URL = "https://api.github.com"
APP_JWT_LIFETIME_SECONDS = 540
TOKEN_REFRESH_MARGIN_SECONDS = 300


class TokenProvider(ABC):
    """Supplies an API token authorized for a given repository."""

    @abstractmethod
    def token_for(self, owner: str, repo: str) -> str:
        """Return a token that can act on ``owner/repo``."""

    def installation_id_for(self, owner: str, repo: str) -> int | None:
        """GitHub App installation covering the repository, if applicable."""
        return None


class StaticTokenProvider(TokenProvider):
    """A single personal access token used for every repository."""

    def __init__(self, token: str) -> None:
        if not token:
            raise AuthenticationError("GitHub personal access token is empty")
        self._token = token

    def token_for(self, owner: str, repo: str) -> str:
        return self._token


class AppTokenProvider(TokenProvider):
    """GitHub App authentication.

    Signs a short-lived RS256 JWT with the App's private key, discovers the
    installation for each repository and exchanges the JWT for an
    installation token. Tokens are cached per installation until shortly
    before they expire.
    """

    def __init__(
        self,
        app_id: int,
        private_key: str,
        base_url: str = GITHUB_API_URL,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            app_id: Numeric GitHub App ID.
            private_key: PEM-encoded App private key.
            base_url: GitHub API base URL (for testing/enterprise).
            logger: Logger to use. Defaults to 'ticketpilot.host.auth'.
        """
        self.app_id = app_id
        self._private_key = private_key
        self.base_url = base_url.rstrip("/")
        self.logger = logger or get_logger("host.auth")
        self._client: httpx.Client | None = None
        self._lock = threading.Lock()
        self._installations: dict[str, int] = {}
        self._tokens: dict[int, tuple[str, float]] = {}

    @classmethod
    def from_key_file(
        cls,
        app_id: int,
        private_key_path: str | Path,
        logger: logging.Logger | None = None,
    ) -> AppTokenProvider:
        """Create a provider reading the private key from disk.

        Raises:
            AuthenticationError: If the key file cannot be read.
        """
        try:
            key = Path(private_key_path).read_text()
        except OSError as e:
            raise AuthenticationError(
                f"Failed to read GitHub App private key {private_key_path}: {e}"
            ) from e
        return cls(app_id=app_id, private_key=key, logger=logger)

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client for App-level endpoints."""
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

    def app_jwt(self) -> str:
        """Create the App JWT used for App-level endpoints."""
        now = int(time.time())
        payload = {"iat": now - 60, "exp": now + APP_JWT_LIFETIME_SECONDS, "iss": str(self.app_id)}
        return jwt.encode(payload, self._private_key, algorithm="RS256")

    def _app_request(self, method: str, path: str) -> httpx.Response:
        """Send an App-authenticated request.

        Raises:
            TransientAPIError: Network failure or 5xx response.
        """
        try:
            response = self.client.request(
                method, path, headers={"Authorization": f"Bearer {self.app_jwt()}"}
            )
        except httpx.TransportError as e:
            raise TransientAPIError(f"GitHub unreachable for {method} {path}: {e}") from e
        if response.status_code >= 500:
            raise TransientAPIError(
                f"GitHub error for {method} {path}: {response.status_code} - "
                f"{truncate_output(response.text, 200)}"
            )
        return response

    def installation_id_for(self, owner: str, repo: str) -> int | None:
        """Discover the App installation for a repository.

        Returns:
            The installation ID, or None when the App is not installed.

        Raises:
            AuthenticationError: If the App credentials are rejected.
            TransientAPIError: If GitHub is unreachable.
        """
        full_name = f"{owner}/{repo}"
        with self._lock:
            if full_name in self._installations:
                return self._installations[full_name]

        response = self._app_request("GET", f"/repos/{owner}/{repo}/installation")
        if response.status_code == 404:
            return None
        if response.status_code == 401:
            raise AuthenticationError(f"GitHub App authentication failed: {response.text}")
        if response.status_code != 200:
            raise AuthenticationError(
                f"Failed to get installation for {full_name}: "
                f"{response.status_code} - {response.text}"
            )
        installation_id = int(response.json()["id"])
        with self._lock:
            self._installations[full_name] = installation_id
        return installation_id

    def token_for(self, owner: str, repo: str) -> str:
        """Installation token for the repository's installation.

        Raises:
            AuthenticationError: If the App is not installed or the exchange fails.
            TransientAPIError: If GitHub is unreachable.
        """
        installation_id = self.installation_id_for(owner, repo)
        if installation_id is None:
            raise AuthenticationError(f"GitHub App is not installed on {owner}/{repo}")

        with self._lock:
            cached = self._tokens.get(installation_id)
            if cached is not None and cached[1] - TOKEN_REFRESH_MARGIN_SECONDS > time.time():
                return cached[0]

        response = self._app_request(
            "POST", f"/app/installations/{installation_id}/access_tokens"
        )
        if response.status_code != 201:
            with self._lock:
                self._tokens.pop(installation_id, None)
            raise AuthenticationError(
                f"Failed to create installation token for {owner}/{repo}: "
                f"{response.status_code} - {response.text}"
            )
        data = response.json()
        token = data["token"]
        expires_at = datetime.fromisoformat(data["expires_at"].replace("Z", "+00:00"))
        with self._lock:
            self._tokens[installation_id] = (token, expires_at.timestamp())
        self.logger.debug("Issued installation token for %s/%s", owner, repo)
        return token
