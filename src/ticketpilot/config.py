"""Configuration loading for ticketpilot."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ticketpilot.exceptions import ConfigError

ENV_PREFIX = "TICKETPILOT_"

DEFAULT_KNOWN_BOTS = [
    "github-actions",
    "dependabot",
    "renovate",
    "coderabbitai",
    "sourcery-ai",
    "copilot",
    "deepsource-io",
    "codefactor-io",
    "codeclimate",
]

SUPPORTED_PROVIDERS = ("claude", "gemini")
COMMIT_STRATEGIES = ("local", "api")
LOG_FORMATS = ("console", "json")


@dataclass
class StatusTransitions:
    """Ordered status labels for one ticket type."""

    todo: str
    in_progress: str
    in_review: str


@dataclass
class ProjectConfig:
    """Per-project routing and workflow configuration.

    Attributes:
        project_keys: Jira project keys handled by this entry (e.g. ["PROJ"]).
        status_transitions: Ticket type name to its status labels. A "default"
            entry is used for types without their own labels.
        component_to_repo: Jira component name to repository URL.
        pr_url_field_name: Name of the custom field holding the PR URL.
        disable_error_comments: Suppress failure comments on tickets.
        fallback_status: Status a failed ticket is reverted to. Must differ from
            every todo label so the ticket is not picked up again.
    """

    project_keys: list[str]
    status_transitions: dict[str, StatusTransitions]
    component_to_repo: dict[str, str]
    pr_url_field_name: str = ""
    disable_error_comments: bool = False
    fallback_status: str = "Open"

    @classmethod
    def from_dict(cls, data: dict[str, Any], index: int) -> ProjectConfig:
        """Create a project config from its YAML mapping.

        Args:
            data: The project mapping.
            index: Position in the projects list, for error messages.

        Returns:
            Parsed project configuration.

        Raises:
            ConfigError: If the mapping is malformed.
        """
        if not isinstance(data, dict):
            raise ConfigError(f"jira.projects[{index}] must be a mapping")

        transitions_data = data.get("status_transitions") or {}
        if not isinstance(transitions_data, dict):
            raise ConfigError(f"jira.projects[{index}].status_transitions must be a mapping")

        transitions: dict[str, StatusTransitions] = {}
        for ticket_type, labels in transitions_data.items():
            if not isinstance(labels, dict):
                raise ConfigError(
                    f"jira.projects[{index}].status_transitions.{ticket_type} must be a mapping"
                )
            transitions[str(ticket_type)] = StatusTransitions(
                todo=str(labels.get("todo", "") or ""),
                in_progress=str(labels.get("in_progress", "") or ""),
                in_review=str(labels.get("in_review", "") or ""),
            )

        keys = data.get("project_keys") or []
        if isinstance(keys, str):
            keys = [k.strip() for k in keys.split(",") if k.strip()]

        return cls(
            project_keys=[str(k) for k in keys],
            status_transitions=transitions,
            component_to_repo={
                str(k): str(v) for k, v in (data.get("component_to_repo") or {}).items()
            },
            pr_url_field_name=str(data.get("pr_url_field_name", "") or ""),
            disable_error_comments=bool(data.get("disable_error_comments", False)),
            fallback_status=str(data.get("fallback_status", "Open") or "Open"),
        )

    def get_status_transitions(self, ticket_type: str) -> StatusTransitions:
        """Look up the status labels for a ticket type.

        Tries an exact match, then a case-insensitive match, then the
        "default" entry.

        Raises:
            ConfigError: If no labels apply to the ticket type.
        """
        if ticket_type in self.status_transitions:
            return self.status_transitions[ticket_type]
        lowered = ticket_type.lower()
        for name, transitions in self.status_transitions.items():
            if name.lower() == lowered:
                return transitions
        if "default" in self.status_transitions:
            return self.status_transitions["default"]
        raise ConfigError(f"No status transitions configured for ticket type '{ticket_type}'")

    def repo_for_component(self, component: str) -> str | None:
        """Resolve a component name to its repository URL (case-insensitive)."""
        lowered = component.lower()
        for name, repo_url in self.component_to_repo.items():
            if name.lower() == lowered:
                return repo_url
        return None

    def validate(self, index: int) -> None:
        """Check the invariants of one project entry.

        Raises:
            ConfigError: If any invariant is violated.
        """
        where = f"jira.projects[{index}]"
        if not self.project_keys:
            raise ConfigError(f"{where}: at least one project key is required")
        if not self.status_transitions:
            raise ConfigError(f"{where}: at least one ticket type must be configured")
        for ticket_type, labels in self.status_transitions.items():
            missing = [
                name
                for name in ("todo", "in_progress", "in_review")
                if not getattr(labels, name).strip()
            ]
            if missing:
                raise ConfigError(
                    f"{where}: ticket type '{ticket_type}' is missing status labels: "
                    f"{', '.join(missing)}"
                )
        if not self.component_to_repo:
            raise ConfigError(f"{where}: at least one component_to_repo mapping is required")
        if not self.fallback_status.strip():
            raise ConfigError(f"{where}: fallback_status must not be empty")
        fallback = self.fallback_status.strip().lower()
        for ticket_type, labels in self.status_transitions.items():
            if labels.todo.strip().lower() == fallback:
                raise ConfigError(
                    f"{where}: fallback_status '{self.fallback_status}' is the todo status of "
                    f"ticket type '{ticket_type}', failed tickets would be picked up again"
                )


@dataclass
class JiraConfig:
    """Jira connection settings and project list."""

    base_url: str = ""
    username: str = ""
    api_token: str = ""
    interval_seconds: int = 300
    projects: list[ProjectConfig] = field(default_factory=list)


@dataclass
class GitHubConfig:
    """GitHub identity, authentication and PR behaviour.

    Either ``personal_access_token`` or ``app_id`` with ``private_key_path``
    must be set. App credentials take precedence.
    """

    personal_access_token: str = ""
    app_id: int = 0
    private_key_path: str = ""
    bot_username: str = ""
    bot_email: str = ""
    target_branch: str = "main"
    pr_label: str = "ai-pr"
    commit_strategy: str = "local"
    ssh_key_path: str = ""
    max_thread_depth: int = 5
    known_bot_usernames: list[str] = field(default_factory=lambda: list(DEFAULT_KNOWN_BOTS))
    assignee_to_github_username: dict[str, str] = field(default_factory=dict)

    @property
    def uses_app_auth(self) -> bool:
        return bool(self.app_id and self.private_key_path)

    def get_bot_email(self) -> str:
        """Bot commit email, defaulting to the App's noreply address."""
        if self.bot_email:
            return self.bot_email
        return f"{self.app_id}+{self.bot_username}[bot]@users.noreply.github.com"


@dataclass
class ClaudeConfig:
    cli_path: str = "claude"
    timeout: int = 300
    dangerously_skip_permissions: bool = False
    allowed_tools: str = "Bash Edit"
    disallowed_tools: str = "Python"
    api_key: str = ""


@dataclass
class GeminiConfig:
    cli_path: str = "gemini"
    timeout: int = 300
    model: str = "gemini-2.5-pro"
    all_files: bool = False
    sandbox: bool = False
    api_key: str = ""


@dataclass
class AIConfig:
    """Shared agent retry policy."""

    generate_documentation: bool = True
    max_retries: int = 5
    retry_delay_seconds: float = 2.0
    max_total_seconds: float = 1800.0


@dataclass
class RuntimeConfig:
    max_workers: int = 4
    shutdown_timeout_seconds: float = 60.0
    temp_dir: str = "/tmp/ticketpilot"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "console"
    dir: str = "logs"
    file: str = "ticketpilot.log"


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class Config:
    """Top-level ticketpilot configuration."""

    jira: JiraConfig = field(default_factory=JiraConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    ai_provider: str = "claude"
    claude: ClaudeConfig = field(default_factory=ClaudeConfig)
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Create config from dictionary.

        Args:
            data: Configuration dictionary from YAML (after env overrides).

        Returns:
            Parsed configuration object.

        Raises:
            ConfigError: If a section is malformed or has unknown keys.
        """
        jira_data = dict(data.get("jira") or {})
        projects_data = jira_data.pop("projects", None) or []
        if not isinstance(projects_data, list):
            raise ConfigError("jira.projects must be a list")
        jira = _build(JiraConfig, jira_data, "jira")
        jira.projects = [ProjectConfig.from_dict(p, i) for i, p in enumerate(projects_data)]
        jira.base_url = jira.base_url.rstrip("/")

        return cls(
            jira=jira,
            github=_build(GitHubConfig, data.get("github") or {}, "github"),
            ai_provider=str(data.get("ai_provider", "claude")).lower(),
            claude=_build(ClaudeConfig, data.get("claude") or {}, "claude"),
            gemini=_build(GeminiConfig, data.get("gemini") or {}, "gemini"),
            ai=_build(AIConfig, data.get("ai") or {}, "ai"),
            runtime=_build(RuntimeConfig, data.get("runtime") or {}, "runtime"),
            logging=_build(LoggingConfig, data.get("logging") or {}, "logging"),
            server=_build(ServerConfig, data.get("server") or {}, "server"),
        )

    def validate(self) -> None:
        """Check cross-field invariants.

        Raises:
            ConfigError: On the first violated invariant.
        """
        if not self.jira.base_url:
            raise ConfigError("jira.base_url is required")
        if not self.jira.api_token:
            raise ConfigError("jira.api_token is required")
        if self.jira.interval_seconds <= 0:
            raise ConfigError("jira.interval_seconds must be positive")
        if not self.jira.projects:
            raise ConfigError("at least one project must be configured under jira.projects")
        for index, project in enumerate(self.jira.projects):
            project.validate(index)

        if not self.github.bot_username:
            raise ConfigError("github.bot_username is required")
        if not (self.github.uses_app_auth or self.github.personal_access_token):
            raise ConfigError(
                "either github.personal_access_token or github.app_id with "
                "github.private_key_path is required"
            )
        if self.github.commit_strategy not in COMMIT_STRATEGIES:
            raise ConfigError(
                f"github.commit_strategy must be one of {', '.join(COMMIT_STRATEGIES)}"
            )
        if self.github.max_thread_depth < 1:
            raise ConfigError("github.max_thread_depth must be at least 1")

        if self.ai_provider not in SUPPORTED_PROVIDERS:
            raise ConfigError(
                f"unsupported ai_provider '{self.ai_provider}' "
                f"(expected one of {', '.join(SUPPORTED_PROVIDERS)})"
            )
        if self.ai.max_retries < 1:
            raise ConfigError("ai.max_retries must be at least 1")
        if self.ai.retry_delay_seconds < 0:
            raise ConfigError("ai.retry_delay_seconds must not be negative")
        if self.ai.max_total_seconds <= 0:
            raise ConfigError("ai.max_total_seconds must be positive")

        if self.runtime.max_workers < 1:
            raise ConfigError("runtime.max_workers must be at least 1")
        if self.runtime.shutdown_timeout_seconds < 0:
            raise ConfigError("runtime.shutdown_timeout_seconds must not be negative")
        if self.logging.format not in LOG_FORMATS:
            raise ConfigError(f"logging.format must be one of {', '.join(LOG_FORMATS)}")

    def get_project_config_for_ticket(self, ticket_key: str) -> ProjectConfig:
        """Select the project entry for a ticket key.

        Matches the key prefix before '-' case-insensitively and falls back to
        the first configured project.

        Raises:
            ConfigError: If no projects are configured.
        """
        if not self.jira.projects:
            raise ConfigError("no projects configured")
        prefix = ticket_key.split("-", 1)[0].lower()
        for project in self.jira.projects:
            if any(key.lower() == prefix for key in project.project_keys):
                return project
        return self.jira.projects[0]


def _field_default(f: dataclasses.Field[Any]) -> Any:
    if f.default is not dataclasses.MISSING:
        return f.default
    if f.default_factory is not dataclasses.MISSING:
        return f.default_factory()
    return None


def _coerce(value: Any, default: Any, path: str) -> Any:
    """Coerce string values (from env overrides) to the type of the default."""
    if not isinstance(value, str) or default is None or isinstance(default, str):
        return value
    try:
        if isinstance(default, bool):
            return value.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except ValueError as e:
        raise ConfigError(f"Invalid value for {path}: {value!r}") from e
    if isinstance(default, list):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


def _build(cls: type[Any], data: Any, section: str) -> Any:
    if not isinstance(data, dict):
        raise ConfigError(f"'{section}' must be a mapping")
    known = {f.name: f for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ConfigError(f"Unknown keys in '{section}': {', '.join(unknown)}")
    kwargs = {
        name: _coerce(value, _field_default(known[name]), f"{section}.{name}")
        for name, value in data.items()
    }
    return cls(**kwargs)


def apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Overlay TICKETPILOT_* environment variables onto raw config data.

    ``TICKETPILOT_JIRA__API_TOKEN=x`` sets ``data["jira"]["api_token"] = "x"``.
    A bare ``PORT`` variable overrides ``server.port``.

    Args:
        data: Raw configuration mapping (modified copy is returned).
        environ: Environment mapping to read from.

    Returns:
        The merged configuration mapping.
    """
    merged: dict[str, Any] = {k: (dict(v) if isinstance(v, dict) else v) for k, v in data.items()}
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        path = [part.lower() for part in name[len(ENV_PREFIX) :].split("__") if part]
        if not path or path[0] in ("log_dir", "log_level"):
            continue
        target = merged
        for part in path[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        target[path[-1]] = value

    if environ.get("PORT"):
        server = merged.setdefault("server", {})
        server["port"] = environ["PORT"]
    return merged


def load_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load and validate configuration from YAML plus environment overrides.

    Args:
        config_path: Path to a YAML file. When None, only the environment is used.
        environ: Environment mapping. Defaults to ``os.environ``.

    Returns:
        Validated configuration object.

    Raises:
        ConfigError: If the file doesn't exist, is invalid, or fails validation.
    """
    data: Any = {}
    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration must be a YAML mapping, got {type(data).__name__}")

    data = apply_env_overrides(data, os.environ if environ is None else environ)
    config = Config.from_dict(data)
    config.validate()
    return config
