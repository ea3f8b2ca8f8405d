"""Shared pytest fixtures and configuration."""

import pytest

from ticketpilot.config import (
    Config,
    GitHubConfig,
    JiraConfig,
    ProjectConfig,
    RuntimeConfig,
    StatusTransitions,
)


# Register custom markers
def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: fast tests with no external dependencies")
    config.addinivalue_line("markers", "integration: component interaction tests")
    config.addinivalue_line("markers", "e2e: full ticket-to-PR tests")
    config.addinivalue_line("markers", "real: actual AI CLI invocation (local only)")


# Shared fixtures


@pytest.fixture
def project_config() -> ProjectConfig:
    """A PROJ project with Bug and Story workflows."""
    return ProjectConfig(
        project_keys=["PROJ"],
        status_transitions={
            "Bug": StatusTransitions(todo="Open", in_progress="In Progress", in_review="Code Review"),
            "Story": StatusTransitions(todo="To Do", in_progress="Doing", in_review="Code Review"),
        },
        component_to_repo={"backend": "https://github.com/acme/backend.git"},
        pr_url_field_name="Git Pull Request",
        fallback_status="Blocked",
    )


@pytest.fixture
def config(project_config: ProjectConfig, tmp_path) -> Config:
    """A valid configuration using a personal access token."""
    return Config(
        jira=JiraConfig(
            base_url="https://jira.example.com",
            username="ai-bot",
            api_token="jira-token",
            projects=[project_config],
        ),
        github=GitHubConfig(
            personal_access_token="ghp_test",
            bot_username="ai-bot",
            bot_email="ai-bot@example.com",
        ),
        runtime=RuntimeConfig(temp_dir=str(tmp_path / "work")),
    )
