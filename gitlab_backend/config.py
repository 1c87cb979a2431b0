"""
Configuration for the GitLab content backend.

Values come from environment variables (optionally seeded from a .env file)
or are passed directly to GitLabConfig.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .content_key import WorkflowStatus
from .errors import ConfigurationError
from .models import CommitAuthor

DEFAULT_API_ROOT = "https://gitlab.com/api/v4"
DEFAULT_BRANCH = "master"


@dataclass
class GitLabConfig:
    """Settings shared by GitLabAPI, EditorialWorkflow and GitLabBackend."""

    repo: str
    branch: str = DEFAULT_BRANCH
    api_root: str = DEFAULT_API_ROOT
    token: str | None = None
    squash_merges: bool = False
    initial_workflow_status: WorkflowStatus = WorkflowStatus.draft
    commit_author: CommitAuthor | None = None
    rebase_poll_interval: float = 1.0  # seconds between rebase polls
    rebase_max_attempts: int = 10
    timeout: float = 30.0


def _is_truthy(value: str | None) -> bool:
    return (value or "").lower() in ("true", "1", "yes")


def get_repo() -> str:
    """Get the GitLab project path ("group/project") from environment.

    Raises:
        ConfigurationError: If GITLAB_REPO not set.
    """
    repo = os.getenv("GITLAB_REPO")
    if not repo:
        raise ConfigurationError(
            "GITLAB_REPO environment variable is required "
            "(e.g. 'my-group/my-site')."
        )
    return repo


def get_branch() -> str:
    return os.getenv("GITLAB_BRANCH", DEFAULT_BRANCH)


def get_api_root() -> str:
    return os.getenv("GITLAB_API_ROOT", DEFAULT_API_ROOT).rstrip("/")


def get_token() -> str | None:
    """Get optional GitLab token for API requests."""
    return os.getenv("GITLAB_TOKEN") or None


def get_squash_merges() -> bool:
    return _is_truthy(os.getenv("CMS_SQUASH_MERGES"))


def get_initial_workflow_status() -> WorkflowStatus:
    value = os.getenv("CMS_INITIAL_WORKFLOW_STATUS", WorkflowStatus.draft.value)
    try:
        return WorkflowStatus(value)
    except ValueError:
        raise ConfigurationError(
            f"CMS_INITIAL_WORKFLOW_STATUS must be one of "
            f"{[s.value for s in WorkflowStatus]}, got {value!r}"
        ) from None


def get_commit_author() -> CommitAuthor | None:
    """Author override for commits, only when both name and email are set."""
    name = os.getenv("CMS_COMMIT_AUTHOR_NAME")
    email = os.getenv("CMS_COMMIT_AUTHOR_EMAIL")
    if name and email:
        return CommitAuthor(name=name, email=email)
    return None


def get_timeout() -> float:
    value = os.getenv("GITLAB_TIMEOUT", "30")
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(
            f"GITLAB_TIMEOUT must be a number of seconds, got {value!r}"
        ) from None


def load_config(env_file: str | None = None) -> GitLabConfig:
    """Build a GitLabConfig from the environment.

    Args:
        env_file: Optional dotenv file loaded first; existing environment
            variables win over values from the file.

    Raises:
        ConfigurationError: If a required variable is missing or invalid.
    """
    if env_file:
        load_dotenv(env_file)

    return GitLabConfig(
        repo=get_repo(),
        branch=get_branch(),
        api_root=get_api_root(),
        token=get_token(),
        squash_merges=get_squash_merges(),
        initial_workflow_status=get_initial_workflow_status(),
        commit_author=get_commit_author(),
        timeout=get_timeout(),
    )
