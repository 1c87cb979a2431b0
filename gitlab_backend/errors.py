"""Typed exceptions raised by the GitLab content backend.

Callers catch GitLabBackendError for anything coming out of this package, or
APIError for anything that happened while talking to the GitLab API.
"""

API_NAME = "GitLab"


class GitLabBackendError(Exception):
    """Base exception for all gitlab_backend errors."""

    pass


class ConfigurationError(GitLabBackendError):
    """Raised when a required configuration value is missing."""

    pass


class APIError(GitLabBackendError):
    """Raised when a GitLab API call fails.

    Carries the HTTP status (None when no response was received), the parsed
    body when there was one, and the provider name.
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        api_name: str = API_NAME,
        body=None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.api_name = api_name
        self.body = body


class TransportError(APIError):
    """Raised when the request never produced a response (network, DNS, timeout)."""

    pass


class ResponseFormatError(APIError):
    """Raised when a response body cannot be decoded into the expected format."""

    pass


class RebaseTimeoutError(APIError):
    """Raised when a merge request is still rebasing after the last poll."""

    pass


class RebaseConflictError(APIError):
    """Raised when GitLab reports a merge error while rebasing."""

    def __init__(self, merge_error: str, api_name: str = API_NAME):
        super().__init__(f"Rebase error: {merge_error}", None, api_name)
        self.merge_error = merge_error


class PermissionDeniedError(GitLabBackendError):
    """Raised when the authenticated user lacks write access to the repo."""

    pass


class EditorialWorkflowError(GitLabBackendError):
    """Raised when an entry's branch or merge request is missing or invalid."""

    def __init__(self, message: str, not_under_editorial_workflow: bool = False):
        super().__init__(message)
        self.message = message
        self.not_under_editorial_workflow = not_under_editorial_workflow
