"""GitLab repository as a versioned content store for a CMS."""

from .api import FileListing, GitLabAPI, parse_response
from .backend import ContentBackend, GitLabBackend
from .commits import CommitAction, CommitItem, build_commit_payload
from .config import GitLabConfig, load_config
from .content_key import (
    CMS_BRANCH_PREFIX,
    WorkflowStatus,
    branch_from_content_key,
    content_key_from_branch,
    generate_content_key,
    label_to_status,
    status_to_label,
)
from .cursor import Cursor, CursorMeta, cursor_from_response, reverse_cursor
from .errors import (
    APIError,
    ConfigurationError,
    EditorialWorkflowError,
    GitLabBackendError,
    PermissionDeniedError,
    RebaseConflictError,
    RebaseTimeoutError,
    ResponseFormatError,
    TransportError,
)
from .fetcher import MAX_CONCURRENT_DOWNLOADS, FileFetcher
from .models import AssetProxy, CommitAuthor, Entry, FileRef, PersistOptions
from .workflow import EditorialWorkflow

__all__ = [
    "FileListing",
    "GitLabAPI",
    "parse_response",
    "ContentBackend",
    "GitLabBackend",
    "CommitAction",
    "CommitItem",
    "build_commit_payload",
    "GitLabConfig",
    "load_config",
    "CMS_BRANCH_PREFIX",
    "WorkflowStatus",
    "branch_from_content_key",
    "content_key_from_branch",
    "generate_content_key",
    "label_to_status",
    "status_to_label",
    "Cursor",
    "CursorMeta",
    "cursor_from_response",
    "reverse_cursor",
    "APIError",
    "ConfigurationError",
    "EditorialWorkflowError",
    "GitLabBackendError",
    "PermissionDeniedError",
    "RebaseConflictError",
    "RebaseTimeoutError",
    "ResponseFormatError",
    "TransportError",
    "MAX_CONCURRENT_DOWNLOADS",
    "FileFetcher",
    "AssetProxy",
    "CommitAuthor",
    "Entry",
    "FileRef",
    "PersistOptions",
    "EditorialWorkflow",
]
