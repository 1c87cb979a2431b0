"""Data types passed between the CMS and the GitLab backend."""

import base64
from dataclasses import dataclass, field
from typing import Any

from .content_key import WorkflowStatus


@dataclass
class CommitAuthor:
    name: str
    email: str


@dataclass
class Entry:
    """A content entry as handed over by the CMS (opaque apart from these fields)."""

    path: str
    slug: str
    raw: str

    def to_base64(self) -> str:
        return base64.b64encode(self.raw.encode("utf-8")).decode("ascii")


@dataclass
class AssetProxy:
    """A media file to upload alongside (or without) an entry."""

    path: str
    content: bytes

    def to_base64(self) -> str:
        return base64.b64encode(self.content).decode("ascii")


@dataclass
class PersistOptions:
    """Options for persisting an entry or media file."""

    commit_message: str
    collection_name: str | None = None
    use_workflow: bool = False
    # True when the entry already has an open workflow branch
    unpublished: bool = False
    status: WorkflowStatus | None = None


@dataclass
class FileRef:
    """A file to read: repository path plus optional blob id."""

    path: str
    id: str | None = None
    name: str | None = None


@dataclass
class FetchedFile:
    file: FileRef
    data: str


@dataclass
class MergeRequest:
    """The parts of a GitLab merge request this backend reads."""

    iid: int
    source_branch: str
    target_branch: str
    sha: str
    labels: list[str] = field(default_factory=list)
    state: str = "opened"
    title: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "MergeRequest":
        return cls(
            iid=data["iid"],
            source_branch=data["source_branch"],
            target_branch=data["target_branch"],
            sha=data.get("sha") or "",
            labels=list(data.get("labels") or []),
            state=data.get("state", "opened"),
            title=data.get("title", ""),
        )


@dataclass
class DiffEntry:
    """One changed file from the compare API."""

    old_path: str
    new_path: str
    new_file: bool = False
    renamed_file: bool = False
    deleted_file: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "DiffEntry":
        return cls(
            old_path=data["old_path"],
            new_path=data["new_path"],
            new_file=data.get("new_file", False),
            renamed_file=data.get("renamed_file", False),
            deleted_file=data.get("deleted_file", False),
        )


@dataclass
class UnpublishedEntryMetadata:
    """Editorial metadata recovered from a workflow branch."""

    branch: str
    collection: str
    slug: str
    path: str | None
    status: WorkflowStatus
    media_files: list[FileRef]


@dataclass
class UnpublishedEntry:
    slug: str
    metadata: UnpublishedEntryMetadata
    file_data: str
    is_modification: bool


@dataclass
class DeployStatus:
    """A commit status (CI job, deploy preview) reported on a workflow branch."""

    context: str
    state: str
    target_url: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "DeployStatus":
        return cls(
            context=data.get("name", ""),
            state=data.get("status", ""),
            target_url=data.get("target_url"),
        )
