"""Building GitLab multi-file commits (POST /projects/:id/repository/commits)."""

import enum
from dataclasses import dataclass
from typing import Any

from .models import CommitAuthor


class CommitAction(str, enum.Enum):
    create = "create"
    update = "update"
    delete = "delete"
    move = "move"


CONTENT_ACTIONS = (CommitAction.create, CommitAction.update)


@dataclass(frozen=True)
class CommitItem:
    """One file change inside a commit.

    Content is carried for create and update only; a move needs the path
    it moves from.
    """

    path: str
    action: CommitAction
    base64_content: str | None = None
    previous_path: str | None = None

    def __post_init__(self):
        has_content = self.base64_content is not None
        if has_content != (self.action in CONTENT_ACTIONS):
            raise ValueError(
                f"{self.action.value} commit item for {self.path} "
                f"{'must not' if has_content else 'must'} carry content"
            )
        if self.action == CommitAction.move and not self.previous_path:
            raise ValueError(f"move commit item for {self.path} needs previous_path")


def normalize_path(path: str) -> str:
    """Repository paths are relative: strip any leading slash."""
    return path.lstrip("/")


def _item_to_action(item: CommitItem) -> dict[str, Any]:
    action: dict[str, Any] = {
        "action": item.action.value,
        "file_path": normalize_path(item.path),
    }
    if item.base64_content is not None:
        action["content"] = item.base64_content
        action["encoding"] = "base64"
    if item.previous_path:
        action["previous_path"] = normalize_path(item.previous_path)
    return action


def build_commit_payload(
    items: list[CommitItem],
    branch: str,
    commit_message: str,
    start_branch: str | None = None,
    author: CommitAuthor | None = None,
) -> dict[str, Any]:
    """Build the JSON body for an atomic multi-file commit.

    Args:
        items: File changes to apply
        branch: Branch the commit lands on
        commit_message: Commit message
        start_branch: When set, `branch` is created from this branch
        author: Optional author override; GitLab's default committer otherwise
    """
    payload: dict[str, Any] = {
        "branch": branch,
        "commit_message": commit_message,
        "actions": [_item_to_action(item) for item in items],
    }
    if start_branch:
        payload["start_branch"] = start_branch
    if author:
        payload["author_name"] = author.name
        payload["author_email"] = author.email
    return payload
