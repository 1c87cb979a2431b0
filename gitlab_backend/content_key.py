"""Content keys, workflow branch names and status labels.

A content key identifies an unpublished entry: "{collection}/{slug}".
Its workflow branch is "cms/{collection}/{slug}". Nothing here does I/O, and
the mapping must stay stable so in-flight entries can be found again later.
"""

import enum

CMS_BRANCH_PREFIX = "cms"
CONTENT_KEY_SEPARATOR = "/"
CMS_LABEL_PREFIX = "cms/"


class WorkflowStatus(str, enum.Enum):
    draft = "draft"
    pending_review = "pending_review"
    pending_publish = "pending_publish"


# The only place status names meet GitLab label strings
STATUS_LABELS: dict[WorkflowStatus, str] = {
    status: f"{CMS_LABEL_PREFIX}{status.value}" for status in WorkflowStatus
}
LABEL_STATUSES: dict[str, WorkflowStatus] = {
    label: status for status, label in STATUS_LABELS.items()
}


def generate_content_key(collection_name: str, slug: str) -> str:
    return f"{collection_name}{CONTENT_KEY_SEPARATOR}{slug}"


def parse_content_key(content_key: str) -> tuple[str, str]:
    """Split a content key into (collection_name, slug).

    Collection names never contain the separator; slugs may (nested folders).
    """
    collection_name, separator, slug = content_key.partition(CONTENT_KEY_SEPARATOR)
    if not separator or not collection_name or not slug:
        raise ValueError(f"Invalid content key: {content_key!r}")
    return collection_name, slug


def branch_from_content_key(content_key: str) -> str:
    return f"{CMS_BRANCH_PREFIX}/{content_key}"


def content_key_from_branch(branch: str) -> str:
    prefix = f"{CMS_BRANCH_PREFIX}/"
    if not branch.startswith(prefix):
        raise ValueError(f"{branch!r} is not an editorial workflow branch")
    return branch[len(prefix) :]


def is_cms_branch(branch: str) -> bool:
    return branch.startswith(f"{CMS_BRANCH_PREFIX}/")


def status_to_label(status: WorkflowStatus | str) -> str:
    return STATUS_LABELS[WorkflowStatus(status)]


def label_to_status(label: str) -> WorkflowStatus:
    try:
        return LABEL_STATUSES[label]
    except KeyError:
        raise ValueError(f"{label!r} is not a workflow status label") from None


def is_cms_label(label: str) -> bool:
    return label in LABEL_STATUSES
