"""Editorial workflow on top of GitLab branches and merge requests.

Each unpublished entry lives on its own branch ("cms/{collection}/{slug}")
with one open merge request into the content branch. The merge request
carries exactly one status label; publishing merges it and discarding closes
it and deletes the branch.

    none --persist--> open (initial status)
    open --update_status--> open (new status)
    open --publish--> merged (branch removed by GitLab)
    open --discard--> closed (branch deleted)
"""

import asyncio
import logging
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from .commits import CommitAction, CommitItem
from .content_key import (
    WorkflowStatus,
    branch_from_content_key,
    generate_content_key,
    is_cms_branch,
    is_cms_label,
    label_to_status,
    parse_content_key,
    status_to_label,
)
from .errors import API_NAME, EditorialWorkflowError, RebaseConflictError, RebaseTimeoutError
from .models import (
    AssetProxy,
    DeployStatus,
    DiffEntry,
    Entry,
    FileRef,
    MergeRequest,
    PersistOptions,
    UnpublishedEntry,
    UnpublishedEntryMetadata,
)

if TYPE_CHECKING:
    from .api import GitLabAPI

logger = logging.getLogger(__name__)

DEFAULT_PR_BODY = "Automatically generated by the CMS"
MERGE_COMMIT_MESSAGE = "Automatically generated. Merged by the CMS."


def _find_entry_path(diffs: list[DiffEntry], collection: str, slug: str) -> str | None:
    """Pick the entry file among a branch's changed files.

    Prefers a file named after the slug inside a folder named after the
    collection, then any file named after the slug, then any path containing it.
    """
    slug_name = slug.rsplit("/", 1)[-1]
    named = [d.old_path for d in diffs if PurePosixPath(d.old_path).stem == slug_name]
    for path in named:
        if collection in PurePosixPath(path).parts[:-1]:
            return path
    if named:
        return named[0]
    for diff in diffs:
        if slug in diff.old_path:
            return diff.old_path
    return None


class EditorialWorkflow:
    """Draft -> review -> publish state machine for one GitLab project."""

    def __init__(self, api: "GitLabAPI"):
        self.api = api

    @property
    def config(self):
        return self.api.config

    # Lookup

    async def get_branch_merge_request(self, branch: str) -> MergeRequest:
        """Find the open workflow merge request for `branch`.

        Raises:
            EditorialWorkflowError: If no open merge request from exactly this
                branch carries a status label.
        """
        merge_requests = await self.api.list_merge_requests(source_branch=branch)
        for merge_request in merge_requests:
            if merge_request.source_branch == branch and any(
                is_cms_label(label) for label in merge_request.labels
            ):
                return merge_request
        raise EditorialWorkflowError(
            "content is not under editorial workflow", not_under_editorial_workflow=True
        )

    async def get_content_merge_request(self, collection_name: str, slug: str) -> MergeRequest:
        content_key = generate_content_key(collection_name, slug)
        return await self.get_branch_merge_request(branch_from_content_key(content_key))

    async def list_unpublished_branches(self) -> list[str]:
        logger.info("Checking for unpublished entries")
        merge_requests = await self.api.list_merge_requests()
        return [
            mr.source_branch
            for mr in merge_requests
            if is_cms_branch(mr.source_branch) and any(is_cms_label(l) for l in mr.labels)
        ]

    # Persisting

    async def persist(
        self,
        files: list[Entry | AssetProxy],
        entry: Entry,
        options: PersistOptions,
    ) -> MergeRequest:
        """Commit an entry (and its media) to its workflow branch.

        A new entry gets a fresh branch off the content branch and a merge
        request labelled with its initial status. An entry that is already
        unpublished is rebased first, then committed; files that were on the
        branch but are no longer part of the entry are deleted.
        """
        if not options.collection_name:
            raise ValueError("Editorial workflow commits need a collection name")

        content_key = generate_content_key(options.collection_name, entry.slug)
        branch = branch_from_content_key(content_key)

        if not options.unpublished:
            items = await self.api.get_commit_items(files, self.api.branch)
            await self.api.upload_and_commit(
                items,
                commit_message=options.commit_message,
                branch=branch,
                new_branch=True,
            )
            status = options.status or self.config.initial_workflow_status
            merge_request = await self.api.create_merge_request(
                branch,
                title=options.commit_message,
                description=DEFAULT_PR_BODY,
                labels=[status_to_label(status)],
            )
            logger.info(
                f"Opened merge request !{merge_request.iid} for {content_key} "
                f"with status {WorkflowStatus(status).value}"
            )
            return merge_request

        merge_request = await self.get_branch_merge_request(branch)
        await self.rebase_merge_request(merge_request)
        items, diffs = await asyncio.gather(
            self.api.get_commit_items(files, branch),
            self.api.get_differences(branch),
        )
        items = items + self._stale_file_deletions(items, diffs)
        await self.api.upload_and_commit(
            items, commit_message=options.commit_message, branch=branch
        )
        logger.info(f"Updated {content_key} on {branch} ({len(items)} file changes)")
        return merge_request

    @staticmethod
    def _stale_file_deletions(items: list[CommitItem], diffs: list[DiffEntry]) -> list[CommitItem]:
        """Delete items for files on the branch that the new payload no longer has."""
        kept = {item.path for item in items}
        deletions = []
        for diff in diffs:
            if diff.deleted_file or diff.new_path in kept:
                continue
            kept.add(diff.new_path)
            deletions.append(CommitItem(path=diff.new_path, action=CommitAction.delete))
        return deletions

    async def rebase_merge_request(self, merge_request: MergeRequest) -> None:
        """Rebase the merge request onto the content branch and wait for it.

        Raises:
            RebaseConflictError: As soon as GitLab reports a merge error
            RebaseTimeoutError: If still rebasing after the last poll
        """
        rebase = await self.api.start_rebase(merge_request)
        self._raise_for_merge_error(rebase)

        attempts = 0
        while rebase.get("rebase_in_progress") and attempts < self.config.rebase_max_attempts:
            await asyncio.sleep(self.config.rebase_poll_interval)
            attempts += 1
            rebase = await self.api.get_rebase_status(merge_request)
            logger.debug(
                f"Rebase poll {attempts} for !{merge_request.iid}: "
                f"in progress={bool(rebase.get('rebase_in_progress'))}"
            )
            self._raise_for_merge_error(rebase)

        if rebase.get("rebase_in_progress"):
            logger.warning(f"Rebase of !{merge_request.iid} still running after {attempts} polls")
            raise RebaseTimeoutError("Timed out rebasing merge request", None, API_NAME)

    @staticmethod
    def _raise_for_merge_error(rebase: dict[str, Any]) -> None:
        merge_error = rebase.get("merge_error")
        if merge_error:
            raise RebaseConflictError(merge_error)

    # Status transitions

    async def update_status(
        self, collection_name: str, slug: str, new_status: WorkflowStatus | str
    ) -> None:
        """Swap the status label, keeping every other label."""
        merge_request = await self.get_content_merge_request(collection_name, slug)
        labels = [label for label in merge_request.labels if not is_cms_label(label)]
        labels.append(status_to_label(new_status))
        await self.api.update_merge_request_labels(merge_request, labels)
        logger.info(
            f"Moved {collection_name}/{slug} to {WorkflowStatus(new_status).value}"
        )

    async def publish(self, collection_name: str, slug: str) -> None:
        merge_request = await self.get_content_merge_request(collection_name, slug)
        await self.api.merge_merge_request(merge_request, MERGE_COMMIT_MESSAGE)
        logger.info(f"Published {collection_name}/{slug} (merged !{merge_request.iid})")

    async def discard(self, collection_name: str, slug: str) -> None:
        content_key = generate_content_key(collection_name, slug)
        branch = branch_from_content_key(content_key)
        merge_request = await self.get_branch_merge_request(branch)
        await self.api.close_merge_request(merge_request)
        await self.api.delete_branch(branch)
        logger.info(f"Discarded {content_key} (closed !{merge_request.iid}, deleted {branch})")

    async def get_statuses(self, collection_name: str, slug: str) -> list[DeployStatus]:
        content_key = generate_content_key(collection_name, slug)
        branch = branch_from_content_key(content_key)
        merge_request = await self.get_branch_merge_request(branch)
        return await self.api.get_commit_statuses(merge_request.sha, branch)

    # Reading unpublished entries

    async def retrieve_metadata(self, content_key: str) -> UnpublishedEntryMetadata:
        collection, slug = parse_content_key(content_key)
        branch = branch_from_content_key(content_key)
        merge_request = await self.get_branch_merge_request(branch)
        diffs = await self.api.get_differences(merge_request.sha)
        path = _find_entry_path(diffs, collection, slug)
        media_files = [FileRef(path=d.new_path) for d in diffs if d.old_path != path]
        label = next(label for label in merge_request.labels if is_cms_label(label))
        return UnpublishedEntryMetadata(
            branch=branch,
            collection=collection,
            slug=slug,
            path=path,
            status=label_to_status(label),
            media_files=media_files,
        )

    async def read_unpublished_branch_file(self, content_key: str) -> UnpublishedEntry:
        metadata = await self.retrieve_metadata(content_key)
        if metadata.path is None:
            raise EditorialWorkflowError(
                f"no entry file found on {metadata.branch}", not_under_editorial_workflow=False
            )
        file_data, is_modification = await asyncio.gather(
            self.api.read_file(metadata.path, branch=metadata.branch),
            self.api.is_file_exists(metadata.path, self.api.branch),
        )
        return UnpublishedEntry(
            slug=metadata.slug,
            metadata=metadata,
            file_data=file_data,
            is_modification=is_modification,
        )
