"""Host-pluggable backend interface and its GitLab implementation.

The CMS talks to ContentBackend only; GitLabBackend maps each capability
onto GitLabAPI, its EditorialWorkflow and a shared FileFetcher.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Protocol

import httpx

from .api import FileListing, GitLabAPI
from .commits import normalize_path
from .config import GitLabConfig
from .content_key import WorkflowStatus, content_key_from_branch, generate_content_key
from .cursor import Cursor
from .errors import (
    APIError,
    ConfigurationError,
    EditorialWorkflowError,
    GitLabBackendError,
    PermissionDeniedError,
)
from .fetcher import FileFetcher
from .models import (
    AssetProxy,
    DeployStatus,
    Entry,
    FetchedFile,
    FileRef,
    PersistOptions,
    UnpublishedEntry,
)

logger = logging.getLogger(__name__)


class ContentBackend(Protocol):
    """What the CMS needs from a git hosting provider."""

    async def authenticate(self, token: str) -> dict[str, Any]: ...

    async def logout(self) -> None: ...

    async def list_files(
        self, path: str, recursive: bool = False
    ) -> tuple[list[FetchedFile], Cursor]: ...

    async def traverse_cursor(
        self, cursor: Cursor, action: str
    ) -> tuple[list[FetchedFile], Cursor]: ...

    async def list_all_files(self, path: str, recursive: bool = False) -> list[dict[str, Any]]: ...

    async def read_file(self, path: str) -> str: ...

    async def fetch_files(self, files: list[FileRef]) -> list[FetchedFile]: ...

    async def persist_entry(
        self, entry: Entry, media_files: list[AssetProxy], options: PersistOptions
    ) -> None: ...

    async def persist_media(self, media_file: AssetProxy, options: PersistOptions) -> FileRef: ...

    async def delete_file(self, path: str, commit_message: str) -> None: ...

    async def unpublished_entries(self) -> list[UnpublishedEntry]: ...

    async def unpublished_entry(self, collection_name: str, slug: str) -> UnpublishedEntry: ...

    async def update_unpublished_entry_status(
        self, collection_name: str, slug: str, new_status: WorkflowStatus | str
    ) -> None: ...

    async def publish_unpublished_entry(self, collection_name: str, slug: str) -> None: ...

    async def delete_unpublished_entry(self, collection_name: str, slug: str) -> None: ...

    async def get_deploy_statuses(self, collection_name: str, slug: str) -> list[DeployStatus]: ...


class GitLabBackend:
    """ContentBackend backed by a GitLab project."""

    def __init__(self, config: GitLabConfig, client: httpx.AsyncClient | None = None):
        if not config.repo:
            raise ConfigurationError(
                'The GitLab backend needs a "repo" in the backend configuration.'
            )
        self.config = config
        self._client = client
        self.api: GitLabAPI | None = None
        self.fetcher: FileFetcher | None = None

    def _require_api(self) -> GitLabAPI:
        if self.api is None:
            raise GitLabBackendError("Not authenticated; call authenticate() first")
        return self.api

    def _require_fetcher(self) -> FileFetcher:
        self._require_api()
        return self.fetcher

    async def authenticate(self, token: str) -> dict[str, Any]:
        """Check the token and that its user can write to the repo.

        The backend only keeps the new client once both checks pass.

        Raises:
            APIError: If the token is rejected or the repo cannot be read
            PermissionDeniedError: If the user's access level is below Developer
        """
        await self.logout()
        api = GitLabAPI(replace(self.config, token=token), client=self._client)

        try:
            user = await api.user()
            try:
                is_collaborator = await api.has_write_access()
            except APIError as e:
                raise APIError(
                    f'Repo "{self.config.repo}" not found.\n\n'
                    "Please ensure the repo information is spelled correctly.\n\n"
                    "If the repo is private, make sure you're logged into a GitLab "
                    "account with access.",
                    e.status,
                    e.api_name,
                    e.body,
                ) from e

            if not is_collaborator:
                raise PermissionDeniedError(
                    "Your GitLab user account does not have access to this repo."
                )
        except GitLabBackendError:
            await api.aclose()
            raise

        self.api = api
        self.fetcher = FileFetcher(api)
        logger.info(f"Authenticated {user.get('username')} for {self.config.repo}")
        return {**user, "login": user.get("username"), "token": token}

    async def logout(self) -> None:
        if self.api is not None:
            await self.api.aclose()
        self.api = None
        self.fetcher = None

    # Listing and reading

    async def list_files(
        self, path: str, recursive: bool = False
    ) -> tuple[list[FetchedFile], Cursor]:
        """First page of files under `path` with their contents, ascending."""
        listing = await self._require_api().list_files(path, recursive)
        return await self._fetch_listing(listing)

    async def traverse_cursor(
        self, cursor: Cursor, action: str
    ) -> tuple[list[FetchedFile], Cursor]:
        listing = await self._require_api().traverse_cursor(cursor, action)
        return await self._fetch_listing(listing)

    async def _fetch_listing(self, listing: FileListing) -> tuple[list[FetchedFile], Cursor]:
        fetched = await self.fetch_files([_file_ref(f) for f in listing.files])
        return fetched, listing.cursor

    async def list_all_files(self, path: str, recursive: bool = False) -> list[dict[str, Any]]:
        return await self._require_api().list_all_files(path, recursive)

    async def read_file(self, path: str) -> str:
        return await self._require_api().read_file(path)

    async def fetch_files(self, files: list[FileRef]) -> list[FetchedFile]:
        return await self._require_fetcher().fetch_files(files)

    async def get_media(self, media_folder: str) -> list[FileRef]:
        files = await self.list_all_files(media_folder)
        return [_file_ref(f) for f in files]

    async def get_media_file(self, path: str) -> bytes:
        return await self._require_fetcher().fetch_media(path)

    # Persisting

    async def persist_entry(
        self, entry: Entry, media_files: list[AssetProxy], options: PersistOptions
    ) -> None:
        await self._require_api().persist_files(entry, media_files, options)

    async def persist_media(self, media_file: AssetProxy, options: PersistOptions) -> FileRef:
        await self._require_api().persist_files(None, [media_file], options)
        path = normalize_path(media_file.path)
        return FileRef(path=path, name=path.rsplit("/", 1)[-1])

    async def delete_file(self, path: str, commit_message: str) -> None:
        await self._require_api().delete_file(path, commit_message)

    # Editorial workflow

    async def unpublished_entries(self) -> list[UnpublishedEntry]:
        workflow = self._require_api().workflow
        branches = await workflow.list_unpublished_branches()
        results = await asyncio.gather(
            *[self._read_unpublished(content_key_from_branch(b)) for b in branches]
        )
        return [entry for entry in results if entry is not None]

    async def _read_unpublished(self, content_key: str) -> UnpublishedEntry | None:
        try:
            return await self._require_api().workflow.read_unpublished_branch_file(content_key)
        except EditorialWorkflowError as e:
            logger.warning(f"Skipping unpublished entry {content_key}: {e}")
            return None

    async def unpublished_entry(self, collection_name: str, slug: str) -> UnpublishedEntry:
        content_key = generate_content_key(collection_name, slug)
        return await self._require_api().workflow.read_unpublished_branch_file(content_key)

    async def update_unpublished_entry_status(
        self, collection_name: str, slug: str, new_status: WorkflowStatus | str
    ) -> None:
        await self._require_api().workflow.update_status(collection_name, slug, new_status)

    async def publish_unpublished_entry(self, collection_name: str, slug: str) -> None:
        await self._require_api().workflow.publish(collection_name, slug)

    async def delete_unpublished_entry(self, collection_name: str, slug: str) -> None:
        await self._require_api().workflow.discard(collection_name, slug)

    async def get_deploy_statuses(self, collection_name: str, slug: str) -> list[DeployStatus]:
        return await self._require_api().workflow.get_statuses(collection_name, slug)


def _file_ref(entry: dict[str, Any]) -> FileRef:
    return FileRef(path=entry["path"], id=entry.get("id"), name=entry.get("name"))
