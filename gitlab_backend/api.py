"""GitLab REST API client used as a versioned content store."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import quote

import httpx

from .commits import CommitAction, CommitItem, build_commit_payload, normalize_path
from .config import GitLabConfig
from .cursor import Cursor, cursor_from_response, reverse_cursor
from .errors import API_NAME, APIError, ResponseFormatError, TransportError
from .models import AssetProxy, DeployStatus, DiffEntry, Entry, MergeRequest, PersistOptions
from .request import (
    ApiRequest,
    flow,
    to_httpx_kwargs,
    to_request,
    with_headers,
    with_method,
    with_root,
    with_timestamp,
)
from .workflow import EditorialWorkflow

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPES = ("application/json", "text/json")
# Largest page size GitLab allows, used when walking every page
MAX_PER_PAGE = 100


def _parse_json(response: httpx.Response) -> Any:
    content_type = response.headers.get("Content-Type", "")
    media_type = content_type.split(";")[0].strip().lower()
    if media_type not in JSON_CONTENT_TYPES:
        raise ValueError(f"{content_type or 'missing'} is not a valid JSON Content-Type")
    return response.json()


RESPONSE_FORMATS: dict[str, Callable[[httpx.Response], Any]] = {
    "json": _parse_json,
    "text": lambda response: response.text,
    "blob": lambda response: response.content,
}


def parse_response(
    response: httpx.Response,
    expecting_ok: bool = True,
    expecting_format: str = "text",
) -> Any:
    """Decode a response body and turn unsuccessful statuses into APIError.

    Raises:
        ValueError: If expecting_format is not json, text or blob
        ResponseFormatError: If the body cannot be decoded as expected
        APIError: If expecting_ok and the status is not 2xx
    """
    formatter = RESPONSE_FORMATS.get(expecting_format)
    if formatter is None:
        raise ValueError(f"{expecting_format} is not a supported response format.")

    try:
        body = formatter(response)
    except Exception as e:
        raise ResponseFormatError(
            f"Response cannot be parsed into the expected format "
            f"({expecting_format}): {e}",
            response.status_code,
            API_NAME,
        ) from e

    if expecting_ok and not response.is_success:
        message = body
        if expecting_format == "json" and isinstance(body, dict) and body.get("message"):
            message = body["message"]
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        elif not isinstance(message, str):
            message = json.dumps(message)
        raise APIError(message or f"HTTP {response.status_code}", response.status_code, API_NAME, body)

    return body


@dataclass
class FileListing:
    """One page of a tree listing, in ascending order, plus its cursor."""

    files: list[dict[str, Any]]
    cursor: Cursor


def _blobs(entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [entry for entry in entries if entry.get("type") == "blob"]


class GitLabAPI:
    """
    Client for one GitLab project.

    Translates content operations (list, read, commit a batch of files,
    editorial workflow) into GitLab REST calls. Workflow operations are
    delegated to `self.workflow`.
    """

    WRITE_ACCESS = 30

    def __init__(self, config: GitLabConfig, client: httpx.AsyncClient | None = None):
        """
        Args:
            config: Project, branch, token and workflow settings
            client: Optional HTTP client (tests pass one with a mock transport)
        """
        self.config = config
        self.api_root = config.api_root
        self.token = config.token
        self.branch = config.branch
        self.repo = config.repo
        self.repo_url = f"/projects/{quote(config.repo, safe='')}"
        self.commit_author = config.commit_author
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout)
        self.workflow = EditorialWorkflow(self)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "GitLabAPI":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # Request pipeline

    def with_authorization_headers(self, req: ApiRequest) -> ApiRequest:
        if not self.token:
            return req
        return with_headers({"Authorization": f"Bearer {self.token}"})(req)

    def build_request(self, req: ApiRequest | str) -> ApiRequest:
        return flow(
            with_root(self.api_root),
            self.with_authorization_headers,
            with_timestamp,
        )(req)

    async def request(self, req: ApiRequest | str) -> httpx.Response:
        """Send a request; transport failures become TransportError."""
        built = self.build_request(req)
        logger.debug(f"{built.method} {built.url}")
        try:
            return await self._client.request(**to_httpx_kwargs(built))
        except httpx.HTTPError as e:
            raise TransportError(str(e) or e.__class__.__name__, None, API_NAME) from e

    async def request_json(self, req: ApiRequest | str) -> Any:
        response = await self.request(req)
        return parse_response(response, expecting_format="json")

    async def request_text(self, req: ApiRequest | str) -> str:
        response = await self.request(req)
        return parse_response(response, expecting_format="text")

    async def request_blob(self, req: ApiRequest | str) -> bytes:
        response = await self.request(req)
        return parse_response(response, expecting_format="blob")

    def _file_url(self, path: str) -> str:
        return f"{self.repo_url}/repository/files/{quote(normalize_path(path), safe='')}"

    # Identity and permissions

    async def user(self) -> dict[str, Any]:
        return await self.request_json("/user")

    async def has_write_access(self) -> bool:
        """True if the user has at least Developer access via project or group."""
        project = await self.request_json(self.repo_url)
        permissions = project.get("permissions") or {}
        for key in ("project_access", "group_access"):
            access = permissions.get(key)
            if access and access.get("access_level", 0) >= self.WRITE_ACCESS:
                return True
        return False

    # Files

    async def read_file(
        self, path: str, branch: str | None = None, parse_text: bool = True
    ) -> str | bytes:
        req = ApiRequest(
            url=f"{self._file_url(path)}/raw",
            params={"ref": branch or self.branch},
            cache="no-store",
        )
        if parse_text:
            return await self.request_text(req)
        return await self.request_blob(req)

    async def is_file_exists(self, path: str, branch: str) -> bool:
        """Probe a file with HEAD; a 404 means absent and is not an error."""
        req = ApiRequest(
            url=self._file_url(path),
            method="HEAD",
            params={"ref": branch},
            cache="no-store",
        )
        try:
            await self.request_text(req)
        except APIError as e:
            if e.status == 404:
                return False
            raise
        return True

    async def delete_file(self, path: str, commit_message: str) -> None:
        params: dict[str, Any] = {"branch": self.branch, "commit_message": commit_message}
        if self.commit_author:
            params["author_name"] = self.commit_author.name
            params["author_email"] = self.commit_author.email
        await self.request_text(
            ApiRequest(url=self._file_url(path), method="DELETE", params=params)
        )
        logger.info(f"Deleted {normalize_path(path)} from {self.branch}")

    # Listing

    async def fetch_cursor(self, req: ApiRequest | str) -> Cursor:
        """Get a cursor without downloading entries (HEAD request)."""
        response = await self.request(with_method("HEAD")(to_request(req)))
        parse_response(response, expecting_format="text")
        return cursor_from_response(response)

    async def fetch_cursor_and_entries(
        self, req: ApiRequest | str
    ) -> tuple[list[dict[str, Any]], Cursor]:
        response = await self.request(with_method("GET")(to_request(req)))
        entries = parse_response(response, expecting_format="json")
        return entries, cursor_from_response(response)

    def _tree_request(self, path: str, recursive: bool, **params: Any) -> ApiRequest:
        return ApiRequest(
            url=f"{self.repo_url}/repository/tree",
            params={"path": path, "ref": self.branch, "recursive": recursive, **params},
        )

    async def list_files(self, path: str, recursive: bool = False) -> FileListing:
        """List the first page of files under `path` in ascending order.

        GitLab sorts trees descending, so this reads the last page on the
        wire and reverses both its entries and its cursor.
        """
        tree_request = self._tree_request(path, recursive)
        first_page_cursor = await self.fetch_cursor(tree_request)
        last_page_link = first_page_cursor.links.get("last")
        entries, cursor = await self.fetch_cursor_and_entries(last_page_link or tree_request)
        files = list(reversed(_blobs(entries)))
        logger.info(
            f"Listed {len(files)} files under {path!r} "
            f"(page count {cursor.meta.page_count + 1})"
        )
        return FileListing(files=files, cursor=reverse_cursor(cursor))

    async def traverse_cursor(self, cursor: Cursor, action: str) -> FileListing:
        """Follow a navigation action of a (reversed) cursor."""
        if not cursor.has(action) or action not in cursor.links:
            raise ValueError(f"Cursor action {action!r} is not available")
        entries, new_cursor = await self.fetch_cursor_and_entries(cursor.links[action])
        return FileListing(
            files=list(reversed(_blobs(entries))),
            cursor=reverse_cursor(new_cursor),
        )

    async def list_all_files(self, path: str, recursive: bool = False) -> list[dict[str, Any]]:
        """Walk every page in wire order and return all files (order not guaranteed)."""
        entries, cursor = await self.fetch_cursor_and_entries(
            self._tree_request(path, recursive, per_page=MAX_PER_PAGE)
        )
        all_entries = list(entries)
        while cursor.has("next"):
            entries, cursor = await self.fetch_cursor_and_entries(cursor.links["next"])
            all_entries.extend(entries)
        return _blobs(all_entries)

    # Commits

    async def _commit_item(self, file: Entry | AssetProxy, branch: str) -> CommitItem:
        path = normalize_path(file.path)
        exists = await self.is_file_exists(path, branch)
        return CommitItem(
            path=path,
            action=CommitAction.update if exists else CommitAction.create,
            base64_content=file.to_base64(),
        )

    async def get_commit_items(
        self, files: list[Entry | AssetProxy], branch: str
    ) -> list[CommitItem]:
        """Classify each file as create or update by probing `branch` concurrently."""
        return list(await asyncio.gather(*[self._commit_item(f, branch) for f in files]))

    async def upload_and_commit(
        self,
        items: list[CommitItem],
        commit_message: str = "",
        branch: str | None = None,
        new_branch: bool = False,
    ) -> dict[str, Any]:
        """Submit items as one atomic commit.

        Args:
            items: File changes
            commit_message: Commit message
            branch: Target branch (defaults to the configured branch)
            new_branch: Create `branch` from the configured branch first
        """
        payload = build_commit_payload(
            items,
            branch=branch or self.branch,
            commit_message=commit_message,
            start_branch=self.branch if new_branch else None,
            author=self.commit_author,
        )
        return await self.request_json(
            ApiRequest(
                url=f"{self.repo_url}/repository/commits",
                method="POST",
                headers={"Content-Type": "application/json; charset=utf-8"},
                body=json.dumps(payload),
            )
        )

    async def persist_files(
        self,
        entry: Entry | None,
        media_files: list[AssetProxy],
        options: PersistOptions,
    ) -> Any:
        files: list[Entry | AssetProxy] = [entry, *media_files] if entry else list(media_files)
        if options.use_workflow:
            if entry is None:
                raise ValueError("Editorial workflow commits need an entry")
            return await self.workflow.persist(files, entry, options)
        items = await self.get_commit_items(files, self.branch)
        return await self.upload_and_commit(items, commit_message=options.commit_message)

    # Merge requests

    def _json_request(self, url: str, method: str, payload: dict[str, Any]) -> ApiRequest:
        return ApiRequest(
            url=url,
            method=method,
            headers={"Content-Type": "application/json; charset=utf-8"},
            body=json.dumps(payload),
        )

    def _merge_request_url(self, merge_request: MergeRequest) -> str:
        return f"{self.repo_url}/merge_requests/{merge_request.iid}"

    async def list_merge_requests(self, source_branch: str | None = None) -> list[MergeRequest]:
        """Open merge requests targeting the configured branch."""
        params: dict[str, Any] = {
            "state": "opened",
            "labels": "Any",
            "target_branch": self.branch,
        }
        if source_branch:
            params["source_branch"] = source_branch
        data = await self.request_json(
            ApiRequest(url=f"{self.repo_url}/merge_requests", params=params)
        )
        return [MergeRequest.from_api(item) for item in data]

    async def create_merge_request(
        self, branch: str, title: str, description: str, labels: list[str]
    ) -> MergeRequest:
        data = await self.request_json(
            self._json_request(
                f"{self.repo_url}/merge_requests",
                "POST",
                {
                    "source_branch": branch,
                    "target_branch": self.branch,
                    "title": title,
                    "description": description,
                    "labels": ",".join(labels),
                    "remove_source_branch": True,
                    "squash": self.config.squash_merges,
                },
            )
        )
        return MergeRequest.from_api(data)

    async def update_merge_request_labels(
        self, merge_request: MergeRequest, labels: list[str]
    ) -> None:
        await self.request_json(
            self._json_request(
                self._merge_request_url(merge_request), "PUT", {"labels": ",".join(labels)}
            )
        )

    async def start_rebase(self, merge_request: MergeRequest) -> dict[str, Any]:
        return await self.request_json(
            ApiRequest(url=f"{self._merge_request_url(merge_request)}/rebase", method="PUT")
        )

    async def get_rebase_status(self, merge_request: MergeRequest) -> dict[str, Any]:
        return await self.request_json(
            ApiRequest(
                url=self._merge_request_url(merge_request),
                params={"include_rebase_in_progress": True},
            )
        )

    async def merge_merge_request(self, merge_request: MergeRequest, commit_message: str) -> None:
        await self.request_json(
            self._json_request(
                f"{self._merge_request_url(merge_request)}/merge",
                "PUT",
                {
                    "merge_commit_message": commit_message,
                    "squash_commit_message": commit_message,
                    "squash": self.config.squash_merges,
                    "should_remove_source_branch": True,
                },
            )
        )

    async def close_merge_request(self, merge_request: MergeRequest) -> None:
        await self.request_json(
            self._json_request(
                self._merge_request_url(merge_request), "PUT", {"state_event": "close"}
            )
        )

    # Branches, diffs, statuses

    async def delete_branch(self, branch: str) -> None:
        await self.request_text(
            ApiRequest(
                url=f"{self.repo_url}/repository/branches/{quote(branch, safe='')}",
                method="DELETE",
            )
        )

    async def get_differences(self, to: str) -> list[DiffEntry]:
        """Files changed between the configured branch and `to` (branch or sha)."""
        result = await self.request_json(
            ApiRequest(
                url=f"{self.repo_url}/repository/compare",
                params={"from": self.branch, "to": to},
            )
        )
        return [DiffEntry.from_api(diff) for diff in result.get("diffs", [])]

    async def get_commit_statuses(self, sha: str, ref: str) -> list[DeployStatus]:
        data = await self.request_json(
            ApiRequest(
                url=f"{self.repo_url}/repository/commits/{sha}/statuses",
                params={"ref": ref},
            )
        )
        return [DeployStatus.from_api(status) for status in data]
