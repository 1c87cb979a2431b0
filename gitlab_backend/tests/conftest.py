"""Pytest fixtures: an in-memory GitLab project behind httpx.MockTransport."""

import base64
import json
import math
from dataclasses import dataclass, field
from urllib.parse import unquote

import httpx
import pytest
import pytest_asyncio

from gitlab_backend.api import GitLabAPI
from gitlab_backend.config import GitLabConfig

API_ROOT = "https://gitlab.example.com/api/v4"
REPO = "group/site"
BASE_BRANCH = "main"
DEFAULT_PER_PAGE = 20


@dataclass
class RecordedRequest:
    method: str
    segments: list[str]
    params: dict[str, str]
    headers: httpx.Headers
    body: dict | None


@dataclass
class FakeGitLab:
    """Just enough of the GitLab v4 API for the backend's calls.

    Trees are served sorted by path descending, like GitLab does.
    """

    branches: dict[str, dict[str, str]] = field(
        default_factory=lambda: {BASE_BRANCH: {}}
    )
    merge_requests: dict[int, dict] = field(default_factory=dict)
    # iid -> list of responses for PUT .../rebase then each poll
    rebase_script: dict[int, list[dict]] = field(default_factory=dict)
    statuses: dict[str, list[dict]] = field(default_factory=dict)
    access_level: int = 30
    requests: list[RecordedRequest] = field(default_factory=list)
    commits: list[dict] = field(default_factory=list)
    unreachable: bool = False
    # GitLab omits totals and the "last" link above 10,000 records
    omit_totals: bool = False

    # Setup helpers

    def add_file(self, path: str, content: str = "", branch: str = BASE_BRANCH) -> None:
        self.branches.setdefault(branch, {})[path] = content

    def add_merge_request(
        self, source_branch: str, labels: list[str], state: str = "opened"
    ) -> dict:
        iid = len(self.merge_requests) + 1
        mr = {
            "id": 100 + iid,
            "iid": iid,
            "title": f"Update {source_branch}",
            "source_branch": source_branch,
            "target_branch": BASE_BRANCH,
            "sha": f"sha-{source_branch}",
            "labels": list(labels),
            "state": state,
        }
        self.merge_requests[iid] = mr
        return mr

    def requests_to(self, method: str, *tail: str) -> list[RecordedRequest]:
        n = len(tail)
        return [
            r
            for r in self.requests
            if r.method == method and r.segments[-n:] == list(tail)
        ]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # Dispatch

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        raw_path = request.url.raw_path.decode("ascii").split("?")[0]
        assert raw_path.startswith("/api/v4/")
        segments = [unquote(s) for s in raw_path[len("/api/v4/") :].split("/")]
        params = dict(request.url.params)
        body = json.loads(request.content) if request.content else None
        self.requests.append(
            RecordedRequest(request.method, segments, params, request.headers, body)
        )

        if segments == ["user"]:
            return httpx.Response(200, json={"id": 7, "username": "editor", "name": "Ed"})
        if segments[0] != "projects" or segments[1] != REPO:
            return httpx.Response(404, json={"message": "404 Project Not Found"})
        if len(segments) == 2:
            return httpx.Response(
                200,
                json={
                    "id": 1,
                    "path_with_namespace": REPO,
                    "permissions": {
                        "project_access": {"access_level": self.access_level},
                        "group_access": None,
                    },
                },
            )

        rest = segments[2:]
        method = request.method
        if rest[:2] == ["repository", "tree"]:
            return self._tree(request, params)
        if rest[:2] == ["repository", "files"]:
            return self._files(method, rest[2:], params)
        if rest[:2] == ["repository", "commits"] and method == "POST":
            return self._commit(body)
        if rest[:2] == ["repository", "commits"] and rest[-1] == "statuses":
            return httpx.Response(200, json=self.statuses.get(rest[2], []))
        if rest[:2] == ["repository", "compare"]:
            return self._compare(params["from"], params["to"])
        if rest[:2] == ["repository", "branches"] and method == "DELETE":
            self.branches.pop(rest[2], None)
            return httpx.Response(204)
        if rest[0] == "merge_requests":
            return self._merge_requests(method, rest[1:], params, body)
        return httpx.Response(404, json={"message": "404 Not Found"})

    # Handlers

    def _branch_for_ref(self, ref: str) -> str:
        if ref.startswith("sha-"):
            return ref[len("sha-") :]
        return ref

    def _tree(self, request: httpx.Request, params: dict[str, str]) -> httpx.Response:
        ref = params.get("ref", BASE_BRANCH)
        path = params.get("path", "").strip("/")
        recursive = params.get("recursive") == "true"
        files = self.branches.get(ref, {})

        entries: dict[str, dict] = {}
        prefix = f"{path}/" if path else ""
        for file_path in files:
            if not file_path.startswith(prefix):
                continue
            rest = file_path[len(prefix) :]
            parts = rest.split("/")
            if len(parts) > 1 and not recursive:
                dir_path = f"{prefix}{parts[0]}"
                entries[dir_path] = {"id": f"tree-{dir_path}", "name": parts[0], "type": "tree", "path": dir_path}
                continue
            if recursive:
                for i in range(1, len(parts)):
                    dir_path = prefix + "/".join(parts[:i])
                    entries[dir_path] = {"id": f"tree-{dir_path}", "name": parts[i - 1], "type": "tree", "path": dir_path}
            entries[file_path] = {
                "id": f"blob-{file_path}",
                "name": parts[-1],
                "type": "blob",
                "path": file_path,
                "mode": "100644",
            }

        ordered = sorted(entries.values(), key=lambda e: e["path"], reverse=True)
        per_page = int(params.get("per_page", DEFAULT_PER_PAGE))
        page = int(params.get("page", 1))
        total_pages = max(1, math.ceil(len(ordered) / per_page))
        page_entries = ordered[(page - 1) * per_page : page * per_page]

        def link(target: int) -> str:
            url = request.url.copy_remove_param("ts").copy_set_param("page", str(target))
            return str(url.copy_set_param("per_page", str(per_page)))

        rels = {"first": 1, "last": total_pages}
        if page > 1:
            rels["prev"] = page - 1
        if page < total_pages:
            rels["next"] = page + 1
        headers = {
            "X-Page": str(page),
            "X-Total-Pages": str(total_pages),
            "X-Per-Page": str(per_page),
            "X-Total": str(len(ordered)),
            "Link": ", ".join(f'<{link(n)}>; rel="{rel}"' for rel, n in rels.items()),
        }
        if self.omit_totals:
            del headers["X-Total-Pages"], headers["X-Total"]
            rels.pop("last")
            headers["Link"] = ", ".join(f'<{link(n)}>; rel="{rel}"' for rel, n in rels.items())
        if request.method == "HEAD":
            return httpx.Response(200, headers=headers)
        return httpx.Response(200, headers=headers, json=page_entries)

    def _files(self, method: str, rest: list[str], params: dict[str, str]) -> httpx.Response:
        path = rest[0]
        if method == "DELETE":
            files = self.branches.get(params["branch"], {})
            if path not in files:
                return httpx.Response(404, json={"message": "404 File Not Found"})
            del files[path]
            return httpx.Response(204)

        files = self.branches.get(params.get("ref", BASE_BRANCH), {})
        if path not in files:
            return httpx.Response(404, json={"message": "404 File Not Found"})
        if method == "HEAD":
            return httpx.Response(200, headers={"X-Gitlab-File-Path": path})
        return httpx.Response(200, text=files[path])

    def _commit(self, body: dict) -> httpx.Response:
        branch = body["branch"]
        if "start_branch" in body:
            if branch in self.branches:
                return httpx.Response(400, json={"message": f"A branch called '{branch}' already exists"})
            self.branches[branch] = dict(self.branches[body["start_branch"]])
        if branch not in self.branches:
            return httpx.Response(400, json={"message": "You can only create or edit files when you are on a branch"})

        files = self.branches[branch]
        for action in body["actions"]:
            path = action["file_path"]
            if action["action"] in ("create", "update"):
                files[path] = base64.b64decode(action["content"]).decode("utf-8")
            elif action["action"] == "delete":
                files.pop(path, None)
            elif action["action"] == "move":
                files[path] = files.pop(action["previous_path"])
        self.commits.append(body)
        return httpx.Response(201, json={"id": f"commit-{len(self.commits)}", "message": body["commit_message"]})

    def _compare(self, from_ref: str, to_ref: str) -> httpx.Response:
        base = self.branches.get(self._branch_for_ref(from_ref), {})
        head = self.branches.get(self._branch_for_ref(to_ref), {})
        diffs = []
        for path in sorted(set(base) | set(head)):
            if base.get(path) == head.get(path):
                continue
            diffs.append(
                {
                    "old_path": path,
                    "new_path": path,
                    "new_file": path not in base,
                    "renamed_file": False,
                    "deleted_file": path not in head,
                }
            )
        return httpx.Response(200, json={"commits": [], "diffs": diffs})

    def _merge_requests(
        self, method: str, rest: list[str], params: dict[str, str], body: dict | None
    ) -> httpx.Response:
        if not rest:
            if method == "POST":
                mr = self.add_merge_request(body["source_branch"], body["labels"].split(","))
                mr["title"] = body["title"]
                mr["description"] = body["description"]
                mr["squash"] = body["squash"]
                mr["remove_source_branch"] = body["remove_source_branch"]
                return httpx.Response(201, json=mr)
            found = [
                mr
                for mr in self.merge_requests.values()
                if mr["state"] == params.get("state", mr["state"])
                and mr["target_branch"] == params.get("target_branch", mr["target_branch"])
                and mr["source_branch"] == params.get("source_branch", mr["source_branch"])
            ]
            return httpx.Response(200, json=found)

        mr = self.merge_requests.get(int(rest[0]))
        if mr is None:
            return httpx.Response(404, json={"message": "404 Not found"})
        action = rest[1] if len(rest) > 1 else None

        if action == "rebase":
            return httpx.Response(202, json=self._next_rebase(mr["iid"]))
        if action == "merge":
            source = mr["source_branch"]
            self.branches[BASE_BRANCH] = dict(self.branches[source])
            if body.get("should_remove_source_branch"):
                self.branches.pop(source, None)
            mr["state"] = "merged"
            return httpx.Response(200, json=mr)
        if method == "PUT":
            if "labels" in body:
                mr["labels"] = [l for l in body["labels"].split(",") if l]
            if body.get("state_event") == "close":
                mr["state"] = "closed"
            return httpx.Response(200, json=mr)
        if params.get("include_rebase_in_progress") == "true":
            return httpx.Response(200, json={**mr, **self._next_rebase(mr["iid"])})
        return httpx.Response(200, json=mr)

    def _next_rebase(self, iid: int) -> dict:
        script = self.rebase_script.get(iid)
        if not script:
            return {"rebase_in_progress": False, "merge_error": None}
        if len(script) == 1:
            return script[0]
        return script.pop(0)


def make_config(**overrides) -> GitLabConfig:
    settings = {
        "repo": REPO,
        "branch": BASE_BRANCH,
        "api_root": API_ROOT,
        "token": "secret-token",
        "rebase_poll_interval": 0,
    }
    settings.update(overrides)
    return GitLabConfig(**settings)


@pytest.fixture
def gitlab():
    return FakeGitLab()


@pytest_asyncio.fixture
async def client(gitlab):
    async with httpx.AsyncClient(transport=gitlab.transport()) as http_client:
        yield http_client


@pytest_asyncio.fixture
async def api(client):
    return GitLabAPI(make_config(), client=client)


@pytest.fixture
def config_factory():
    """Build a GitLabConfig pointing at the fake project, with overrides."""
    return make_config
