"""Unsent request values and the pure transformers that build them.

A request starts as a path or URL and is passed through a pipeline, e.g.::

    build = flow(with_root(api_root), with_headers(auth), with_timestamp)
    request = build(to_request("/user"))

Every transformer returns a new ApiRequest; nothing is mutated.
"""

import time
from dataclasses import dataclass, field, replace
from functools import reduce
from typing import Any, Callable

import httpx

RequestTransform = Callable[["ApiRequest"], "ApiRequest"]


@dataclass(frozen=True)
class ApiRequest:
    url: str
    method: str = "GET"
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    body: str | bytes | None = None
    cache: str | None = None  # "no-store" disables caching


def to_request(req: "ApiRequest | str") -> ApiRequest:
    """Accept either a ready request or a bare path/URL."""
    if isinstance(req, ApiRequest):
        return req
    return ApiRequest(url=req)


def flow(*transforms: RequestTransform) -> RequestTransform:
    """Compose request transformers left to right."""

    def apply(req: "ApiRequest | str") -> ApiRequest:
        return reduce(lambda acc, fn: fn(acc), transforms, to_request(req))

    return apply


def with_root(root: str) -> RequestTransform:
    """Prefix relative paths with the API root; absolute URLs pass through."""
    root = root.rstrip("/")

    def apply(req: ApiRequest) -> ApiRequest:
        if req.url.startswith("/"):
            return replace(req, url=f"{root}{req.url}")
        return req

    return apply


def with_headers(headers: dict[str, str]) -> RequestTransform:
    def apply(req: ApiRequest) -> ApiRequest:
        return replace(req, headers={**req.headers, **headers})

    return apply


def with_params(params: dict[str, Any]) -> RequestTransform:
    def apply(req: ApiRequest) -> ApiRequest:
        return replace(req, params={**req.params, **params})

    return apply


def with_method(method: str) -> RequestTransform:
    def apply(req: ApiRequest) -> ApiRequest:
        return replace(req, method=method.upper())

    return apply


def with_timestamp(req: ApiRequest) -> ApiRequest:
    """Add a millisecond timestamp parameter so intermediaries don't serve stale data."""
    return with_params({"ts": int(time.time() * 1000)})(req)


def to_httpx_kwargs(req: ApiRequest) -> dict[str, Any]:
    """Translate an ApiRequest into keyword arguments for httpx.AsyncClient.request.

    Params are merged into the URL's own query string; followed Link URLs
    already carry page, path and ref.
    """
    headers = dict(req.headers)
    if req.cache:
        headers["Cache-Control"] = req.cache
    url = httpx.URL(req.url)
    params = {key: _param_value(value) for key, value in req.params.items()}
    if params:
        url = url.copy_merge_params(params)
    return {
        "method": req.method,
        "url": url,
        "headers": headers,
        "content": req.body,
    }


def _param_value(value: Any) -> Any:
    # GitLab expects lowercase booleans in query strings
    if isinstance(value, bool):
        return "true" if value else "false"
    return value
