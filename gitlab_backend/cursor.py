"""Pagination cursors for GitLab list endpoints.

GitLab paginates with X-Page / X-Total-Pages / X-Per-Page / X-Total headers
and an RFC 5988 Link header. Page numbers on the wire are one-based; cursors
here are zero-based.

GitLab returns repository trees sorted by name descending while the CMS
lists ascending, so listing starts at the last page and cursors are
reversed: "next" for the caller points at a lower page on the wire.
"""

from dataclasses import dataclass, field, replace

import httpx

NAVIGATION_ACTIONS = ("first", "prev", "next", "last")

# Involution: reversing twice gives back the original name
REVERSED_ACTIONS = {
    "first": "last",
    "last": "first",
    "next": "prev",
    "prev": "next",
}


@dataclass(frozen=True)
class CursorMeta:
    index: int = 0
    count: int = 0
    page_size: int = 0
    page_count: int = 0


@dataclass(frozen=True)
class Cursor:
    """Immutable pagination state.

    actions: navigation actions the caller may take from this page
    meta: zero-based page index and totals
    links: action name -> URL of the page that action leads to
    """

    actions: frozenset[str] = frozenset()
    meta: CursorMeta = CursorMeta()
    links: dict[str, str] = field(default_factory=dict)

    @classmethod
    def create(cls, meta: CursorMeta, links: dict[str, str]) -> "Cursor":
        return cls(
            actions=available_actions(links, meta.index, meta.page_count),
            meta=meta,
            links=dict(links),
        )

    def has(self, action: str) -> bool:
        return action in self.actions


def available_actions(links: dict[str, str], index: int, page_count: int) -> frozenset[str]:
    """Linked actions that make sense from page `index` of `page_count`."""
    valid = {
        "first": index > 0,
        "prev": index > 0,
        "next": index < page_count,
        "last": index < page_count,
    }
    return frozenset(action for action in links if valid.get(action, False))


def _int_header(headers: httpx.Headers, name: str, default: int) -> int:
    value = headers.get(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def cursor_from_response(response: httpx.Response) -> Cursor:
    """Build a cursor from a GitLab list response's pagination headers.

    Responses without pagination headers are treated as a single page.
    GitLab leaves out X-Total, X-Total-Pages and the "last" link for
    listings above 10,000 records; the page count then only reaches as far
    as the linked next page.
    """
    headers = response.headers
    links = {
        rel: link["url"]
        for rel, link in response.links.items()
        if rel in NAVIGATION_ACTIONS and link.get("url")
    }
    index = max(_int_header(headers, "X-Page", 1) - 1, 0)
    if headers.get("X-Total-Pages", "").strip():
        page_count = max(_int_header(headers, "X-Total-Pages", 1) - 1, 0)
    else:
        page_count = index + 1 if "next" in links else index
    meta = CursorMeta(
        index=min(index, page_count),
        count=_int_header(headers, "X-Total", 0),
        page_size=_int_header(headers, "X-Per-Page", 0),
        page_count=page_count,
    )
    return Cursor.create(meta, links)


def reverse_cursor(cursor: Cursor) -> Cursor:
    """Flip a cursor's direction: index counts from the other end, actions swap."""
    new_index = cursor.meta.page_count - cursor.meta.index
    reversed_links = {
        REVERSED_ACTIONS.get(action, action): url for action, url in cursor.links.items()
    }
    reversed_actions = frozenset(
        REVERSED_ACTIONS.get(action, action) for action in cursor.actions
    )
    return replace(
        cursor,
        actions=reversed_actions,
        meta=replace(cursor.meta, index=new_index),
        links=reversed_links,
    )
