"""List queries shared by the repositories.

``ListQuery`` is built from request query parameters (``page``, ``limit``,
``sort``, ``fields``, ``searchTerm`` plus plain ``field=value`` filters).
Each repository decides which fields may be searched, filtered and sorted;
anything else is ignored.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")

RESERVED_PARAMS = frozenset({"searchTerm", "search", "sort", "limit", "page", "fields"})
DEFAULT_SORT = ("-created_at",)
MAX_LIMIT = 100


@dataclass(frozen=True, slots=True)
class ListQuery:
    page: int = 1
    limit: int = 10
    sort: tuple[str, ...] = DEFAULT_SORT
    search_term: str | None = None
    filters: tuple[tuple[str, str], ...] = ()
    fields: tuple[str, ...] = ()

    @staticmethod
    def from_params(params: Mapping[str, str]) -> ListQuery:
        """Parse raw query parameters; malformed numbers fall back to defaults."""
        filters = tuple(
            sorted(
                (key, value)
                for key, value in params.items()
                if key not in RESERVED_PARAMS and value not in ("", "all")
            )
        )
        return ListQuery(
            page=max(1, _positive_int(params.get("page"), 1)),
            limit=min(MAX_LIMIT, max(1, _positive_int(params.get("limit"), 10))),
            sort=_split(params.get("sort")) or DEFAULT_SORT,
            search_term=(params.get("searchTerm") or "").strip() or None,
            filters=filters,
            fields=_split(params.get("fields")),
        )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def cache_key(self) -> str:
        """Stable string form, used in cache keys."""
        parts = [
            f"page={self.page}",
            f"limit={self.limit}",
            f"sort={','.join(self.sort)}",
            f"q={self.search_term or ''}",
            f"fields={','.join(self.fields)}",
        ]
        parts.extend(f"{k}={v}" for k, v in self.filters)
        return "&".join(parts)


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def total_page(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def meta(self) -> dict[str, int]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "totalPage": self.total_page,
        }


def apply_in_memory(
    rows: Iterable[Mapping[str, Any]],
    query: ListQuery,
    *,
    searchable: Iterable[str],
    filterable: Iterable[str],
    sortable: Iterable[str],
) -> tuple[list[Mapping[str, Any]], int]:
    """Search, filter, sort and slice plain dict rows.

    Returns the page of rows and the total count before slicing.
    """
    selected = list(rows)

    if query.search_term:
        needle = query.search_term.lower()
        fields = tuple(searchable)
        selected = [
            r
            for r in selected
            if any(needle in str(r.get(f) or "").lower() for f in fields)
        ]

    allowed = set(filterable)
    for key, value in query.filters:
        if key in allowed:
            selected = [r for r in selected if _as_str(r.get(key)) == value]

    sort_allowed = set(sortable)
    # Stable sorts applied last-key-first give multi-key ordering.
    for spec in reversed(query.sort):
        descending = spec.startswith("-")
        key = spec.lstrip("-")
        if key not in sort_allowed:
            continue
        selected.sort(key=lambda r: _sort_key(r.get(key)), reverse=descending)

    total = len(selected)
    return selected[query.offset : query.offset + query.limit], total


def project_fields(row: Mapping[str, Any], fields: Iterable[str]) -> dict[str, Any]:
    """Keep only the requested fields (``id`` is always kept)."""
    wanted = set(fields)
    if not wanted:
        return dict(row)
    wanted.add("id")
    return {k: v for k, v in row.items() if k in wanted}


def _as_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def _sort_key(value: Any) -> tuple[bool, Any]:
    return (value is None, value if value is not None else 0)


def _split(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _positive_int(raw: str | None, default: int) -> int:
    try:
        return int(raw) if raw is not None else default
    except ValueError:
        return default
