"""Success envelope shared by every /api/v1 endpoint.

    {"success": true, "message": ..., "data": ..., "meta": {...}}

``meta`` (page, limit, total, totalPage) is present on paginated lists
only.  Errors use the envelope in ``app.core.errors``.
"""

from __future__ import annotations

from typing import Any

from app.repos.query import Page


def ok(
    message: str, data: Any = None, *, meta: dict[str, int] | None = None
) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "message": message, "data": data}
    if meta is not None:
        body["meta"] = meta
    return body


def paged(message: str, page: Page[Any]) -> dict[str, Any]:
    return ok(message, page.items, meta=page.meta())
