"""Team approval analytics for one organization.

Approval values: 0 pending, 1 approved, 2 rejected.  A team counts as
approved when both approvals are 1, rejected when either is 2, pending
otherwise.  Reports are cached under ``analytics:{org}:{report}`` and
dropped by every team write.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Awaitable, Callable
from typing import Any

from app.models.principal import TenantContext
from app.models.team import APPROVAL_FIELDS, Approval, Team
from app.repos.team_repo import team_repo
from app.services import cache
from app.services.org_service import get_organization
from app.services.subscription import check_feature_access


async def _report(
    ctx: TenantContext,
    name: str,
    build: Callable[[list[Team]], dict[str, Any]],
) -> dict[str, Any]:
    if not ctx.principal.is_platform_admin():
        check_feature_access(await get_organization(ctx.organization_id), "analytics")

    key = f"analytics:{ctx.organization_id}:{name}"
    cached = await cache.get_json(key)
    if cached is not None:
        return cached
    report = build(await team_repo.list_by_organization(ctx.organization_id))
    await cache.set_json(key, report, cache.ANALYTICS_TTL)
    return report


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def summarize(teams: list[Team]) -> dict[str, Any]:
    states = Counter(t.approval_state for t in teams)
    return {
        "totalTeams": len(teams),
        "approved": states["Approved"],
        "pending": states["Pending"],
        "rejected": states["Rejected"],
        "totalMembers": sum(len(t.members) for t in teams),
        "teamsWithManager": sum(1 for t in teams if t.manager_id is not None),
    }


def distribute(teams: list[Team]) -> dict[str, Any]:
    return {
        "byStatus": dict(Counter(t.approval_state for t in teams)),
        "teams": [
            {
                "id": str(t.id),
                "name": t.name,
                "memberCount": len(t.members),
                "status": t.approval_state,
            }
            for t in teams
        ],
    }


def approval_rates(teams: list[Team]) -> dict[str, Any]:
    total = len(teams)
    rates: dict[str, Any] = {"totalTeams": total}
    for field in APPROVAL_FIELDS:
        values = Counter(getattr(t, field) for t in teams)
        rates[field] = {
            "approved": values[Approval.APPROVED],
            "pending": values[Approval.PENDING],
            "rejected": values[Approval.REJECTED],
            "approvalRate": _rate(values[Approval.APPROVED], total),
            "rejectionRate": _rate(values[Approval.REJECTED], total),
        }
    return rates


REPORTS: dict[str, Callable[[list[Team]], dict[str, Any]]] = {
    "summary": summarize,
    "distribution": distribute,
    "approval-rates": approval_rates,
}


def report_fetcher(name: str) -> Callable[[TenantContext], Awaitable[dict[str, Any]]]:
    build = REPORTS[name]

    async def _fetch(ctx: TenantContext) -> dict[str, Any]:
        return await _report(ctx, name, build)

    return _fetch


get_summary = report_fetcher("summary")
get_distribution = report_fetcher("distribution")
get_approval_rates = report_fetcher("approval-rates")
