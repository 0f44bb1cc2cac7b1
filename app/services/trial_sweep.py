"""Daily trial-expiry sweep.

For every active organization still marked ``trialing``:

  days_left = ceil((trial_ends_at - now) / 1 day)

  days_left <= 0      -> trialing -> past_due (conditional), owner notified
  days_left in 7/3/1  -> owner gets a warning email

The status change is a compare-and-set on "still trialing", so two
overlapping sweeps cannot both transition an organization, and a webhook
that activated it in the meantime is never overwritten.  Warnings carry
no such record: running the sweep twice on the same day sends the same
warning twice.  The worker's schedule plus the distributed lock keep
that to one run per day in practice.

A failure on one organization is logged and counted; the sweep moves on.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from app.core.metrics import (
    TRIAL_SWEEP_FAILURES,
    TRIAL_SWEEP_NOTIFICATIONS,
    TRIAL_SWEEP_TRANSITIONS,
)
from app.db.redis import redis_pool
from app.models.organization import Organization, SubscriptionStatus, days_until
from app.repos.org_repo import org_repo
from app.repos.user_repo import user_repo
from app.services.email_service import queue_email
from app.services.org_service import invalidate_organization

logger = logging.getLogger(__name__)

WARNING_DAYS = frozenset({7, 3, 1})
LOCK_KEY = "locks:trial_sweep"
LOCK_TTL_SECONDS = 15 * 60

_local_lock = asyncio.Lock()

# KEYS[1] lock; ARGV[1] holder token -> 1 if released
_RELEASE_LOCK_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


@dataclass(slots=True)
class SweepResult:
    checked: int = 0
    expired: int = 0
    warned: int = 0
    failed: int = 0
    skipped: bool = False


async def check_trial_expiry(now: datetime | None = None) -> SweepResult:
    """One pass over all trialing organizations (no locking)."""
    now = now or datetime.now(UTC)
    result = SweepResult()
    orgs = await org_repo.list_trialing()
    logger.info("Trial sweep: %d organizations on trial", len(orgs))

    for org in orgs:
        if not org.is_active or org.trial_ends_at is None:
            continue
        result.checked += 1
        try:
            await _process(org, now, result)
        except Exception:
            logger.exception("Trial sweep failed for organization %s", org.id)
            TRIAL_SWEEP_FAILURES.inc()
            result.failed += 1

    logger.info(
        "Trial sweep done: checked=%d expired=%d warned=%d failed=%d",
        result.checked,
        result.expired,
        result.warned,
        result.failed,
    )
    return result


async def _process(org: Organization, now: datetime, result: SweepResult) -> None:
    days_left = days_until(org.trial_ends_at, now)

    if days_left <= 0:
        moved = await org_repo.transition_status(
            org.id,
            expected=SubscriptionStatus.TRIALING,
            new=SubscriptionStatus.PAST_DUE,
        )
        if not moved:
            logger.info("Organization %s no longer trialing; skipped", org.id)
            return
        await invalidate_organization(org.id)
        TRIAL_SWEEP_TRANSITIONS.inc()
        result.expired += 1
        logger.info("Trial expired for organization %s (%s)", org.id, org.name)
        if await _notify_owner(org, "trial_expired"):
            TRIAL_SWEEP_NOTIFICATIONS.labels(kind="expired").inc()
        return

    if days_left in WARNING_DAYS:
        if await _notify_owner(org, "trial_warning", days_left=days_left):
            TRIAL_SWEEP_NOTIFICATIONS.labels(kind="warning").inc()
            result.warned += 1


async def _notify_owner(org: Organization, template: str, **context) -> bool:
    owner = await user_repo.get_by_id(org.owner_id) if org.owner_id else None
    if owner is None:
        logger.warning("No owner found for organization %s; not notified", org.id)
        return False
    await queue_email(
        template,
        owner.email,
        organization_name=org.name,
        name=owner.name,
        **context,
    )
    return True


async def run_trial_sweep(now: datetime | None = None) -> SweepResult:
    """Run the sweep unless another run holds the lock.

    With Redis the lock is a ``SET NX EX`` key shared by every worker,
    released only by the holder whose token it still carries; without
    Redis, a process-local lock.
    """
    if redis_pool is None:
        if _local_lock.locked():
            logger.info("Trial sweep already running; skipped")
            return SweepResult(skipped=True)
        async with _local_lock:
            return await check_trial_expiry(now)

    token = str(uuid.uuid4())
    acquired = await redis_pool.set(LOCK_KEY, token, nx=True, ex=LOCK_TTL_SECONDS)
    if not acquired:
        logger.info("Trial sweep lock held elsewhere; skipped")
        return SweepResult(skipped=True)
    try:
        return await check_trial_expiry(now)
    finally:
        release = redis_pool.register_script(_RELEASE_LOCK_LUA)
        if not await release(keys=[LOCK_KEY], args=[token]):
            logger.warning("Trial sweep lock expired or taken over before release")
