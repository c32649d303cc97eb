"""Plan-based monthly invoice quota."""

import logging
from datetime import datetime, timezone

from pydantic import BaseModel

from services.records.store import RecordStore
from services.shared.config import Settings
from services.shared.errors import QuotaExceeded

logger = logging.getLogger(__name__)

UNLIMITED = -1


class QuotaUsage(BaseModel):
    plan: str
    used: int
    limit: int

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    @property
    def exceeded(self) -> bool:
        return not self.unlimited and self.used >= self.limit


def billing_period_start(now: datetime | None = None) -> datetime:
    """Start of the current billing period: the first of the month, UTC."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class QuotaService:
    """Compares an owner's invoices this billing period against their plan limit."""

    def __init__(self, settings: Settings, record_store: RecordStore) -> None:
        self.settings = settings
        self._store = record_store

    async def usage(self, owner_id: str, now: datetime | None = None) -> QuotaUsage:
        profile = await self._store.get_owner_profile(owner_id)
        plan = (profile.plan if profile and profile.plan else None) or self.settings.default_plan
        limit = self.settings.plan_limits.get(plan)
        if limit is None:
            logger.warning(f"Unknown plan '{plan}' for owner {owner_id}, using {self.settings.default_plan}")
            plan = self.settings.default_plan
            limit = self.settings.plan_limits.get(plan, 0)
        used = await self._store.count_invoices_since(owner_id, billing_period_start(now))
        return QuotaUsage(plan=plan, used=used, limit=limit)

    async def check(self, owner_id: str, now: datetime | None = None) -> QuotaUsage:
        """Return current usage.

        Raises:
            QuotaExceeded: If the owner has reached their plan limit
        """
        usage = await self.usage(owner_id, now)
        if usage.exceeded:
            logger.info(f"Quota exceeded for owner {owner_id}: {usage.used}/{usage.limit} ({usage.plan})")
            raise QuotaExceeded(usage.used, usage.limit)
        return usage
