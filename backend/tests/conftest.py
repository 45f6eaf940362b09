from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app.licensing import LicenseTier, ResourceType, UsageSnapshot
from backend.app.organizations.models import ApiUsageWindow, Organization, UsageFetchError
from backend.app.organizations.service import QuotaService, UsageRepository


class InMemoryUsageRepository(UsageRepository):
    def __init__(self, now: datetime) -> None:
        self.organizations: Dict[int, Organization] = {}
        self.usage: Dict[int, UsageSnapshot] = {}
        self.api_windows: Dict[int, Tuple[int, Optional[datetime]]] = {}
        self.fail_usage = False
        self.reservations: List[Tuple[int, ResourceType, int]] = []
        self.now = now

    def add(self, organization: Organization, usage: Optional[UsageSnapshot] = None) -> None:
        self.organizations[organization.id] = organization
        self.usage[organization.id] = usage or UsageSnapshot()

    def get_organization(self, organization_id: int) -> Optional[Organization]:
        return self.organizations.get(organization_id)

    def get_usage(self, organization_id: int) -> UsageSnapshot:
        if self.fail_usage:
            raise UsageFetchError("database unavailable")
        return self.usage[organization_id]

    def reserve_counter(
        self,
        organization_id: int,
        resource: ResourceType,
        amount: int,
        limit: Optional[int],
    ) -> Optional[int]:
        field = "storage_mb" if resource is ResourceType.STORAGE else resource.value
        usage = self.usage[organization_id]
        current = getattr(usage, field)
        if limit is not None and current + amount > limit:
            return None
        new_value = max(current + amount, 0)
        self.usage[organization_id] = usage.model_copy(update={field: new_value})
        self.reservations.append((organization_id, resource, amount))
        return new_value

    def consume_api_call(
        self,
        organization_id: int,
        limit: Optional[int],
        window: timedelta,
    ) -> ApiUsageWindow:
        calls, reset_at = self.api_windows.get(organization_id, (0, None))
        if reset_at is None or reset_at <= self.now:
            calls, reset_at = 0, self.now + window
        if limit is not None and calls >= limit:
            return ApiUsageWindow(accepted=False, calls_this_hour=calls, reset_at=reset_at)
        self.api_windows[organization_id] = (calls + 1, reset_at)
        return ApiUsageWindow(accepted=True, calls_this_hour=calls + 1, reset_at=reset_at)

    def get_api_window(self, organization_id: int) -> ApiUsageWindow:
        calls, reset_at = self.api_windows.get(organization_id, (0, None))
        return ApiUsageWindow(accepted=True, calls_this_hour=calls, reset_at=reset_at)


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def repository(now: datetime) -> InMemoryUsageRepository:
    repo = InMemoryUsageRepository(now)
    repo.add(
        Organization(id=1, name="Acme", license_type=LicenseTier.STARTER),
        UsageSnapshot(users=4, incidents=100, assets=450, storage_mb=1000),
    )
    repo.add(
        Organization(id=2, name="Globex", license_type=LicenseTier.ENTERPRISE),
        UsageSnapshot(users=900, incidents=50_000),
    )
    return repo


@pytest.fixture
def service(repository: InMemoryUsageRepository, now: datetime) -> QuotaService:
    return QuotaService(repository=repository, clock=lambda: now)
