"""FastAPI dependencies guarding write routes with quota and feature gates."""
from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, status

from ..feature_gates import QuotaDecision, RateLimitDecision
from ..licensing import Feature, ResourceType
from ..organizations.models import OrganizationNotFoundError
from ..services.quota import get_quota_service

try:  # pragma: no cover - resolve organization helper when imported from FastAPI app
    from backend.app_context import get_current_organization_id
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_current_organization_id  # type: ignore[no-redef]


def current_organization_id(
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-Id"),
) -> int:
    return get_current_organization_id(x_organization_id=x_organization_id)


def missing_organization(organization_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Organization {organization_id} not found",
    )


def require_quota(resource: object, *, requested: int = 1) -> Callable[..., QuotaDecision]:
    """Build a dependency that rejects the request when ``resource`` is at quota.

    Unknown resource keys fail when the route module is imported, not per request.
    """

    resource_key = ResourceType.parse(resource)
    if requested < 1:
        raise ValueError("requested must be >= 1")

    def dependency(organization_id: int = Depends(current_organization_id)) -> QuotaDecision:
        service = get_quota_service()
        try:
            organization = service.get_organization(organization_id)
        except OrganizationNotFoundError as exc:
            raise missing_organization(organization_id) from exc
        return service.enforce(organization.id, resource_key, requested=requested)

    dependency.__name__ = f"require_{resource_key.value}_quota"
    return dependency


def require_feature(feature: object) -> Callable[..., None]:
    """Build a dependency that rejects the request unless ``feature`` is enabled."""

    feature_key = Feature.parse(feature)

    def dependency(organization_id: int = Depends(current_organization_id)) -> None:
        service = get_quota_service()
        try:
            service.get_organization(organization_id)
        except OrganizationNotFoundError as exc:
            raise missing_organization(organization_id) from exc
        service.require_feature(organization_id, feature_key)

    dependency.__name__ = f"require_{feature_key.value}_feature"
    return dependency


def enforce_api_rate_limit(organization_id: int = Depends(current_organization_id)) -> RateLimitDecision:
    """Count the request against the organization's hourly API budget."""

    service = get_quota_service()
    try:
        return service.enforce_rate_limit(organization_id)
    except OrganizationNotFoundError as exc:
        raise missing_organization(organization_id) from exc


__all__ = [
    "current_organization_id",
    "enforce_api_rate_limit",
    "require_feature",
    "require_quota",
]
