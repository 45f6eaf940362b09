"""API routes exposing organization limits, usage and feature access."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..feature_gates import badge_for, control_state_for, feature_lock_for
from ..licensing import Feature, ResourceType, UnknownGateKeyError
from ..organizations.models import OrganizationNotFoundError
from ..schemas.organization import (
    FeatureCheckResponse,
    OrganizationLimitsResponse,
    PlanCatalogResponse,
    PlanResponse,
    QuotaCheckResponse,
    RateLimitResponse,
    UsageSummaryResponse,
)
from ..services.quota import get_quota_service
from .dependencies import current_organization_id, missing_organization

router = APIRouter(prefix="/api/organization", tags=["organization"])
licensing_router = APIRouter(prefix="/api/licensing", tags=["licensing"])


def _unknown_key(exc: UnknownGateKeyError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.get("/limits", response_model=OrganizationLimitsResponse)
def get_limits(organization_id: int = Depends(current_organization_id)) -> OrganizationLimitsResponse:
    service = get_quota_service()
    try:
        organization, plan = service.get_plan(organization_id)
    except OrganizationNotFoundError as exc:
        raise missing_organization(organization_id) from exc
    return OrganizationLimitsResponse(
        organization_id=organization.id,
        name=organization.name,
        plan=PlanResponse.from_plan(plan) if plan is not None else None,
    )


@router.get("/usage", response_model=UsageSummaryResponse)
def get_usage(organization_id: int = Depends(current_organization_id)) -> UsageSummaryResponse:
    service = get_quota_service()
    try:
        _, plan = service.get_plan(organization_id)
        summary = service.summary(organization_id)
    except OrganizationNotFoundError as exc:
        raise missing_organization(organization_id) from exc
    return UsageSummaryResponse.from_summary(organization_id, summary, plan)


@router.get("/quota/{resource}", response_model=QuotaCheckResponse)
def check_quota(
    resource: str,
    requested: int = Query(1, ge=1),
    organization_id: int = Depends(current_organization_id),
) -> QuotaCheckResponse:
    service = get_quota_service()
    try:
        resource_key = ResourceType.parse(resource)
    except UnknownGateKeyError as exc:
        raise _unknown_key(exc) from exc
    try:
        organization = service.get_organization(organization_id)
    except OrganizationNotFoundError as exc:
        raise missing_organization(organization_id) from exc

    decision = service.check(organization.id, resource_key, requested=requested)
    tier = service.resolve_tier(organization)
    return QuotaCheckResponse.from_decision(
        decision,
        thresholds=service.thresholds,
        badge=badge_for(decision, thresholds=service.thresholds),
        controls=control_state_for(
            decision,
            tier,
            thresholds=service.thresholds,
            base_url=service.upgrade_base_url,
        ),
    )


@router.get("/features/{feature}", response_model=FeatureCheckResponse)
def check_feature(
    feature: str,
    organization_id: int = Depends(current_organization_id),
) -> FeatureCheckResponse:
    service = get_quota_service()
    try:
        feature_key = Feature.parse(feature)
    except UnknownGateKeyError as exc:
        raise _unknown_key(exc) from exc
    try:
        organization = service.get_organization(organization_id)
    except OrganizationNotFoundError as exc:
        raise missing_organization(organization_id) from exc

    tier = service.resolve_tier(organization)
    prompt = feature_lock_for(
        feature_key,
        tier,
        configuration=service.configuration,
        base_url=service.upgrade_base_url,
    )
    return FeatureCheckResponse.from_prompt(prompt, tier.label if tier is not None else None)


@router.get("/rate-limit", response_model=RateLimitResponse)
def get_rate_limit(organization_id: int = Depends(current_organization_id)) -> RateLimitResponse:
    service = get_quota_service()
    try:
        decision = service.rate_limit_status(organization_id)
    except OrganizationNotFoundError as exc:
        raise missing_organization(organization_id) from exc
    return RateLimitResponse.from_decision(decision)


@licensing_router.get("/plans", response_model=PlanCatalogResponse)
def list_plans() -> PlanCatalogResponse:
    configuration = get_quota_service().configuration
    return PlanCatalogResponse(
        plans=[PlanResponse.from_plan(plan) for plan in configuration],
        feature_matrix={
            feature.value: [tier.label for tier in tiers]
            for feature, tiers in configuration.feature_matrix().items()
        },
    )
