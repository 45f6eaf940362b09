"""API schemas for organization quota and feature endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..feature_gates import (
    ControlState,
    FeatureLockPrompt,
    QuotaBadge,
    QuotaDecision,
    QuotaThresholds,
    RateLimitDecision,
    UsageSummary,
)
from ..licensing import PlanDefinition


class PlanResponse(BaseModel):
    license_type: str = Field(alias="licenseType")
    display_name: str = Field(alias="displayName")
    limits: Dict[str, Optional[int]]
    features: Dict[str, bool]

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_plan(cls, plan: PlanDefinition) -> "PlanResponse":
        return cls(
            license_type=plan.tier.label,
            display_name=plan.display_name,
            limits=plan.limits.to_dict(),
            features=plan.features.to_dict(),
        )


class OrganizationLimitsResponse(BaseModel):
    organization_id: int = Field(alias="organizationId")
    name: str
    plan: Optional[PlanResponse] = None

    model_config = ConfigDict(populate_by_name=True)


class UsageLineResponse(BaseModel):
    resource: str
    current: Optional[int] = None
    limit: Optional[int] = None
    unlimited: bool
    percentage: int
    status: str


class UsageWarningResponse(BaseModel):
    resource: str
    percentage: int
    message: str


class UsageSummaryResponse(BaseModel):
    organization_id: int = Field(alias="organizationId")
    license_type: Optional[str] = Field(alias="licenseType", default=None)
    usage_available: bool = Field(alias="usageAvailable")
    lines: List[UsageLineResponse]
    warnings: List[UsageWarningResponse]
    percentages: Dict[str, int]
    limits: Dict[str, Optional[int]] = Field(default_factory=dict)
    features: Dict[str, bool] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_summary(
        cls,
        organization_id: int,
        summary: UsageSummary,
        plan: Optional[PlanDefinition] = None,
    ) -> "UsageSummaryResponse":
        return cls(
            organization_id=organization_id,
            license_type=summary.tier.label if summary.tier is not None else None,
            usage_available=summary.usage_available,
            lines=[
                UsageLineResponse(
                    resource=line.resource.value,
                    current=line.current,
                    limit=line.limit,
                    unlimited=line.unlimited,
                    percentage=line.percentage,
                    status=line.status.value,
                )
                for line in summary.lines
            ],
            warnings=[
                UsageWarningResponse(
                    resource=warning.resource.value,
                    percentage=warning.percentage,
                    message=warning.message,
                )
                for warning in summary.warnings
            ],
            percentages=summary.percentages(),
            limits=plan.limits.to_dict() if plan is not None else {},
            features=plan.features.to_dict() if plan is not None else {},
        )


class QuotaBadgeResponse(BaseModel):
    visible: bool
    status: str
    variant: str
    message: str

    @classmethod
    def from_badge(cls, badge: QuotaBadge) -> "QuotaBadgeResponse":
        return cls(
            visible=badge.visible,
            status=badge.status.value,
            variant=badge.variant.value,
            message=badge.message,
        )


class ControlStateResponse(BaseModel):
    submit_disabled: bool = Field(alias="submitDisabled")
    show_warning_badge: bool = Field(alias="showWarningBadge")
    show_blocking_alert: bool = Field(alias="showBlockingAlert")
    upgrade_url: Optional[str] = Field(alias="upgradeUrl", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_state(cls, state: ControlState) -> "ControlStateResponse":
        return cls(
            submit_disabled=state.submit_disabled,
            show_warning_badge=state.show_warning_badge,
            show_blocking_alert=state.show_blocking_alert,
            upgrade_url=state.upgrade_url,
        )


class QuotaCheckResponse(BaseModel):
    resource: Optional[str] = None
    allowed: bool
    current: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    requested: int
    percentage: int
    status: str
    reason: str
    badge: QuotaBadgeResponse
    controls: ControlStateResponse

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_decision(
        cls,
        decision: QuotaDecision,
        *,
        thresholds: QuotaThresholds,
        badge: QuotaBadge,
        controls: ControlState,
    ) -> "QuotaCheckResponse":
        return cls(
            resource=decision.resource.value if decision.resource else None,
            allowed=decision.allowed,
            current=decision.current,
            limit=decision.limit,
            remaining=decision.remaining,
            requested=decision.requested,
            percentage=0 if decision.is_unlimited else decision.percentage,
            status=decision.status(thresholds).value,
            reason=decision.reason.value,
            badge=QuotaBadgeResponse.from_badge(badge),
            controls=ControlStateResponse.from_state(controls),
        )


class FeatureCheckResponse(BaseModel):
    feature: str
    enabled: bool
    current_license: Optional[str] = Field(alias="currentLicense", default=None)
    required_license: Optional[str] = Field(alias="requiredLicense", default=None)
    available_in: List[str] = Field(alias="availableIn", default_factory=list)
    badge_text: Optional[str] = Field(alias="badgeText", default=None)
    message: Optional[str] = None
    upgrade_url: Optional[str] = Field(alias="upgradeUrl", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_prompt(cls, prompt: FeatureLockPrompt, current_license: Optional[str]) -> "FeatureCheckResponse":
        return cls(
            feature=prompt.feature.value,
            enabled=prompt.enabled,
            current_license=current_license,
            required_license=prompt.required_tier.label if prompt.required_tier else None,
            available_in=[tier.label for tier in prompt.available_in],
            badge_text=prompt.badge_text,
            message=prompt.message,
            upgrade_url=prompt.upgrade_url,
        )


class RateLimitResponse(BaseModel):
    allowed: bool
    current: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_at: Optional[datetime] = Field(alias="resetAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_decision(cls, decision: RateLimitDecision) -> "RateLimitResponse":
        return cls(
            allowed=decision.allowed,
            current=decision.current,
            limit=decision.limit,
            remaining=decision.remaining,
            reset_at=decision.reset_at,
        )


class PlanCatalogResponse(BaseModel):
    plans: List[PlanResponse]
    feature_matrix: Dict[str, List[str]] = Field(alias="featureMatrix")

    model_config = ConfigDict(populate_by_name=True)
