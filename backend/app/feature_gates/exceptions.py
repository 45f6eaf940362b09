"""Custom exceptions used for feature gating enforcement."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Union

from fastapi import HTTPException, status

from ..licensing import Feature, LicenseTier, ResourceType


@dataclass
class FeatureGateError(Exception):
    """Represents an actionable gating failure surfaced to API callers."""

    code: str
    message: str
    status_code: int = status.HTTP_403_FORBIDDEN
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class QuotaExceededError(FeatureGateError):
    """Raised by enforcement call sites when a write would exceed a quota."""

    def __init__(
        self,
        resource: Optional[ResourceType],
        current: int,
        limit: Optional[int],
        *,
        upgrade_url: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        self.resource = resource
        self.current = current
        self.limit = limit
        self.upgrade_url = upgrade_url
        resource_name = resource.value if resource is not None else None
        if message is None:
            message = f"Quota exceeded for {resource_name or 'unknown resource'}: {current}/{limit}"
        super().__init__(
            code="QUOTA_EXCEEDED",
            message=message,
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "resource": resource_name,
                "current": current,
                "limit": limit,
                "upgradeUrl": upgrade_url,
            },
        )


class FeatureRestrictedError(FeatureGateError):
    """Raised when a feature is not part of the organization's plan."""

    def __init__(
        self,
        feature: Union[Feature, str],
        current_license: Optional[LicenseTier],
        required_license: Optional[LicenseTier],
        *,
        upgrade_url: Optional[str] = None,
    ) -> None:
        self.feature = feature
        self.current_license = current_license
        self.required_license = required_license
        self.upgrade_url = upgrade_url
        feature_name = feature.value if isinstance(feature, Feature) else str(feature)
        required_label = required_license.label if required_license else None
        current_label = current_license.label if current_license else None
        if required_label:
            message = f"Feature '{feature_name}' requires {required_label} license. Current: {current_label}"
        else:
            message = f"Feature '{feature_name}' is not available on any plan."
        super().__init__(
            code="FEATURE_RESTRICTED",
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "feature": feature_name,
                "requiredLicense": required_label,
                "currentLicense": current_label,
                "upgradeUrl": upgrade_url,
            },
        )


class RateLimitExceededError(FeatureGateError):
    """Raised when an organization exhausts its hourly API budget."""

    def __init__(self, current: int, limit: int, reset_at: datetime) -> None:
        self.current = current
        self.limit = limit
        self.reset_at = reset_at
        super().__init__(
            code="RATE_LIMIT_EXCEEDED",
            message=f"Rate limit exceeded: {current}/{limit}. Resets at {reset_at.isoformat()}",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "current": current,
                "limit": limit,
                "resetAt": reset_at.isoformat(),
            },
        )


class UsageUnavailableError(FeatureGateError):
    """Raised when a write cannot be checked because usage could not be fetched."""

    def __init__(self, resource: Optional[ResourceType] = None) -> None:
        self.resource = resource
        detail: Dict[str, Any] = {}
        if resource is not None:
            detail["resource"] = resource.value
        super().__init__(
            code="USAGE_UNAVAILABLE",
            message="Current usage could not be determined; try again shortly.",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
        )
