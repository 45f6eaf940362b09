from __future__ import annotations

import json

import pytest

from backend.app.licensing import (
    DEFAULT_CONFIGURATION,
    FEATURE_MATRIX,
    PLAN_CATALOG,
    UNLIMITED,
    ConfigurationError,
    Feature,
    FeatureFlags,
    LicenseConfiguration,
    LicenseTier,
    Limit,
    PlanDefinition,
    ResourceLimits,
    ResourceType,
    UnknownGateKeyError,
    UsageSnapshot,
    get_plan_definition,
    load_configuration_file,
)


def test_tiers_are_ordered_from_starter_to_enterprise() -> None:
    assert LicenseTier.STARTER < LicenseTier.PROFESSIONAL < LicenseTier.ENTERPRISE
    assert sorted([LicenseTier.ENTERPRISE, LicenseTier.STARTER, LicenseTier.PROFESSIONAL]) == [
        LicenseTier.STARTER,
        LicenseTier.PROFESSIONAL,
        LicenseTier.ENTERPRISE,
    ]
    assert LicenseTier.STARTER.next_tier() is LicenseTier.PROFESSIONAL
    assert LicenseTier.ENTERPRISE.next_tier() is None


def test_tier_parse_is_case_insensitive_and_rejects_unknown() -> None:
    assert LicenseTier.parse("PROFESSIONAL") is LicenseTier.PROFESSIONAL
    assert LicenseTier.parse(" enterprise ") is LicenseTier.ENTERPRISE

    with pytest.raises(UnknownGateKeyError) as exc:
        LicenseTier.parse("platinum")

    assert exc.value.kind == "license tier"
    assert exc.value.value == "platinum"


@pytest.mark.parametrize("raw", [None, -1])
def test_limit_sentinels_normalize_to_unlimited(raw) -> None:
    assert Limit.coerce(raw) is UNLIMITED
    assert Limit.coerce(raw).is_unlimited is True


@pytest.mark.parametrize("raw", [-2, True, "10", 1.5])
def test_limit_rejects_invalid_values(raw) -> None:
    with pytest.raises(ConfigurationError):
        Limit.coerce(raw)


def test_limit_allows_compares_generosity() -> None:
    assert UNLIMITED.allows(Limit.finite(10))
    assert not Limit.finite(10).allows(UNLIMITED)
    assert Limit.finite(10).allows(Limit.finite(10))
    assert not Limit.finite(5).allows(Limit.finite(10))


def test_default_limits_per_tier() -> None:
    starter = get_plan_definition(LicenseTier.STARTER).limits
    professional = get_plan_definition(LicenseTier.PROFESSIONAL).limits
    enterprise = get_plan_definition(LicenseTier.ENTERPRISE).limits

    assert starter.to_dict() == {
        "maxUsers": 5,
        "maxIncidents": 100,
        "maxAssets": 500,
        "maxRunbooks": 50,
        "maxTemplates": 100,
        "maxStorageMb": 1024,
        "apiRateLimit": 1000,
    }
    assert professional[ResourceType.USERS] == Limit.finite(25)
    assert professional[ResourceType.STORAGE] == Limit.finite(10240)
    assert professional.api_rate_limit == Limit.finite(10000)
    assert all(enterprise[resource].is_unlimited for resource in ResourceType)
    assert enterprise.api_rate_limit.is_unlimited


def test_default_feature_matrix() -> None:
    assert FEATURE_MATRIX[Feature.SSO] == (LicenseTier.ENTERPRISE,)
    assert FEATURE_MATRIX[Feature.CUSTOM_DOMAINS] == (LicenseTier.PROFESSIONAL, LicenseTier.ENTERPRISE)
    assert FEATURE_MATRIX[Feature.API_ACCESS] == (
        LicenseTier.STARTER,
        LicenseTier.PROFESSIONAL,
        LicenseTier.ENTERPRISE,
    )


def test_higher_tiers_never_grant_less() -> None:
    plans = list(DEFAULT_CONFIGURATION)
    for lower, higher in zip(plans, plans[1:]):
        for resource in ResourceType:
            assert higher.limits[resource].allows(lower.limits[resource])
        for feature in Feature:
            if lower.features.is_enabled(feature):
                assert higher.features.is_enabled(feature)


def test_configuration_rejects_decreasing_limits() -> None:
    plans = {
        LicenseTier.STARTER: PlanDefinition(
            tier=LicenseTier.STARTER,
            display_name="Starter",
            limits=ResourceLimits(users=Limit.finite(10)),
            features=FeatureFlags(),
        ),
        LicenseTier.PROFESSIONAL: PlanDefinition(
            tier=LicenseTier.PROFESSIONAL,
            display_name="Professional",
            limits=ResourceLimits(users=Limit.finite(5)),
            features=FeatureFlags(),
        ),
    }

    with pytest.raises(ConfigurationError, match="users limit decreases"):
        LicenseConfiguration(plans)


def test_configuration_from_mapping_normalizes_sentinels() -> None:
    configuration = LicenseConfiguration.from_mapping(
        {
            "tiers": {
                "starter": {
                    "limits": {"users": 3, "incidents": -1, "api_rate_limit": 50},
                    "features": {"apiAccess": True},
                },
                "Enterprise": {"limits": {}, "defaultFeature": True},
            }
        }
    )

    assert configuration.tiers == (LicenseTier.STARTER, LicenseTier.ENTERPRISE)
    assert LicenseTier.PROFESSIONAL not in configuration
    starter = configuration.limits_for(LicenseTier.STARTER)
    assert starter is not None
    assert starter.users == Limit.finite(3)
    assert starter.incidents is UNLIMITED
    assert starter.assets is UNLIMITED
    assert configuration.plan_for(LicenseTier.STARTER).display_name == "Starter"
    assert configuration.features_for(LicenseTier.ENTERPRISE).is_enabled(Feature.SSO) is True
    assert configuration.limits_for(LicenseTier.PROFESSIONAL) is None


@pytest.mark.parametrize(
    "raw",
    [
        {},
        {"tiers": {}},
        {"tiers": {"gold": {}}},
        {"tiers": {"starter": {"limits": {"seats": 3}}}},
        {"tiers": {"starter": {"features": {"teleport": True}}}},
        {"tiers": {"starter": {"features": {"sso": "yes"}}}},
    ],
)
def test_configuration_from_mapping_rejects_malformed_tables(raw) -> None:
    with pytest.raises(ConfigurationError):
        LicenseConfiguration.from_mapping(raw)


def test_load_configuration_file(tmp_path) -> None:
    path = tmp_path / "licenses.json"
    path.write_text(
        json.dumps({"tiers": {"starter": {"limits": {"users": 2}, "features": {"apiAccess": True}}}}),
        encoding="utf-8",
    )

    configuration = load_configuration_file(path)

    assert configuration.limits_for(LicenseTier.STARTER).users == Limit.finite(2)


def test_load_configuration_file_rejects_invalid_json(tmp_path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_configuration_file(path)


def test_configuration_to_dict_lists_plans_in_tier_order() -> None:
    payload = DEFAULT_CONFIGURATION.to_dict()

    assert [plan["licenseType"] for plan in payload["tiers"]] == ["STARTER", "PROFESSIONAL", "ENTERPRISE"]
    assert payload["tiers"][2]["limits"]["maxUsers"] is None


def test_usage_snapshot_rejects_negative_counts() -> None:
    with pytest.raises(ValueError):
        UsageSnapshot(users=-1)


def test_usage_snapshot_accepts_camel_case_and_counts_storage() -> None:
    usage = UsageSnapshot.model_validate({"users": 2, "storageMb": 512, "apiCallsThisHour": 7})

    assert usage.count_for(ResourceType.STORAGE) == 512
    assert usage.count_for("users") == 2
    assert usage.api_calls_this_hour == 7


def test_feature_flags_cannot_be_mutated() -> None:
    flags = PLAN_CATALOG[LicenseTier.STARTER].features

    with pytest.raises(TypeError):
        flags.enabled[Feature.SSO] = True  # type: ignore[index]

    assert flags.is_enabled(Feature.SSO) is False


def test_feature_flags_copy_their_input() -> None:
    source = {Feature.SSO: True}
    flags = FeatureFlags(enabled=source)

    source[Feature.SSO] = False

    assert flags.is_enabled(Feature.SSO) is True
