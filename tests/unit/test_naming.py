"""Tests for name validation and logical id generation."""

import pytest

from ecs_platform.exceptions import ValidationError
from ecs_platform.naming import (
    logical_id,
    normalize_name,
    secret_name,
    service_urls,
    validate_name,
)


class TestValidateName:
    """Tests for validate_name."""

    @pytest.mark.parametrize("name", ["prod", "selfhosted-prod", "a1-b2"])
    def test_valid(self, name: str) -> None:
        validate_name(name)

    @pytest.mark.parametrize(
        "name,reason",
        [
            ("", "empty"),
            ("my_stack", "underscore"),
            ("my stack", "spaces"),
            ("1stack", "start with a letter"),
            ("a" * 56, "Too long"),
        ],
    )
    def test_invalid(self, name: str, reason: str) -> None:
        with pytest.raises(ValidationError, match=reason):
            validate_name(name)

    def test_normalize_returns_name(self) -> None:
        assert normalize_name("prod") == "prod"


class TestLogicalId:
    def test_pascal_case(self) -> None:
        assert logical_id("pulumi-api", "target-group") == "PulumiApiTargetGroup"

    def test_splits_on_any_separator(self) -> None:
        assert logical_id("pulumi-api", "pulumi_database_user_name", "secret") == (
            "PulumiApiPulumiDatabaseUserNameSecret"
        )

    def test_keeps_inner_case(self) -> None:
        assert logical_id("ecr.dkr", "endpoint") == "EcrDkrEndpoint"


class TestServiceUrls:
    def test_with_subdomain(self) -> None:
        assert service_urls("example.com", "pulumi") == {
            "api": "api.pulumi.example.com",
            "api_internal": "api-internal.pulumi.example.com",
            "console": "app.pulumi.example.com",
        }

    def test_without_subdomain(self) -> None:
        assert service_urls("example.com")["api"] == "api.example.com"


def test_secret_name() -> None:
    assert secret_name("selfhosted/prod", "pulumi-api-SMTP_PASSWORD") == (
        "selfhosted/prod/pulumi-api-smtp-password"
    )
