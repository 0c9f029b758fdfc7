"""Resource naming utilities.

Centralized validation for user-supplied stack and service names, plus
conversion of those names into CloudFormation logical ids:
- Alphanumeric characters and hyphens only
- Must start with a letter
- Maximum 55 characters (leaves room for role and log group suffixes)
"""

import re

from .exceptions import ValidationError

NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9-]*$")

MAX_NAME_LENGTH = 55


def validate_name(name: str) -> None:
    """
    Validate a resource name identifier.

    Args:
        name: The user-provided identifier

    Raises:
        ValidationError: If the name contains invalid characters
    """
    if not name:
        raise ValidationError("name", name, "Name cannot be empty")

    if "_" in name:
        raise ValidationError(
            "name",
            name,
            "Contains underscore. Use hyphens instead (e.g., 'pulumi-api' not 'pulumi_api')",
        )
    if " " in name:
        raise ValidationError(
            "name",
            name,
            "Contains spaces. Use hyphens instead (e.g., 'my-app' not 'my app')",
        )

    if not NAME_PATTERN.match(name):
        raise ValidationError(
            "name",
            name,
            "Must start with a letter and contain only alphanumeric characters and hyphens.",
        )

    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            "name",
            name,
            f"Too long. Name exceeds {MAX_NAME_LENGTH} character limit.",
        )


def normalize_name(name: str) -> str:
    """Validate name and return it unchanged."""
    validate_name(name)
    return name


def logical_id(*parts: str) -> str:
    """
    Build a CloudFormation logical id from hyphenated name parts.

    >>> logical_id("pulumi-api", "target-group")
    'PulumiApiTargetGroup'
    """
    words = [w for part in parts for w in re.split(r"[^A-Za-z0-9]+", part) if w]
    return "".join(w[0].upper() + w[1:] for w in words)


def service_urls(zone_name: str, subdomain: str = "") -> dict[str, str]:
    """
    Hostnames for the API, internal API and console.

    The subdomain segment is dropped when empty.
    """
    suffix = f"{subdomain}.{zone_name}" if subdomain else zone_name
    return {
        "api": f"api.{suffix}",
        "api_internal": f"api-internal.{suffix}",
        "console": f"app.{suffix}",
    }


def secret_name(prefix: str, name: str) -> str:
    """Secrets Manager name for an environment variable name."""
    return f"{prefix}/{name.lower().replace('_', '-')}"
