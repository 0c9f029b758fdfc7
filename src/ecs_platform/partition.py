"""Partition-aware rewriting of ARNs and service endpoint hostnames.

AWS isolates its government and China regions into separate partitions.
Identifiers written for the commercial partition (``arn:aws:...``) must be
rewritten before use in those regions:

    >>> resolve_arn("cn-north-1", "arn:aws:iam::aws:policy/X")
    'arn:aws-cn:iam::aws:policy/X'

Endpoint hostnames follow a different rule (China only, ``.cn`` suffix),
so the two transforms are kept as separate functions.
"""

from enum import Enum

from .exceptions import InvalidIdentifierFormat, PartitionMismatch

GOV_REGION_PREFIX = "us-gov-"
CHINA_REGION_PREFIX = "cn-"


class DeploymentPartition(Enum):
    """AWS partition a region belongs to. Values are the ARN partition tokens."""

    STANDARD = "aws"
    GOV_RESTRICTED = "aws-us-gov"
    CHINA_RESTRICTED = "aws-cn"

    @property
    def token(self) -> str:
        return self.value

    @classmethod
    def for_region(cls, region: str) -> "DeploymentPartition":
        """Derive the partition from a region name (case-insensitive prefix match)."""
        region = region.lower()
        if region.startswith(GOV_REGION_PREFIX):
            return cls.GOV_RESTRICTED
        if region.startswith(CHINA_REGION_PREFIX):
            return cls.CHINA_RESTRICTED
        return cls.STANDARD


KNOWN_PARTITION_TOKENS = frozenset(p.token for p in DeploymentPartition)


def _split(identifier: str) -> list[str]:
    segments = identifier.split(":")
    if len(segments) < 2:
        raise InvalidIdentifierFormat(identifier)
    return segments


def resolve_arn(region: str, identifier: str) -> str:
    """
    Rewrite the partition segment of an ARN for the region's partition.

    Standard regions return the identifier unchanged. For government and
    China regions the second colon-delimited segment is replaced with the
    partition token; all other segments are left untouched. Re-resolving an
    already-resolved identifier yields the same string.

    Args:
        region: Deployment region (e.g. ``us-gov-west-1``)
        identifier: Canonical identifier (e.g. ``arn:aws:s3:::bucket``)

    Returns:
        The resolved identifier

    Raises:
        InvalidIdentifierFormat: If the identifier has fewer than two segments
    """
    segments = _split(identifier)
    partition = DeploymentPartition.for_region(region)
    if partition is DeploymentPartition.STANDARD:
        return identifier

    segments[1] = partition.token
    return ":".join(segments)


def resolve_endpoint(region: str, hostname: str) -> str:
    """
    Rewrite a service endpoint hostname for the region's partition.

    China regions get a ``.cn`` suffix; every other region is unchanged.
    Applying it twice is a no-op.
    """
    partition = DeploymentPartition.for_region(region)
    if partition is DeploymentPartition.CHINA_RESTRICTED and not hostname.endswith(".cn"):
        return f"{hostname}.cn"
    return hostname


def verify_partition(region: str, identifier: str) -> str:
    """
    Check that an identifier carries the region's partition token.

    Only a second segment that names a known AWS partition is checked;
    intrinsic-function placeholders and other tokens pass through.

    Returns:
        The identifier, unchanged

    Raises:
        InvalidIdentifierFormat: If the identifier has fewer than two segments
        PartitionMismatch: If the identifier names a different partition
    """
    segments = _split(identifier)
    expected = DeploymentPartition.for_region(region).token
    actual = segments[1]
    if actual in KNOWN_PARTITION_TOKENS and actual != expected:
        raise PartitionMismatch(identifier, expected=expected, actual=actual)
    return identifier
