"""Least-privilege IAM policy documents.

Every document is Allow-only and every embedded ARN passes through the
partition resolver before it is written. Documents are returned as typed
records; callers pick the final encoding with ``to_dict``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .exceptions import ValidationError
from .models import DeploymentContext

POLICY_VERSION = "2012-10-17"

ECS_TASKS_PRINCIPAL = "ecs-tasks.amazonaws.com"

TASK_EXECUTION_MANAGED_POLICY = (
    "arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"
)
"""Managed baseline attached to both execution and task identities."""

OBJECT_STORAGE_ACTIONS = (
    "s3:ListBucket",
    "s3:GetBucketLocation",
    "s3:GetObject",
    "s3:PutObject",
    "s3:DeleteObject",
)
KEY_MANAGEMENT_ACTIONS = ("kms:Decrypt", "kms:GenerateDataKeyWithoutPlaintext")
SECRET_READ_ACTIONS = ("secretsmanager:GetSecretValue",)
KEY_DECRYPT_ACTIONS = ("kms:Decrypt",)

ALLOW = "Allow"


class PolicyKind(Enum):
    OBJECT_STORAGE = "object-storage"
    KEY_MANAGEMENT = "key-management"
    SECRET_STORE = "secret-store"


@dataclass(frozen=True)
class PolicyStatement:
    """One Allow statement. Deny statements are not representable."""

    actions: tuple[str, ...]
    resources: tuple[str, ...] = ()
    principal: dict[str, Any] | None = None
    sid: str | None = None

    @property
    def effect(self) -> str:
        return ALLOW

    def to_dict(self) -> dict[str, Any]:
        statement: dict[str, Any] = {}
        if self.sid:
            statement["Sid"] = self.sid
        statement["Effect"] = self.effect
        if self.principal is not None:
            statement["Principal"] = self.principal
        statement["Action"] = list(self.actions)
        if self.resources:
            statement["Resource"] = list(self.resources)
        return statement


@dataclass(frozen=True)
class PolicyDocument:
    name: str
    statements: tuple[PolicyStatement, ...]

    @property
    def resources(self) -> list[str]:
        return [r for s in self.statements for r in s.resources]

    def to_dict(self) -> dict[str, Any]:
        return {
            "Version": POLICY_VERSION,
            "Statement": [s.to_dict() for s in self.statements],
        }


def assume_role_policy(service: str = ECS_TASKS_PRINCIPAL) -> PolicyDocument:
    """Trust policy letting a service principal assume the role."""
    return PolicyDocument(
        name="assume-role",
        statements=(
            PolicyStatement(actions=("sts:AssumeRole",), principal={"Service": service}),
        ),
    )


class PolicyDocumentComposer:
    """
    Builds access-policy documents for one deployment.

    Inputs are canonical (commercial partition) identifiers or plain names;
    every ARN written to a document is resolved for ``context.region`` and
    checked against its partition.
    """

    def __init__(self, context: DeploymentContext) -> None:
        self.context = context

    def object_storage(self, bucket_names: Sequence[str]) -> PolicyDocument:
        """List/read/write/delete on each bucket and every key in it."""
        if not bucket_names:
            raise ValidationError("bucket_names", "", "At least one bucket is required")

        resources: list[str] = []
        for bucket in bucket_names:
            bucket_arn = self.context.resolve(f"arn:aws:s3:::{bucket}")
            resources.append(bucket_arn)
            resources.append(f"{bucket_arn}/*")

        return PolicyDocument(
            name="object-storage",
            statements=(
                PolicyStatement(actions=OBJECT_STORAGE_ACTIONS, resources=tuple(resources)),
            ),
        )

    def key_management(self, key_arn: str) -> PolicyDocument:
        """Decrypt and data-key generation on a single key."""
        return PolicyDocument(
            name="key-management",
            statements=(
                PolicyStatement(
                    actions=KEY_MANAGEMENT_ACTIONS,
                    resources=(self.context.resolve(key_arn),),
                ),
            ),
        )

    def secret_store(self, prefix: str, key_arn: str) -> PolicyDocument:
        """Secret retrieval under ``prefix/`` plus decrypt on the encrypting key."""
        secrets_arn = self.context.resolve(
            f"arn:aws:secretsmanager:{self.context.region}:{self.context.account_id}"
            f":secret:{prefix}/*"
        )
        return PolicyDocument(
            name="secret-store",
            statements=(
                PolicyStatement(actions=SECRET_READ_ACTIONS, resources=(secrets_arn,)),
                PolicyStatement(
                    actions=KEY_DECRYPT_ACTIONS,
                    resources=(self.context.resolve(key_arn),),
                ),
            ),
        )

    def compose(self, kind: PolicyKind, *identifiers: str) -> PolicyDocument:
        """
        Dispatch on policy kind.

        ``OBJECT_STORAGE`` takes one or more bucket names, ``KEY_MANAGEMENT``
        one key ARN, ``SECRET_STORE`` a name prefix followed by a key ARN.
        """
        if kind is PolicyKind.OBJECT_STORAGE:
            return self.object_storage(identifiers)
        if kind is PolicyKind.KEY_MANAGEMENT:
            if len(identifiers) != 1:
                raise ValidationError("identifiers", ",".join(identifiers), "Expected one key ARN")
            return self.key_management(identifiers[0])
        if kind is PolicyKind.SECRET_STORE:
            if len(identifiers) != 2:
                raise ValidationError(
                    "identifiers", ",".join(identifiers), "Expected a prefix and a key ARN"
                )
            return self.secret_store(identifiers[0], identifiers[1])
        raise ValidationError("kind", str(kind), "Unknown policy kind")

    def managed_baseline(self) -> str:
        """ARN of the managed task-execution policy for this partition."""
        return self.context.resolve(TASK_EXECUTION_MANAGED_POLICY)
