"""Secrets Manager entries for container secrets.

Each secret value becomes a ``NoEcho`` template parameter feeding an
``AWS::SecretsManager::Secret``; containers receive only the secret's ARN.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .models import DeploymentContext, SecretReference
from .naming import logical_id, secret_name
from .template import Parameter, Resource, Template

logger = logging.getLogger(__name__)


class SecretsProvider:
    """
    Creates encrypted secrets and hands back opaque references.

    Parameter values are collected in ``values`` so the deployer can pass
    them to CloudFormation without writing them into the template.
    """

    def __init__(self, context: DeploymentContext, kms_key_id: str) -> None:
        self.context = context
        self.kms_key_id = kms_key_id
        self.template = Template()
        self.values: dict[str, str] = {}

    @property
    def prefix(self) -> str:
        return self.context.secrets_prefix

    def secrets(
        self, owner: str, pairs: Iterable[tuple[str, str | None]]
    ) -> list[SecretReference]:
        """
        Store each non-empty value and return its reference.

        Args:
            owner: Service the secrets belong to, keeps logical ids unique
            pairs: (environment variable name, raw value)

        Returns:
            One reference per stored secret, in input order
        """
        references: list[SecretReference] = []
        for name, value in pairs:
            if not value:
                logger.debug("Skipping empty secret %s for %s", name, owner)
                continue

            resource_id = logical_id(owner, name.lower(), "secret")
            parameter = self.template.add_parameter(
                Parameter(name=f"{resource_id}Value", no_echo=True)
            )
            self.values[parameter.name] = value

            secret = self.template.add(
                Resource(
                    resource_id,
                    "AWS::SecretsManager::Secret",
                    {
                        "Name": secret_name(self.prefix, f"{owner}-{name}"),
                        "KmsKeyId": self.kms_key_id,
                        "SecretString": parameter.ref,
                    },
                )
            )
            references.append(SecretReference(name=name, value_from=secret.ref))

        return references
