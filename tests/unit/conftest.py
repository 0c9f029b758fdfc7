"""Unit test fixtures."""

from typing import Any

import pytest

from ecs_platform.config import DeploymentConfig
from ecs_platform.models import DatabaseContext, DeploymentContext, NetworkContext


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mock AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)


@pytest.fixture
def config_data() -> dict[str, Any]:
    """Minimal configuration in the camelCase form used by stack files."""
    return {
        "region": "us-west-2",
        "accountId": "123456789012",
        "project": "selfhosted",
        "stack": "prod",
        "vpcId": "vpc-0abc",
        "vpcCidr": "10.0.0.0/16",
        "publicSubnetIds": ["subnet-pub1", "subnet-pub2"],
        "privateSubnetIds": ["subnet-priv1", "subnet-priv2"],
        "certificateArn": "arn:aws:acm:us-west-2:123456789012:certificate/abc",
        "kmsKeyArn": "arn:aws:kms:us-west-2:123456789012:key/abc",
        "database": {
            "endpoint": "db.cluster.local",
            "port": 3306,
            "securityGroupId": "sg-0db",
            "username": "admin",
            "password": "hunter2",
        },
        "imageTag": "20240101-1234",
        "route53ZoneName": "example.com",
        "route53Subdomain": "pulumi",
        "objectsBucket": "pulumi-checkpoints",
        "policyPacksBucket": "pulumi-policypacks",
        "licenseKey": "license-abc",
        "recaptchaSiteKey": "site-key",
        "recaptchaSecretKey": "secret-key",
    }


@pytest.fixture
def config(config_data: dict[str, Any]) -> DeploymentConfig:
    return DeploymentConfig.from_dict(config_data)


@pytest.fixture
def restricted_config(config_data: dict[str, Any]) -> DeploymentConfig:
    config_data["restrictedEgress"] = True
    config_data["storagePrefixListId"] = "pl-68a54001"
    config_data["privateRouteTableIds"] = ["rtb-1"]
    return DeploymentConfig.from_dict(config_data)


@pytest.fixture
def context() -> DeploymentContext:
    return DeploymentContext(
        region="us-west-2", account_id="123456789012", project="selfhosted", stack="prod"
    )


@pytest.fixture
def database() -> DatabaseContext:
    return DatabaseContext(endpoint="db.cluster.local", security_group_id="sg-0db")


@pytest.fixture
def network(database: DatabaseContext) -> NetworkContext:
    return NetworkContext(
        vpc_id="vpc-0abc",
        vpc_cidr="10.0.0.0/16",
        public_subnet_ids=("subnet-pub1", "subnet-pub2"),
        private_subnet_ids=("subnet-priv1", "subnet-priv2"),
        database=database,
    )


@pytest.fixture
def restricted_network(network: NetworkContext) -> NetworkContext:
    return NetworkContext(
        vpc_id=network.vpc_id,
        vpc_cidr=network.vpc_cidr,
        public_subnet_ids=network.public_subnet_ids,
        private_subnet_ids=network.private_subnet_ids,
        database=network.database,
        endpoint_security_group={"Fn::GetAtt": ["PulumiEndpointSecurityGroup", "GroupId"]},
        storage_prefix_list="pl-68a54001",
    )
