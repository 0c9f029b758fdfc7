"""VPC endpoints that let restricted-egress services reach AWS APIs privately."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .models import DeploymentContext, NetworkContext
from .naming import logical_id
from .partition import DeploymentPartition
from .template import Resource, Template

logger = logging.getLogger(__name__)

INTERFACE_ENDPOINT_SERVICES = (
    "ecr.dkr",
    "ecr.api",
    "secretsmanager",
    "logs",
    "elasticloadbalancing",
)


def endpoint_service_name(region: str, service: str, gateway: bool = False) -> str:
    """
    ``com.amazonaws.{region}.{service}``.

    Interface endpoints in the China partition are published under a
    ``cn.`` prefix; gateway endpoints keep the plain name.
    """
    name = f"com.amazonaws.{region}.{service}"
    china = DeploymentPartition.for_region(region) is DeploymentPartition.CHINA_RESTRICTED
    if china and not gateway:
        return f"cn.{name}"
    return name


@dataclass
class VpcEndpoints:
    security_group: Resource
    template: Template


def build_vpc_endpoints(
    context: DeploymentContext,
    network: NetworkContext,
    route_table_ids: Sequence[str] = (),
    name: str = "pulumi",
) -> VpcEndpoints:
    """
    Endpoint security group, interface endpoints and, when route tables
    are known, the S3 gateway endpoint.
    """
    template = Template()

    security_group = template.add(
        Resource(
            logical_id(name, "endpoint-security-group"),
            "AWS::EC2::SecurityGroup",
            {
                "GroupDescription": "VPC endpoint security group",
                "VpcId": network.vpc_id,
                "SecurityGroupIngress": [
                    {"IpProtocol": "-1", "FromPort": 0, "ToPort": 0, "CidrIp": network.vpc_cidr}
                ],
            },
        )
    )

    if route_table_ids:
        template.add(
            Resource(
                logical_id(name, "s3-endpoint"),
                "AWS::EC2::VPCEndpoint",
                {
                    "VpcId": network.vpc_id,
                    "ServiceName": endpoint_service_name(context.region, "s3", gateway=True),
                    "VpcEndpointType": "Gateway",
                    "RouteTableIds": list(route_table_ids),
                },
            )
        )
    else:
        logger.debug("No route tables configured, skipping S3 gateway endpoint")

    for service in INTERFACE_ENDPOINT_SERVICES:
        template.add(
            Resource(
                logical_id(name, service, "endpoint"),
                "AWS::EC2::VPCEndpoint",
                {
                    "VpcId": network.vpc_id,
                    "ServiceName": endpoint_service_name(context.region, service),
                    "VpcEndpointType": "Interface",
                    "PrivateDnsEnabled": True,
                    "SecurityGroupIds": [security_group.ref],
                    "SubnetIds": list(network.private_subnet_ids),
                },
            )
        )

    return VpcEndpoints(security_group=security_group, template=template)
