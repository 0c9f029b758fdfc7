"""Tests for the restricted-egress VPC endpoints."""

import pytest

from ecs_platform.endpoints import (
    INTERFACE_ENDPOINT_SERVICES,
    build_vpc_endpoints,
    endpoint_service_name,
)
from ecs_platform.models import DeploymentContext, NetworkContext


@pytest.mark.parametrize(
    ("region", "service", "gateway", "expected"),
    [
        ("us-west-2", "logs", False, "com.amazonaws.us-west-2.logs"),
        ("us-gov-west-1", "ecr.api", False, "com.amazonaws.us-gov-west-1.ecr.api"),
        ("cn-north-1", "ecr.dkr", False, "cn.com.amazonaws.cn-north-1.ecr.dkr"),
        ("cn-north-1", "s3", True, "com.amazonaws.cn-north-1.s3"),
    ],
)
def test_endpoint_service_name(region: str, service: str, gateway: bool, expected: str) -> None:
    assert endpoint_service_name(region, service, gateway) == expected


class TestBuildVpcEndpoints:
    """Tests for build_vpc_endpoints."""

    def test_interface_endpoints(
        self, context: DeploymentContext, network: NetworkContext
    ) -> None:
        endpoints = build_vpc_endpoints(context, network)
        interfaces = endpoints.template.of_type("AWS::EC2::VPCEndpoint")
        assert len(interfaces) == len(INTERFACE_ENDPOINT_SERVICES)
        for resource in interfaces:
            assert resource.properties["VpcEndpointType"] == "Interface"
            assert resource.properties["PrivateDnsEnabled"] is True
            assert resource.properties["SecurityGroupIds"] == [endpoints.security_group.ref]
            assert resource.properties["SubnetIds"] == ["subnet-priv1", "subnet-priv2"]
        assert "PulumiEcrDkrEndpoint" in endpoints.template

    def test_security_group_allows_vpc(
        self, context: DeploymentContext, network: NetworkContext
    ) -> None:
        endpoints = build_vpc_endpoints(context, network)
        ingress = endpoints.security_group.properties["SecurityGroupIngress"]
        assert ingress == [
            {"IpProtocol": "-1", "FromPort": 0, "ToPort": 0, "CidrIp": "10.0.0.0/16"}
        ]

    def test_gateway_endpoint_with_route_tables(
        self, context: DeploymentContext, network: NetworkContext
    ) -> None:
        endpoints = build_vpc_endpoints(context, network, route_table_ids=["rtb-1"])
        gateway = endpoints.template["PulumiS3Endpoint"]
        assert gateway.properties["VpcEndpointType"] == "Gateway"
        assert gateway.properties["RouteTableIds"] == ["rtb-1"]
        assert gateway.properties["ServiceName"] == "com.amazonaws.us-west-2.s3"

    def test_no_gateway_without_route_tables(
        self, context: DeploymentContext, network: NetworkContext
    ) -> None:
        endpoints = build_vpc_endpoints(context, network)
        assert "PulumiS3Endpoint" not in endpoints.template
