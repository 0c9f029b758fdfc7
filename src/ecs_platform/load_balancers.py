"""Shared load balancers fronting every service.

A public application load balancer (HTTP and HTTPS listeners that answer
204 until a service adds routing rules) and, when private routing is
enabled, an internal network load balancer in the private subnets.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .models import DeploymentContext, NetworkContext
from .naming import logical_id
from .policies import PolicyDocument, PolicyStatement
from .template import Resource, Template

logger = logging.getLogger(__name__)

SSL_POLICY = "ELBSecurityPolicy-TLS-1-2-2017-01"
DEFAULT_IDLE_TIMEOUT = 120
DEFAULT_WHITELIST = ("0.0.0.0/0",)
ACCESS_LOGS_PREFIX = "pulumi-elb"
ELB_LOG_DELIVERY_PRINCIPAL = "logdelivery.elasticloadbalancing.amazonaws.com"

FIXED_RESPONSE_204 = {
    "Type": "fixed-response",
    "FixedResponseConfig": {"StatusCode": "204", "ContentType": "text/plain"},
}


@dataclass
class SharedLoadBalancers:
    """
    Load balancer resources shared by every service topology.

    ``private_load_balancer`` is None unless private routing is enabled.
    """

    security_group: Resource
    public_load_balancer: Resource
    http_listener: Resource
    https_listener: Resource
    certificate_arn: str
    private_load_balancer: Resource | None = None
    access_logs_bucket: Resource | None = None
    template: Template = field(default_factory=Template)

    @property
    def public_dns_name(self) -> dict[str, Any]:
        return self.public_load_balancer.get_att("DNSName")

    @property
    def public_zone_id(self) -> dict[str, Any]:
        return self.public_load_balancer.get_att("CanonicalHostedZoneID")

    @property
    def private_dns_name(self) -> dict[str, Any] | None:
        if self.private_load_balancer is None:
            return None
        return self.private_load_balancer.get_att("DNSName")

    @property
    def private_zone_id(self) -> dict[str, Any] | None:
        if self.private_load_balancer is None:
            return None
        return self.private_load_balancer.get_att("CanonicalHostedZoneID")


def access_logs_bucket_name(context: DeploymentContext) -> str:
    return f"{context.project}-{context.stack}-elb-logs-{context.account_id}".lower()


def access_logs_policy(context: DeploymentContext, bucket_name: str) -> PolicyDocument:
    """Allow the load balancer log delivery service to write under the log prefix."""
    objects_arn = context.resolve(
        f"arn:aws:s3:::{bucket_name}/{ACCESS_LOGS_PREFIX}/AWSLogs/{context.account_id}/*"
    )
    return PolicyDocument(
        name="access-logs",
        statements=(
            PolicyStatement(
                actions=("s3:PutObject",),
                resources=(objects_arn,),
                principal={"Service": ELB_LOG_DELIVERY_PRINCIPAL},
            ),
        ),
    )


def build_load_balancers(
    context: DeploymentContext,
    network: NetworkContext,
    certificate_arn: str,
    name: str = "pulumi",
    whitelist_cidrs: Sequence[str] = (),
    enable_private: bool = False,
    enable_access_logs: bool = False,
    idle_timeout: int = DEFAULT_IDLE_TIMEOUT,
) -> SharedLoadBalancers:
    """
    Build the public load balancer pair and, optionally, the internal one.

    Args:
        context: Deployment context
        network: VPC and subnet placement
        certificate_arn: ACM certificate for the HTTPS listener
        name: Name prefix for logical ids
        whitelist_cidrs: CIDRs allowed to reach the public listeners
            (default: everywhere)
        enable_private: Also create an internal network load balancer
        enable_access_logs: Ship access logs to a dedicated bucket
        idle_timeout: Connection idle timeout in seconds

    Returns:
        SharedLoadBalancers whose ``template`` holds every created resource
    """
    template = Template()
    certificate_arn = context.resolve(certificate_arn)

    cidrs = list(whitelist_cidrs)
    if not cidrs:
        logger.debug("No whitelist CIDRs configured, defaulting to %s", DEFAULT_WHITELIST[0])
        cidrs = list(DEFAULT_WHITELIST)

    ingress = [
        {"IpProtocol": "tcp", "FromPort": port, "ToPort": port, "CidrIp": cidr}
        for port in (80, 443)
        for cidr in cidrs
    ]
    security_group = template.add(
        Resource(
            logical_id(name, "lb-security-group"),
            "AWS::EC2::SecurityGroup",
            {
                "GroupDescription": "ELB Security Group",
                "VpcId": network.vpc_id,
                "SecurityGroupIngress": ingress,
            },
        )
    )

    attributes = [{"Key": "idle_timeout.timeout_seconds", "Value": str(idle_timeout)}]
    depends_on: tuple[str, ...] = ()
    bucket: Resource | None = None
    if enable_access_logs:
        logger.debug("Enabling load balancer access logs")
        bucket_name = access_logs_bucket_name(context)
        bucket = template.add(
            Resource(
                logical_id(name, "access-logs-bucket"),
                "AWS::S3::Bucket",
                {"BucketName": bucket_name},
            )
        )
        bucket_policy = template.add(
            Resource(
                logical_id(name, "access-logs-bucket-policy"),
                "AWS::S3::BucketPolicy",
                {
                    "Bucket": bucket.ref,
                    "PolicyDocument": access_logs_policy(context, bucket_name).to_dict(),
                },
            )
        )
        attributes += [
            {"Key": "access_logs.s3.enabled", "Value": "true"},
            {"Key": "access_logs.s3.bucket", "Value": bucket.ref},
            {"Key": "access_logs.s3.prefix", "Value": ACCESS_LOGS_PREFIX},
        ]
        depends_on = (bucket_policy.logical_id,)

    public = template.add(
        Resource(
            logical_id(name, "public-load-balancer"),
            "AWS::ElasticLoadBalancingV2::LoadBalancer",
            {
                "Type": "application",
                "Scheme": "internet-facing",
                "Subnets": list(network.public_subnet_ids),
                "SecurityGroups": [security_group.ref],
                "LoadBalancerAttributes": attributes,
            },
            depends_on=depends_on,
        )
    )

    http_listener = template.add(
        Resource(
            logical_id(name, "http-listener"),
            "AWS::ElasticLoadBalancingV2::Listener",
            {
                "LoadBalancerArn": public.ref,
                "Port": 80,
                "Protocol": "HTTP",
                "DefaultActions": [FIXED_RESPONSE_204],
            },
        )
    )
    https_listener = template.add(
        Resource(
            logical_id(name, "https-listener"),
            "AWS::ElasticLoadBalancingV2::Listener",
            {
                "LoadBalancerArn": public.ref,
                "Port": 443,
                "Protocol": "HTTPS",
                "Certificates": [{"CertificateArn": certificate_arn}],
                "SslPolicy": SSL_POLICY,
                "DefaultActions": [FIXED_RESPONSE_204],
            },
        )
    )

    private: Resource | None = None
    if enable_private:
        private = template.add(
            Resource(
                logical_id(name, "internal-load-balancer"),
                "AWS::ElasticLoadBalancingV2::LoadBalancer",
                {
                    "Type": "network",
                    "Scheme": "internal",
                    "IpAddressType": "ipv4",
                    "Subnets": list(network.private_subnet_ids),
                },
            )
        )

    return SharedLoadBalancers(
        security_group=security_group,
        public_load_balancer=public,
        http_listener=http_listener,
        https_listener=https_listener,
        certificate_arn=certificate_arn,
        private_load_balancer=private,
        access_logs_bucket=bucket,
        template=template,
    )


def load_balancer_outputs(load_balancers: SharedLoadBalancers) -> dict[str, Any]:
    """Stack outputs consumed by the DNS collaborator."""
    outputs: dict[str, Any] = {
        "publicLoadBalancerDnsName": load_balancers.public_dns_name,
        "publicLoadBalancerZoneId": load_balancers.public_zone_id,
        "publicLoadBalancerArn": load_balancers.public_load_balancer.ref,
    }
    if load_balancers.private_load_balancer is not None:
        outputs["internalLoadBalancerDnsName"] = load_balancers.private_dns_name
        outputs["internalLoadBalancerZoneId"] = load_balancers.private_zone_id
    if load_balancers.access_logs_bucket is not None:
        outputs["accessLogsBucketName"] = load_balancers.access_logs_bucket.ref
    return outputs
