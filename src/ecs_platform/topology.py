"""Service topology composer.

Builds the complete resource graph for one long-running Fargate service,
in dependency order:

1. isolation boundary (security group)
2. public target pool
3. private target pools (restricted egress only)
4. routing rules
5. execution and task identities
6. task definition
7. service
8. elastic capacity policy

Each service is composed into its own template fragment. The fragment is
only handed back once every step succeeded, so a failed composition never
leaves a half-built topology in the platform template.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any, TypeVar

from .exceptions import CompositionAborted, ConfigurationError
from .load_balancers import SSL_POLICY, SharedLoadBalancers
from .models import (
    DeploymentContext,
    Endpoint,
    NetworkContext,
    RoutingRule,
    SecurityGroupRule,
    ServiceSpec,
    TargetPool,
    Value,
)
from .naming import logical_id
from .policies import PolicyDocument, PolicyDocumentComposer, assume_role_policy
from .template import Resource, Template, join

logger = logging.getLogger(__name__)

HTTPS_PORT = 443

T = TypeVar("T")


@dataclass
class ServiceTopology:
    """
    Everything provisioned for one service.

    ``template`` holds the resources; the other attributes are handles
    into it for downstream wiring and outputs.
    """

    name: str
    security_group: Resource
    target_pools: list[TargetPool]
    routing_rules: list[RoutingRule]
    execution_role: Resource
    task_role: Resource
    task_definition: Resource
    service: Resource
    scaling_target: Resource
    scaling_policies: list[Resource]
    template: Template

    @property
    def public_target_pool(self) -> TargetPool:
        return next(p for p in self.target_pools if not p.private)

    @property
    def private_target_pools(self) -> list[TargetPool]:
        return [p for p in self.target_pools if p.private]

    @property
    def target_pool_arns(self) -> list[Value]:
        return [p.arn for p in self.target_pools]

    @property
    def execution_role_arn(self) -> Value:
        return self.execution_role.get_att("Arn")

    @property
    def task_role_arn(self) -> Value:
        return self.task_role.get_att("Arn")

    def outputs(self) -> dict[str, Any]:
        prefix = logical_id(self.name)
        result: dict[str, Any] = {
            f"{prefix}TargetGroupArn": self.public_target_pool.arn,
            f"{prefix}ExecutionRoleArn": self.execution_role_arn,
            f"{prefix}TaskRoleArn": self.task_role_arn,
            f"{prefix}SecurityGroupId": self.security_group.get_att("GroupId"),
        }
        for pool in self.private_target_pools:
            result[f"{pool.logical_id}Arn"] = pool.arn
        return result


class ServiceTopologyComposer:
    """
    Composes service topologies for one deployment.

    Args:
        context: Deployment context
        cluster: ECS cluster reference (name)
        kms_key_arn: Key encrypting the secrets the execution role may read
    """

    def __init__(
        self,
        context: DeploymentContext,
        cluster: Value,
        kms_key_arn: str,
    ) -> None:
        self.context = context
        self.cluster = cluster
        self.kms_key_arn = kms_key_arn
        self.policies = PolicyDocumentComposer(context)

    def compose(
        self,
        spec: ServiceSpec,
        network: NetworkContext,
        load_balancers: SharedLoadBalancers,
        restricted_egress: bool = False,
    ) -> ServiceTopology:
        """
        Build the full topology for ``spec``.

        Raises:
            CompositionAborted: If any build step fails; carries the step name
        """
        template = Template(description=f"{spec.name} service")
        logger.info(
            "Composing topology for %s (restricted egress: %s)", spec.name, restricted_egress
        )

        def step(name: str, build: Callable[[], T]) -> T:
            try:
                return build()
            except Exception as e:
                logger.error("Composition of %s failed at %s: %s", spec.name, name, e)
                raise CompositionAborted(name, spec.name, e) from e

        security_group = step(
            "isolation-boundary",
            lambda: self._isolation_boundary(
                template, spec, network, load_balancers, restricted_egress
            ),
        )
        public_pool = step(
            "public-target-pool",
            lambda: self._target_pool(template, spec, network, "HTTP", private=False),
        )
        pools = [public_pool]
        private_rules: list[RoutingRule] = []
        if restricted_egress:
            private_pools, private_rules = step(
                "private-target-pools",
                lambda: self._private_pools(template, spec, network, load_balancers),
            )
            pools.extend(private_pools)

        public_rules = step(
            "routing-rules",
            lambda: self._public_rules(template, spec, load_balancers, public_pool),
        )
        rules = public_rules + private_rules

        execution_role, task_role = step("identities", lambda: self._identities(template, spec))
        task_definition = step(
            "task-definition",
            lambda: self._task_definition(template, spec, execution_role, task_role),
        )
        service = step(
            "service",
            lambda: self._service(
                template, spec, network, security_group, task_definition, pools, rules
            ),
        )
        scaling_target, scaling_policies = step(
            "capacity-policy", lambda: self._capacity_policy(template, spec, service)
        )

        logger.info(
            "Composed %s: %d target pools, %d routing rules, %d resources",
            spec.name,
            len(pools),
            len(rules),
            len(template),
        )
        return ServiceTopology(
            name=spec.name,
            security_group=security_group,
            target_pools=pools,
            routing_rules=rules,
            execution_role=execution_role,
            task_role=task_role,
            task_definition=task_definition,
            service=service,
            scaling_target=scaling_target,
            scaling_policies=scaling_policies,
            template=template,
        )

    # -----------------------------------------------------------------------
    # 1. Isolation boundary
    # -----------------------------------------------------------------------

    def _egress_rules(
        self, spec: ServiceSpec, network: NetworkContext, restricted_egress: bool
    ) -> list[SecurityGroupRule]:
        if not restricted_egress:
            return [SecurityGroupRule.all_traffic()]

        db = network.database
        rules = [
            SecurityGroupRule(
                db.port,
                db.port,
                security_group=db.security_group_id,
                description="Allow egress to the database security group",
            ),
            SecurityGroupRule(
                db.port,
                db.port,
                cidr=network.vpc_cidr,
                description="Allow egress to the database port within the VPC CIDR",
            ),
        ]
        if spec.endpoint_egress:
            if network.endpoint_security_group is None or network.storage_prefix_list is None:
                raise ConfigurationError(
                    "Restricted egress requires a VPC endpoint security group "
                    "and a storage prefix list"
                )
            rules += [
                SecurityGroupRule(
                    HTTPS_PORT,
                    HTTPS_PORT,
                    security_group=network.endpoint_security_group,
                    description="Allow egress from ecs service to VPC endpoints",
                ),
                SecurityGroupRule(
                    HTTPS_PORT,
                    HTTPS_PORT,
                    prefix_list=network.storage_prefix_list,
                    description="Allow egress from ecs service to the S3 prefix list",
                ),
            ]
        return rules + list(spec.extra_egress)

    def _isolation_boundary(
        self,
        template: Template,
        spec: ServiceSpec,
        network: NetworkContext,
        load_balancers: SharedLoadBalancers,
        restricted_egress: bool,
    ) -> Resource:
        ingress = [
            SecurityGroupRule(
                spec.port,
                spec.port,
                security_group=load_balancers.security_group.ref,
                description="Allows access from public external load balancer",
            )
        ]
        if restricted_egress:
            ingress.append(
                SecurityGroupRule(
                    spec.port,
                    spec.port,
                    cidr=network.vpc_cidr,
                    description="Allows access from VPC CIDR which includes the internal load "
                    "balancer",
                )
            )
        egress = self._egress_rules(spec, network, restricted_egress)

        security_group = template.add(
            Resource(
                logical_id(spec.name, "security-group"),
                "AWS::EC2::SecurityGroup",
                {
                    "GroupDescription": f"{spec.name} service security group",
                    "VpcId": network.vpc_id,
                    "SecurityGroupIngress": [r.to_ingress() for r in ingress],
                    "SecurityGroupEgress": [r.to_egress() for r in egress],
                },
            )
        )

        template.add(
            Resource(
                logical_id(spec.name, "lb-to-ecs-rule"),
                "AWS::EC2::SecurityGroupEgress",
                {
                    "GroupId": load_balancers.security_group.get_att("GroupId"),
                    "IpProtocol": "tcp",
                    "FromPort": spec.port,
                    "ToPort": spec.port,
                    "DestinationSecurityGroupId": security_group.get_att("GroupId"),
                    "Description": f"Allow access from load balancer to {spec.name}",
                },
            )
        )

        if spec.database_ingress:
            db = network.database
            template.add(
                Resource(
                    logical_id(spec.name, "ecs-to-db-rule"),
                    "AWS::EC2::SecurityGroupIngress",
                    {
                        "GroupId": db.security_group_id,
                        "IpProtocol": "tcp",
                        "FromPort": db.port,
                        "ToPort": db.port,
                        "SourceSecurityGroupId": security_group.get_att("GroupId"),
                    },
                )
            )

        return security_group

    # -----------------------------------------------------------------------
    # 2-3. Target pools
    # -----------------------------------------------------------------------

    def _target_pool(
        self,
        template: Template,
        spec: ServiceSpec,
        network: NetworkContext,
        protocol: str,
        private: bool,
        suffix: str = "target-group",
    ) -> TargetPool:
        pool = TargetPool(
            logical_id=logical_id(spec.name, suffix),
            protocol=protocol,
            port=spec.port,
            health_check=spec.health_check,
            private=private,
        )
        check = pool.health_check
        template.add(
            Resource(
                pool.logical_id,
                "AWS::ElasticLoadBalancingV2::TargetGroup",
                {
                    "Protocol": pool.protocol,
                    "Port": pool.port,
                    "TargetType": pool.target_type,
                    "VpcId": network.vpc_id,
                    "HealthCheckEnabled": True,
                    "HealthCheckProtocol": "HTTP",
                    "HealthCheckPort": str(pool.port),
                    "HealthCheckPath": check.path,
                    "HealthCheckIntervalSeconds": check.interval,
                    "HealthCheckTimeoutSeconds": check.timeout,
                    "HealthyThresholdCount": check.healthy_threshold,
                    "UnhealthyThresholdCount": check.unhealthy_threshold,
                    "Matcher": {"HttpCode": check.matcher},
                },
            )
        )
        return pool

    def _private_pools(
        self,
        template: Template,
        spec: ServiceSpec,
        network: NetworkContext,
        load_balancers: SharedLoadBalancers,
    ) -> tuple[list[TargetPool], list[RoutingRule]]:
        private_lb = load_balancers.private_load_balancer
        if private_lb is None:
            raise ConfigurationError("Restricted egress requires the internal load balancer")

        plain_port, tls_port = spec.private_listener_ports
        plain = self._target_pool(
            template, spec, network, "TCP", private=True, suffix="private-tcp-target-group"
        )
        tls = self._target_pool(
            template, spec, network, "TCP", private=True, suffix="private-tls-target-group"
        )

        rules = [
            RoutingRule(
                logical_id=logical_id(spec.name, "private-tcp-listener"),
                endpoint=Endpoint.PRIVATE_TCP,
                target_pool=plain,
                priority=spec.priority,
            ),
            RoutingRule(
                logical_id=logical_id(spec.name, "private-tls-listener"),
                endpoint=Endpoint.PRIVATE_TLS,
                target_pool=tls,
                priority=spec.priority,
            ),
        ]
        for rule, port in zip(rules, (plain_port, tls_port)):
            properties: dict[str, Any] = {
                "LoadBalancerArn": private_lb.ref,
                "Port": port,
                "Protocol": "TCP",
                "DefaultActions": [
                    {"Type": "forward", "TargetGroupArn": rule.target_pool.arn}
                ],
            }
            if rule.endpoint is Endpoint.PRIVATE_TLS:
                properties["Protocol"] = "TLS"
                properties["Certificates"] = [{"CertificateArn": load_balancers.certificate_arn}]
                properties["SslPolicy"] = SSL_POLICY
            template.add(
                Resource(
                    rule.logical_id,
                    "AWS::ElasticLoadBalancingV2::Listener",
                    properties,
                    depends_on=(rule.target_pool.logical_id,),
                )
            )

        return [plain, tls], rules

    # -----------------------------------------------------------------------
    # 4. Routing rules
    # -----------------------------------------------------------------------

    def _public_rules(
        self,
        template: Template,
        spec: ServiceSpec,
        load_balancers: SharedLoadBalancers,
        pool: TargetPool,
    ) -> list[RoutingRule]:
        listeners = (
            (Endpoint.PUBLIC_HTTPS, load_balancers.https_listener),
            (Endpoint.PUBLIC_HTTP, load_balancers.http_listener),
        )
        rules: list[RoutingRule] = []
        for endpoint, listener in listeners:
            rule = RoutingRule(
                logical_id=logical_id(spec.name, endpoint.value, "rule"),
                endpoint=endpoint,
                target_pool=pool,
                priority=spec.priority,
                host_headers=spec.host_headers,
                path_patterns=spec.path_patterns,
            )
            template.add(
                Resource(
                    rule.logical_id,
                    "AWS::ElasticLoadBalancingV2::ListenerRule",
                    {
                        "ListenerArn": listener.ref,
                        "Priority": rule.priority,
                        "Conditions": rule.conditions(),
                        "Actions": [{"Type": "forward", "TargetGroupArn": pool.arn}],
                    },
                    depends_on=(pool.logical_id,),
                )
            )
            rules.append(rule)
        return rules

    # -----------------------------------------------------------------------
    # 5. Identities
    # -----------------------------------------------------------------------

    def _role(self, template: Template, name: str, policies: list[PolicyDocument]) -> Resource:
        properties: dict[str, Any] = {
            "AssumeRolePolicyDocument": assume_role_policy().to_dict(),
            "ManagedPolicyArns": [self.policies.managed_baseline()],
        }
        if policies:
            properties["Policies"] = [
                {"PolicyName": f"{name}-{doc.name}", "PolicyDocument": doc.to_dict()}
                for doc in policies
            ]
        return template.add(Resource(logical_id(name, "role"), "AWS::IAM::Role", properties))

    def _identities(self, template: Template, spec: ServiceSpec) -> tuple[Resource, Resource]:
        execution_policies: list[PolicyDocument] = []
        if spec.container.secrets:
            execution_policies.append(
                self.policies.secret_store(self.context.secrets_prefix, self.kms_key_arn)
            )
        execution_role = self._role(template, f"{spec.name}-execution", execution_policies)
        task_role = self._role(template, f"{spec.name}-task", list(spec.task_policies))
        return execution_role, task_role

    # -----------------------------------------------------------------------
    # 6. Task definition
    # -----------------------------------------------------------------------

    def _task_definition(
        self,
        template: Template,
        spec: ServiceSpec,
        execution_role: Resource,
        task_role: Resource,
    ) -> Resource:
        if spec.log_driver is None:
            raise ConfigurationError(f"No log driver configured for {spec.name}")
        template.extend(spec.log_driver.resources())

        container = replace(
            spec.container,
            cpu=spec.sizing.container_cpu,
            memory_reservation=spec.sizing.container_memory_reservation,
            port=spec.port,
            log_configuration=spec.log_driver.configuration(),
        )
        return template.add(
            Resource(
                logical_id(spec.name, "task-definition"),
                "AWS::ECS::TaskDefinition",
                {
                    "Family": spec.family,
                    "NetworkMode": "awsvpc",
                    "RequiresCompatibilities": ["FARGATE"],
                    "Cpu": str(spec.sizing.task_cpu),
                    "Memory": str(spec.sizing.task_memory),
                    "ExecutionRoleArn": execution_role.get_att("Arn"),
                    "TaskRoleArn": task_role.get_att("Arn"),
                    "ContainerDefinitions": [container.to_dict()],
                },
            )
        )

    # -----------------------------------------------------------------------
    # 7. Service
    # -----------------------------------------------------------------------

    def _service(
        self,
        template: Template,
        spec: ServiceSpec,
        network: NetworkContext,
        security_group: Resource,
        task_definition: Resource,
        pools: list[TargetPool],
        rules: list[RoutingRule],
    ) -> Resource:
        # Every routing rule must exist before the service starts registering targets
        return template.add(
            Resource(
                logical_id(spec.name, "service"),
                "AWS::ECS::Service",
                {
                    "Cluster": self.cluster,
                    "DesiredCount": spec.sizing.desired_count,
                    "HealthCheckGracePeriodSeconds": spec.grace_period,
                    "LaunchType": "FARGATE",
                    "TaskDefinition": task_definition.ref,
                    "LoadBalancers": [
                        {
                            "ContainerName": spec.container.name,
                            "ContainerPort": spec.port,
                            "TargetGroupArn": pool.arn,
                        }
                        for pool in pools
                    ],
                    "NetworkConfiguration": {
                        "AwsvpcConfiguration": {
                            "AssignPublicIp": "DISABLED",
                            "Subnets": list(network.private_subnet_ids),
                            "SecurityGroups": [security_group.get_att("GroupId")],
                        }
                    },
                },
                depends_on=tuple(rule.logical_id for rule in rules),
            )
        )

    # -----------------------------------------------------------------------
    # 8. Elastic capacity
    # -----------------------------------------------------------------------

    def _capacity_policy(
        self, template: Template, spec: ServiceSpec, service: Resource
    ) -> tuple[Resource, list[Resource]]:
        bounds = spec.scaling_bounds
        target = template.add(
            Resource(
                logical_id(spec.name, "scalable-target"),
                "AWS::ApplicationAutoScaling::ScalableTarget",
                {
                    "MinCapacity": bounds.min_capacity,
                    "MaxCapacity": bounds.max_capacity,
                    "ResourceId": join("/", ["service", self.cluster, service.get_att("Name")]),
                    "ScalableDimension": "ecs:service:DesiredCount",
                    "ServiceNamespace": "ecs",
                },
                depends_on=(service.logical_id,),
            )
        )

        policies = []
        for policy in spec.scaling_policies:
            policies.append(
                template.add(
                    Resource(
                        logical_id(spec.name, "autoscaling-policy", policy.name),
                        "AWS::ApplicationAutoScaling::ScalingPolicy",
                        {
                            "PolicyName": f"{spec.name}-autoscaling-policy-{policy.name}",
                            "PolicyType": "TargetTrackingScaling",
                            "ScalingTargetId": target.ref,
                            "TargetTrackingScalingPolicyConfiguration": {
                                "PredefinedMetricSpecification": {
                                    "PredefinedMetricType": policy.metric
                                },
                                "TargetValue": policy.target_value,
                                "ScaleInCooldown": policy.scale_in_cooldown,
                                "ScaleOutCooldown": policy.scale_out_cooldown,
                            },
                        },
                    )
                )
            )
        return target, policies
