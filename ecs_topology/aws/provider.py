"""Resource creation and lookups against ECS and ELBv2."""

import logging
from contextlib import contextmanager
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from ecs_topology.config import NetworkConfig
from ecs_topology.errors import ProvisioningError
from ecs_topology.models import (
    ComputeCluster,
    HealthCheckPolicy,
    HealthStatus,
    LoadBalancer,
    ManagedService,
    TargetGroup,
    TargetHealth,
)
from ecs_topology.utils.ids import extract_resource_name

logger = logging.getLogger(__name__)

MANAGED_BY = "ecs-topology"
ECS_TAGS = [{"key": "managed-by", "value": MANAGED_BY}]
ELB_TAGS = [{"Key": "managed-by", "Value": MANAGED_BY}]


def _error_code(error: ClientError) -> str | None:
    return error.response.get("Error", {}).get("Code")


def _error_message(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Message") or str(error)


@contextmanager
def _remote_call(resource_key: str):
    """Turn botocore failures into ProvisioningError for one resource."""
    try:
        yield
    except ClientError as e:
        raise ProvisioningError(resource_key, _error_message(e), _error_code(e)) from e
    except BotoCoreError as e:
        raise ProvisioningError(resource_key, str(e)) from e


def health_check_params(policy: HealthCheckPolicy) -> dict[str, Any]:
    """Build the ELBv2 health check arguments for a policy."""
    return {
        "HealthCheckProtocol": policy.protocol,
        "HealthCheckPath": policy.path,
        "HealthCheckIntervalSeconds": policy.interval_seconds,
        "HealthCheckTimeoutSeconds": policy.timeout_seconds,
        "HealthyThresholdCount": policy.healthy_threshold,
        "UnhealthyThresholdCount": policy.unhealthy_threshold,
        "Matcher": {"HttpCode": policy.success_matcher},
    }


class AWSProvider:
    """Creates and reads topology resources through boto3.

    Creation calls check for an existing resource with the same name
    first, so re-running a deployment reuses what is already there.
    Nothing here retries beyond the botocore client configuration.
    """

    def __init__(
        self,
        clients,
        network: NetworkConfig,
        wait: bool = True,
        wait_for_steady_state: bool = False,
    ):
        """Initialize the provider.

        Args:
            clients: AWS clients container (ecs, elbv2, region)
            network: Resolved VPC placement
            wait: Wait for load balancers to become active before returning
            wait_for_steady_state: Wait for services to reach steady state
        """
        self.clients = clients
        self.network = network
        self.wait = wait
        self.wait_for_steady_state = wait_for_steady_state

    # Clusters

    def ensure_cluster(self, cluster: ComputeCluster) -> str:
        """Return the ARN of an active cluster with this name, creating it if needed."""
        with _remote_call(cluster.key):
            response = self.clients.ecs.describe_clusters(clusters=[cluster.name])

        for existing in response.get("clusters", []):
            status = existing.get("status")
            if status == "ACTIVE":
                logger.info(f"Reusing existing cluster {cluster.name}")
                return existing["clusterArn"]
            if status != "INACTIVE":
                raise ProvisioningError(
                    cluster.key,
                    f"A cluster named {cluster.name} already exists with status {status}",
                )

        with _remote_call(cluster.key):
            response = self.clients.ecs.create_cluster(
                clusterName=cluster.name, tags=ECS_TAGS
            )
        logger.info(f"Created cluster {cluster.name}")
        return response["cluster"]["clusterArn"]

    # Load balancers

    def find_load_balancer(self, name: str) -> dict[str, Any] | None:
        """Describe a load balancer by name, or None if there is none."""
        try:
            response = self.clients.elbv2.describe_load_balancers(Names=[name])
        except ClientError as e:
            if _error_code(e) == "LoadBalancerNotFound":
                return None
            raise
        load_balancers = response.get("LoadBalancers", [])
        return load_balancers[0] if load_balancers else None

    def create_load_balancer(self, load_balancer: LoadBalancer) -> tuple[str, str]:
        """Create (or reuse) an application load balancer.

        Returns:
            Tuple of (load balancer ARN, DNS name)
        """
        with _remote_call(load_balancer.key):
            existing = self.find_load_balancer(load_balancer.name)

        if existing:
            if (
                existing.get("Type") != "application"
                or existing.get("Scheme") != load_balancer.scheme
            ):
                raise ProvisioningError(
                    load_balancer.key,
                    f"A {existing.get('Scheme')} {existing.get('Type')} load balancer "
                    f"named {load_balancer.name} already exists",
                )
            logger.info(f"Reusing existing load balancer {load_balancer.name}")
            description = existing
        else:
            with _remote_call(load_balancer.key):
                response = self.clients.elbv2.create_load_balancer(
                    Name=load_balancer.name,
                    Subnets=self.network.subnets,
                    SecurityGroups=self.network.security_groups,
                    Scheme=load_balancer.scheme,
                    Type="application",
                    IpAddressType="ipv4",
                    Tags=ELB_TAGS,
                )
            description = response["LoadBalancers"][0]
            logger.info(f"Created load balancer {load_balancer.name}")

        arn = description["LoadBalancerArn"]
        if self.wait:
            self._wait_for_load_balancer(load_balancer.key, arn)
        return arn, description.get("DNSName", "")

    def _wait_for_load_balancer(self, resource_key: str, arn: str) -> None:
        logger.info(f"Waiting for {resource_key} to become active...")
        with _remote_call(resource_key):
            waiter = self.clients.elbv2.get_waiter("load_balancer_available")
            waiter.wait(LoadBalancerArns=[arn])

    def load_balancer_address(self, load_balancer: LoadBalancer) -> str:
        """Read the provider-assigned DNS name once the load balancer is active."""
        with _remote_call(load_balancer.key):
            response = self.clients.elbv2.describe_load_balancers(
                LoadBalancerArns=[load_balancer.arn]
            )
        description = response["LoadBalancers"][0]
        state = description.get("State", {})

        if state.get("Code") == "failed":
            raise ProvisioningError(
                load_balancer.key, state.get("Reason") or "Load balancer is in state failed"
            )
        if state.get("Code") == "provisioning":
            self._wait_for_load_balancer(load_balancer.key, load_balancer.arn)

        address = description.get("DNSName")
        if not address:
            raise ProvisioningError(load_balancer.key, "Provider reported no DNS name")
        return address

    # Target groups

    def find_target_group(self, name: str) -> dict[str, Any] | None:
        """Describe a target group by name, or None if there is none."""
        try:
            response = self.clients.elbv2.describe_target_groups(Names=[name])
        except ClientError as e:
            if _error_code(e) == "TargetGroupNotFound":
                return None
            raise
        target_groups = response.get("TargetGroups", [])
        return target_groups[0] if target_groups else None

    def create_target_group(self, target_group: TargetGroup) -> str:
        """Create (or reuse) a target group and forward a listener to it.

        Returns:
            Target group ARN
        """
        with _remote_call(target_group.key):
            existing = self.find_target_group(target_group.name)

        if existing:
            self._check_compatible(target_group, existing)
            logger.info(f"Reusing existing target group {target_group.name}")
            arn = existing["TargetGroupArn"]
        else:
            with _remote_call(target_group.key):
                response = self.clients.elbv2.create_target_group(
                    Name=target_group.name,
                    Protocol=target_group.protocol,
                    Port=target_group.port,
                    VpcId=self.network.vpc_id,
                    TargetType=target_group.target_type,
                    HealthCheckEnabled=True,
                    Tags=ELB_TAGS,
                    **health_check_params(target_group.health_check),
                )
            arn = response["TargetGroups"][0]["TargetGroupArn"]
            logger.info(f"Created target group {target_group.name}")

        self._ensure_listener(target_group, arn)
        return arn

    def _check_compatible(self, target_group: TargetGroup, existing: dict[str, Any]) -> None:
        differences = []
        expected = {
            "Port": target_group.port,
            "Protocol": target_group.protocol,
            "TargetType": target_group.target_type,
        }
        for key, value in expected.items():
            if existing.get(key) != value:
                differences.append(f"{key} {existing.get(key)!r} != {value!r}")

        for key, value in health_check_params(target_group.health_check).items():
            if existing.get(key) != value:
                differences.append(f"{key} {existing.get(key)!r} != {value!r}")

        if differences:
            raise ProvisioningError(
                target_group.key,
                f"Existing target group {target_group.name} differs "
                f"({'; '.join(differences)}); health checks cannot change after "
                "creation, declare a replacement target group instead",
            )

    def _ensure_listener(self, target_group: TargetGroup, target_group_arn: str) -> str:
        load_balancer = target_group.load_balancer
        with _remote_call(target_group.key):
            response = self.clients.elbv2.describe_listeners(
                LoadBalancerArn=load_balancer.arn
            )

        for listener in response.get("Listeners", []):
            if listener.get("Port") != target_group.listener_port:
                continue
            forwards_to = {
                action.get("TargetGroupArn")
                for action in listener.get("DefaultActions", [])
                if action.get("Type") == "forward"
            }
            if target_group_arn in forwards_to:
                return listener["ListenerArn"]
            raise ProvisioningError(
                target_group.key,
                f"Listener on port {target_group.listener_port} of "
                f"{load_balancer.name} already forwards to another target group",
            )

        with _remote_call(target_group.key):
            response = self.clients.elbv2.create_listener(
                LoadBalancerArn=load_balancer.arn,
                Protocol="HTTP",
                Port=target_group.listener_port,
                DefaultActions=[{"Type": "forward", "TargetGroupArn": target_group_arn}],
                Tags=ELB_TAGS,
            )
        logger.info(
            f"Created listener on {load_balancer.name}:{target_group.listener_port} "
            f"for {target_group.name}"
        )
        return response["Listeners"][0]["ListenerArn"]

    def target_health(self, target_group_arn: str) -> list[TargetHealth]:
        """Report the provider's view of each registered target."""
        resource_key = f"target-group/{extract_resource_name(target_group_arn)}"
        with _remote_call(resource_key):
            response = self.clients.elbv2.describe_target_health(
                TargetGroupArn=target_group_arn
            )

        targets = []
        for description in response.get("TargetHealthDescriptions", []):
            target = description.get("Target", {})
            health = description.get("TargetHealth", {})
            targets.append(
                TargetHealth(
                    target_id=target.get("Id", ""),
                    port=target.get("Port"),
                    status=HealthStatus.from_target_state(health.get("State")),
                    reason=health.get("Reason"),
                    description=health.get("Description"),
                )
            )
        return targets

    # Services

    def describe_service(self, cluster: str, name: str) -> dict[str, Any] | None:
        """Describe a service by name within a cluster, or None."""
        response = self.clients.ecs.describe_services(cluster=cluster, services=[name])
        services = response.get("services", [])
        return services[0] if services else None

    def _task_definition(self, service: ManagedService) -> dict[str, Any]:
        containers = []
        for binding in service.bindings:
            container = {
                "name": binding.container_name,
                "image": binding.image_reference,
                "essential": True,
                "portMappings": [
                    {"containerPort": binding.container_port, "protocol": "tcp"}
                ],
            }
            # awslogs needs the execution role to write to CloudWatch
            if service.execution_role_arn and service.log_group:
                container["logConfiguration"] = {
                    "logDriver": "awslogs",
                    "options": {
                        "awslogs-group": service.log_group,
                        "awslogs-region": self.clients.region,
                        "awslogs-stream-prefix": service.name,
                        "awslogs-create-group": "true",
                    },
                }
            containers.append(container)

        task_definition = {
            "family": service.name,
            "networkMode": "awsvpc",
            "requiresCompatibilities": ["FARGATE"],
            "cpu": service.cpu,
            "memory": service.memory,
            "containerDefinitions": containers,
        }
        if service.execution_role_arn:
            task_definition["executionRoleArn"] = service.execution_role_arn
        return task_definition

    def _network_configuration(self) -> dict[str, Any]:
        return {
            "awsvpcConfiguration": {
                "subnets": self.network.subnets,
                "securityGroups": self.network.security_groups,
                "assignPublicIp": "ENABLED" if self.network.assign_public_ip else "DISABLED",
            }
        }

    def create_service(self, service: ManagedService) -> str:
        """Register a task definition and create (or update) the service.

        Returns:
            Service ARN
        """
        cluster_arn = service.cluster.arn
        with _remote_call(service.key):
            response = self.clients.ecs.register_task_definition(
                **self._task_definition(service)
            )
        task_definition_arn = response["taskDefinition"]["taskDefinitionArn"]

        load_balancers = [
            {
                "targetGroupArn": route.target_group.arn,
                "containerName": route.container_name,
                "containerPort": route.container_port,
            }
            for route in service.routing
        ]

        with _remote_call(service.key):
            existing = self.describe_service(cluster_arn, service.name)

        if existing and existing.get("status") == "ACTIVE":
            with _remote_call(service.key):
                response = self.clients.ecs.update_service(
                    cluster=cluster_arn,
                    service=service.name,
                    taskDefinition=task_definition_arn,
                    desiredCount=service.desired_replica_count,
                    loadBalancers=load_balancers,
                )
            logger.info(f"Updated service {service.name}")
        else:
            with _remote_call(service.key):
                response = self.clients.ecs.create_service(
                    cluster=cluster_arn,
                    serviceName=service.name,
                    taskDefinition=task_definition_arn,
                    desiredCount=service.desired_replica_count,
                    launchType="FARGATE",
                    networkConfiguration=self._network_configuration(),
                    loadBalancers=load_balancers,
                    tags=ECS_TAGS,
                )
            logger.info(f"Created service {service.name}")

        arn = response["service"]["serviceArn"]
        if self.wait_for_steady_state:
            logger.info(f"Waiting for {service.key} to reach a steady state...")
            with _remote_call(service.key):
                waiter = self.clients.ecs.get_waiter("services_stable")
                waiter.wait(cluster=cluster_arn, services=[service.name])
        return arn

    def update_desired_count(self, service: ManagedService, desired_count: int) -> None:
        """Change how many tasks the service keeps running."""
        with _remote_call(service.key):
            self.clients.ecs.update_service(
                cluster=service.cluster.arn or service.cluster.name,
                service=service.name,
                desiredCount=desired_count,
            )
        logger.info(f"Scaled service {service.name} to {desired_count}")
