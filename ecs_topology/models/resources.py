"""Resource declarations for the service topology."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from ecs_topology.errors import ValidationError
from ecs_topology.models.health import HealthCheckPolicy
from ecs_topology.utils.ids import validate_ecs_name, validate_elb_name

logger = logging.getLogger(__name__)

TARGET_GROUP_PROTOCOLS = ("HTTP", "HTTPS")


class ResourceState(Enum):
    """Lifecycle of a declared resource."""

    DECLARED = "declared"
    SUBMITTING = "submitting"
    READY = "ready"
    FAILED = "failed"


def _check_port(port: int, what: str) -> None:
    if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
        raise ValidationError(f"{what} must be a port between 1 and 65535, got {port!r}")


@dataclass(eq=False)
class Resource:
    """Common state shared by every provisioned resource.

    Identity is the object itself; two declarations with the same name
    are different resources until a Topology or Provisioner dedupes them.
    """

    kind: ClassVar[str] = "resource"

    name: str
    state: ResourceState = field(default=ResourceState.DECLARED, init=False)
    arn: str | None = field(default=None, init=False)
    failure: str | None = field(default=None, init=False)

    @property
    def key(self) -> str:
        return f"{self.kind}/{self.name}"

    @property
    def is_ready(self) -> bool:
        return self.state is ResourceState.READY

    def dependencies(self) -> list["Resource"]:
        return []

    def settings(self) -> dict[str, Any]:
        """Declared values two handles with the same key must agree on."""
        return {}

    def differences(self, other: "Resource") -> list[str]:
        """Describe every setting where another declaration disagrees with this one."""
        mine, theirs = self.settings(), other.settings()
        return [
            f"{key} {mine[key]!r} != {theirs.get(key)!r}"
            for key in mine
            if mine[key] != theirs.get(key)
        ]

    def validate(self) -> None:
        """Run local checks; raise ValidationError on the first violation."""
        if not self.name:
            raise ValidationError(f"{self.kind} name must not be empty")

    def mark_submitting(self) -> None:
        if self.state is not ResourceState.DECLARED:
            raise ValidationError(f"{self.key} cannot be submitted from state {self.state.value}")
        self.state = ResourceState.SUBMITTING

    def mark_ready(self, arn: str) -> None:
        if self.state is not ResourceState.SUBMITTING:
            raise ValidationError(f"{self.key} cannot become ready from state {self.state.value}")
        self.arn = arn
        self.state = ResourceState.READY

    def mark_failed(self, reason: str) -> None:
        if self.state is not ResourceState.SUBMITTING:
            raise ValidationError(f"{self.key} cannot fail from state {self.state.value}")
        self.failure = reason
        self.state = ResourceState.FAILED


@dataclass(eq=False)
class ComputeCluster(Resource):
    """Logical namespace that hosts running service instances."""

    kind: ClassVar[str] = "cluster"

    def validate(self) -> None:
        validate_ecs_name(self.name, "cluster")


@dataclass(eq=False)
class LoadBalancer(Resource):
    """Application load balancer; the public entry point of the topology."""

    kind: ClassVar[str] = "load-balancer"

    external: bool = True
    # Assigned by the provider after creation
    address: str | None = field(default=None, init=False)

    @property
    def scheme(self) -> str:
        return "internet-facing" if self.external else "internal"

    def settings(self) -> dict[str, Any]:
        return {"external": self.external}

    def validate(self) -> None:
        validate_elb_name(self.name, "load balancer")


@dataclass(eq=False)
class TargetGroup(Resource):
    """Routable pool of targets, checked by one health-check policy.

    Owned by its load balancer. The health check is fixed at creation;
    changing it means declaring a replacement target group.
    """

    kind: ClassVar[str] = "target-group"

    port: int = 80
    protocol: str = "HTTP"
    health_check: HealthCheckPolicy = field(default_factory=HealthCheckPolicy)
    load_balancer: LoadBalancer | None = None
    target_type: str = "ip"
    listener_port: int = 80

    def dependencies(self) -> list[Resource]:
        return [self.load_balancer] if self.load_balancer is not None else []

    def settings(self) -> dict[str, Any]:
        return {
            "port": self.port,
            "protocol": self.protocol,
            "target_type": self.target_type,
            "listener_port": self.listener_port,
            "health_check": self.health_check,
            "load_balancer": self.load_balancer.key if self.load_balancer else None,
        }

    def validate(self) -> None:
        validate_elb_name(self.name, "target group")
        _check_port(self.port, f"Target group {self.name} port")
        _check_port(self.listener_port, f"Target group {self.name} listener port")
        if self.protocol not in TARGET_GROUP_PROTOCOLS:
            raise ValidationError(
                f"Target group {self.name} protocol must be one of "
                f"{', '.join(TARGET_GROUP_PROTOCOLS)}, got {self.protocol!r}"
            )
        if self.load_balancer is None:
            raise ValidationError(f"Target group {self.name} has no load balancer")
        self.health_check.validate()


@dataclass(frozen=True)
class ContainerBinding:
    """One container of a service's task definition."""

    container_name: str
    image_reference: str
    container_port: int


@dataclass(frozen=True)
class Route:
    """Sends a target group's traffic to a container port."""

    target_group: TargetGroup
    container_name: str
    container_port: int


@dataclass(eq=False)
class ManagedService(Resource):
    """Desired state of a scaled container workload on a cluster.

    References its cluster and target groups without owning them.
    """

    kind: ClassVar[str] = "service"

    cluster: ComputeCluster | None = None
    bindings: list[ContainerBinding] = field(default_factory=list)
    routing: list[Route] = field(default_factory=list)
    desired_replica_count: int = 1
    cpu: str = "256"
    memory: str = "512"
    execution_role_arn: str | None = None
    log_group: str | None = None

    def dependencies(self) -> list[Resource]:
        deps: list[Resource] = [self.cluster] if self.cluster is not None else []
        for route in self.routing:
            if route.target_group not in deps:
                deps.append(route.target_group)
        return deps

    def settings(self) -> dict[str, Any]:
        return {
            "cluster": self.cluster.key if self.cluster else None,
            "bindings": list(self.bindings),
            "routing": [
                (route.target_group.key, route.container_name, route.container_port)
                for route in self.routing
            ],
            "desired_replica_count": self.desired_replica_count,
            "cpu": self.cpu,
            "memory": self.memory,
            "execution_role_arn": self.execution_role_arn,
            "log_group": self.log_group,
        }

    def binding(self, container_name: str) -> ContainerBinding | None:
        for binding in self.bindings:
            if binding.container_name == container_name:
                return binding
        return None

    def validate(self) -> None:
        validate_ecs_name(self.name, "service")
        if self.cluster is None:
            raise ValidationError(f"Service {self.name} has no cluster")
        if (
            isinstance(self.desired_replica_count, bool)
            or not isinstance(self.desired_replica_count, int)
            or self.desired_replica_count < 0
        ):
            raise ValidationError(
                f"Service {self.name} desired replica count must be >= 0, "
                f"got {self.desired_replica_count!r}"
            )
        if not self.bindings:
            raise ValidationError(f"Service {self.name} declares no containers")

        seen = set()
        for binding in self.bindings:
            if binding.container_name in seen:
                raise ValidationError(
                    f"Service {self.name} declares container {binding.container_name!r} twice"
                )
            seen.add(binding.container_name)
            _check_port(binding.container_port, f"Container {binding.container_name} port")

        for route in self.routing:
            binding = self.binding(route.container_name)
            if binding is None:
                raise ValidationError(
                    f"Service {self.name} routes {route.target_group.name} to unknown "
                    f"container {route.container_name!r}"
                )
            if binding.container_port != route.container_port:
                raise ValidationError(
                    f"Service {self.name} routes {route.target_group.name} to "
                    f"{route.container_name}:{route.container_port}, but the container "
                    f"listens on {binding.container_port}"
                )
            if route.target_group.port != route.container_port:
                logger.warning(
                    f"Target group {route.target_group.name} port {route.target_group.port} "
                    f"differs from container port {route.container_port}"
                )
