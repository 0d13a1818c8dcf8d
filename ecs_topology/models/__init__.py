"""Data models for ECS Topology."""

from ecs_topology.models.health import HealthCheckPolicy, HealthStatus, TargetHealth
from ecs_topology.models.log_event import LogEvent
from ecs_topology.models.resources import (
    ComputeCluster,
    ContainerBinding,
    LoadBalancer,
    ManagedService,
    Resource,
    ResourceState,
    Route,
    TargetGroup,
)

__all__ = [
    "HealthCheckPolicy",
    "HealthStatus",
    "TargetHealth",
    "LogEvent",
    "Resource",
    "ResourceState",
    "ComputeCluster",
    "LoadBalancer",
    "TargetGroup",
    "ContainerBinding",
    "Route",
    "ManagedService",
]
