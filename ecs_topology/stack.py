"""The one service topology a configuration file describes."""

from ecs_topology.config import Config
from ecs_topology.models import (
    ComputeCluster,
    ContainerBinding,
    LoadBalancer,
    ManagedService,
    Route,
    TargetGroup,
)
from ecs_topology.topology import Topology


def build_topology(config: Config, desired_count: int | None = None) -> Topology:
    """Declare cluster, load balancer, target group and service.

    Args:
        config: Application configuration
        desired_count: Replica count overriding [service] desired_count

    Returns:
        Topology ready for Provisioner.apply()
    """
    cluster = ComputeCluster(name=config.service.cluster)
    load_balancer = LoadBalancer(
        name=config.load_balancer.name,
        external=config.load_balancer.external,
    )
    target_group = TargetGroup(
        name=config.target_group.name,
        port=config.target_group.port,
        protocol=config.target_group.protocol,
        health_check=config.target_group.health_check,
        load_balancer=load_balancer,
        target_type=config.target_group.target_type,
        listener_port=config.target_group.listener_port,
    )
    service = ManagedService(
        name=config.service.name,
        cluster=cluster,
        bindings=[
            ContainerBinding(
                container_name=config.service.container_name,
                image_reference=config.service.image,
                container_port=config.service.container_port,
            )
        ],
        routing=[
            Route(
                target_group=target_group,
                container_name=config.service.container_name,
                container_port=config.service.container_port,
            )
        ],
        desired_replica_count=(
            config.service.desired_count if desired_count is None else desired_count
        ),
        cpu=config.service.cpu,
        memory=config.service.memory,
        execution_role_arn=config.service.execution_role_arn,
        log_group=config.logs.group,
    )
    return Topology([cluster, load_balancer, target_group, service])
