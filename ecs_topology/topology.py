"""Resource dependency graph and the provisioner that materializes it."""

import logging
import threading
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from graphlib import CycleError, TopologicalSorter

from ecs_topology.errors import ProvisioningError, ValidationError
from ecs_topology.models import (
    ComputeCluster,
    ContainerBinding,
    HealthCheckPolicy,
    LoadBalancer,
    ManagedService,
    Resource,
    ResourceState,
    Route,
    TargetGroup,
    TargetHealth,
)

logger = logging.getLogger(__name__)

PROVISIONABLE = (ComputeCluster, LoadBalancer, TargetGroup, ManagedService)


class Topology:
    """A set of resource declarations and the edges between them.

    Edges come from each resource's dependencies(): a target group
    depends on its load balancer, a service on its cluster and on
    every target group it routes to.
    """

    def __init__(self, resources: Iterable[Resource] = ()):
        self._resources: dict[str, Resource] = {}
        for resource in resources:
            self.add(resource)

    def add(self, resource: Resource) -> Resource:
        """Declare a resource.

        Raises:
            ValidationError: If another resource already uses the same key
        """
        existing = self._resources.get(resource.key)
        if existing is not None and existing is not resource:
            raise ValidationError(f"{resource.key} is declared more than once")
        self._resources[resource.key] = resource
        return resource

    def find(self, kind: type[Resource], name: str) -> Resource | None:
        return self._resources.get(f"{kind.kind}/{name}")

    @property
    def resources(self) -> list[Resource]:
        return list(self._resources.values())

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, resource: Resource) -> bool:
        return self._resources.get(resource.key) is resource

    def validate(self) -> None:
        """Run every resource's local checks and confirm all edges stay inside the graph."""
        for resource in self._resources.values():
            resource.validate()
            for dependency in resource.dependencies():
                if dependency not in self:
                    raise ValidationError(
                        f"{resource.key} depends on {dependency.key}, which is not declared"
                    )

    def plan(self) -> list[list[Resource]]:
        """Validate the graph and order it for creation.

        Returns:
            Waves of resources; every dependency of a resource sits in an
            earlier wave, and resources within a wave are independent.

        Raises:
            ValidationError: On an invalid declaration or a dependency cycle
        """
        self.validate()

        sorter = TopologicalSorter()
        for key, resource in self._resources.items():
            sorter.add(key, *(dependency.key for dependency in resource.dependencies()))

        waves = []
        try:
            sorter.prepare()
        except CycleError as e:
            raise ValidationError(f"Dependency cycle between {', '.join(e.args[1])}") from e
        while sorter.is_active():
            ready = sorted(sorter.get_ready())
            waves.append([self._resources[key] for key in ready])
            sorter.done(*ready)
        return waves


class Provisioner:
    """Creates resources against a provider in dependency order.

    A resource moves DECLARED -> SUBMITTING -> READY or FAILED. Nothing
    reaches the provider until its local checks pass and every
    dependency is READY. Failures are terminal: the provisioner neither
    retries nor rolls back, so earlier resources stay as they are for the
    operator to inspect before re-running.
    """

    def __init__(self, provider, max_workers: int = 4):
        """Initialize the provisioner.

        Args:
            provider: Object performing the remote calls (see AWSProvider)
            max_workers: Upper bound on concurrent creations within one wave
        """
        self.provider = provider
        self.max_workers = max_workers
        self._known: dict[str, Resource] = {}
        self._lock = threading.Lock()

    def _create(self, resource: Resource) -> Resource:
        """Provision a resource unless an identical one with the same key is already ready.

        Raises:
            ValidationError: The new declaration fails its local checks
            ProvisioningError: A ready resource with this key was declared differently
        """
        resource.validate()
        with self._lock:
            known = self._known.get(resource.key)
        if known is not None and known.is_ready:
            differences = known.differences(resource)
            if differences:
                raise ProvisioningError(
                    resource.key,
                    f"{resource.key} already exists with different settings "
                    f"({'; '.join(differences)}); declare a replacement under a new name",
                )
            logger.debug(f"{resource.key} already exists, reusing it")
            return known

        self.provision(resource)
        with self._lock:
            self._known[resource.key] = resource
        return resource

    def _check_dependencies(self, resource: Resource) -> None:
        for dependency in resource.dependencies():
            if not dependency.is_ready:
                raise ValidationError(
                    f"{resource.key} depends on {dependency.key}, which is "
                    f"{dependency.state.value}, not ready"
                )

    def provision(self, resource: Resource) -> Resource:
        """Create one resource whose dependencies already exist.

        Returns:
            The resource, now READY

        Raises:
            ValidationError: Local checks failed, a dependency is not
                ready, or the resource already failed
            ProvisioningError: The provider rejected the creation
        """
        if resource.state is ResourceState.READY:
            return resource
        if resource.state is ResourceState.FAILED:
            raise ValidationError(
                f"{resource.key} failed earlier ({resource.failure}); "
                "fix the cause and redeploy with a new declaration"
            )
        if resource.state is ResourceState.SUBMITTING:
            raise ValidationError(f"{resource.key} is already being submitted")
        if not isinstance(resource, PROVISIONABLE):
            raise ValidationError(f"Don't know how to provision {resource.key}")

        resource.validate()
        self._check_dependencies(resource)

        logger.info(f"Creating {resource.key}")
        resource.mark_submitting()
        try:
            arn = self._submit(resource)
        except ProvisioningError as e:
            resource.mark_failed(e.reason)
            logger.error(f"{resource.key} failed: {e.reason}")
            raise
        except Exception as e:
            resource.mark_failed(str(e))
            logger.error(f"{resource.key} failed: {e}")
            raise ProvisioningError(resource.key, str(e)) from e

        resource.mark_ready(arn)
        logger.info(f"{resource.key} is ready ({arn})")
        return resource

    def _submit(self, resource: Resource) -> str:
        if isinstance(resource, ComputeCluster):
            return self.provider.ensure_cluster(resource)
        if isinstance(resource, LoadBalancer):
            arn, address = self.provider.create_load_balancer(resource)
            resource.address = address or None
            return arn
        if isinstance(resource, TargetGroup):
            return self.provider.create_target_group(resource)
        return self.provider.create_service(resource)

    def create_cluster(self, name: str) -> ComputeCluster:
        """Create a cluster, or return the one already created under this name."""
        return self._create(ComputeCluster(name=name))

    def create_load_balancer(self, name: str, external: bool = True) -> LoadBalancer:
        """Create an application load balancer; external=True makes it public."""
        return self._create(LoadBalancer(name=name, external=external))

    def create_target_group(
        self,
        name: str,
        port: int,
        protocol: str,
        health_check: HealthCheckPolicy,
        load_balancer: LoadBalancer,
        target_type: str = "ip",
        listener_port: int = 80,
    ) -> TargetGroup:
        """Create a target group attached to a ready load balancer.

        The health check is validated before anything is sent.
        """
        target_group = TargetGroup(
            name=name,
            port=port,
            protocol=protocol,
            health_check=health_check,
            load_balancer=load_balancer,
            target_type=target_type,
            listener_port=listener_port,
        )
        return self._create(target_group)

    def create_managed_service(
        self,
        name: str,
        cluster: ComputeCluster,
        bindings: Sequence[ContainerBinding],
        routing: Iterable[Route],
        desired_replica_count: int,
        **task_settings,
    ) -> ManagedService:
        """Create a service on a ready cluster behind ready target groups.

        Every route must name a declared container and its port.

        Args:
            name: Service name
            cluster: Cluster to run on
            bindings: Containers of the task definition, in order
            routing: Target group to container port routes
            desired_replica_count: Number of tasks to keep running
            **task_settings: cpu, memory, execution_role_arn, log_group
        """
        service = ManagedService(
            name=name,
            cluster=cluster,
            bindings=list(bindings),
            routing=list(routing),
            desired_replica_count=desired_replica_count,
            **task_settings,
        )
        return self._create(service)

    def export_address(self, load_balancer: LoadBalancer) -> str:
        """Return the public address the provider assigned to a ready load balancer."""
        if not load_balancer.is_ready:
            raise ValidationError(
                f"{load_balancer.key} is {load_balancer.state.value}, not ready"
            )
        address = self.provider.load_balancer_address(load_balancer)
        load_balancer.address = address
        return address

    def scale(self, service: ManagedService, desired_replica_count: int) -> ManagedService:
        """Change the replica count of a ready service."""
        if isinstance(desired_replica_count, bool) or not isinstance(desired_replica_count, int):
            raise ValidationError(f"Replica count must be an integer, got {desired_replica_count!r}")
        if desired_replica_count < 0:
            raise ValidationError(f"Replica count must be >= 0, got {desired_replica_count}")
        if not service.is_ready:
            raise ValidationError(f"{service.key} is {service.state.value}, not ready")

        self.provider.update_desired_count(service, desired_replica_count)
        service.desired_replica_count = desired_replica_count
        return service

    def target_health(self, target_group: TargetGroup) -> list[TargetHealth]:
        """Provider-reported health of every target in a ready target group."""
        if not target_group.is_ready:
            raise ValidationError(f"{target_group.key} is {target_group.state.value}, not ready")
        return self.provider.target_health(target_group.arn)

    def apply(self, topology: Topology) -> list[Resource]:
        """Create every declared resource in dependency order.

        The whole graph is validated before the first remote call.
        Independent resources in the same wave are created concurrently;
        the run stops after the first wave with a failure.

        Returns:
            All resources, in creation order

        Raises:
            ValidationError: The declarations are invalid
            ProvisioningError: A resource failed; earlier ones are kept
        """
        waves = topology.plan()
        created = []

        for wave in waves:
            pending = [r for r in wave if r.state is not ResourceState.READY]

            if len(pending) > 1 and self.max_workers > 1:
                errors = self._provision_concurrently(pending)
            else:
                errors = []
                for resource in pending:
                    try:
                        self.provision(resource)
                    except ProvisioningError as e:
                        errors.append(e)
                        break

            if errors:
                for extra in errors[1:]:
                    logger.error(str(extra))
                raise errors[0]
            created.extend(wave)
            with self._lock:
                self._known.update((resource.key, resource) for resource in wave)

        return created

    def _provision_concurrently(self, resources: list[Resource]) -> list[ProvisioningError]:
        errors = []
        workers = min(self.max_workers, len(resources))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="provision") as executor:
            futures = [executor.submit(self.provision, resource) for resource in resources]
            for future in futures:
                try:
                    future.result()
                except ProvisioningError as e:
                    errors.append(e)
        return errors
