"""Tests for the Provisioner."""

import threading
from unittest.mock import MagicMock

import pytest

from ecs_topology.errors import ProvisioningError, ValidationError
from ecs_topology.models import (
    ComputeCluster,
    ContainerBinding,
    HealthCheckPolicy,
    HealthStatus,
    LoadBalancer,
    ManagedService,
    ResourceState,
    Route,
    TargetGroup,
    TargetHealth,
)
from ecs_topology.topology import Provisioner, Topology


@pytest.fixture
def provisioner(provider):
    """Create a Provisioner over the fake provider."""
    return Provisioner(provider)


def declare_scenario(health_check, route_port=8080):
    """Declare cluster c1, load balancer lb1, target group tg1 and service s1."""
    cluster = ComputeCluster(name="c1")
    load_balancer = LoadBalancer(name="lb1", external=True)
    target_group = TargetGroup(
        name="tg1",
        port=8080,
        protocol="HTTP",
        health_check=health_check,
        load_balancer=load_balancer,
    )
    service = ManagedService(
        name="s1",
        cluster=cluster,
        bindings=[ContainerBinding("web", "repo:latest", 8080)],
        routing=[Route(target_group, "web", route_port)],
        desired_replica_count=2,
    )
    return Topology([cluster, load_balancer, target_group, service])


class TestCreateOperations:
    """Tests for the one-resource-at-a-time operations."""

    def test_scenario_all_resources_ready(self, provisioner, provider, health_check):
        """Test the reference deployment end to end."""
        cluster = provisioner.create_cluster("c1")
        load_balancer = provisioner.create_load_balancer("lb1", external=True)
        target_group = provisioner.create_target_group(
            "tg1", 8080, "HTTP", health_check, load_balancer
        )
        service = provisioner.create_managed_service(
            "s1",
            cluster,
            [ContainerBinding("web", "repo:latest", 8080)],
            [Route(target_group, "web", 8080)],
            desired_replica_count=2,
        )

        for resource in (cluster, load_balancer, target_group, service):
            assert resource.state is ResourceState.READY
            assert resource.arn

        address = provisioner.export_address(load_balancer)
        assert isinstance(address, str)
        assert address

    def test_scenario_route_port_mismatch(self, provisioner, provider, health_check):
        """Test that a route to an unbound port fails before the service call."""
        cluster = provisioner.create_cluster("c1")
        load_balancer = provisioner.create_load_balancer("lb1", external=True)
        target_group = provisioner.create_target_group(
            "tg1", 8080, "HTTP", health_check, load_balancer
        )
        calls_before = provider.call_count

        with pytest.raises(ValidationError):
            provisioner.create_managed_service(
                "s1",
                cluster,
                [ContainerBinding("web", "repo:latest", 8080)],
                [Route(target_group, "web", 9090)],
                desired_replica_count=2,
            )

        assert provider.call_count == calls_before
        assert "service/s1" not in provider.keys_called()

    def test_route_to_unknown_container(self, provisioner, provider, health_check):
        """Test that a route naming a missing container is rejected locally."""
        cluster = provisioner.create_cluster("c1")
        load_balancer = provisioner.create_load_balancer("lb1")
        target_group = provisioner.create_target_group(
            "tg1", 8080, "HTTP", health_check, load_balancer
        )

        with pytest.raises(ValidationError) as exc_info:
            provisioner.create_managed_service(
                "s1",
                cluster,
                [ContainerBinding("web", "repo:latest", 8080)],
                [Route(target_group, "api", 8080)],
                desired_replica_count=1,
            )
        assert "unknown container" in str(exc_info.value)
        assert "service/s1" not in provider.keys_called()

    def test_target_group_before_load_balancer(self, provisioner, provider, health_check):
        """Test that a target group on an uncreated load balancer makes no remote call."""
        load_balancer = LoadBalancer(name="lb1")

        with pytest.raises(ValidationError) as exc_info:
            provisioner.create_target_group("tg1", 8080, "HTTP", health_check, load_balancer)

        assert "not ready" in str(exc_info.value)
        assert provider.call_count == 0

    def test_service_before_target_group(self, provisioner, provider, health_check):
        """Test that a service routed to an uncreated target group makes no remote call."""
        cluster = provisioner.create_cluster("c1")
        target_group = TargetGroup(
            name="tg1", port=8080, health_check=health_check, load_balancer=LoadBalancer("lb1")
        )

        with pytest.raises(ValidationError):
            provisioner.create_managed_service(
                "s1",
                cluster,
                [ContainerBinding("web", "repo:latest", 8080)],
                [Route(target_group, "web", 8080)],
                desired_replica_count=1,
            )
        assert provider.keys_called() == ["cluster/c1"]

    def test_negative_replica_count(self, provisioner, provider):
        """Test that a negative replica count is rejected locally."""
        cluster = provisioner.create_cluster("c1")

        with pytest.raises(ValidationError):
            provisioner.create_managed_service(
                "s1",
                cluster,
                [ContainerBinding("web", "repo:latest", 8080)],
                [],
                desired_replica_count=-1,
            )
        assert provider.keys_called() == ["cluster/c1"]

    def test_zero_replicas_allowed(self, provisioner):
        """Test that a service may be declared with zero replicas."""
        cluster = provisioner.create_cluster("c1")
        service = provisioner.create_managed_service(
            "s1",
            cluster,
            [ContainerBinding("web", "repo:latest", 8080)],
            [],
            desired_replica_count=0,
        )
        assert service.is_ready

    def test_create_cluster_twice_reuses_handle(self, provisioner, provider):
        """Test that creating the same cluster twice makes one remote call."""
        first = provisioner.create_cluster("c1")
        second = provisioner.create_cluster("c1")

        assert first is second
        assert provider.keys_called() == ["cluster/c1"]


class TestRedeclaration:
    """Tests for create_* calls on a name that is already ready."""

    @pytest.fixture
    def ready(self, provisioner, health_check):
        """Create c1, lb1, tg1 and s1 through the provisioner."""
        cluster = provisioner.create_cluster("c1")
        load_balancer = provisioner.create_load_balancer("lb1", external=True)
        target_group = provisioner.create_target_group(
            "tg1", 8080, "HTTP", health_check, load_balancer
        )
        service = provisioner.create_managed_service(
            "s1",
            cluster,
            [ContainerBinding("web", "repo:latest", 8080)],
            [Route(target_group, "web", 8080)],
            desired_replica_count=2,
        )
        return cluster, load_balancer, target_group, service

    def test_identical_declarations_reuse_handles(self, provisioner, provider, ready, health_check):
        """Test that repeating every call returns the same handles without remote calls."""
        cluster, load_balancer, target_group, service = ready
        calls = provider.call_count

        assert provisioner.create_load_balancer("lb1", external=True) is load_balancer
        assert (
            provisioner.create_target_group("tg1", 8080, "HTTP", health_check, load_balancer)
            is target_group
        )
        assert (
            provisioner.create_managed_service(
                "s1",
                cluster,
                [ContainerBinding("web", "repo:latest", 8080)],
                [Route(target_group, "web", 8080)],
                desired_replica_count=2,
            )
            is service
        )
        assert provider.call_count == calls

    def test_invalid_health_check_on_existing_name(self, provisioner, provider, ready):
        """Test that an invalid policy is rejected even when tg1 already exists."""
        _, load_balancer, _, _ = ready
        calls = provider.call_count
        policy = HealthCheckPolicy(interval_seconds=5, timeout_seconds=30, healthy_threshold=0)

        with pytest.raises(ValidationError):
            provisioner.create_target_group("tg1", 8080, "HTTP", policy, load_balancer)
        assert provider.call_count == calls

    def test_port_mismatch_on_existing_service(self, provisioner, provider, ready):
        """Test that a route to a port the container does not expose is rejected."""
        cluster, _, target_group, _ = ready
        calls = provider.call_count

        with pytest.raises(ValidationError):
            provisioner.create_managed_service(
                "s1",
                cluster,
                [ContainerBinding("web", "repo:latest", 8080)],
                [Route(target_group, "web", 9090)],
                desired_replica_count=2,
            )
        assert provider.call_count == calls

    def test_load_balancer_scheme_conflict(self, provisioner, ready):
        """Test that an internal declaration does not get the public load balancer."""
        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.create_load_balancer("lb1", external=False)
        assert exc_info.value.resource == "load-balancer/lb1"
        assert "external" in exc_info.value.reason

    @pytest.mark.parametrize(
        "overrides",
        [
            {"port": 9000},
            {"protocol": "HTTPS"},
            {"target_type": "instance"},
            {"listener_port": 8081},
            {"health_check": HealthCheckPolicy(path="/healthz")},
        ],
    )
    def test_target_group_conflict(self, provisioner, provider, ready, health_check, overrides):
        """Test that a target group declared with other settings needs a new name."""
        _, load_balancer, _, _ = ready
        settings = dict(
            port=8080,
            protocol="HTTP",
            health_check=health_check,
            load_balancer=load_balancer,
            target_type="ip",
            listener_port=80,
        )
        settings.update(overrides)
        calls = provider.call_count

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.create_target_group("tg1", **settings)
        assert exc_info.value.resource == "target-group/tg1"
        assert provider.call_count == calls

    def test_target_group_on_another_load_balancer(self, provisioner, ready, health_check):
        """Test that tg1 cannot be moved to a different load balancer."""
        other = provisioner.create_load_balancer("lb2")

        with pytest.raises(ProvisioningError):
            provisioner.create_target_group("tg1", 8080, "HTTP", health_check, other)

    @pytest.mark.parametrize(
        "bindings, routes, replicas",
        [
            ([ContainerBinding("web", "repo:v2", 8080)], [("web", 8080)], 2),
            ([ContainerBinding("web", "repo:latest", 8080)], [], 2),
            ([ContainerBinding("web", "repo:latest", 8080)], [("web", 8080)], 3),
        ],
    )
    def test_service_conflict(self, provisioner, ready, bindings, routes, replicas):
        """Test that a service declared with other bindings, routing or count is refused."""
        cluster, _, target_group, _ = ready

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.create_managed_service(
                "s1",
                cluster,
                bindings,
                [Route(target_group, name, port) for name, port in routes],
                desired_replica_count=replicas,
            )
        assert exc_info.value.resource == "service/s1"

    def test_provider_rejection_marks_failed(self, provider_class):
        """Test that a rejected creation is terminal and keeps the raw reason."""
        provider = provider_class(fail={"load-balancer/lb1": "TooManyLoadBalancers: quota"})
        provisioner = Provisioner(provider)

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.create_load_balancer("lb1")

        assert exc_info.value.resource == "load-balancer/lb1"
        assert exc_info.value.reason == "TooManyLoadBalancers: quota"

    def test_failed_resource_is_not_resubmitted(self, provider_class):
        """Test that provisioning a failed resource again is refused locally."""
        provider = provider_class(fail={"cluster/c1": "nope"})
        provisioner = Provisioner(provider)
        cluster = ComputeCluster(name="c1")

        with pytest.raises(ProvisioningError):
            provisioner.provision(cluster)
        assert cluster.state is ResourceState.FAILED
        assert cluster.failure == "nope"

        with pytest.raises(ValidationError):
            provisioner.provision(cluster)
        assert provider.call_count == 1

    def test_unexpected_provider_exception(self, provider):
        """Test that an unexpected provider exception still fails the resource."""
        provider.ensure_cluster = MagicMock(side_effect=RuntimeError("socket"))
        provisioner = Provisioner(provider)

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.create_cluster("c1")

        assert exc_info.value.resource == "cluster/c1"
        assert "socket" in exc_info.value.reason

    def test_export_address_requires_ready(self, provisioner, provider):
        """Test that exporting an address of an uncreated load balancer fails."""
        with pytest.raises(ValidationError):
            provisioner.export_address(LoadBalancer(name="lb1"))
        assert provider.call_count == 0


class TestHealthCheckValidation:
    """Tests that create_target_group enforces the health check rules."""

    @pytest.mark.parametrize("interval", [1, 5, 30])
    @pytest.mark.parametrize("timeout", [0, 1, 5, 30, 31])
    @pytest.mark.parametrize("healthy", [0, 1, 3])
    @pytest.mark.parametrize("unhealthy", [-1, 1, 10])
    def test_policy_accepted_iff_consistent(
        self, provider_class, interval, timeout, healthy, unhealthy
    ):
        """Test that a policy is accepted exactly when timeout < interval and thresholds >= 1."""
        provider = provider_class()
        provisioner = Provisioner(provider)
        load_balancer = provisioner.create_load_balancer("lb1")
        policy = HealthCheckPolicy(
            interval_seconds=interval,
            timeout_seconds=timeout,
            healthy_threshold=healthy,
            unhealthy_threshold=unhealthy,
        )
        valid = timeout < interval and healthy >= 1 and unhealthy >= 1

        if valid:
            target_group = provisioner.create_target_group(
                "tg1", 8080, "HTTP", policy, load_balancer
            )
            assert target_group.is_ready
        else:
            with pytest.raises(ValidationError):
                provisioner.create_target_group("tg1", 8080, "HTTP", policy, load_balancer)
            assert "target-group/tg1" not in provider.keys_called()

    def test_invalid_port(self, provisioner, provider, health_check):
        """Test that an out-of-range port is rejected locally."""
        load_balancer = provisioner.create_load_balancer("lb1")

        with pytest.raises(ValidationError):
            provisioner.create_target_group("tg1", 70000, "HTTP", health_check, load_balancer)
        assert "target-group/tg1" not in provider.keys_called()


class TestApply:
    """Tests for provisioning a whole topology."""

    def test_apply_scenario(self, provisioner, provider, health_check):
        """Test that every resource is created and reaches READY."""
        topology = declare_scenario(health_check)

        created = provisioner.apply(topology)

        assert [r.key for r in created][-1] == "service/s1"
        assert all(r.state is ResourceState.READY for r in topology.resources)
        load_balancer = topology.find(LoadBalancer, "lb1")
        assert provisioner.export_address(load_balancer)

    def test_apply_respects_dependency_order(self, provisioner, provider, health_check):
        """Test that dependents are created after their dependencies."""
        provisioner.apply(declare_scenario(health_check))

        order = provider.keys_called()
        assert order.index("target-group/tg1") > order.index("load-balancer/lb1")
        assert order.index("service/s1") > order.index("target-group/tg1")
        assert order.index("service/s1") > order.index("cluster/c1")

    def test_apply_invalid_makes_no_remote_calls(self, provisioner, provider, health_check):
        """Test that an invalid route fails the whole run before any remote call."""
        topology = declare_scenario(health_check, route_port=9090)

        with pytest.raises(ValidationError):
            provisioner.apply(topology)

        assert provider.call_count == 0

    def test_apply_stops_at_failure_and_keeps_earlier_resources(
        self, provider_class, health_check
    ):
        """Test that a failure aborts the run without rolling anything back."""
        provider = provider_class(fail={"target-group/tg1": "InvalidConfigurationRequest"})
        provisioner = Provisioner(provider)
        topology = declare_scenario(health_check)

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.apply(topology)

        assert exc_info.value.resource == "target-group/tg1"
        assert exc_info.value.reason == "InvalidConfigurationRequest"
        assert topology.find(ComputeCluster, "c1").state is ResourceState.READY
        assert topology.find(LoadBalancer, "lb1").state is ResourceState.READY
        assert topology.find(TargetGroup, "tg1").state is ResourceState.FAILED
        assert topology.find(ManagedService, "s1").state is ResourceState.DECLARED
        assert "service/s1" not in provider.keys_called()

    def test_apply_creates_independent_resources_concurrently(
        self, provider_class, health_check
    ):
        """Test that the cluster and load balancer are created at the same time."""
        barrier = threading.Barrier(2, timeout=5)

        class BarrierProvider(provider_class):
            def ensure_cluster(self, cluster):
                barrier.wait()
                return super().ensure_cluster(cluster)

            def create_load_balancer(self, load_balancer):
                barrier.wait()
                return super().create_load_balancer(load_balancer)

        provisioner = Provisioner(BarrierProvider(), max_workers=4)

        # A sequential run would break the barrier
        provisioner.apply(declare_scenario(health_check))

    def test_apply_is_idempotent_for_ready_resources(self, provisioner, provider, health_check):
        """Test that re-applying a provisioned topology makes no new calls."""
        topology = declare_scenario(health_check)
        provisioner.apply(topology)
        calls = provider.call_count

        provisioner.apply(topology)

        assert provider.call_count == calls

    def test_apply_sequential_when_single_worker(self, provider, health_check):
        """Test that max_workers=1 still provisions everything."""
        provisioner = Provisioner(provider, max_workers=1)

        provisioner.apply(declare_scenario(health_check))

        assert provider.call_count == 4


class TestScaleAndHealth:
    """Tests for scaling and target health reads."""

    def test_scale_ready_service(self, provisioner, provider, health_check):
        """Test scaling a provisioned service."""
        topology = declare_scenario(health_check)
        provisioner.apply(topology)
        service = topology.find(ManagedService, "s1")

        provisioner.scale(service, 5)

        assert service.desired_replica_count == 5
        assert ("update_desired_count", "service/s1") in provider.calls

    def test_scale_rejects_negative(self, provisioner, provider, health_check):
        """Test that scaling below zero is rejected locally."""
        topology = declare_scenario(health_check)
        provisioner.apply(topology)
        calls = provider.call_count

        with pytest.raises(ValidationError):
            provisioner.scale(topology.find(ManagedService, "s1"), -1)
        assert provider.call_count == calls

    def test_scale_requires_ready(self, provisioner, health_check):
        """Test that an unprovisioned service cannot be scaled."""
        topology = declare_scenario(health_check)

        with pytest.raises(ValidationError):
            provisioner.scale(topology.find(ManagedService, "s1"), 3)

    def test_target_health_is_reported_verbatim(self, provisioner, provider, health_check):
        """Test that target health comes straight from the provider."""
        provider.targets = [
            TargetHealth("10.0.1.5", 8080, HealthStatus.HEALTHY),
            TargetHealth("10.0.2.7", 8080, HealthStatus.DRAINING, reason="Target.DeregistrationInProgress"),
        ]
        topology = declare_scenario(health_check)
        provisioner.apply(topology)

        targets = provisioner.target_health(topology.find(TargetGroup, "tg1"))

        assert [t.status for t in targets] == [HealthStatus.HEALTHY, HealthStatus.DRAINING]
