"""Shared fixtures for ECS Topology tests."""

import threading
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from ecs_topology.errors import ProvisioningError
from ecs_topology.models import HealthCheckPolicy

ACCOUNT = "123456789012"
REGION = "us-east-1"


def client_error(code: str, message: str = "boom", operation: str = "Operation") -> ClientError:
    """Build a botocore ClientError like the ones real clients raise."""
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class FakeProvider:
    """In-memory provider that records every remote call."""

    def __init__(self, fail: dict[str, str] | None = None):
        self.calls: list[tuple[str, str]] = []
        self.fail = dict(fail or {})
        self.targets = []
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def keys_called(self) -> list[str]:
        return [key for _, key in self.calls]

    def _record(self, method: str, resource_key: str) -> None:
        with self._lock:
            self.calls.append((method, resource_key))
        if resource_key in self.fail:
            raise ProvisioningError(resource_key, self.fail[resource_key], "FakeRejection")

    def ensure_cluster(self, cluster):
        self._record("ensure_cluster", cluster.key)
        return f"arn:aws:ecs:{REGION}:{ACCOUNT}:cluster/{cluster.name}"

    def create_load_balancer(self, load_balancer):
        self._record("create_load_balancer", load_balancer.key)
        arn = (
            f"arn:aws:elasticloadbalancing:{REGION}:{ACCOUNT}:"
            f"loadbalancer/app/{load_balancer.name}/50dc6c495c0c9188"
        )
        return arn, f"{load_balancer.name}-1234567890.{REGION}.elb.amazonaws.com"

    def create_target_group(self, target_group):
        self._record("create_target_group", target_group.key)
        return (
            f"arn:aws:elasticloadbalancing:{REGION}:{ACCOUNT}:"
            f"targetgroup/{target_group.name}/6d0ecf831eec9f09"
        )

    def create_service(self, service):
        self._record("create_service", service.key)
        return f"arn:aws:ecs:{REGION}:{ACCOUNT}:service/{service.cluster.name}/{service.name}"

    def load_balancer_address(self, load_balancer):
        self._record("load_balancer_address", load_balancer.key)
        return f"{load_balancer.name}-1234567890.{REGION}.elb.amazonaws.com"

    def update_desired_count(self, service, desired_count):
        self._record("update_desired_count", service.key)

    def target_health(self, target_group_arn):
        self._record("target_health", target_group_arn)
        return list(self.targets)


@pytest.fixture
def provider():
    """Create a fake provider with no failures."""
    return FakeProvider()


@pytest.fixture
def health_check():
    """The health check policy from the reference deployment."""
    return HealthCheckPolicy(
        path="/",
        protocol="HTTP",
        success_matcher="200",
        interval_seconds=30,
        timeout_seconds=5,
        healthy_threshold=3,
        unhealthy_threshold=3,
    )


@pytest.fixture
def mock_clients():
    """Create mock AWS clients."""
    clients = MagicMock()
    clients.region = REGION
    clients.ecs = MagicMock()
    clients.elbv2 = MagicMock()
    clients.ec2 = MagicMock()
    return clients


@pytest.fixture
def write_config(tmp_path):
    """Write a config.toml and return its path."""

    def _write(content: str):
        config_file = tmp_path / "config.toml"
        config_file.write_text(content)
        return config_file

    return _write


@pytest.fixture
def provider_class():
    """The FakeProvider class, for tests that need failures or subclasses."""
    return FakeProvider
