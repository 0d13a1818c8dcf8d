"""Configuration loading for ECS Topology."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ecs_topology.models import HealthCheckPolicy


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""


@dataclass
class AWSConfig:
    """Which account profile and region to target."""

    region: str
    profile: str | None = None


@dataclass
class NetworkConfig:
    """VPC placement for the load balancer and tasks.

    Empty values are discovered from the account's default VPC.
    """

    vpc_id: str | None = None
    subnets: list[str] = field(default_factory=list)
    security_groups: list[str] = field(default_factory=list)
    assign_public_ip: bool = True


@dataclass
class LoadBalancerConfig:
    name: str = "my-alb"
    external: bool = True


@dataclass
class TargetGroupConfig:
    name: str = "my-target-group"
    port: int = 8080
    protocol: str = "HTTP"
    target_type: str = "ip"
    listener_port: int = 80
    health_check: HealthCheckPolicy = field(default_factory=HealthCheckPolicy)


@dataclass
class ServiceConfig:
    image: str
    name: str = "my-service"
    cluster: str = "my-cluster"
    container_name: str = "my-container"
    container_port: int = 8080
    desired_count: int = 2
    cpu: str = "256"
    memory: str = "512"
    execution_role_arn: str | None = None
    wait_for_steady_state: bool = False


@dataclass
class LogsConfig:
    group: str = "/aws/ecs/my-cluster/my-service"
    stream: str = "my-stream"


@dataclass
class Config:
    """Complete application configuration."""

    aws: AWSConfig
    service: ServiceConfig
    network: NetworkConfig = field(default_factory=NetworkConfig)
    load_balancer: LoadBalancerConfig = field(default_factory=LoadBalancerConfig)
    target_group: TargetGroupConfig = field(default_factory=TargetGroupConfig)
    logs: LogsConfig = field(default_factory=LogsConfig)


# TOML key -> HealthCheckPolicy field
HEALTH_CHECK_KEYS = {
    "path": "path",
    "protocol": "protocol",
    "matcher": "success_matcher",
    "interval": "interval_seconds",
    "timeout": "timeout_seconds",
    "healthy_threshold": "healthy_threshold",
    "unhealthy_threshold": "unhealthy_threshold",
}


def get_default_config_path() -> Path:
    """Get the default configuration file path.

    Prefers ./config.toml, falling back to ~/.config/ecs-topology/config.toml.
    """
    local = Path("./config.toml")
    if local.exists():
        return local
    return Path.home() / ".config" / "ecs-topology" / "config.toml"


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _get(
    section: dict[str, Any],
    section_name: str,
    key: str,
    expected: type | tuple[type, ...],
    default: Any,
) -> Any:
    if key not in section:
        return default
    value = section[key]
    # bool is an int subclass; keep the two apart
    if expected is int and isinstance(value, bool):
        raise ConfigError(f"[{section_name}] {key} must be an integer")
    if not isinstance(value, expected):
        names = expected if isinstance(expected, tuple) else (expected,)
        raise ConfigError(
            f"[{section_name}] {key} must be of type {' or '.join(t.__name__ for t in names)}"
        )
    return value


def _get_str_list(section: dict[str, Any], section_name: str, key: str) -> list[str]:
    value = _get(section, section_name, key, list, [])
    if not all(isinstance(item, str) for item in value):
        raise ConfigError(f"[{section_name}] {key} must be a list of strings")
    return list(value)


def _parse_health_check(section: dict[str, Any]) -> HealthCheckPolicy:
    kwargs = {}
    for toml_key, field_name in HEALTH_CHECK_KEYS.items():
        if toml_key not in section:
            continue
        default = getattr(HealthCheckPolicy, field_name)
        value = section[toml_key]
        if isinstance(default, int) and (isinstance(value, bool) or not isinstance(value, int)):
            raise ConfigError(f"[target_group.health_check] {toml_key} must be an integer")
        if isinstance(default, str):
            # "matcher = 200" is a common slip; HTTP codes are strings to the API
            if isinstance(value, int) and not isinstance(value, bool):
                value = str(value)
            elif not isinstance(value, str):
                raise ConfigError(f"[target_group.health_check] {toml_key} must be a string")
        kwargs[field_name] = value
    return HealthCheckPolicy(**kwargs)


def load_config(config_path: Path) -> Config:
    """Load configuration from a TOML file.

    AWS_REGION fills in a missing [aws] region and ECR_REPOSITORY_URL a
    missing [service] image (as "<url>:latest").

    Args:
        config_path: Path to the configuration file

    Returns:
        Parsed configuration

    Raises:
        ConfigError: If the file is missing, malformed, or incomplete
    """
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    aws_data = _section(data, "aws")
    region = _get(aws_data, "aws", "region", str, None) or os.environ.get("AWS_REGION")
    if not region:
        raise ConfigError("An AWS region is required: set [aws] region or AWS_REGION")
    aws = AWSConfig(region=region, profile=_get(aws_data, "aws", "profile", str, None))

    network_data = _section(data, "network")
    network = NetworkConfig(
        vpc_id=_get(network_data, "network", "vpc_id", str, None),
        subnets=_get_str_list(network_data, "network", "subnets"),
        security_groups=_get_str_list(network_data, "network", "security_groups"),
        assign_public_ip=_get(network_data, "network", "assign_public_ip", bool, True),
    )

    lb_data = _section(data, "load_balancer")
    load_balancer = LoadBalancerConfig(
        name=_get(lb_data, "load_balancer", "name", str, LoadBalancerConfig.name),
        external=_get(lb_data, "load_balancer", "external", bool, True),
    )

    tg_data = _section(data, "target_group")
    target_group = TargetGroupConfig(
        name=_get(tg_data, "target_group", "name", str, TargetGroupConfig.name),
        port=_get(tg_data, "target_group", "port", int, TargetGroupConfig.port),
        protocol=_get(tg_data, "target_group", "protocol", str, TargetGroupConfig.protocol),
        target_type=_get(
            tg_data, "target_group", "target_type", str, TargetGroupConfig.target_type
        ),
        listener_port=_get(
            tg_data, "target_group", "listener_port", int, TargetGroupConfig.listener_port
        ),
        health_check=_parse_health_check(_section(tg_data, "health_check")),
    )

    service_data = _section(data, "service")
    image = _get(service_data, "service", "image", str, None)
    if not image and os.environ.get("ECR_REPOSITORY_URL"):
        image = f"{os.environ['ECR_REPOSITORY_URL']}:latest"
    if not image:
        raise ConfigError(
            "A container image is required: set [service] image or ECR_REPOSITORY_URL"
        )
    service = ServiceConfig(
        image=image,
        name=_get(service_data, "service", "name", str, ServiceConfig.name),
        cluster=_get(service_data, "service", "cluster", str, ServiceConfig.cluster),
        container_name=_get(
            service_data, "service", "container_name", str, ServiceConfig.container_name
        ),
        container_port=_get(
            service_data, "service", "container_port", int, ServiceConfig.container_port
        ),
        desired_count=_get(
            service_data, "service", "desired_count", int, ServiceConfig.desired_count
        ),
        cpu=str(_get(service_data, "service", "cpu", (str, int), ServiceConfig.cpu)),
        memory=str(_get(service_data, "service", "memory", (str, int), ServiceConfig.memory)),
        execution_role_arn=_get(service_data, "service", "execution_role_arn", str, None),
        wait_for_steady_state=_get(
            service_data, "service", "wait_for_steady_state", bool, False
        ),
    )

    logs_data = _section(data, "logs")
    logs = LogsConfig(
        group=_get(logs_data, "logs", "group", str, LogsConfig.group),
        stream=_get(logs_data, "logs", "stream", str, LogsConfig.stream),
    )

    return Config(
        aws=aws,
        service=service,
        network=network,
        load_balancer=load_balancer,
        target_group=target_group,
        logs=logs,
    )
