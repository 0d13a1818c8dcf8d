"""AWS client initialization and configuration."""

import boto3
from botocore.config import Config as BotoConfig

from ecs_topology.config import AWSConfig


def _create_session(aws_config: AWSConfig) -> boto3.Session:
    session_kwargs = {}
    if aws_config.profile:
        session_kwargs["profile_name"] = aws_config.profile
    return boto3.Session(**session_kwargs)


def create_client(service_name: str, aws_config: AWSConfig, session=None):
    """Create a configured boto3 client for provisioning calls.

    Args:
        service_name: boto3 service name ("ecs", "elbv2", "ec2", ...)
        aws_config: Region and optional profile
        session: Existing boto3 session to reuse

    Returns:
        Configured boto3 client
    """
    boto_config = BotoConfig(
        retries={
            "max_attempts": 10,
            "mode": "adaptive",
        },
        max_pool_connections=10,
    )

    session = session or _create_session(aws_config)

    return session.client(
        service_name,
        region_name=aws_config.region,
        config=boto_config,
    )


def create_logs_client(aws_config: AWSConfig, session=None):
    """Create a CloudWatch Logs client for the log shipper.

    Retries are kept short: a log line that cannot be delivered quickly is
    dropped rather than queued behind a long backoff.

    Args:
        aws_config: Region and optional profile
        session: Existing boto3 session to reuse

    Returns:
        Configured boto3 CloudWatch Logs client
    """
    boto_config = BotoConfig(
        retries={
            "max_attempts": 3,
            "mode": "standard",
        },
        connect_timeout=5,
        read_timeout=10,
        max_pool_connections=2,
    )

    session = session or _create_session(aws_config)

    return session.client(
        "logs",
        region_name=aws_config.region,
        config=boto_config,
    )


class AWSClients:
    """Container for the clients one provisioning run needs."""

    def __init__(self, aws_config: AWSConfig):
        """Initialize AWS clients.

        Args:
            aws_config: Region and optional profile
        """
        session = _create_session(aws_config)
        self.ecs = create_client("ecs", aws_config, session)
        self.elbv2 = create_client("elbv2", aws_config, session)
        self.ec2 = create_client("ec2", aws_config, session)
        self.region = aws_config.region
