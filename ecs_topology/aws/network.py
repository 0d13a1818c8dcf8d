"""VPC placement for the load balancer and Fargate tasks."""

import logging
from dataclasses import replace

from botocore.exceptions import BotoCoreError, ClientError

from ecs_topology.config import NetworkConfig
from ecs_topology.errors import ProvisioningError, ValidationError

logger = logging.getLogger(__name__)


def _describe_default_vpc(ec2) -> str:
    response = ec2.describe_vpcs(Filters=[{"Name": "isDefault", "Values": ["true"]}])
    vpcs = response.get("Vpcs", [])
    if not vpcs:
        raise ProvisioningError(
            "network/default-vpc",
            "No default VPC in this region; set [network] vpc_id and subnets",
        )
    return vpcs[0]["VpcId"]


def _describe_default_subnets(ec2, vpc_id: str) -> list[str]:
    response = ec2.describe_subnets(
        Filters=[
            {"Name": "vpc-id", "Values": [vpc_id]},
            {"Name": "default-for-az", "Values": ["true"]},
        ]
    )
    subnets = sorted(response.get("Subnets", []), key=lambda s: s.get("AvailabilityZone", ""))
    return [subnet["SubnetId"] for subnet in subnets]


def _describe_default_security_group(ec2, vpc_id: str) -> list[str]:
    response = ec2.describe_security_groups(
        Filters=[
            {"Name": "vpc-id", "Values": [vpc_id]},
            {"Name": "group-name", "Values": ["default"]},
        ]
    )
    return [group["GroupId"] for group in response.get("SecurityGroups", [])]


def resolve_network(ec2, network: NetworkConfig) -> NetworkConfig:
    """Fill in any missing VPC, subnets and security groups.

    Explicit configuration wins; anything left empty comes from the
    account's default VPC, its default subnets and its "default"
    security group.

    Args:
        ec2: boto3 EC2 client
        network: Configured network placement

    Returns:
        A complete NetworkConfig

    Raises:
        ProvisioningError: If discovery fails
        ValidationError: If fewer than two subnets are available
    """
    resolved = network
    if not (network.vpc_id and network.subnets and network.security_groups):
        try:
            vpc_id = network.vpc_id or _describe_default_vpc(ec2)
            subnets = network.subnets or _describe_default_subnets(ec2, vpc_id)
            security_groups = network.security_groups or _describe_default_security_group(
                ec2, vpc_id
            )
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError("network/default-vpc", str(e)) from e
        resolved = replace(
            network, vpc_id=vpc_id, subnets=subnets, security_groups=security_groups
        )
        logger.info(
            f"Using VPC {vpc_id} with subnets {', '.join(subnets)} "
            f"and security groups {', '.join(security_groups)}"
        )

    if len(resolved.subnets) < 2:
        raise ValidationError(
            "An application load balancer needs subnets in at least two availability "
            f"zones, got {len(resolved.subnets)}"
        )
    return resolved
