"""Utility functions for AWS resource names and ARNs."""

import re

from ecs_topology.errors import ValidationError

# ELBv2 load balancer and target group names
ELB_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,30}[a-zA-Z0-9])?$")

# ECS cluster and service names
ECS_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,255}$")


def extract_resource_name(arn: str) -> str:
    """Extract the trailing resource name from an ARN.

    Args:
        arn: Full resource ARN (or a bare name)

    Returns:
        Resource name

    Example:
        >>> extract_resource_name("arn:aws:ecs:us-east-1:123:cluster/my-cluster")
        'my-cluster'
        >>> extract_resource_name("arn:aws:elasticloadbalancing:us-east-1:123:targetgroup/web/6d0ecf831eec9f09")
        'web'
    """
    if ":" not in arn:
        return arn
    resource = arn.split(":", 5)[-1]
    parts = resource.split("/")
    # loadbalancer/app/<name>/<id> and targetgroup/<name>/<id>
    if parts[0] == "loadbalancer" and len(parts) >= 3:
        return parts[2]
    if parts[0] == "targetgroup" and len(parts) >= 2:
        return parts[1]
    return parts[-1]


def validate_elb_name(name: str, kind: str = "load balancer") -> str:
    """Check a name against the ELBv2 naming rules.

    Names are 1-32 characters of letters, digits and hyphens and must
    not begin or end with a hyphen.

    Raises:
        ValidationError: If the name is not acceptable
    """
    if not name or not ELB_NAME_PATTERN.match(name):
        raise ValidationError(
            f"Invalid {kind} name {name!r}: use 1-32 letters, digits or hyphens, "
            "not starting or ending with a hyphen"
        )
    if name.lower().startswith("internal-"):
        raise ValidationError(f"Invalid {kind} name {name!r}: must not start with 'internal-'")
    return name


def validate_ecs_name(name: str, kind: str = "cluster") -> str:
    """Check a name against the ECS cluster/service naming rules.

    Raises:
        ValidationError: If the name is not acceptable
    """
    if not name or not ECS_NAME_PATTERN.match(name):
        raise ValidationError(
            f"Invalid {kind} name {name!r}: use 1-255 letters, digits, hyphens or underscores"
        )
    return name
