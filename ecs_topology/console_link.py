"""AWS Console URL generation and clipboard functionality."""

import logging
from urllib.parse import quote

try:
    import pyperclip

    PYPERCLIP_AVAILABLE = True
except ImportError:
    PYPERCLIP_AVAILABLE = False

logger = logging.getLogger(__name__)

CONSOLE_BASE = "https://console.aws.amazon.com"


def build_service_url(cluster_name: str, service_name: str, region: str) -> str:
    """Build AWS Console URL for an ECS service.

    Args:
        cluster_name: ECS cluster name
        service_name: ECS service name
        region: AWS region

    Returns:
        AWS Console URL for the service
    """
    return (
        f"{CONSOLE_BASE}/ecs/v2/clusters/{cluster_name}/services/{service_name}"
        f"?region={region}"
    )


def build_load_balancer_url(load_balancer_name: str, region: str) -> str:
    """Build AWS Console URL for a load balancer in the EC2 console."""
    return (
        f"{CONSOLE_BASE}/ec2/home?region={region}"
        f"#LoadBalancers:search={load_balancer_name}"
    )


def build_target_group_url(target_group_name: str, region: str) -> str:
    """Build AWS Console URL for a target group's registered targets."""
    return (
        f"{CONSOLE_BASE}/ec2/home?region={region}"
        f"#TargetGroups:search={target_group_name}"
    )


def build_log_stream_url(log_group: str, log_stream: str, region: str) -> str:
    """Build CloudWatch Logs console URL for a log stream.

    The console's fragment router wants "/" and other reserved characters
    percent-encoded and then the "%" itself escaped as "$25".

    Args:
        log_group: Log group name (may contain slashes)
        log_stream: Log stream name
        region: AWS region

    Returns:
        CloudWatch console URL for the stream
    """

    def encode(value: str) -> str:
        return quote(value, safe="").replace("%", "$25")

    return (
        f"{CONSOLE_BASE}/cloudwatch/home?region={region}"
        f"#logsV2:log-groups/log-group/{encode(log_group)}"
        f"/log-events/{encode(log_stream)}"
    )


def copy_to_clipboard(text: str) -> bool:
    """Copy text to system clipboard.

    Args:
        text: Text to copy

    Returns:
        True if successful, False otherwise
    """
    if not PYPERCLIP_AVAILABLE:
        logger.warning("pyperclip not available, clipboard copy not supported")
        return False

    try:
        pyperclip.copy(text)
        return True
    except Exception as e:
        logger.warning(f"Failed to copy to clipboard: {e}")
        return False
