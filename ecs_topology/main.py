"""Main entry point for ECS Topology."""

import argparse
import logging
import sys
from pathlib import Path

from botocore.exceptions import BotoCoreError, ClientError

from ecs_topology.config import Config, ConfigError, get_default_config_path, load_config
from ecs_topology.errors import ProvisioningError, ValidationError


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Set up logging configuration.

    Args:
        verbose: If True, enable info logging
        debug: If True, enable debug logging
    """
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="ecs-topology",
        description="ECS Topology - deploy a load-balanced Fargate service and ship logs to CloudWatch",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ecs-topology deploy                  # Use config.toml in current directory
  ecs-topology -c prod.toml deploy     # Use specific config file
  ecs-topology deploy --replicas 4     # Override the desired task count
  ecs-topology status                  # Show target health
  ecs-topology log "deploy finished"   # Ship one line to the log stream

Configuration:
  Create a config.toml file with your settings:

  [aws]
  region = "us-east-1"        # or AWS_REGION

  [service]
  image = "123.dkr.ecr.us-east-1.amazonaws.com/app:latest"  # or ECR_REPOSITORY_URL
  desired_count = 2

  [logs]
  group = "/aws/ecs/my-cluster/my-service"
  stream = "my-stream"
        """,
    )

    parser.add_argument(
        "-c",
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (default: ./config.toml)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy = subparsers.add_parser("deploy", help="Create or update the service topology")
    deploy.add_argument(
        "--replicas",
        type=int,
        default=None,
        help="Desired task count (default: [service] desired_count)",
    )
    deploy.add_argument(
        "--copy-url",
        action="store_true",
        help="Copy the load balancer address to the clipboard",
    )
    deploy.add_argument(
        "--ship-logs",
        action="store_true",
        help="Also send this run's log records to the configured log stream",
    )

    subparsers.add_parser("status", help="Show load balancer, target and service health")

    log = subparsers.add_parser("log", help="Send a message to the configured log stream")
    log.add_argument("message", nargs="+", help="Message text")
    log.add_argument(
        "--create",
        action="store_true",
        help="Create the log group and stream first if they are missing",
    )

    return parser.parse_args(argv)


def print_status(message: str) -> None:
    """Print a status message to stderr."""
    print(f"[ecs-topology] {message}", file=sys.stderr)


def _attach_log_shipping(config: Config):
    """Forward root logger records to CloudWatch; returns (shipper, handler)."""
    from ecs_topology.aws.client import create_logs_client
    from ecs_topology.logs import LogShipper, LogShipperHandler

    shipper = LogShipper(
        create_logs_client(config.aws),
        config.logs.group,
        config.logs.stream,
    )
    shipper.ensure_destination()
    handler = LogShipperHandler(shipper, level=logging.INFO)
    handler.setFormatter(logging.Formatter("%(name)s - %(levelname)s - %(message)s"))
    root = logging.getLogger()
    root.addHandler(handler)
    if root.level > logging.INFO:
        root.setLevel(logging.INFO)
    return shipper, handler


def run_deploy(config: Config, args: argparse.Namespace) -> int:
    """Provision the topology and print the load balancer address.

    Returns:
        Exit code
    """
    from ecs_topology.aws.client import AWSClients
    from ecs_topology.aws.network import resolve_network
    from ecs_topology.aws.provider import AWSProvider
    from ecs_topology.console_link import (
        build_load_balancer_url,
        build_service_url,
        copy_to_clipboard,
    )
    from ecs_topology.models import LoadBalancer
    from ecs_topology.stack import build_topology
    from ecs_topology.topology import Provisioner

    # Validate declarations before touching AWS
    topology = build_topology(config, desired_count=args.replicas)
    topology.plan()

    shipping = _attach_log_shipping(config) if args.ship_logs else None
    try:
        print_status(f"Region: {config.aws.region}")
        clients = AWSClients(config.aws)

        print_status("Resolving network placement...")
        network = resolve_network(clients.ec2, config.network)

        provider = AWSProvider(
            clients,
            network,
            wait_for_steady_state=config.service.wait_for_steady_state,
        )
        provisioner = Provisioner(provider)

        print_status(f"Provisioning {len(topology)} resources...")
        for resource in provisioner.apply(topology):
            print_status(f"  {resource.key}: {resource.state.value}")

        load_balancer = topology.find(LoadBalancer, config.load_balancer.name)
        address = provisioner.export_address(load_balancer)
        logging.getLogger(__name__).info(f"Deployed {config.service.name} at {address}")
    finally:
        if shipping:
            shipper, handler = shipping
            logging.getLogger().removeHandler(handler)
            shipper.close()

    print_status(
        f"Service: {build_service_url(config.service.cluster, config.service.name, config.aws.region)}"
    )
    print_status(
        f"Load balancer: {build_load_balancer_url(config.load_balancer.name, config.aws.region)}"
    )
    if args.copy_url and copy_to_clipboard(address):
        print_status("Address copied to clipboard")

    print(address)
    return 0


def run_status(config: Config, args: argparse.Namespace) -> int:
    """Report provider-side state of the deployed topology.

    Returns:
        Exit code (1 if the load balancer or target group is missing)
    """
    from ecs_topology.aws.client import AWSClients
    from ecs_topology.aws.provider import AWSProvider
    from ecs_topology.console_link import build_target_group_url

    clients = AWSClients(config.aws)
    provider = AWSProvider(clients, config.network, wait=False)

    load_balancer = provider.find_load_balancer(config.load_balancer.name)
    if load_balancer is None:
        print_status(f"Load balancer {config.load_balancer.name} not found")
        return 1
    state = load_balancer.get("State", {}).get("Code", "unknown")
    print_status(f"Load balancer {config.load_balancer.name}: {state}")
    print_status(f"  Address: {load_balancer.get('DNSName', '')}")

    target_group = provider.find_target_group(config.target_group.name)
    if target_group is None:
        print_status(f"Target group {config.target_group.name} not found")
        return 1
    targets = provider.target_health(target_group["TargetGroupArn"])
    healthy = sum(1 for t in targets if t.status.receives_traffic)
    print_status(f"Target group {config.target_group.name}: {healthy}/{len(targets)} healthy")
    for target in targets:
        detail = f" ({target.reason})" if target.reason else ""
        print_status(f"  {target.target_id}:{target.port} {target.status.value}{detail}")
    print_status(f"  {build_target_group_url(config.target_group.name, config.aws.region)}")

    service = provider.describe_service(config.service.cluster, config.service.name)
    if service is None:
        print_status(f"Service {config.service.name} not found")
    else:
        print_status(
            f"Service {config.service.name}: {service.get('status')} "
            f"{service.get('runningCount', 0)}/{service.get('desiredCount', 0)} tasks"
        )
    return 0


def run_log(config: Config, args: argparse.Namespace) -> int:
    """Ship one message and wait for the result.

    Returns:
        Exit code (1 if delivery failed)
    """
    from ecs_topology.aws.client import create_logs_client
    from ecs_topology.console_link import build_log_stream_url
    from ecs_topology.logs import LogShipper

    failures = []
    with LogShipper(
        create_logs_client(config.aws),
        config.logs.group,
        config.logs.stream,
        diagnostic=failures.append,
    ) as shipper:
        if args.create:
            shipper.ensure_destination()
        shipper.record(" ".join(args.message))

    for failure in failures:
        print_status(f"Delivery failed: {failure.reason}")
    if failures:
        return 1

    print_status(
        f"Sent to {build_log_stream_url(config.logs.group, config.logs.stream, config.aws.region)}"
    )
    return 0


COMMANDS = {
    "deploy": run_deploy,
    "status": run_status,
    "log": run_log,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    args = parse_args(argv)
    setup_logging(args.verbose, args.debug)

    # Determine config path
    if args.config:
        config_path = Path(args.config)
    else:
        config_path = get_default_config_path()

    # Load configuration
    try:
        config = load_config(config_path)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        print(f"\nPlease create a configuration file at: {config_path}", file=sys.stderr)
        return 2

    try:
        return COMMANDS[args.command](config, args)
    except ValidationError as e:
        print(f"Invalid topology: {e}", file=sys.stderr)
        return 2
    except ProvisioningError as e:
        print_status(f"FAILED: {e.resource}")
        print_status(f"Reason: {e.reason}")
        print_status("Resources created before the failure were left in place.")
        return 1
    except (ClientError, BotoCoreError) as e:
        logging.exception("AWS request failed")
        print(f"AWS error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
