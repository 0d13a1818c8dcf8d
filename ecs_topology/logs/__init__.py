"""Log shipping to CloudWatch Logs."""

from ecs_topology.logs.handler import LogShipperHandler
from ecs_topology.logs.shipper import LogShipper

__all__ = ["LogShipper", "LogShipperHandler"]
