"""Forward standard logging records through a LogShipper."""

import logging

from ecs_topology.logs.shipper import LogShipper

SHIPPER_LOGGER = "ecs_topology.logs.shipper"


class LogShipperHandler(logging.Handler):
    """Logging handler that records each formatted message on a LogShipper.

    Records from the shipper's own logger are skipped, otherwise a
    delivery failure would be shipped (and fail) again.
    """

    def __init__(self, shipper: LogShipper, level: int = logging.NOTSET):
        super().__init__(level)
        self.shipper = shipper

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == SHIPPER_LOGGER or record.name.startswith(SHIPPER_LOGGER + "."):
            return False
        return super().filter(record)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.shipper.record(self.format(record))
        except Exception:
            self.handleError(record)
