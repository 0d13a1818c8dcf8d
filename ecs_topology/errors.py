"""Error taxonomy for provisioning and log delivery."""


class TopologyError(Exception):
    """Base class for errors raised by ecs_topology."""


class ValidationError(TopologyError):
    """A contract violation detected locally, before any remote call."""


class ProvisioningError(TopologyError):
    """The provider rejected or failed a creation/update call.

    Attributes:
        resource: Key of the resource that failed (e.g. "target-group/web")
        reason: Provider's rejection message, unmodified
        code: Provider error code, if one was reported
    """

    def __init__(self, resource: str, reason: str, code: str | None = None):
        self.resource = resource
        self.reason = reason
        self.code = code
        super().__init__(f"Failed to provision {resource}: {reason}")


class DeliveryError(TopologyError):
    """A log event could not be submitted to the log store."""

    def __init__(self, event, reason: str):
        self.event = event
        self.reason = reason
        super().__init__(
            f"Failed to deliver log event to {event.log_group}/{event.log_stream}: {reason}"
        )
