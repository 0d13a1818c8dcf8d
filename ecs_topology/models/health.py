"""Health check policy and reported target health."""

from dataclasses import dataclass
from enum import Enum

from ecs_topology.errors import ValidationError


class HealthStatus(Enum):
    """Target health as reported by the load balancer."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DRAINING = "draining"
    INITIAL = "initial"
    UNKNOWN = "unknown"

    @classmethod
    def from_target_state(cls, state: str | None) -> "HealthStatus":
        """Map an ELBv2 TargetHealth.State value to a HealthStatus."""
        if not state:
            return cls.UNKNOWN
        try:
            return cls(state.lower())
        except ValueError:
            # "unused" and "unavailable" have no routing meaning here
            return cls.UNKNOWN

    @property
    def receives_traffic(self) -> bool:
        return self is HealthStatus.HEALTHY


@dataclass(frozen=True)
class HealthCheckPolicy:
    """How the load balancer decides whether a target may receive traffic.

    The provider evaluates the policy; this side only refuses to attach
    a policy whose parameters contradict each other.
    """

    path: str = "/"
    protocol: str = "HTTP"
    success_matcher: str = "200"
    interval_seconds: int = 30
    timeout_seconds: int = 5
    healthy_threshold: int = 3
    unhealthy_threshold: int = 3

    def validate(self) -> None:
        """Raise ValidationError if the policy is internally inconsistent."""
        numbers = {
            "interval": self.interval_seconds,
            "timeout": self.timeout_seconds,
            "healthy threshold": self.healthy_threshold,
            "unhealthy threshold": self.unhealthy_threshold,
        }
        # bool is an int subclass; keep the two apart
        wrong_type = [
            f"{name} must be an integer, got {value!r}"
            for name, value in numbers.items()
            if isinstance(value, bool) or not isinstance(value, int)
        ]
        if wrong_type:
            raise ValidationError("Invalid health check policy: " + "; ".join(wrong_type))

        problems = []
        if self.timeout_seconds >= self.interval_seconds:
            problems.append(
                f"timeout ({self.timeout_seconds}s) must be shorter than "
                f"interval ({self.interval_seconds}s)"
            )
        if self.healthy_threshold < 1:
            problems.append(f"healthy threshold must be >= 1, got {self.healthy_threshold}")
        if self.unhealthy_threshold < 1:
            problems.append(
                f"unhealthy threshold must be >= 1, got {self.unhealthy_threshold}"
            )
        if problems:
            raise ValidationError("Invalid health check policy: " + "; ".join(problems))


@dataclass
class TargetHealth:
    """Health of one registered target, as reported by the provider."""

    target_id: str
    port: int | None
    status: HealthStatus
    reason: str | None = None
    description: str | None = None
