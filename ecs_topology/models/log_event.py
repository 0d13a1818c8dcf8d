"""Log event model."""

from dataclasses import dataclass


@dataclass(frozen=True)
class LogEvent:
    """One timestamped message bound for a CloudWatch log stream."""

    timestamp: int  # milliseconds since epoch
    message: str
    log_group: str
    log_stream: str

    def to_input_event(self) -> dict:
        """Return the InputLogEvent shape expected by put_log_events."""
        return {"timestamp": self.timestamp, "message": self.message}
