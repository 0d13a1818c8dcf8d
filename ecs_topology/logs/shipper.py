"""Fire-and-forget delivery of log lines to CloudWatch Logs."""

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_for_futures

from botocore.exceptions import ClientError

from ecs_topology.errors import DeliveryError
from ecs_topology.models import LogEvent

logger = logging.getLogger(__name__)

# Receives every delivery failure; must not block for long
DiagnosticSink = Callable[[DeliveryError], None]


def _log_delivery_failure(error: DeliveryError) -> None:
    logger.error(str(error))


def _now_ms() -> int:
    return int(time.time() * 1000)


class LogShipper:
    """Ships application log lines to one CloudWatch log stream.

    record() never waits on the network and never raises: each call
    becomes one put_log_events submission on a single background
    worker, which also keeps submissions in call order. A failed
    submission is handed to the diagnostic sink and dropped.
    """

    def __init__(
        self,
        client,
        log_group: str,
        log_stream: str,
        diagnostic: DiagnosticSink | None = None,
    ):
        """Initialize the shipper.

        Args:
            client: boto3 CloudWatch Logs client, owned by this shipper
            log_group: Destination log group name
            log_stream: Destination log stream name
            diagnostic: Called with a DeliveryError for each failed submission
        """
        self.log_group = log_group
        self.log_stream = log_stream
        self._client = client
        self._diagnostic = diagnostic or _log_delivery_failure
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="log-shipper")
        self._lock = threading.Lock()
        self._last_timestamp = 0
        self._pending: set[Future] = set()

    def __enter__(self) -> "LogShipper":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _next_event(self, message: str) -> LogEvent:
        # Caller holds self._lock
        # Wall clocks can step backwards; the stream must not
        timestamp = max(_now_ms(), self._last_timestamp)
        self._last_timestamp = timestamp
        return LogEvent(
            timestamp=timestamp,
            message=message,
            log_group=self.log_group,
            log_stream=self.log_stream,
        )

    def record(self, message: str) -> None:
        """Queue one message for delivery and return immediately."""
        closed = None
        # Timestamps stay in submission order across producer threads
        with self._lock:
            event = self._next_event(message)
            try:
                future = self._executor.submit(self._submit, event)
            except RuntimeError as e:
                # Executor already shut down
                closed = e
            else:
                self._pending.add(future)

        if closed is not None:
            self._report(DeliveryError(event, f"shipper is closed ({closed})"))
            return
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _submit(self, event: LogEvent) -> None:
        try:
            response = self._client.put_log_events(
                logGroupName=event.log_group,
                logStreamName=event.log_stream,
                logEvents=[event.to_input_event()],
            )
        except Exception as e:
            self._report(DeliveryError(event, str(e)))
            return

        rejected = (response or {}).get("rejectedLogEventsInfo")
        if rejected:
            reasons = ", ".join(f"{key}={value}" for key, value in sorted(rejected.items()))
            self._report(DeliveryError(event, f"event rejected ({reasons})"))

    def _report(self, error: DeliveryError) -> None:
        try:
            self._diagnostic(error)
        except Exception:
            logger.exception("Diagnostic sink failed while reporting a delivery error")

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for submissions made so far to finish.

        Returns:
            True if everything finished within the timeout
        """
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait_for_futures(pending, timeout=timeout)
        return not not_done

    def close(self, wait: bool = True) -> None:
        """Stop accepting messages; optionally wait for queued ones."""
        self._executor.shutdown(wait=wait)

    def ensure_destination(self) -> bool:
        """Create the log group and stream if they do not exist yet.

        Failures go to the diagnostic sink like any other delivery problem.

        Returns:
            True if both exist afterwards
        """
        probe = LogEvent(
            timestamp=_now_ms(),
            message="",
            log_group=self.log_group,
            log_stream=self.log_stream,
        )
        calls = [
            (self._client.create_log_group, {"logGroupName": self.log_group}),
            (
                self._client.create_log_stream,
                {"logGroupName": self.log_group, "logStreamName": self.log_stream},
            ),
        ]
        for call, kwargs in calls:
            try:
                call(**kwargs)
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") == "ResourceAlreadyExistsException":
                    continue
                self._report(DeliveryError(probe, str(e)))
                return False
            except Exception as e:
                self._report(DeliveryError(probe, str(e)))
                return False
        return True
