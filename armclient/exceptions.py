from contextlib import contextmanager
from typing import Any, Iterator, Optional


class ArmClientError(Exception):
    """Base class for every error raised by armclient.

    ``operation`` and ``stage`` (preparing, sending, responding, polling)
    are filled in by whoever knows them; the invocation engine annotates
    errors raised by the lower layers before re-raising.
    """

    stage: Optional[str] = None

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        if stage is not None:
            self.stage = stage

    def annotate(self, operation: str, stage: Optional[str] = None) -> "ArmClientError":
        if self.operation is None:
            self.operation = operation
        if self.stage is None and stage is not None:
            self.stage = stage
        return self

    def __str__(self) -> str:
        prefix = ": ".join(p for p in (self.operation, self.stage) if p)
        return f"{prefix}: {self.message}" if prefix else self.message


class MalformedTemplate(ArmClientError):
    stage = "preparing"


class EncodingError(ArmClientError):
    stage = "preparing"


class ParameterValidationError(ArmClientError):
    stage = "preparing"


class TransportError(ArmClientError):
    """Connection-level failure that outlived the retry policy"""

    stage = "sending"

    def __init__(self, message: str, *, attempts: int = 0, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.attempts = attempts


class UnexpectedStatus(ArmClientError):
    stage = "responding"

    def __init__(self, status: int, body: bytes = b"", **kwargs: Any):
        text = body.decode("utf-8", errors="replace")
        super().__init__(f"unexpected status {status}: {text[:500]}", **kwargs)
        self.status = status
        self.body = body


class ResourceNotFound(UnexpectedStatus):
    def __init__(self, message: str, body: bytes = b"", **kwargs: Any):
        super().__init__(404, body, **kwargs)
        self.message = message


class DecodeError(ArmClientError):
    stage = "responding"

    def __init__(self, message: str, body: bytes = b"", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.body = body


class PollingError(ArmClientError):
    stage = "polling"


class OperationFailed(PollingError):
    """The remote operation reached the Failed state"""

    def __init__(
        self, message: str, body: bytes = b"", error: Any = None, **kwargs: Any
    ):
        super().__init__(message, **kwargs)
        self.body = body
        self.error = error


class OperationCanceled(OperationFailed):
    """The remote operation reached the Canceled state"""


class MissingPollingLocation(PollingError):
    pass


class PollTimeout(PollingError, TimeoutError):
    pass


class CallerCancelled(ArmClientError):
    """The caller signalled cancellation at a suspension point"""


class PollAbandoned(CallerCancelled, PollingError):
    """The caller stopped waiting; the remote operation keeps running"""


@contextmanager
def annotated(operation: Optional[str], stage: Optional[str] = None) -> Iterator[None]:
    """Attach operation name and stage to armclient errors passing through"""
    try:
        yield
    except ArmClientError as exc:
        if operation is not None:
            exc.annotate(operation, stage)
        raise
