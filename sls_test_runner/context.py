"""Mock execution context handed to handlers under test."""

import logging
import threading
import time
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

log = logging.getLogger(__name__)


class HandlerError(Exception):
    """Error signalled by a handler through its completion channel."""


def as_exception(error: Any) -> BaseException:
    """Normalize a node-style error value into an exception."""
    if isinstance(error, BaseException):
        return error
    return HandlerError(str(error))


@dataclass(kw_only=True, eq=False)
class ExecutionContext:
    """Stand-in for the serverless runtime context object.

    Exposes the attributes of the AWS Lambda Python context plus a completion
    channel. Handlers settle the channel with ``done``, ``succeed`` or ``fail``
    from any thread; the first settlement wins and later ones are ignored.
    """

    function_name: str
    timeout: float
    test_mode: bool = True
    function_version: str = "$LATEST"
    memory_limit_in_mb: int = 128
    region: str = "us-east-1"
    account_id: str = "123456789012"
    aws_request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_context: Any = None
    identity: Any = None

    _completion: Future[Any] = field(default_factory=Future, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _deadline: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._deadline = time.monotonic() + self.timeout

    @property
    def invoked_function_arn(self) -> str:
        return (
            f"arn:aws:lambda:{self.region}:{self.account_id}"
            f":function:{self.function_name}"
        )

    @property
    def log_group_name(self) -> str:
        return f"/aws/lambda/{self.function_name}"

    @property
    def log_stream_name(self) -> str:
        day = datetime.now(timezone.utc).strftime("%Y/%m/%d")
        return f"{day}/[{self.function_version}]{self.aws_request_id.replace('-', '')}"

    def get_remaining_time_in_millis(self) -> int:
        return max(0, int((self._deadline - time.monotonic()) * 1000))

    @property
    def completion(self) -> Future[Any]:
        """Future resolved with the handler result or its error."""
        return self._completion

    @property
    def settled(self) -> bool:
        return self._completion.done()

    def done(self, error: Any = None, result: Any = None) -> None:
        """Node-style completion: ``done(error)`` fails, ``done(None, result)`` succeeds."""
        if error is not None:
            self.fail(error)
        else:
            self.succeed(result)

    def succeed(self, result: Any = None) -> None:
        with self._lock:
            if self._completion.done():
                log.debug("Ignoring late success for %s", self.function_name)
                return
            self._completion.set_result(result)

    def fail(self, error: Any) -> None:
        with self._lock:
            if self._completion.done():
                log.debug("Ignoring late failure for %s: %s", self.function_name, error)
                return
            self._completion.set_exception(as_exception(error))
