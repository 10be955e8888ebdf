"""Retry policy for FTP operations.

Every protocol call made by the sync engine goes through
:meth:`RetryPolicy.call`. Failures are classified into a closed set of
decisions by :func:`classify_failure`; a single retry loop then acts on the
decision:

- ``RETRY_RECONNECT``: the session is stale (not logged in, dropped, timed
  out). It is reconnected and its working directory restored before the
  next attempt.
- ``RETRY``: the server refused temporarily (e.g. a file lock). The same
  session is used again.
- ``FATAL``: the failure propagates immediately.
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

from ..exceptions import TIMEOUT_ERRORS, FtpCommandError, FtpConnectionLostError
from ..utils import (
    DEFAULT_FIRST_RETRY_DELAY,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_DELAY,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 421: service closing control connection, 530: not logged in
RECONNECT_CODES = frozenset({"421", "530"})

# 450/550: file unavailable, sometimes happens due to a file lock
RETRY_CODES = frozenset({"450", "550"})

NOT_FOUND_CODE = "550"


class RetryDecision(str, Enum):
    """What to do after a failed attempt."""

    RETRY_RECONNECT = "retry_reconnect"
    RETRY = "retry"
    FATAL = "fatal"


def classify_failure(error: BaseException) -> RetryDecision:
    """Classify a failure raised by a protocol operation.

    Args:
        error: The exception raised by the operation

    Returns:
        RetryDecision for the failure
    """
    if isinstance(error, FtpCommandError):
        if error.code in RECONNECT_CODES:
            return RetryDecision.RETRY_RECONNECT
        if error.code in RETRY_CODES:
            return RetryDecision.RETRY
        return RetryDecision.FATAL

    if isinstance(error, (*TIMEOUT_ERRORS, FtpConnectionLostError)):
        return RetryDecision.RETRY_RECONNECT

    return RetryDecision.FATAL


def classify_probe_failure(error: BaseException) -> RetryDecision:
    """Like :func:`classify_failure`, but "not found" is final.

    Used when probing whether a path exists, where 550 is an answer rather
    than a transient condition.
    """
    if isinstance(error, FtpCommandError) and error.code == NOT_FOUND_CODE:
        return RetryDecision.FATAL
    return classify_failure(error)


class RetryPolicy:
    """Runs protocol operations with bounded retries and transparent reconnect."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        first_delay: float = DEFAULT_FIRST_RETRY_DELAY,
        delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the retry policy.

        Args:
            max_attempts: Total number of attempts per operation
            first_delay: Delay before the first retry in seconds
            delay: Delay before every later retry in seconds
            sleep: Sleep function (injectable for tests)
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.first_delay = first_delay
        self.delay = delay
        self._sleep = sleep

    def call(
        self,
        session: Any,
        working_directory: Optional[str],
        operation: Callable[[Any], T],
        max_attempts: Optional[int] = None,
        classify: Callable[[BaseException], RetryDecision] = classify_failure,
    ) -> T:
        """Run an operation on a session, retrying transient failures.

        Before every attempt the session is reconnected if it is not connected
        or the previous attempt invalidated it, and moved to
        ``working_directory`` unless it is already known to be there.

        Args:
            session: FTP session to run the operation on
            working_directory: Directory the operation must run in, or None
                if the operation does not depend on the working directory
            operation: Callable receiving the session
            max_attempts: Override of the policy's attempt budget
            classify: Failure classification function

        Returns:
            Result of the operation

        Raises:
            Exception: The last failure once it is fatal or the attempt
                budget is exhausted
        """
        attempts = max_attempts or self.max_attempts
        reconnect = False

        for attempt in range(1, attempts + 1):
            try:
                if reconnect or not session.is_connected():
                    logger.debug("Reconnecting session (attempt %d)", attempt)
                    session.connect()
                reconnect = False
                if (
                    working_directory is not None
                    and session.working_directory != working_directory
                ):
                    session.change_working_directory(working_directory)
                return operation(session)
            except Exception as e:
                decision = classify(e)
                if decision is RetryDecision.FATAL or attempt >= attempts:
                    raise

                reconnect = decision is RetryDecision.RETRY_RECONNECT
                delay = self.first_delay if attempt == 1 else self.delay
                logger.debug(
                    "Attempt %d/%d failed (%s: %s), retrying in %.1fs%s",
                    attempt,
                    attempts,
                    type(e).__name__,
                    e,
                    delay,
                    " after reconnect" if reconnect else "",
                )
                self._sleep(delay)

        # The loop always returns or raises.
        raise AssertionError("unreachable")
