# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type

from loguru import logger as LOG  # type: ignore

from vctbdd.clients import VCTClientException, VCTConnectionException

DEFAULT_RETRY_INTERVAL_SEC = 1
DEFAULT_MAX_ATTEMPTS = 15


class ConditionNotMet(Exception):
    """
    Raised by a polled operation when the log has not (yet) reached the
    expected state.
    """


class RetriesExhausted(Exception):
    """
    Exception raised if a polled operation still fails after the last attempt
    allowed by its :py:class:`RetryPolicy`.
    """

    def __init__(self, attempts: int, last_error: Exception):
        super(RetriesExhausted, self).__init__(
            f"Giving up after {attempts} attempts: {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error


RETRIABLE_ERRORS: Tuple[Type[Exception], ...] = (
    ConditionNotMet,
    VCTClientException,
    VCTConnectionException,
    TimeoutError,
)


@dataclass(frozen=True)
class RetryPolicy:
    #: Seconds slept between two attempts
    interval: float = DEFAULT_RETRY_INTERVAL_SEC
    #: Total number of attempts, including the first one
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.interval < 0:
            raise ValueError(f"interval must not be negative, got {self.interval}")


DEFAULT_POLICY = RetryPolicy()


def retry(
    fn: Callable[[], Any],
    policy: RetryPolicy = DEFAULT_POLICY,
    sleep: Callable[[float], None] = time.sleep,
    retry_on: Tuple[Type[Exception], ...] = RETRIABLE_ERRORS,
    description: Optional[str] = None,
) -> Any:
    """
    Calls ``fn`` until it returns without raising one of ``retry_on``, sleeping
    ``policy.interval`` seconds between attempts. Any other exception
    propagates straight away.

    :return: Whatever ``fn`` returned on the successful attempt.

    A :py:exc:`RetriesExhausted` exception is raised once ``policy.max_attempts``
    attempts have failed.
    """
    name = description or getattr(fn, "__name__", "operation")
    last_error: Optional[Exception] = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return fn()
        except retry_on as e:
            last_error = e
            LOG.debug(f"{name}: attempt {attempt}/{policy.max_attempts} failed: {e}")
            if attempt < policy.max_attempts:
                sleep(policy.interval)

    assert last_error is not None
    raise RetriesExhausted(policy.max_attempts, last_error) from last_error
