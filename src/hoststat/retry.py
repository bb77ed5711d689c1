"""Bounded retry for queries that race against configuration changes."""

import time
from collections.abc import Callable
from typing import TypeVar

import structlog

from hoststat.config import RetryPolicy
from hoststat.errors import TransientRaceExceeded

T = TypeVar("T")

log = structlog.get_logger()


class ConfigurationChanged(Exception):
    """Raised by a query attempt when the thing it reads changed underneath it."""


def retry_on_change(
    func: Callable[[], T],
    policy: RetryPolicy,
    what: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func`` until it stops raising ConfigurationChanged.

    Any other exception propagates immediately.

    Raises:
        TransientRaceExceeded: If every one of ``policy.max_attempts`` attempts
            raised ConfigurationChanged.
    """
    for attempt in range(policy.max_attempts):
        try:
            return func()
        except ConfigurationChanged as e:
            log.debug("configuration_changed", what=what, attempt=attempt + 1, reason=str(e))
            if attempt + 1 < policy.max_attempts:
                sleep(policy.delay(attempt))

    log.warning("retry_budget_exhausted", what=what, attempts=policy.max_attempts)
    raise TransientRaceExceeded(policy.max_attempts, what)
