"""Exponential backoff for operations that report whether to try again."""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_exponential

from minicluster.exceptions import ClusterError
from minicluster.logging_config import get_logger

logger = get_logger(__name__)

INITIAL_BACKOFF = 0.5
MAX_ELAPSED = 120.0


@dataclass
class Retriable:
    """Outcome of an attempt that failed transiently."""

    error: Exception


@dataclass
class Done:
    """Outcome of an attempt that completed."""

    value: Any = None


Outcome = Retriable | Done


def retry_expo(
    attempt: Callable[[], Outcome],
    initial: float = INITIAL_BACKOFF,
    max_elapsed: float = MAX_ELAPSED,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Call ``attempt`` until it returns Done or the time budget runs out.

    Exceptions raised by ``attempt`` are fatal and propagate immediately;
    only a returned Retriable schedules another attempt.

    Args:
        attempt: Callable returning Retriable or Done
        initial: First backoff interval in seconds
        max_elapsed: Overall time budget in seconds
        sleep: Sleep function, replaceable in tests

    Returns:
        The value carried by Done

    Raises:
        ClusterError: The last transient error once the budget is exhausted
    """
    retrying = Retrying(
        stop=stop_after_delay(max_elapsed),
        wait=wait_exponential(multiplier=initial, min=initial, max=max_elapsed),
        retry=retry_if_result(lambda outcome: isinstance(outcome, Retriable)),
        before_sleep=lambda state: logger.info(
            f"will retry after {state.next_action.sleep:.1f}s: "
            f"{state.outcome.result().error}"
        ),
        sleep=sleep,
    )
    try:
        outcome = retrying(attempt)
    except RetryError as e:
        last = e.last_attempt.result()
        if isinstance(last.error, ClusterError):
            raise last.error
        raise ClusterError(f"Gave up after {max_elapsed:.0f}s", str(last.error))
    return outcome.value
