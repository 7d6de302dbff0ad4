"""Bounded retry of device commands that may hit an internal conflict.

A command attempt yields one of three outcomes:

    Success(value)  done, return value
    Retry(conflict) transient chip conflict; wait, reset the bus, try again
    Fatal(error)    give up immediately and raise error

``run_with_retry`` turns an ordinary callable into these outcomes
(InternalConflict -> Retry, other OneWireError -> Fatal) and drives the
loop. An optional recovery check runs after each conflict and can
short-circuit with a value, for commands whose effect is observable
even when the confirmation failed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from ..errors import InternalConflict, OneWireError, TransportFault

_LOGGER = logging.getLogger(__name__)

MAX_CONFLICT_RETRIES = 5
CONFLICT_DELAY = 0.5  # seconds

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Retry:
    conflict: InternalConflict


@dataclass(frozen=True)
class Fatal:
    error: OneWireError


Outcome = Union[Success[T], Retry, Fatal]


def attempt(command: Callable[[], T]) -> Outcome[T]:
    """Run one attempt and classify its result."""
    try:
        return Success(command())
    except InternalConflict as e:
        return Retry(e)
    except OneWireError as e:
        return Fatal(e)


def run_with_retry(
    command: Callable[[], T],
    *,
    reset_bus: Callable[[], object],
    recover: Callable[[], T | None] | None = None,
    max_attempts: int = MAX_CONFLICT_RETRIES,
    delay: float = CONFLICT_DELAY,
    name: str = "command",
) -> T:
    """Run ``command`` until it succeeds, fails fatally, or attempts run out.

    Args:
        command: One complete attempt, addressing included.
        reset_bus: Called after each conflict, before recovery.
        recover: Optional post-condition check run after a conflict;
            a non-None return value is taken as success.
        max_attempts: Attempt budget.
        delay: Seconds to wait after a conflict.
        name: Command name for log and error messages.

    Raises:
        TransportFault: If every attempt ended in a conflict.
        OneWireError: The fatal error of an attempt, unchanged.
    """
    last: InternalConflict | None = None
    for n in range(1, max_attempts + 1):
        outcome = attempt(command)
        if isinstance(outcome, Success):
            return outcome.value
        if isinstance(outcome, Fatal):
            raise outcome.error
        last = outcome.conflict
        _LOGGER.warning("%s: internal conflict (attempt %d/%d)", name, n, max_attempts)
        time.sleep(delay)
        reset_bus()
        if recover is not None:
            value = recover()
            if value is not None:
                _LOGGER.info("%s: recovered after conflict", name)
                return value
    raise TransportFault(
        f"{name} failed: maximum number of retries ({max_attempts}) exceeded"
    ) from last
