# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Bounded polling.

wsl.exe has no "distribution registered" notification, so waiting for Docker Desktop
to recreate its unit means re-running a check on a fixed interval. Clock and sleep are
injectable so callers (and tests) control wall time.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

Clock = Callable[[], float]
Sleep = Callable[[float], None]


@dataclass(frozen=True)
class PollOutcome:
    satisfied: bool
    attempts: int
    elapsed_s: float


def wait_until(
    predicate: Callable[[], bool],
    *,
    timeout_s: float,
    interval_s: float,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
    logger: Optional[logging.Logger] = None,
    what: str = "condition",
    on_tick: Optional[Callable[[float], None]] = None,
) -> PollOutcome:
    """
    Call `predicate` until it returns True or `timeout_s` has elapsed.

    The predicate is checked once up front, then after every sleep. A sleep never
    overshoots the deadline, so the call returns within timeout_s + one interval
    even when the predicate itself is slow.

    Exceptions raised by the predicate propagate.

    Example:
        outcome = wait_until(lambda: runtime.has_unit("docker-desktop"),
                             timeout_s=180, interval_s=3, what="docker-desktop")
    """
    if interval_s <= 0:
        raise ValueError("interval_s must be > 0")

    start = clock()
    deadline = start + max(0.0, float(timeout_s))
    attempts = 0

    while True:
        attempts += 1
        if predicate():
            return PollOutcome(True, attempts, clock() - start)

        now = clock()
        remaining = deadline - now
        if remaining <= 0:
            if logger:
                logger.debug("Gave up waiting for %s after %d checks (%.1fs)", what, attempts, now - start)
            return PollOutcome(False, attempts, now - start)

        if logger:
            logger.debug("Waiting for %s (check %d, %.0fs left)", what, attempts, remaining)
        sleep(min(float(interval_s), remaining))
        if on_tick:
            on_tick(clock() - start)
