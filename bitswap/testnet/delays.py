"""Delay and bandwidth generators for simulated networks.

Durations are in seconds and rate limits in bytes per second.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Protocol

_SHARED_RNG = random.Random()


class DelayGenerator(Protocol):
    """Produces a wait time derived from a base duration."""

    def next_wait_time(self, base: float) -> float:
        """Return the next wait time for ``base``."""


@dataclass
class FixedDelay:
    """A delay that is always the same."""

    duration: float = 0.0

    def next_wait_time(self) -> float:
        """Return the fixed delay."""
        return self.duration


@dataclass
class VariableDelay:
    """A delay drawn from a generator around a base duration."""

    base: float
    generator: DelayGenerator

    def next_wait_time(self) -> float:
        """Return the next delay produced by the generator."""
        return self.generator.next_wait_time(self.base)


@dataclass
class InternetLatencyDelayGenerator:
    """Generates delays in three clusters typical of peers on the internet.

    A wait time is normally distributed around the base time, optionally
    shifted by a medium or a large delay. ``percent_large`` of the delays
    get the large shift and ``percent_medium`` the medium shift.
    """

    medium_delay: float
    large_delay: float
    percent_medium: float
    percent_large: float
    std: float
    rng: random.Random | None = field(default=None)

    def __post_init__(self) -> None:
        if self.rng is None:
            self.rng = _SHARED_RNG

    def next_wait_time(self, base: float) -> float:
        """Return a wait time around ``base``."""
        cluster = self.rng.random()
        base_delay = self.rng.gauss(0.0, 1.0) * self.std + base
        if cluster < self.percent_large:
            return base_delay + self.large_delay
        if cluster < self.percent_medium + self.percent_large:
            return base_delay + self.medium_delay
        return base_delay


@dataclass
class FixedRateLimitGenerator:
    """Always produces the same rate limit."""

    rate_limit: float

    def next_rate_limit(self) -> float:
        """Return the fixed rate limit."""
        return self.rate_limit


@dataclass
class VariableRateLimitGenerator:
    """Produces rate limits following a normal distribution."""

    rate_limit: float
    std: float
    rng: random.Random | None = field(default=None)

    def __post_init__(self) -> None:
        if self.rng is None:
            self.rng = _SHARED_RNG

    def next_rate_limit(self) -> float:
        """Return a rate limit drawn around the mean."""
        return self.rng.gauss(0.0, 1.0) * self.std + self.rate_limit