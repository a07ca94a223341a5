"""
Time units and sampling distributions for the algorithm simulator.

All time values use integer milliseconds as the canonical unit. The
distributions below model simulated network latency and clock drift.
"""

import math
from abc import ABC, abstractmethod
from typing import NewType

import numpy as np

# Explicit time unit - all times are in milliseconds
Milliseconds = NewType("Milliseconds", int)

# Simulated one-way delays never drop below this floor
MIN_LATENCY_MS = Milliseconds(5)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties toward positive infinity."""
    return int(math.floor(value + 0.5))


class Distribution(ABC):
    """Abstract base class for integer-millisecond distributions."""

    @abstractmethod
    def sample(self, rng: np.random.Generator) -> int:
        """Sample a value from the distribution.

        Args:
            rng: NumPy random number generator for reproducibility.

        Returns:
            A sampled value in milliseconds.
        """
        pass


class Uniform(Distribution):
    """Uniform integer distribution over [low, high).

    Samples are drawn from a continuous uniform and floored, so every
    integer in the interval is equally likely.

    Args:
        low: Lower bound (inclusive).
        high: Upper bound (exclusive).
    """

    def __init__(self, low: float, high: float):
        if low >= high:
            raise ValueError(f"Low must be less than high, got low={low}, high={high}")
        self.low = low
        self.high = high

    def sample(self, rng: np.random.Generator) -> int:
        """Sample a value uniformly from [low, high), floored."""
        return int(math.floor(rng.uniform(self.low, self.high)))

    def __repr__(self) -> str:
        return f"Uniform(low={self.low}, high={self.high})"


class Latency(Distribution):
    """One-way network delay bounded above by ``max_latency``.

    Samples are uniform over [0, max_latency) and clamped to
    ``MIN_LATENCY_MS`` so no message arrives in zero time.

    Args:
        max_latency: Upper bound (exclusive) in milliseconds. Must be positive.
    """

    def __init__(self, max_latency: int):
        if max_latency <= 0:
            raise ValueError(f"Max latency must be positive, got {max_latency}")
        self.max_latency = max_latency
        self._uniform = Uniform(0, max_latency)

    def sample(self, rng: np.random.Generator) -> int:
        return max(MIN_LATENCY_MS, self._uniform.sample(rng))

    def __repr__(self) -> str:
        return f"Latency(max_latency={self.max_latency})"


class Constant(Distribution):
    """Constant (deterministic) distribution.

    Always returns the same value. Useful for testing or when a delay
    is known exactly.

    Args:
        value: The constant value to return.
    """

    def __init__(self, value: int):
        self.value = value

    def sample(self, rng: np.random.Generator) -> int:
        """Return the constant value."""
        return self.value

    def __repr__(self) -> str:
        return f"Constant(value={self.value})"
