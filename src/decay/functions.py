"""
Distance-decay functions.

All decay functions map a non-negative cost (distance, resistance-weighted
distance, or cumulative traversal cost) and a decay parameter into an
attenuation factor in the range [0, 1].

Decay types:
1. exponential - exp(-p * x), the default for routed service flows
2. linear - 1 - p * x, clamped at zero
3. power - (1 + x) ** -p, heavy tailed
4. gaussian - exp(-p * x**2), flat near the source then falling fast

Every function returns 1.0 at zero cost and never increases with cost for
p >= 0. Negative costs are treated as zero.
"""

from typing import Callable, Union

import numpy as np


# Type alias for values that can be scalar or array
NumericType = Union[float, np.ndarray]


def _prepare(cost: NumericType, parameter: float) -> np.ndarray:
    if parameter < 0:
        raise ValueError(f"Decay parameter must be non-negative, got {parameter}")
    cost = np.asarray(cost, dtype=float)
    return np.maximum(cost, 0.0)


def _finish(result: np.ndarray) -> NumericType:
    result = np.clip(result, 0.0, 1.0)
    # Return scalar if input was scalar
    if result.ndim == 0:
        return float(result)
    return result


def exponential(cost: NumericType, parameter: float) -> NumericType:
    """
    Exponential decay.

    Args:
        cost: Non-negative cost value(s)
        parameter: Decay rate (alpha/beta)

    Returns:
        Attenuation in [0, 1]

    Example:
        >>> exponential(0.0, 0.5)
        1.0
        >>> round(exponential(2.0, 0.5), 4)
        0.3679
    """
    x = _prepare(cost, parameter)
    # exp(-0 * inf) is nan; an infinite cost is always fully attenuated
    with np.errstate(invalid="ignore"):
        result = np.where(np.isinf(x), 0.0, np.exp(-parameter * x))
    return _finish(result)


def linear(cost: NumericType, parameter: float) -> NumericType:
    """
    Linear decay, reaching zero at cost = 1 / parameter.

    Example:
        >>> linear(1.0, 0.25)
        0.75
        >>> linear(10.0, 0.25)
        0.0
    """
    x = _prepare(cost, parameter)
    with np.errstate(invalid="ignore"):
        result = np.where(np.isinf(x), 0.0, 1.0 - parameter * x)
    return _finish(np.maximum(result, 0.0))


def power(cost: NumericType, parameter: float) -> NumericType:
    """
    Power-law decay (1 + x) ** -p.

    Shifted by one so zero cost gives full strength instead of a singularity.

    Example:
        >>> power(0.0, 2.0)
        1.0
        >>> power(1.0, 2.0)
        0.25
    """
    x = _prepare(cost, parameter)
    result = np.where(np.isinf(x), 0.0, np.power(1.0 + np.where(np.isinf(x), 0.0, x), -parameter))
    return _finish(result)


def gaussian(cost: NumericType, parameter: float) -> NumericType:
    """
    Gaussian decay exp(-p * x**2).

    Example:
        >>> gaussian(0.0, 1.0)
        1.0
        >>> round(gaussian(1.0, 1.0), 4)
        0.3679
    """
    x = _prepare(cost, parameter)
    with np.errstate(invalid="ignore", over="ignore"):
        result = np.where(np.isinf(x), 0.0, np.exp(-parameter * np.square(x)))
    return _finish(result)


# Map decay names to functions
DECAY_FUNCTIONS: dict[str, Callable[[NumericType, float], NumericType]] = {
    "exponential": exponential,
    "linear": linear,
    "power": power,
    "gaussian": gaussian,
}


def get_decay_function(name: str) -> Callable[[NumericType, float], NumericType]:
    """Look up a decay function by name."""
    try:
        return DECAY_FUNCTIONS[name]
    except KeyError:
        raise ValueError(
            f"Unknown decay function '{name}'. Available: {list(DECAY_FUNCTIONS.keys())}"
        ) from None
