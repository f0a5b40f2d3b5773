"""
Decay and layer combination module for service flow analysis.

Provides distance-decay functions that attenuate routed flow and the
combination logic domain transforms use to turn factor layers into a
delivered fraction of supply.

Decay types:
- exponential: exp(-p * x)
- linear: 1 - p * x, clamped at zero
- power: (1 + x) ** -p
- gaussian: exp(-p * x**2)

Combination:
- LayerComponent: Defines a single factor layer
- LayerCombiner: Combines factor layers using:
  - Additive components (weighted sum)
  - Multiplicative components (penalties)
"""

from src.decay.functions import (
    DECAY_FUNCTIONS,
    exponential,
    gaussian,
    get_decay_function,
    linear,
    power,
)
from src.decay.combiner import LayerComponent, LayerCombiner

__all__ = [
    # Decay functions
    "exponential",
    "linear",
    "power",
    "gaussian",
    "DECAY_FUNCTIONS",
    "get_decay_function",
    # Combiner
    "LayerComponent",
    "LayerCombiner",
]
