"""
Bottleneck detection.

A cell is a bottleneck when a lot of flow has to cross it and it resists
that flow. Each path adds intensity x weighted resistance to every cell it
visits; the highest-scoring cells are reported.
"""

import logging
from typing import Iterable, NamedTuple

import numpy as np

logger = logging.getLogger(__name__)


class Bottleneck(NamedTuple):
    row: int
    col: int
    score: float


def bottleneck_scores(paths: Iterable, resistance: np.ndarray) -> np.ndarray:
    """Sum of intensity x resistance(cell) over every path and cell it visits."""
    resistance = np.asarray(resistance, dtype=np.float64)
    throughput = np.zeros(resistance.shape, dtype=np.float64)
    for path in paths:
        if path.intensity <= 0:
            continue
        rows, cols = zip(*path.cells)
        throughput[list(rows), list(cols)] += path.intensity
    return throughput * resistance


def detect(paths: Iterable, resistance: np.ndarray, top_n: int = 5) -> list[Bottleneck]:
    """
    Top-N cells by bottleneck score, highest first.

    Only positive scores are reported. Equal scores keep row-major order.

    Args:
        paths: FlowPaths (usually the threshold-filtered ones)
        resistance: Weighted resistance grid
        top_n: Maximum number of bottlenecks returned
    """
    scores = bottleneck_scores(paths, resistance)
    flat = scores.ravel()
    # Stable sort on the negated score keeps row-major order among ties
    order = np.argsort(-flat, kind="stable")
    cols = scores.shape[1]

    bottlenecks = []
    for index in order[:top_n]:
        score = float(flat[index])
        if score <= 0:
            break
        bottlenecks.append(Bottleneck(int(index // cols), int(index % cols), score))

    logger.debug(f"Detected {len(bottlenecks)} bottleneck cells")
    return bottlenecks
