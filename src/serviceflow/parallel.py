"""
Process-pool helpers for routing work that splits by source cell.

Work is partitioned into contiguous chunks, each chunk is handled by a
module-level worker function (so it pickles), and results come back in
chunk order regardless of completion order.
"""

import logging
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

import numpy as np
from tqdm.auto import tqdm

logger = logging.getLogger(__name__)


@dataclass
class Deadline:
    """
    Wall-clock budget for one analysis.

    The expiry timestamp is absolute, so a Deadline pickled into a worker
    process keeps the parent's budget. cancel() only affects the process it
    is called in.

    Attributes:
        seconds: Budget in seconds, None for no limit
    """

    seconds: Optional[float] = None
    started_at: float = field(default_factory=time.time)
    cancelled: bool = False

    @property
    def expires_at(self) -> Optional[float]:
        if self.seconds is None:
            return None
        return self.started_at + self.seconds

    def expired(self) -> bool:
        if self.cancelled:
            return True
        return self.expires_at is not None and time.time() >= self.expires_at

    def cancel(self) -> None:
        self.cancelled = True

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.time())


def partition(items: Sequence[Any], n_chunks: int) -> list[list[Any]]:
    """
    Split items into at most n_chunks contiguous, near-equal chunks.

    Example:
        >>> partition([1, 2, 3, 4, 5], 2)
        [[1, 2, 3], [4, 5]]
    """
    items = list(items)
    if not items:
        return []
    n_chunks = max(1, min(n_chunks, len(items)))
    bounds = np.linspace(0, len(items), n_chunks + 1).round().astype(int)
    return [items[bounds[i] : bounds[i + 1]] for i in range(n_chunks) if bounds[i] < bounds[i + 1]]


def run_partitioned(
    worker: Callable[[list[Any]], Any],
    chunks: list[list[Any]],
    max_workers: Optional[int] = None,
    show_progress: bool = False,
    desc: str = "Routing",
) -> list[Any]:
    """
    Run worker over every chunk and return the results in chunk order.

    With max_workers None or 1 (or a single chunk) the chunks run inline in
    this process. Otherwise they run on a ProcessPoolExecutor; a failing
    chunk is logged and its exception re-raised.

    Args:
        worker: Picklable callable taking one chunk
        chunks: Work items, usually from partition()
        max_workers: Process count, None or 1 for serial
        show_progress: Show a tqdm bar over chunks
        desc: Progress bar label
    """
    if not chunks:
        return []

    if max_workers is None or max_workers <= 1 or len(chunks) == 1:
        iterator = tqdm(chunks, desc=desc, disable=not show_progress)
        return [worker(chunk) for chunk in iterator]

    logger.info(f"{desc}: {len(chunks)} chunks on {max_workers} worker processes")
    results: list[Any] = [None] * len(chunks)
    with ProcessPoolExecutor(max_workers=max_workers) as executor:
        future_map = {executor.submit(worker, chunk): index for index, chunk in enumerate(chunks)}
        with tqdm(total=len(chunks), desc=desc, disable=not show_progress) as pbar:
            for future in as_completed(future_map):
                index = future_map[future]
                try:
                    results[index] = future.result()
                except Exception as e:
                    logger.error(f"Error in {desc.lower()} chunk {index}: {e}")
                    raise
                finally:
                    pbar.update(1)
    return results
