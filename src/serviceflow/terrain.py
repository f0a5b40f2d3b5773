"""
D8 flow routing over an elevation grid.

Flow direction encoding (clockwise from east):

    6  7  8
    5  x  1
    4  3  2

    1=E, 2=SE, 3=S, 4=SW, 5=W, 6=NW, 7=N, 8=NE, 0=outlet or pit

Each cell drains to the neighbour with the steepest strictly positive
descent (elevation drop divided by the physical neighbour distance). Ties go
to the first neighbour in code order. Because every step strictly lowers
elevation, the flow network is acyclic and accumulation can use Kahn's
topological order instead of recursion.
"""

import logging

import numpy as np
from numba import jit
from scipy import ndimage

logger = logging.getLogger(__name__)

# (row offset, col offset) for codes 1..8; index 0 is unused
D8_OFFSETS = np.array(
    [
        (0, 0),
        (0, 1),    # 1: East
        (1, 1),    # 2: Southeast
        (1, 0),    # 3: South
        (1, -1),   # 4: Southwest
        (0, -1),   # 5: West
        (-1, -1),  # 6: Northwest
        (-1, 0),   # 7: North
        (-1, 1),   # 8: Northeast
    ],
    dtype=np.int64,
)


@jit(nopython=True, cache=True)
def _compute_flow_direction_jit(
    dem: np.ndarray, flow_dir: np.ndarray, cell_width: float, cell_height: float
) -> None:
    """
    JIT-compiled D8 flow direction (numba accelerated).

    Parameters
    ----------
    dem : np.ndarray
        Elevation grid (float64)
    flow_dir : np.ndarray
        Output codes (int8), modified in-place
    cell_width, cell_height : float
        Cell size used for the neighbour distances
    """
    rows, cols = dem.shape

    offsets = np.array([
        (0, 1),
        (1, 1),
        (1, 0),
        (1, -1),
        (0, -1),
        (-1, -1),
        (-1, 0),
        (-1, 1),
    ], dtype=np.int64)

    distances = np.empty(8, dtype=np.float64)
    for k in range(8):
        dx = abs(offsets[k, 1]) * cell_width
        dy = abs(offsets[k, 0]) * cell_height
        distances[k] = np.sqrt(dx * dx + dy * dy)

    for i in range(rows):
        for j in range(cols):
            max_slope = 0.0
            best_dir = 0
            current_elev = dem[i, j]

            for k in range(8):
                ni = i + offsets[k, 0]
                nj = j + offsets[k, 1]
                if 0 <= ni < rows and 0 <= nj < cols:
                    drop = current_elev - dem[ni, nj]
                    if drop > 0.0:
                        slope = drop / distances[k]
                        # Strict > keeps the first neighbour on ties
                        if slope > max_slope:
                            max_slope = slope
                            best_dir = k + 1

            flow_dir[i, j] = best_dir


@jit(nopython=True, cache=True)
def _accumulate_jit(flow_dir: np.ndarray, accumulation: np.ndarray) -> np.bool_:
    """
    JIT-compiled weighted accumulation using Kahn's algorithm.

    Parameters
    ----------
    flow_dir : np.ndarray
        D8 codes 0..8
    accumulation : np.ndarray
        Initialized to each cell's own weight, modified in-place

    Returns
    -------
    bool
        True if some cells were never released (a cycle in flow_dir)
    """
    rows, cols = flow_dir.shape

    offsets = np.array([
        (0, 1),
        (1, 1),
        (1, 0),
        (1, -1),
        (0, -1),
        (-1, -1),
        (-1, 0),
        (-1, 1),
    ], dtype=np.int64)

    # In-degree of every cell
    contributor_count = np.zeros((rows, cols), dtype=np.int32)
    for i in range(rows):
        for j in range(cols):
            direction = flow_dir[i, j]
            if direction > 0:
                ni = i + offsets[direction - 1, 0]
                nj = j + offsets[direction - 1, 1]
                if 0 <= ni < rows and 0 <= nj < cols:
                    contributor_count[ni, nj] += 1

    queue = np.zeros(rows * cols, dtype=np.int64)
    queue_size = 0
    for i in range(rows):
        for j in range(cols):
            if contributor_count[i, j] == 0:
                queue[queue_size] = i * cols + j
                queue_size += 1

    queue_pos = 0
    while queue_pos < queue_size:
        flat_idx = queue[queue_pos]
        queue_pos += 1
        i = flat_idx // cols
        j = flat_idx % cols

        direction = flow_dir[i, j]
        if direction > 0:
            ni = i + offsets[direction - 1, 0]
            nj = j + offsets[direction - 1, 1]
            if 0 <= ni < rows and 0 <= nj < cols:
                accumulation[ni, nj] += accumulation[i, j]
                contributor_count[ni, nj] -= 1
                if contributor_count[ni, nj] == 0:
                    queue[queue_size] = ni * cols + nj
                    queue_size += 1

    return queue_pos < rows * cols


def compute_flow_direction(dem: np.ndarray, cell_width: float = 1.0, cell_height: float = 1.0) -> np.ndarray:
    """
    Compute D8 flow direction codes from an elevation grid.

    Parameters
    ----------
    dem : np.ndarray
        2-D elevation grid
    cell_width, cell_height : float
        Cell size in map units

    Returns
    -------
    np.ndarray
        int8 grid of codes 0..8 (0 = outlet or pit)

    Examples
    --------
    >>> ramp = np.array([[3.0, 2.0, 1.0, 0.0]] * 2)
    >>> compute_flow_direction(ramp)[0]
    array([1, 1, 1, 0], dtype=int8)
    """
    dem = np.ascontiguousarray(dem, dtype=np.float64)
    flow_dir = np.zeros(dem.shape, dtype=np.int8)
    _compute_flow_direction_jit(dem, flow_dir, float(cell_width), float(cell_height))

    outlets = int(np.sum(flow_dir == 0))
    logger.debug(f"Flow direction: {dem.shape}, {outlets} outlet/pit cells")
    return flow_dir


def accumulate(flow_dir: np.ndarray, weights: np.ndarray | None = None) -> np.ndarray:
    """
    Accumulate weights downstream along a D8 network.

    Each cell receives its own weight plus the accumulated weight of every
    upstream cell. With weights=None every cell counts 1, giving the
    contributing cell count.

    Raises
    ------
    RuntimeError
        If flow_dir contains a cycle
    """
    flow_dir = np.ascontiguousarray(flow_dir, dtype=np.int8)
    if weights is None:
        accumulation = np.ones(flow_dir.shape, dtype=np.float64)
    else:
        accumulation = np.array(weights, dtype=np.float64, copy=True)
        if accumulation.shape != flow_dir.shape:
            raise ValueError(
                f"weights shape {accumulation.shape} does not match flow_dir shape {flow_dir.shape}"
            )

    if _accumulate_jit(flow_dir, accumulation):
        raise RuntimeError("Cycle detected in flow network; flow directions must point downhill")
    return accumulation


def compute_slope(dem: np.ndarray, cell_width: float = 1.0, cell_height: float = 1.0) -> np.ndarray:
    """Slope in degrees from Sobel gradients (Horn's method)."""
    dem = np.asarray(dem, dtype=np.float64)
    dy = ndimage.sobel(dem, axis=0, mode="reflect") / (8.0 * cell_height)
    dx = ndimage.sobel(dem, axis=1, mode="reflect") / (8.0 * cell_width)
    return np.degrees(np.arctan(np.sqrt(dx**2 + dy**2)))


def downstream_cell(flow_dir: np.ndarray, row: int, col: int) -> tuple[int, int] | None:
    """The cell (row, col) drains to, or None at an outlet or the grid edge."""
    code = int(flow_dir[row, col])
    if code <= 0 or code > 8:
        return None
    next_row = row + int(D8_OFFSETS[code, 0])
    next_col = col + int(D8_OFFSETS[code, 1])
    rows, cols = flow_dir.shape
    if not (0 <= next_row < rows and 0 <= next_col < cols):
        return None
    return next_row, next_col


def invalid_flow_directions(dem: np.ndarray, flow_dir: np.ndarray) -> int:
    """
    Count cells whose code is outside 0..8 or does not point strictly downhill.

    A code that leads off the grid is also counted as invalid.
    """
    dem = np.asarray(dem, dtype=np.float64)
    flow_dir = np.asarray(flow_dir)
    rows, cols = flow_dir.shape
    invalid = int(np.sum((flow_dir < 0) | (flow_dir > 8)))

    for code in range(1, 9):
        di, dj = D8_OFFSETS[code]
        cells_r, cells_c = np.nonzero(flow_dir == code)
        targets_r = cells_r + di
        targets_c = cells_c + dj
        inside = (targets_r >= 0) & (targets_r < rows) & (targets_c >= 0) & (targets_c < cols)
        invalid += int(np.sum(~inside))
        downhill = dem[targets_r[inside], targets_c[inside]] < dem[cells_r[inside], cells_c[inside]]
        invalid += int(np.sum(~downhill))

    return invalid
