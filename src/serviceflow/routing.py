"""
Path routing strategies.

Three interchangeable routers turn supply and demand grids into FlowPaths:

- DirectSamplingRouter ("direct"): every (source, sink) pair within
  max_distance, connected by a straight rasterized line
- TerrainRouter ("terrain"): each source follows D8 flow direction
  downstream to the first cell with demand
- CostDistanceRouter ("cost-distance"): least-cost paths over weighted
  resistance (Dijkstra, 8-neighbourhood), with barriers impassable

All routers cut paths at max_distance, never produce negative intensity and
check the deadline between units of work. When the deadline expires they
return what they have with completed=False.
"""

import heapq
import itertools
import logging
import math
import warnings
from dataclasses import dataclass, field
from functools import partial
from typing import NamedTuple, Optional

import numpy as np
from scipy import ndimage

from src.decay.functions import get_decay_function
from src.serviceflow.accumulation import deposit, filter_paths
from src.serviceflow.errors import InvalidParameterError, UnreachableTargetWarning
from src.serviceflow.grid import AnalysisLayers
from src.serviceflow.parallel import Deadline, partition, run_partitioned
from src.serviceflow.parameters import Parameters
from src.serviceflow.resistance import ResistanceField
from src.serviceflow.terrain import accumulate, compute_flow_direction, compute_slope, downstream_cell

logger = logging.getLogger(__name__)

Cell = tuple[int, int]

# (row offset, col offset) for the 8-neighbourhood, same order as the D8 codes
NEIGHBOURS = ((0, 1), (1, 1), (1, 0), (1, -1), (0, -1), (-1, -1), (-1, 0), (-1, 1))

DEFAULT_OBSERVER_HEIGHT = 1.7
DEFAULT_TARGET_HEIGHT = 0.0


@dataclass(frozen=True)
class FlowPath:
    """
    One routed source-to-sink connection.

    Attributes:
        source: (row, col) of the source cell
        sink: (row, col) of the sink cell
        cells: Ordered cells from source to sink, both included
        intensity: supply x demand x decay, never negative
        length: Physical path length in map units
        potential: supply x demand before decay
    """

    source: Cell
    sink: Cell
    cells: tuple
    intensity: float
    length: float
    potential: float


@dataclass(frozen=True, eq=False)
class RoutingResult:
    """
    Output of a PathRouter.

    Attributes:
        paths: Every routed path, before threshold filtering
        surfaces: Named auxiliary grids (source_potential, accessibility, ...)
        candidate_pairs: Source/sink pairs considered within max_distance
        completed: False when the deadline cut routing short
        partials: Per-worker flow fields of threshold-filtered paths (may be empty)
        unreached: (source, sink) pairs a cost-distance search could not connect
        router: Name of the strategy that produced this result
    """

    paths: tuple
    surfaces: dict = field(default_factory=dict)
    candidate_pairs: int = 0
    completed: bool = True
    partials: tuple = ()
    unreached: tuple = ()
    router: str = ""


class _ChunkResult(NamedTuple):
    paths: list
    partial: np.ndarray
    potential: np.ndarray
    candidate_pairs: int
    unreached: list
    completed: bool


def rasterize_line(start: Cell, end: Cell) -> list[Cell]:
    """
    Integer Bresenham line between two cells, start cell first.

    Works in all octants. A line from a cell to itself is that single cell.

    Example:
        >>> rasterize_line((0, 0), (2, 2))
        [(0, 0), (1, 1), (2, 2)]
    """
    r0, c0 = int(start[0]), int(start[1])
    r1, c1 = int(end[0]), int(end[1])
    dr = abs(r1 - r0)
    dc = abs(c1 - c0)
    step_r = 1 if r1 >= r0 else -1
    step_c = 1 if c1 >= c0 else -1
    err = dc - dr

    cells = []
    r, c = r0, c0
    while True:
        cells.append((r, c))
        if r == r1 and c == c1:
            break
        e2 = 2 * err
        if e2 > -dr:
            err -= dr
            c += step_c
        if e2 < dc:
            err += dc
            r += step_r
    return cells


def cell_distance(a: Cell, b: Cell, cell_width: float = 1.0, cell_height: float = 1.0) -> float:
    """Euclidean distance between cell centres in map units."""
    return math.hypot((b[0] - a[0]) * cell_height, (b[1] - a[1]) * cell_width)


def path_length(cells, cell_width: float = 1.0, cell_height: float = 1.0) -> float:
    """Sum of step distances along an ordered cell sequence."""
    return sum(
        cell_distance(cells[i], cells[i + 1], cell_width, cell_height) for i in range(len(cells) - 1)
    )


def sight_line_clear(
    elevation: np.ndarray,
    cells,
    observer_height: float = DEFAULT_OBSERVER_HEIGHT,
    target_height: float = DEFAULT_TARGET_HEIGHT,
    cell_width: float = 1.0,
    cell_height: float = 1.0,
) -> bool:
    """
    True when no intermediate cell rises above the straight sight line.

    The line runs from the observer (first cell elevation + observer_height)
    to the target (last cell elevation + target_height).
    """
    if len(cells) <= 2:
        return True
    start, end = cells[0], cells[-1]
    eye = elevation[start] + observer_height
    target = elevation[end] + target_height
    total = cell_distance(start, end, cell_width, cell_height)

    for cell in cells[1:-1]:
        t = cell_distance(start, cell, cell_width, cell_height) / total
        if elevation[cell] > eye + t * (target - eye):
            return False
    return True


def multi_source_cost_distance(
    base_cost: np.ndarray,
    seeds,
    target: Optional[Cell] = None,
    max_distance: float = np.inf,
    cell_width: float = 1.0,
    cell_height: float = 1.0,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Dijkstra cumulative cost from one or more zero-cost seed cells.

    Edge cost is the move distance times the mean base cost of the two
    cells. Cells with infinite base cost are never entered. The walked
    length of each least-cost path is tracked beside its cost, and a step
    that would take it past max_distance is refused, so every finite-cost
    cell is reached by a path no longer than the cutoff. The search stops
    when the queue empties or the target is popped.

    Args:
        base_cost: Non-negative per-cell cost, +inf for impassable
        seeds: Iterable of (row, col) start cells
        target: Optional cell that ends the search early
        max_distance: Cutoff on the walked path length, in map units
        cell_width, cell_height: Cell size in map units

    Returns:
        (costs, parents): costs is +inf where unreached; parents holds the
        flat index of each cell's predecessor, -1 for seeds and unreached cells
    """
    base_cost = np.asarray(base_cost, dtype=np.float64)
    rows, cols = base_cost.shape
    costs = np.full((rows, cols), np.inf)
    lengths = np.full((rows, cols), np.inf)
    parents = np.full((rows, cols), -1, dtype=np.int64)
    visited = np.zeros((rows, cols), dtype=bool)

    steps = [(dr, dc, math.hypot(dr * cell_height, dc * cell_width)) for dr, dc in NEIGHBOURS]

    # (cost, insertion order, row, col) keeps equal-cost pops deterministic
    counter = itertools.count()
    heap = []
    for r, c in seeds:
        r, c = int(r), int(c)
        if costs[r, c] == 0.0:
            continue
        costs[r, c] = 0.0
        lengths[r, c] = 0.0
        heapq.heappush(heap, (0.0, next(counter), r, c))

    while heap:
        cost, _, r, c = heapq.heappop(heap)
        if visited[r, c]:
            continue
        visited[r, c] = True
        if target is not None and (r, c) == tuple(target):
            break

        here = base_cost[r, c]
        for dr, dc, step in steps:
            nr, nc = r + dr, c + dc
            if not (0 <= nr < rows and 0 <= nc < cols) or visited[nr, nc]:
                continue
            there = base_cost[nr, nc]
            if not np.isfinite(there):
                continue
            walked = lengths[r, c] + step
            if walked > max_distance:
                continue
            new_cost = cost + step * 0.5 * (here + there)
            if not np.isfinite(new_cost):
                continue
            if new_cost < costs[nr, nc]:
                costs[nr, nc] = new_cost
                lengths[nr, nc] = walked
                parents[nr, nc] = r * cols + c
                heapq.heappush(heap, (new_cost, next(counter), nr, nc))

    return costs, parents


def cost_distance(
    base_cost: np.ndarray,
    source: Cell,
    target: Optional[Cell] = None,
    max_distance: float = np.inf,
    cell_width: float = 1.0,
    cell_height: float = 1.0,
) -> tuple[np.ndarray, np.ndarray]:
    """Single-source cumulative cost; see multi_source_cost_distance."""
    return multi_source_cost_distance(
        base_cost, [source], target=target, max_distance=max_distance,
        cell_width=cell_width, cell_height=cell_height,
    )


def reconstruct_path(parents: np.ndarray, target: Cell) -> list[Cell]:
    """Walk parent links back from target; returns cells seed-first."""
    cols = parents.shape[1]
    cells = [tuple(target)]
    index = parents[target]
    while index >= 0:
        cell = (int(index // cols), int(index % cols))
        cells.append(cell)
        index = parents[cell]
    cells.reverse()
    return cells


def build_base_cost(layers: AnalysisLayers, field: ResistanceField) -> np.ndarray:
    """Weighted resistance with barrier cells set to +inf."""
    base = np.array(field.weighted.values, dtype=np.float64, copy=True)
    base[layers.barrier_mask()] = np.inf
    return base


def passable_components(base_cost: np.ndarray) -> np.ndarray:
    """
    8-connected labels of passable (finite cost) cells, 0 for impassable.

    Two cells with the same positive label are connected when max_distance
    is ignored.
    """
    labels, _ = ndimage.label(np.isfinite(base_cost), structure=np.ones((3, 3), dtype=bool))
    return labels


def _positive_cells(grid: np.ndarray) -> list[Cell]:
    rows, cols = np.nonzero(grid > 0)
    return [(int(r), int(c)) for r, c in zip(rows, cols)]


def _direct_chunk(
    sources,
    *,
    sinks,
    supply,
    demand,
    weighted,
    elevation,
    parameters: Parameters,
    line_of_sight: bool,
    observer_height: float,
    target_height: float,
    deadline: Deadline,
) -> _ChunkResult:
    """Route one chunk of sources to every sink in range along straight lines."""
    decay = get_decay_function(parameters.distance_decay)
    cw, ch = parameters.cell_width, parameters.cell_height
    potential_grid = np.zeros(supply.shape, dtype=np.float64)
    paths = []
    pairs = 0
    completed = True

    for source in sources:
        for sink in sinks:
            if deadline.expired():
                completed = False
                break
            distance = cell_distance(source, sink, cw, ch)
            if distance > parameters.max_distance:
                continue
            pairs += 1
            potential = float(supply[source] * demand[sink])
            potential_grid[source] += potential

            cells = rasterize_line(source, sink)
            # Obstructed views deliver nothing and leave no path
            if line_of_sight and not sight_line_clear(
                elevation, cells, observer_height, target_height, cw, ch
            ):
                continue
            rows, cols = zip(*cells)
            path_resistance = float(np.mean(weighted[list(rows), list(cols)]))
            cost = parameters.gamma * path_resistance * distance
            intensity = potential * decay(cost, parameters.alpha)
            paths.append(FlowPath(source, sink, tuple(cells), max(0.0, intensity), distance, potential))
        if not completed:
            break

    partial_field = deposit(filter_paths(paths, parameters.flow_threshold), supply.shape)
    return _ChunkResult(paths, partial_field, potential_grid, pairs, [], completed)


def _cost_distance_chunk(
    sources,
    *,
    sinks,
    supply,
    demand,
    base_cost,
    components,
    parameters: Parameters,
    deadline: Deadline,
) -> _ChunkResult:
    """
    One Dijkstra search per source, then least-cost paths to every sink in range.

    A sink the search could not reach is out of range when it shares a
    passable component with the source (every connecting path is longer than
    max_distance) and unreached otherwise.
    """
    decay = get_decay_function(parameters.distance_decay)
    cw, ch = parameters.cell_width, parameters.cell_height
    potential_grid = np.zeros(supply.shape, dtype=np.float64)
    paths = []
    unreached = []
    pairs = 0
    completed = True

    for source in sources:
        if deadline.expired():
            completed = False
            break
        in_range = [s for s in sinks if cell_distance(source, s, cw, ch) <= parameters.max_distance]
        if not in_range:
            continue
        costs, parents = cost_distance(
            base_cost, source, max_distance=parameters.max_distance, cell_width=cw, cell_height=ch
        )
        for sink in in_range:
            reached = np.isfinite(costs[sink])
            if not reached and components[source] > 0 and components[source] == components[sink]:
                continue
            pairs += 1
            potential = float(supply[source] * demand[sink])
            potential_grid[source] += potential
            if not reached:
                unreached.append((source, sink))
                continue
            cells = reconstruct_path(parents, sink)
            intensity = potential * decay(parameters.gamma * float(costs[sink]), parameters.alpha)
            paths.append(
                FlowPath(source, sink, tuple(cells), max(0.0, intensity), path_length(cells, cw, ch), potential)
            )

    partial_field = deposit(filter_paths(paths, parameters.flow_threshold), supply.shape)
    return _ChunkResult(paths, partial_field, potential_grid, pairs, unreached, completed)


class PathRouter:
    """
    Base class for routing strategies.

    Args:
        max_workers: Process count for source-parallel routing (None = serial)
        show_progress: Show a tqdm progress bar over source chunks
    """

    name = "base"

    def __init__(self, max_workers: Optional[int] = None, show_progress: bool = False):
        self.max_workers = max_workers
        self.show_progress = show_progress

    def route(
        self,
        layers: AnalysisLayers,
        field: ResistanceField,
        parameters: Parameters,
        deadline: Optional[Deadline] = None,
    ) -> RoutingResult:
        raise NotImplementedError

    def _run_sources(self, worker, sources: list[Cell], shape: tuple, deadline: Deadline):
        """Partition sources, run worker on each chunk and merge the chunk results."""
        if self.max_workers is not None and self.max_workers > 1:
            n_chunks = self.max_workers * 4
        else:
            n_chunks = 16
        chunks = partition(sources, n_chunks)
        results = run_partitioned(
            worker, chunks, max_workers=self.max_workers, show_progress=self.show_progress,
            desc=f"Routing ({self.name})",
        )

        paths = []
        partials = []
        unreached = []
        potential = np.zeros(shape, dtype=np.float64)
        pairs = 0
        completed = True
        for result in results:
            paths.extend(result.paths)
            partials.append(result.partial)
            unreached.extend(result.unreached)
            potential += result.potential
            pairs += result.candidate_pairs
            completed = completed and result.completed
        return paths, partials, unreached, potential, pairs, completed

    def _log_finish(self, result: RoutingResult) -> None:
        if not result.completed:
            logger.warning(
                f"{self.name} routing stopped at deadline after {len(result.paths)} paths; "
                "returning partial result"
            )
        logger.info(
            f"{self.name} routing: {len(result.paths)} paths from {result.candidate_pairs} candidate pairs"
        )


class DirectSamplingRouter(PathRouter):
    """
    Straight-line routing between every source and sink within max_distance.

    Intensity is supply x demand x decay(gamma x mean line resistance x
    distance, alpha). With line_of_sight=True, pairs whose sight line is
    blocked by the spatial (elevation) grid produce no path. They still count
    as candidate pairs and toward source_potential, so they lower the
    delivered fraction of their source.
    """

    name = "direct"

    def __init__(
        self,
        max_workers: Optional[int] = None,
        show_progress: bool = False,
        line_of_sight: bool = False,
    ):
        super().__init__(max_workers=max_workers, show_progress=show_progress)
        self.line_of_sight = line_of_sight

    def route(self, layers, field, parameters, deadline=None) -> RoutingResult:
        deadline = deadline or Deadline()
        supply = layers.supply.values
        demand = layers.demand.values
        sources = _positive_cells(supply)
        sinks = _positive_cells(demand)
        logger.debug(f"Direct routing: {len(sources)} sources x {len(sinks)} sinks")

        worker = partial(
            _direct_chunk,
            sinks=sinks,
            supply=supply,
            demand=demand,
            weighted=field.weighted.values,
            elevation=layers.spatial.values,
            parameters=parameters,
            line_of_sight=self.line_of_sight,
            observer_height=float(parameters.option("observer_height", DEFAULT_OBSERVER_HEIGHT)),
            target_height=float(parameters.option("target_height", DEFAULT_TARGET_HEIGHT)),
            deadline=deadline,
        )
        paths, partials, _, potential, pairs, completed = self._run_sources(
            worker, sources, layers.shape, deadline
        )

        result = RoutingResult(
            paths=tuple(paths),
            surfaces={"source_potential": potential},
            candidate_pairs=pairs,
            completed=completed,
            partials=tuple(partials),
            router=self.name,
        )
        self._log_finish(result)
        return result


class TerrainRouter(PathRouter):
    """
    Downstream routing over D8 flow direction derived from the spatial grid.

    Each source follows its flow path until the first cell with demand
    (the source itself when it has demand). Paths that reach an outlet or
    would exceed max_distance are abandoned.
    """

    name = "terrain"

    def route(self, layers, field, parameters, deadline=None) -> RoutingResult:
        deadline = deadline or Deadline()
        cw, ch = parameters.cell_width, parameters.cell_height
        elevation = layers.spatial.values
        supply = layers.supply.values
        demand = layers.demand.values
        weighted = field.weighted.values
        decay = get_decay_function(parameters.distance_decay)

        flow_dir = compute_flow_direction(elevation, cw, ch)
        surfaces = {
            "flow_direction": flow_dir,
            "accumulation": accumulate(flow_dir),
            "supply_accumulation": accumulate(flow_dir, supply),
            "slope": compute_slope(elevation, cw, ch),
        }

        potential_grid = np.zeros(layers.shape, dtype=np.float64)
        paths = []
        abandoned = 0
        completed = True
        max_steps = elevation.size

        for source in _positive_cells(supply):
            if deadline.expired():
                completed = False
                break
            cells = [source]
            length = 0.0
            current = source
            reached = True
            while demand[current] <= 0:
                nxt = downstream_cell(flow_dir, *current)
                if nxt is None or len(cells) > max_steps:
                    reached = False
                    break
                step = cell_distance(current, nxt, cw, ch)
                if length + step > parameters.max_distance:
                    reached = False
                    break
                length += step
                cells.append(nxt)
                current = nxt
            if not reached:
                abandoned += 1
                continue

            potential = float(supply[source] * demand[current])
            potential_grid[source] += potential
            rows, cols = zip(*cells)
            mean_resistance = float(np.mean(weighted[list(rows), list(cols)]))
            intensity = potential * decay(parameters.gamma * mean_resistance * length, parameters.alpha)
            paths.append(FlowPath(source, current, tuple(cells), max(0.0, intensity), length, potential))

        if abandoned:
            logger.debug(f"Terrain routing: {abandoned} sources reached no demand cell")

        surfaces["source_potential"] = potential_grid
        result = RoutingResult(
            paths=tuple(paths),
            surfaces=surfaces,
            candidate_pairs=len(paths),
            completed=completed,
            router=self.name,
        )
        self._log_finish(result)
        return result


class CostDistanceRouter(PathRouter):
    """
    Least-cost routing over weighted resistance.

    Base cost is the weighted resistance with barrier cells impassable.
    Per source, one Dijkstra search gives least-cost paths to every sink in
    range; intensity is supply x demand x decay(gamma x cumulative cost,
    alpha). A multi-source search from all demand cells gives the
    cost_distance surface, and accessibility = decay(gamma x cost, beta)
    with unreachable cells exactly 0.

    Paths never walk further than max_distance. A sink connected to the
    source only by longer paths is out of range and not counted as a
    candidate pair; a sink cut off by barriers is unreached and warned about.
    """

    name = "cost-distance"

    def route(self, layers, field, parameters, deadline=None) -> RoutingResult:
        deadline = deadline or Deadline()
        cw, ch = parameters.cell_width, parameters.cell_height
        supply = layers.supply.values
        demand = layers.demand.values
        base_cost = build_base_cost(layers, field)
        sinks = _positive_cells(demand)
        sources = _positive_cells(supply)

        if sinks:
            demand_cost, _ = multi_source_cost_distance(
                base_cost, sinks, max_distance=parameters.max_distance, cell_width=cw, cell_height=ch
            )
        else:
            demand_cost = np.full(layers.shape, np.inf)
        beta_decay = get_decay_function(parameters.distance_decay)
        # Unreachable cells stay infinite even when gamma is 0
        unreachable = np.isinf(demand_cost)
        scaled_cost = parameters.gamma * np.where(unreachable, 0.0, demand_cost)
        scaled_cost[unreachable] = np.inf
        accessibility = np.asarray(beta_decay(scaled_cost, parameters.beta), dtype=np.float64)

        worker = partial(
            _cost_distance_chunk,
            sinks=sinks,
            supply=supply,
            demand=demand,
            base_cost=base_cost,
            components=passable_components(base_cost),
            parameters=parameters,
            deadline=deadline,
        )
        paths, partials, unreached, potential, pairs, completed = self._run_sources(
            worker, sources, layers.shape, deadline
        )

        if unreached:
            message = (
                f"{len(unreached)} source/sink pair(s) unreachable through barriers or "
                f"impassable cells (first: {unreached[0][0]} -> {unreached[0][1]})"
            )
            logger.warning(message)
            warnings.warn(message, UnreachableTargetWarning, stacklevel=2)

        result = RoutingResult(
            paths=tuple(paths),
            surfaces={
                "cost_distance": demand_cost,
                "accessibility": accessibility,
                "source_potential": potential,
            },
            candidate_pairs=pairs,
            completed=completed,
            partials=tuple(partials),
            unreached=tuple(unreached),
            router=self.name,
        )
        self._log_finish(result)
        return result


ROUTERS = {
    "direct": DirectSamplingRouter,
    "terrain": TerrainRouter,
    "cost-distance": CostDistanceRouter,
}


def get_router(strategy: str, **kwargs) -> PathRouter:
    """
    Instantiate a router by strategy name.

    Raises:
        InvalidParameterError: If strategy is unknown
    """
    if strategy not in ROUTERS:
        raise InvalidParameterError(f"Unknown routing strategy '{strategy}'. Available: {list(ROUTERS.keys())}")
    return ROUTERS[strategy](**kwargs)
