#!/usr/bin/env python3
"""
Synthetic landscape demo: run every flow model on a generated raster.

Builds a tilted hillslope with a ridge, scatters sources on the upper slope
and beneficiaries in the valley, then prints efficiency, flow typology and
bottlenecks for each flow model.

Usage:
    python examples/synthetic_landscape.py
    python examples/synthetic_landscape.py --size 80 --workers 4
    python examples/synthetic_landscape.py --model proximity --alpha 0.2 --max-distance 30
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import numpy as np

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import SUPPORTED_FLOW_MODELS, configure_logging
from src.serviceflow import Parameters, ServiceFlowEngine, ServiceFlowError

logger = logging.getLogger(__name__)


def make_landscape(size: int, seed: int = 0) -> dict:
    """Hillslope draining south-east with a resistant ridge across the middle."""
    rng = np.random.default_rng(seed)
    rows, cols = np.mgrid[0:size, 0:size].astype(float)

    elevation = 200.0 - 1.5 * rows - 0.5 * cols + rng.normal(0, 0.05, (size, size))
    ridge = np.exp(-((rows - size / 2) ** 2) / (size / 8) ** 2)
    elevation += 3.0 * ridge

    supply = np.where((rows < size / 3) & (rng.random((size, size)) > 0.85), rng.uniform(1, 4, (size, size)), 0.0)
    demand = np.where((rows > 2 * size / 3) & (rng.random((size, size)) > 0.85), rng.uniform(1, 4, (size, size)), 0.0)
    # Balance totals so the conservation check passes
    demand *= supply.sum() / demand.sum()

    resistance = 0.1 + 0.8 * ridge + rng.uniform(0, 0.1, (size, size))
    return {"supply": supply, "demand": demand, "resistance": resistance, "spatial": elevation}


def main():
    parser = argparse.ArgumentParser(description="Run service flow models on a synthetic landscape")
    parser.add_argument("--size", type=int, default=40, help="Grid size in cells")
    parser.add_argument("--model", type=str, default=None, choices=SUPPORTED_FLOW_MODELS,
                        help="Single flow model to run (default: all)")
    parser.add_argument("--alpha", type=float, default=0.5, help="Distance decay coefficient")
    parser.add_argument("--max-distance", type=float, default=25.0, help="Path cutoff in map units")
    parser.add_argument("--workers", type=int, default=None, help="Worker processes for routing")
    parser.add_argument("--time-budget", type=float, default=None, help="Seconds before routing stops")
    parser.add_argument("--seed", type=int, default=0, help="Random seed")
    parser.add_argument("--json", type=str, default=None, help="Write summaries to this JSON file")
    parser.add_argument("--log-level", type=str, default="INFO")
    args = parser.parse_args()

    configure_logging(args.log_level)

    layers = make_landscape(args.size, args.seed)
    print(f"Landscape: {args.size}x{args.size}, "
          f"{int((layers['supply'] > 0).sum())} sources, {int((layers['demand'] > 0).sum())} users", flush=True)

    engine = ServiceFlowEngine(
        Parameters(alpha=args.alpha, max_distance=args.max_distance),
        max_workers=args.workers,
        time_budget=args.time_budget,
        show_progress=True,
    )

    models = [args.model] if args.model else list(SUPPORTED_FLOW_MODELS)
    summaries = {}
    failed = 0
    for model in models:
        try:
            result = engine.analyze(flow_model=model, **layers)
        except ServiceFlowError as e:
            logger.error(f"{model}: {e}")
            failed += 1
            continue

        flows = result.dispatch.summary
        print(f"\n{model} ({result.dispatch.router})", flush=True)
        print(f"  paths:       {result.statistics.path_count}", flush=True)
        print(f"  efficiency:  {result.statistics.efficiency:.3f}", flush=True)
        print(f"  theoretical: {flows['theoretical_flow']:.2f}  actual: {flows['actual_flow']:.2f}  "
              f"blocked: {flows['blocked_flow']:.2f}  used: {flows['used_flow']:.2f}", flush=True)
        print(f"  uncertainty: {result.uncertainty.combined:.3f}"
              f"{' (above threshold)' if result.uncertainty.exceeds_threshold else ''}", flush=True)
        for b in result.bottlenecks:
            print(f"  bottleneck ({b.row}, {b.col}) score {b.score:.3f}", flush=True)
        if not result.completed:
            print("  (partial: time budget reached)", flush=True)
        summaries[model] = result.summary()

    if args.json:
        Path(args.json).write_text(json.dumps(summaries, indent=2))
        print(f"\nSummaries written to {args.json}", flush=True)

    return failed == 0


if __name__ == "__main__":
    sys.exit(0 if main() else 1)
