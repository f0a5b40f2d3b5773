"""Configuration module for the service-flow project.

Centralizes default analysis parameters and logging settings.
"""
import logging
from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Default settings
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Default analysis parameters (see src.serviceflow.parameters.Parameters)
DEFAULT_PARAMETERS = {
    "alpha": 0.5,
    "beta": 0.5,
    "gamma": 1.0,
    "max_distance": 100.0,
    "flow_threshold": 0.0,
    "resistance_factor": 1.0,
    "distance_decay": "exponential",
    "source_type": "finite",
    "sink_type": "finite",
    "use_type": "finite",
    "benefit_type": "rival",
    "cell_width": 1.0,
    "cell_height": 1.0,
    "validation_threshold": 0.5,
    "uncertainty_threshold": 0.5,
    "source_threshold": 0.0,
    "sink_threshold": 0.0,
    "use_threshold": 0.0,
    "top_n_bottlenecks": 5,
}

# Flow models understood by the dispatcher
SUPPORTED_FLOW_MODELS = (
    "surface-water",
    "flood-water",
    "sediment",
    "carbon",
    "line-of-sight",
    "proximity",
    "coastal-storm-protection",
    "subsistence-fisheries",
)


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """Install a root handler for scripts and notebooks (library code never calls this)."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=DEFAULT_LOG_FORMAT)
