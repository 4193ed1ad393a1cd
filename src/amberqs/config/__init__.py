"""Run configuration and closed-set force-field / water-model resolution."""
from .options import (
    FORCEFIELDS,
    WATER_MODELS,
    RunConfig,
    load_config,
    resolve_forcefield,
    resolve_water_model,
)

__all__ = [
    "FORCEFIELDS",
    "WATER_MODELS",
    "RunConfig",
    "load_config",
    "resolve_forcefield",
    "resolve_water_model",
]
