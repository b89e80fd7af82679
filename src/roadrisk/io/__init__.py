from .position_source import (
    PositionSource,
    PositionUnavailableError,
    QueuePositionSource,
    ReplayConfig,
    ReplayPositionSource,
    load_fixes,
)
from .sampler import PositionSampler

__all__ = [
    "PositionSampler",
    "PositionSource",
    "PositionUnavailableError",
    "QueuePositionSource",
    "ReplayConfig",
    "ReplayPositionSource",
    "load_fixes",
]
