from .estimator import SpeedEstimator, SpeedEstimatorConfig, SpeedState
from .math import haversine_m, path_length_m
from .units import kmh_to_mps, mps_to_kmh

__all__ = [
    "SpeedEstimator",
    "SpeedEstimatorConfig",
    "SpeedState",
    "haversine_m",
    "kmh_to_mps",
    "mps_to_kmh",
    "path_length_m",
]
