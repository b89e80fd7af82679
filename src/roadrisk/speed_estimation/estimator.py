from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from roadrisk.speed_estimation.math import EARTH_RADIUS_M, speed_kmh_between
from roadrisk.speed_estimation.smoothing import EmaSmoother
from roadrisk.speed_estimation.units import mps_to_kmh
from roadrisk.utils.types import PositionSample, SpeedReading


logger = logging.getLogger("roadrisk.speed_estimation.estimator")


@dataclass(frozen=True)
class SpeedEstimatorConfig:
    smoothing_alpha: float = 0.7
    min_dt_s: float = 0.5
    max_plausible_kmh: float = 200.0
    earth_radius_m: float = EARTH_RADIUS_M

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "SpeedEstimatorConfig":
        alpha = float(d.get("smoothing_alpha", 0.7))
        if not 0.0 <= alpha <= 1.0:
            raise ValueError("speed.smoothing_alpha must be within [0, 1]")
        return SpeedEstimatorConfig(
            smoothing_alpha=alpha,
            min_dt_s=float(d.get("min_dt_s", 0.5)),
            max_plausible_kmh=float(d.get("max_plausible_kmh", 200.0)),
            earth_radius_m=float(d.get("earth_radius_m", EARTH_RADIUS_M)),
        )


@dataclass
class SpeedState:
    last_lat: float
    last_lon: float
    last_timestamp_ms: int
    smoothed_speed_kmh: float


class SpeedEstimator:
    def __init__(self, cfg: Optional[SpeedEstimatorConfig] = None) -> None:
        self._cfg = cfg or SpeedEstimatorConfig()
        self._smoother = EmaSmoother(alpha=self._cfg.smoothing_alpha)
        self._state: Optional[SpeedState] = None

    @property
    def state(self) -> Optional[SpeedState]:
        return self._state

    @property
    def speed_kmh(self) -> Optional[float]:
        return None if self._state is None else self._state.smoothed_speed_kmh

    def update(self, sample: PositionSample) -> SpeedReading:
        inst_kmh, source = self._instantaneous_kmh(sample)
        smoothed = max(0.0, self._smoother.update(inst_kmh))
        self._state = SpeedState(
            last_lat=float(sample.lat),
            last_lon=float(sample.lon),
            last_timestamp_ms=int(sample.timestamp_ms),
            smoothed_speed_kmh=float(smoothed),
        )
        return SpeedReading(
            timestamp_ms=int(sample.timestamp_ms),
            lat=float(sample.lat),
            lon=float(sample.lon),
            instantaneous_kmh=float(inst_kmh),
            smoothed_kmh=float(smoothed),
            source=source,
        )

    def reset(self) -> None:
        self._smoother.reset()
        self._state = None

    def _instantaneous_kmh(self, sample: PositionSample) -> tuple[float, str]:
        if sample.raw_speed_mps is not None:
            return mps_to_kmh(sample.raw_speed_mps), "sensor"
        prev = self._state
        if prev is None:
            return 0.0, "initial"
        dt_s = (float(sample.timestamp_ms) - float(prev.last_timestamp_ms)) / 1000.0
        if dt_s <= self._cfg.min_dt_s:
            return 0.0, "short_interval"
        v = speed_kmh_between(
            (prev.last_lat, prev.last_lon),
            prev.last_timestamp_ms,
            (sample.lat, sample.lon),
            sample.timestamp_ms,
            radius_m=self._cfg.earth_radius_m,
        )
        if v is None:
            return 0.0, "short_interval"
        if v > self._cfg.max_plausible_kmh:
            logger.debug("Discarding implausible derived speed %.1f km/h (dt=%.2fs)", v, dt_s)
            return 0.0, "glitch"
        return float(v), "derived"
