from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Mapping, Optional

from roadrisk.utils.types import PositionSample


logger = logging.getLogger("roadrisk.io.sampler")


def _first(d: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return None


def _finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(v) or math.isinf(v):
        return None
    return v


class PositionSampler:
    """Turns raw fixes from a position source into ``PositionSample`` values.

    Accepts both browser-style keys (``latitude``/``longitude``/``speed``) and the short
    forms (``lat``/``lon``/``speed_mps``). Fixes without usable coordinates are dropped.
    """

    def __init__(self, clock_ms: Optional[Callable[[], int]] = None) -> None:
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self._last: Optional[PositionSample] = None

    @property
    def current(self) -> Optional[PositionSample]:
        return self._last

    def normalize(self, fix: Mapping[str, Any]) -> Optional[PositionSample]:
        lat = _finite(_first(fix, "latitude", "lat"))
        lon = _finite(_first(fix, "longitude", "lon", "lng"))
        if lat is None or lon is None or abs(lat) > 90.0 or abs(lon) > 180.0:
            logger.warning("Dropping fix with invalid coordinates: %r", dict(fix))
            return None

        ts = _finite(_first(fix, "timestamp_ms", "timestamp"))
        timestamp_ms = int(ts) if ts is not None else int(self._clock_ms())

        speed = _finite(_first(fix, "speed_mps", "speed"))
        if speed is not None and speed < 0.0:
            speed = None

        sample = PositionSample(lat=float(lat), lon=float(lon), timestamp_ms=timestamp_ms, raw_speed_mps=speed)
        self._last = sample
        return sample

    def reset(self) -> None:
        self._last = None
