from __future__ import annotations

import math
from typing import Optional, Sequence, Tuple

import numpy as np

EARTH_RADIUS_M = 6371000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float, radius_m: float = EARTH_RADIUS_M) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    return float(radius_m * 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a)))


def haversine_m_array(lat_lon_deg: np.ndarray, radius_m: float = EARTH_RADIUS_M) -> np.ndarray:
    """Segment lengths in metres for an (N, 2) array of (lat, lon) degrees; returns N-1 values."""
    pts = np.radians(np.asarray(lat_lon_deg, dtype=np.float64).reshape(-1, 2))
    if pts.shape[0] < 2:
        return np.zeros((0,), dtype=np.float64)
    phi1 = pts[:-1, 0]
    phi2 = pts[1:, 0]
    d_phi = phi2 - phi1
    d_lambda = pts[1:, 1] - pts[:-1, 1]
    a = np.sin(d_phi / 2.0) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(d_lambda / 2.0) ** 2
    a = np.clip(a, 0.0, 1.0)
    return radius_m * 2.0 * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))


def path_length_m(points: Sequence[Tuple[float, float]], radius_m: float = EARTH_RADIUS_M) -> float:
    if len(points) < 2:
        return 0.0
    return float(np.sum(haversine_m_array(np.asarray(points, dtype=np.float64), radius_m=radius_m)))


def speed_kmh_between(
    p0: Tuple[float, float],
    t0_ms: int,
    p1: Tuple[float, float],
    t1_ms: int,
    radius_m: float = EARTH_RADIUS_M,
) -> Optional[float]:
    dt_s = (float(t1_ms) - float(t0_ms)) / 1000.0
    if dt_s <= 0.0:
        return None
    dist = haversine_m(p0[0], p0[1], p1[0], p1[1], radius_m=radius_m)
    return float(dist / dt_s * 3.6)
