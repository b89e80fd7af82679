from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from roadrisk.io.position_source import load_fixes
from roadrisk.io.sampler import PositionSampler
from roadrisk.speed_estimation.estimator import SpeedEstimator, SpeedEstimatorConfig
from roadrisk.speed_estimation.math import path_length_m
from roadrisk.utils.config import load_yaml, section


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--track", required=True, help="Recorded fixes (.jsonl or .csv)")
    ap.add_argument("--config", default=None, help="Optional monitor YAML for speed settings")
    args = ap.parse_args()

    speed_cfg = SpeedEstimatorConfig()
    if args.config is not None:
        speed_cfg = SpeedEstimatorConfig.from_dict(section(load_yaml(args.config), "speed"))

    sampler = PositionSampler()
    est = SpeedEstimator(speed_cfg)
    smoothed = []
    points = []
    sources = {}
    for fix in load_fixes(args.track):
        s = sampler.normalize(fix)
        if s is None:
            continue
        r = est.update(s)
        smoothed.append(r.smoothed_kmh)
        points.append((s.lat, s.lon))
        sources[r.source] = sources.get(r.source, 0) + 1
    if not smoothed:
        raise RuntimeError("No valid fixes found")

    v = np.asarray(smoothed, dtype=np.float64)
    print(f"fixes={len(v)} path_length_km={path_length_m(points) / 1000.0:.3f}")
    print(f"mean_kmh={float(np.mean(v)):.2f} p95_kmh={float(np.percentile(v, 95)):.2f} max_kmh={float(np.max(v)):.2f}")
    print(" ".join(f"{k}={n}" for k, n in sorted(sources.items())))


if __name__ == "__main__":
    main()
