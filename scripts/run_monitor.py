from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from roadrisk.io.position_source import ReplayConfig, ReplayPositionSource, load_fixes
from roadrisk.io.sampler import PositionSampler
from roadrisk.pipeline.monitor import MonitorConfig, RoadRiskMonitor, build_monitor
from roadrisk.speed_estimation.math import path_length_m
from roadrisk.utils.config import load_yaml, resolve_path, section
from roadrisk.utils.logging import setup_logging


logger = logging.getLogger("roadrisk.scripts.run_monitor")


async def _run(monitor: RoadRiskMonitor, source: ReplayPositionSource) -> int:
    try:
        await monitor.track(source)
        await monitor.drain()
        state = monitor.state
        logger.info("Risk reports received: %d", state.reports_received)
        if state.error:
            logger.error("Session ended with error: %s", state.error)
            return 1 if state.error_kind == "position" else 0
        return 0
    finally:
        await monitor.close()


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default="configs/monitor.yaml", help="Monitor YAML")
    ap.add_argument("--track", default=None, help="Recorded fixes (.jsonl or .csv); overrides source.path")
    ap.add_argument("--realtime", action="store_true", help="Pace the replay by fix timestamps")
    ap.add_argument("--time-scale", type=float, default=None, help="Replay speed multiplier when --realtime")
    ap.add_argument("--log-level", default="INFO")
    ap.add_argument("--log-file", default=None)
    args = ap.parse_args()

    base_dir = os.getcwd()
    setup_logging(level=args.log_level, log_file=args.log_file)

    cfg = load_yaml(resolve_path(args.config, base_dir))
    source_cfg = section(cfg, "source")
    if args.track is not None:
        source_cfg["path"] = args.track
    if args.realtime:
        source_cfg["realtime"] = True
    if args.time_scale is not None:
        source_cfg["time_scale"] = args.time_scale
    replay = ReplayConfig.from_dict(source_cfg)
    replay = ReplayConfig(path=resolve_path(replay.path, base_dir), realtime=replay.realtime, time_scale=replay.time_scale)

    monitor = build_monitor(MonitorConfig.from_dict(cfg))
    code = asyncio.run(_run(monitor, ReplayPositionSource(replay)))
    if code != 0:
        sys.exit(code)

    sampler = PositionSampler()
    samples = [s for s in (sampler.normalize(f) for f in load_fixes(replay.path)) if s is not None]
    length_m = path_length_m([(s.lat, s.lon) for s in samples])
    print(f"fixes={len(samples)} path_length_km={length_m / 1000.0:.3f}")
    sys.exit(code)


if __name__ == "__main__":
    main()
