from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from roadrisk.risk.client import RiskClient, RiskServiceConfig
from roadrisk.risk.errors import RiskServiceError
from roadrisk.utils.config import load_yaml, resolve_path, section
from roadrisk.utils.logging import setup_logging
from roadrisk.utils.types import score_band

EXPECTED_FACTORS = ("accident_hotspot", "weather", "current_speed")


async def _query(cfg: RiskServiceConfig, lat: float, lon: float, speed: int) -> int:
    async with RiskClient(cfg) as client:
        try:
            report = await client.fetch_risk(lat, lon, speed)
        except RiskServiceError as e:
            print(f"FAILED ({e.kind}): {e.user_message}")
            return 1
        print(json.dumps(report.raw, indent=2, ensure_ascii=False))
        factors = report.raw.get("factors") or {}
        missing = [k for k in EXPECTED_FACTORS if k not in factors]
        if missing:
            print(f"missing factors: {', '.join(missing)}")
        print(f"score={report.display_score} level={report.risk_level} band={score_band(report.overall_risk_score)}")
        forecast = await client.fetch_weather_forecast(lat, lon)
        if forecast is not None:
            print(f"forecast: {forecast.description} temp={forecast.temp} wind={forecast.wind_speed}")
    return 0


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default="configs/monitor.yaml", help="Monitor YAML")
    ap.add_argument("--lat", type=float, required=True)
    ap.add_argument("--lon", type=float, required=True)
    ap.add_argument("--speed", type=int, default=60, help="Speed in km/h")
    ap.add_argument("--log-level", default="WARNING")
    args = ap.parse_args()

    setup_logging(level=args.log_level, log_file=None)
    cfg = load_yaml(resolve_path(args.config, os.getcwd()))
    service = RiskServiceConfig.from_dict(section(cfg, "risk_service"))
    sys.exit(asyncio.run(_query(service, args.lat, args.lon, args.speed)))


if __name__ == "__main__":
    main()
