from .config import api_base_url, load_yaml, resolve_path, section
from .logging import setup_logging
from .timers import AsyncioScheduler, Scheduler, TimerHandle
from .types import (
    AccidentHotspotFactor,
    CurrentSpeedFactor,
    PositionSample,
    RiskFactors,
    RiskReport,
    SpeedReading,
    WeatherFactor,
    WeatherForecast,
    clamp_score,
    round_half_up,
    score_band,
)

__all__ = [
    "AccidentHotspotFactor",
    "AsyncioScheduler",
    "CurrentSpeedFactor",
    "PositionSample",
    "RiskFactors",
    "RiskReport",
    "Scheduler",
    "SpeedReading",
    "TimerHandle",
    "WeatherFactor",
    "WeatherForecast",
    "api_base_url",
    "clamp_score",
    "load_yaml",
    "resolve_path",
    "round_half_up",
    "score_band",
    "section",
    "setup_logging",
]
