from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class PositionSample:
    lat: float
    lon: float
    timestamp_ms: int
    raw_speed_mps: Optional[float] = None

    @property
    def has_speed(self) -> bool:
        return self.raw_speed_mps is not None


@dataclass(frozen=True)
class SpeedReading:
    timestamp_ms: int
    lat: float
    lon: float
    instantaneous_kmh: float
    smoothed_kmh: float
    source: str

    @property
    def rounded_kmh(self) -> int:
        return round_half_up(self.smoothed_kmh)


def _num(value: Any, default: float = 0.0) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return float(default)
    if math.isnan(v):
        return float(default)
    return v


def _str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def round_half_up(value: float) -> int:
    return int(math.floor(float(value) + 0.5))


def clamp_score(score: float) -> int:
    return max(0, min(100, round_half_up(score)))


def score_band(score: Optional[float]) -> str:
    s = _num(score)
    if s >= 70.0:
        return "high"
    if s >= 40.0:
        return "moderate"
    return "low"


@dataclass(frozen=True)
class AccidentHotspotFactor:
    score: float = 0.0
    label: str = ""
    message: str = ""


@dataclass(frozen=True)
class WeatherFactor:
    score: float = 0.0
    description: str = ""


@dataclass(frozen=True)
class CurrentSpeedFactor:
    score: float = 0.0
    speed_kmh: float = 0.0
    message: str = ""


@dataclass(frozen=True)
class RiskFactors:
    accident_hotspot: AccidentHotspotFactor = field(default_factory=AccidentHotspotFactor)
    weather: WeatherFactor = field(default_factory=WeatherFactor)
    current_speed: CurrentSpeedFactor = field(default_factory=CurrentSpeedFactor)

    @staticmethod
    def from_dict(d: Optional[Mapping[str, Any]]) -> "RiskFactors":
        d = _mapping(d)
        hot = _mapping(d.get("accident_hotspot"))
        weather = _mapping(d.get("weather"))
        speed = _mapping(d.get("current_speed"))
        return RiskFactors(
            accident_hotspot=AccidentHotspotFactor(
                score=_num(hot.get("score")),
                label=_str(hot.get("label")),
                message=_str(hot.get("message")),
            ),
            weather=WeatherFactor(
                score=_num(weather.get("score")),
                description=_str(weather.get("description")),
            ),
            current_speed=CurrentSpeedFactor(
                score=_num(speed.get("score")),
                speed_kmh=_num(speed.get("speed_kmh")),
                message=_str(speed.get("message")),
            ),
        )


@dataclass(frozen=True)
class RiskReport:
    overall_risk_score: float
    risk_level: str
    factors: RiskFactors
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def display_score(self) -> int:
        return clamp_score(self.overall_risk_score)

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "RiskReport":
        if not isinstance(d, Mapping):
            raise ValueError("Risk report must be a JSON object")
        if "overall_risk_score" not in d:
            raise ValueError("Risk report is missing 'overall_risk_score'")
        return RiskReport(
            overall_risk_score=_num(d.get("overall_risk_score")),
            risk_level=_str(d.get("risk_level"), "Unknown"),
            factors=RiskFactors.from_dict(d.get("factors")),
            raw=dict(d),
        )


@dataclass(frozen=True)
class WeatherForecast:
    temp: Optional[float]
    description: str
    time: Optional[str]
    wind_speed: Optional[float]
    visibility: Optional[float]

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "WeatherForecast":
        def _opt(key: str) -> Optional[float]:
            v = d.get(key)
            return None if v is None else _num(v)

        return WeatherForecast(
            temp=_opt("temp"),
            description=_str(d.get("description")),
            time=None if d.get("time") is None else str(d.get("time")),
            wind_speed=_opt("wind_speed"),
            visibility=_opt("visibility"),
        )
