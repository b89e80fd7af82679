from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Set

from roadrisk.risk.errors import RiskServiceError
from roadrisk.utils.types import RiskReport, WeatherForecast, round_half_up, score_band


logger = logging.getLogger("roadrisk.risk.poller")


@dataclass(frozen=True)
class PollerConfig:
    throttle_ms: int = 5000
    default_speed_kmh: float = 40.0
    fetch_forecast: bool = True

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "PollerConfig":
        throttle_ms = int(d.get("throttle_ms", 5000))
        if throttle_ms < 0:
            raise ValueError("poller.throttle_ms must be >= 0")
        return PollerConfig(
            throttle_ms=throttle_ms,
            default_speed_kmh=float(d.get("default_speed_kmh", 40.0)),
            fetch_forecast=bool(d.get("fetch_forecast", True)),
        )


class RiskBackend(Protocol):
    async def fetch_risk(self, lat: float, lon: float, speed_kmh: int) -> RiskReport:
        ...

    async def fetch_weather_forecast(self, lat: float, lon: float) -> Optional[WeatherForecast]:
        ...


@dataclass(frozen=True)
class QueryOutcome:
    token: int
    lat: float
    lon: float
    speed_kmh: int
    manual: bool
    report: Optional[RiskReport] = None
    error: Optional[RiskServiceError] = None
    forecast: Optional[WeatherForecast] = None

    @property
    def ok(self) -> bool:
        return self.report is not None


class RiskPoller:
    """Gates calls to the risk service by wall-clock time and reports each outcome.

    Automatic queries fire only when more than ``throttle_ms`` has passed since the last
    one; skipped triggers are dropped, never queued. Manual queries always fire.
    ``token`` is opaque to the poller and handed back with the outcome.
    """

    def __init__(
        self,
        cfg: PollerConfig,
        backend: RiskBackend,
        on_outcome: Callable[[QueryOutcome], None],
        clock_ms: Optional[Callable[[], int]] = None,
    ) -> None:
        self._cfg = cfg
        self._backend = backend
        self._on_outcome = on_outcome
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self._last_query_at_ms: Optional[int] = None
        self._in_flight = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loading(self) -> bool:
        return self._in_flight > 0

    @property
    def last_query_at_ms(self) -> Optional[int]:
        return self._last_query_at_ms

    def maybe_query(self, lat: float, lon: float, speed_kmh: float, token: int = 0) -> Optional[asyncio.Task]:
        now = int(self._clock_ms())
        if self._last_query_at_ms is not None and now - self._last_query_at_ms <= self._cfg.throttle_ms:
            return None
        self._last_query_at_ms = now
        return self._spawn(lat, lon, round_half_up(speed_kmh), token, manual=False)

    def query_now(self, lat: float, lon: float, speed_kmh: Optional[float] = None, token: int = 0) -> asyncio.Task:
        if not speed_kmh:
            speed_kmh = self._cfg.default_speed_kmh
        return self._spawn(lat, lon, round_half_up(speed_kmh), token, manual=True)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, lat: float, lon: float, speed_kmh: int, token: int, manual: bool) -> asyncio.Task:
        task = asyncio.create_task(self._run(float(lat), float(lon), int(speed_kmh), token, manual))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, lat: float, lon: float, speed_kmh: int, token: int, manual: bool) -> QueryOutcome:
        self._in_flight += 1
        try:
            try:
                report = await self._backend.fetch_risk(lat, lon, speed_kmh)
            except RiskServiceError as e:
                logger.warning("Risk query failed (%s) lat=%.6f lon=%.6f: %s", e.kind, lat, lon, e.detail)
                outcome = QueryOutcome(token=token, lat=lat, lon=lon, speed_kmh=speed_kmh, manual=manual, error=e)
            else:
                logger.info(
                    "Risk lat=%.6f lon=%.6f speed=%d score=%d (%s, %s)",
                    lat,
                    lon,
                    speed_kmh,
                    report.display_score,
                    report.risk_level,
                    score_band(report.overall_risk_score),
                )
                forecast = None
                if self._cfg.fetch_forecast:
                    forecast = await self._backend.fetch_weather_forecast(lat, lon)
                outcome = QueryOutcome(
                    token=token, lat=lat, lon=lon, speed_kmh=speed_kmh, manual=manual, report=report, forecast=forecast
                )
        finally:
            self._in_flight -= 1
        self._on_outcome(outcome)
        return outcome
