from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from roadrisk.io.position_source import PositionSource, PositionUnavailableError
from roadrisk.io.sampler import PositionSampler
from roadrisk.output.alerts import AlertConfig, AlertStateMachine
from roadrisk.output.channels import create_banner, create_notifier, create_voice
from roadrisk.risk.client import RiskClient, RiskServiceConfig
from roadrisk.risk.poller import PollerConfig, QueryOutcome, RiskBackend, RiskPoller
from roadrisk.speed_estimation.estimator import SpeedEstimator, SpeedEstimatorConfig
from roadrisk.utils.config import section
from roadrisk.utils.timers import AsyncioScheduler, Scheduler
from roadrisk.utils.types import PositionSample, RiskReport, SpeedReading, WeatherForecast


logger = logging.getLogger("roadrisk.pipeline.monitor")


@dataclass(frozen=True)
class MonitorConfig:
    speed: SpeedEstimatorConfig = field(default_factory=SpeedEstimatorConfig)
    risk_service: RiskServiceConfig = field(default_factory=RiskServiceConfig)
    poller: PollerConfig = field(default_factory=PollerConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    voice: Dict[str, Any] = field(default_factory=dict)
    notifier: Dict[str, Any] = field(default_factory=dict)
    banner: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_dict(d: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> "MonitorConfig":
        channels = section(d, "channels")
        return MonitorConfig(
            speed=SpeedEstimatorConfig.from_dict(section(d, "speed")),
            risk_service=RiskServiceConfig.from_dict(section(d, "risk_service"), environ),
            poller=PollerConfig.from_dict(section(d, "poller")),
            alerts=AlertConfig.from_dict(section(d, "alerts")),
            voice=section(channels, "voice"),
            notifier=section(channels, "notifier"),
            banner=section(channels, "banner"),
        )


@dataclass
class MonitorState:
    tracking: bool = False
    position: Optional[PositionSample] = None
    speed_kmh: int = 0
    latest_report: Optional[RiskReport] = None
    current_weather: Optional[str] = None
    weather_forecast: Optional[WeatherForecast] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    loading: bool = False
    reports_received: int = 0


class RoadRiskMonitor:
    """Live tracking session for one vehicle.

    Position fixes flow through the sampler and speed estimator; the poller decides when
    to query the risk service and every fresh report is offered to the alert machine.
    Results of queries started before the current session are discarded.
    """

    def __init__(
        self,
        estimator: SpeedEstimator,
        backend: RiskBackend,
        alerts: AlertStateMachine,
        poller_cfg: Optional[PollerConfig] = None,
        clock_ms: Optional[Callable[[], int]] = None,
    ) -> None:
        self._estimator = estimator
        self._backend = backend
        self._alerts = alerts
        self._sampler = PositionSampler(clock_ms=clock_ms)
        self._poller = RiskPoller(poller_cfg or PollerConfig(), backend, self._apply_outcome, clock_ms=clock_ms)
        self._state = MonitorState()
        self._generation = 0
        self._watch_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> MonitorState:
        return dataclasses.replace(self._state, loading=self._poller.loading)

    @property
    def alerts(self) -> AlertStateMachine:
        return self._alerts

    @property
    def poller(self) -> RiskPoller:
        return self._poller

    async def track(self, source: PositionSource) -> None:
        if self._state.tracking:
            self.stop()
        self._generation += 1
        self._estimator.reset()
        self._sampler.reset()
        self._state.tracking = True
        self._state.error = None
        self._state.error_kind = None
        self._state.speed_kmh = 0
        logger.info("Tracking started (session %d)", self._generation)

        task = asyncio.create_task(self._consume(source))
        self._watch_task = task
        try:
            await task
            if self._watch_task is task:
                logger.info("Position source ended")
                # Queries started by the last fixes still belong to this session.
                await self._poller.drain()
        except asyncio.CancelledError:
            if self._watch_task is task:
                self._end_session()
                raise
            return
        except PositionUnavailableError as e:
            logger.error("Position source failed (%s): %s", e.code, e.reason)
            if self._watch_task is task:
                self._end_session(error=e.user_message, error_kind="position")
            return
        if self._watch_task is task:
            self._end_session()

    def stop(self) -> None:
        task = self._watch_task
        if task is None and not self._state.tracking:
            return
        self._watch_task = None
        if task is not None and not task.done():
            task.cancel()
        self._end_session()

    def handle_fix(self, fix: Mapping[str, Any]) -> Optional[SpeedReading]:
        sample = self._sampler.normalize(fix)
        if sample is None:
            return None
        self._state.position = sample
        reading = self._estimator.update(sample)
        self._state.speed_kmh = reading.rounded_kmh
        if self._state.tracking:
            self._poller.maybe_query(sample.lat, sample.lon, reading.smoothed_kmh, token=self._generation)
        return reading

    def query_point(self, lat: float, lon: float) -> asyncio.Task:
        return self._poller.query_now(lat, lon, self._estimator.speed_kmh, token=self._generation)

    def dismiss_alert(self) -> bool:
        return self._alerts.dismiss()

    async def drain(self) -> None:
        await self._poller.drain()

    async def close(self) -> None:
        self.stop()
        self._alerts.close()
        await self.drain()
        await self._alerts.drain()
        close = getattr(self._backend, "close", None)
        if close is not None:
            await close()

    async def _consume(self, source: PositionSource) -> None:
        async for fix in source.watch():
            self.handle_fix(fix)

    def _end_session(self, error: Optional[str] = None, error_kind: Optional[str] = None) -> None:
        was_tracking = self._state.tracking
        self._generation += 1
        self._watch_task = None
        self._estimator.reset()
        self._sampler.reset()
        self._alerts.close()
        self._state.tracking = False
        self._state.latest_report = None
        self._state.speed_kmh = 0
        if error is not None:
            self._state.error = error
            self._state.error_kind = error_kind
        if was_tracking:
            logger.info("Tracking stopped")

    def _apply_outcome(self, outcome: QueryOutcome) -> None:
        if outcome.token != self._generation:
            logger.debug("Discarding risk result from an ended session")
            return
        if outcome.error is not None:
            self._state.error = outcome.error.user_message
            self._state.error_kind = outcome.error.kind
            return
        report = outcome.report
        if report is None:
            return
        self._state.error = None
        self._state.error_kind = None
        self._state.latest_report = report
        self._state.reports_received += 1
        if report.factors.weather.description:
            self._state.current_weather = report.factors.weather.description
        if outcome.forecast is not None:
            self._state.weather_forecast = outcome.forecast
        self._alerts.offer(report)


def build_monitor(
    cfg: MonitorConfig,
    scheduler: Optional[Scheduler] = None,
    backend: Optional[RiskBackend] = None,
    clock_ms: Optional[Callable[[], int]] = None,
) -> RoadRiskMonitor:
    clock_ms = clock_ms or (lambda: int(time.time() * 1000))
    if not cfg.risk_service.configured:
        logger.warning("Risk service base URL is not configured; risk queries will report an error")
    alerts = AlertStateMachine(
        cfg.alerts,
        voice=create_voice(cfg.voice),
        notifier=create_notifier(cfg.notifier),
        banner=create_banner(cfg.banner),
        scheduler=scheduler or AsyncioScheduler(),
        clock_ms=clock_ms,
    )
    return RoadRiskMonitor(
        estimator=SpeedEstimator(cfg.speed),
        backend=backend or RiskClient(cfg.risk_service),
        alerts=alerts,
        poller_cfg=cfg.poller,
        clock_ms=clock_ms,
    )
