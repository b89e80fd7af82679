from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import pytest

from roadrisk.output.alerts import AlertConfig, AlertStateMachine
from roadrisk.output.channels import AlertNotification, BannerPayload, MemoryBanner, Utterance
from roadrisk.utils.types import RiskReport, WeatherForecast


class _ManualTimer:
    def __init__(self, due_s: float, callback: Callable[[], None]) -> None:
        self.due_s = due_s
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    def __init__(self) -> None:
        self.now_s = 0.0
        self.timers: List[_ManualTimer] = []
        self._fired: List[_ManualTimer] = []

    def clock_ms(self) -> int:
        return int(round(self.now_s * 1000.0))

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> _ManualTimer:
        t = _ManualTimer(self.now_s + float(delay_s), callback)
        self.timers.append(t)
        return t

    def live_timers(self) -> List[_ManualTimer]:
        return [t for t in self.timers if not t.cancelled and t not in self._fired]

    def advance(self, seconds: float) -> None:
        target = self.now_s + float(seconds)
        while True:
            due = [t for t in self.live_timers() if t.due_s <= target + 1e-9]
            if not due:
                break
            t = min(due, key=lambda x: x.due_s)
            self.now_s = max(self.now_s, t.due_s)
            self._fired.append(t)
            t.callback()
        self.now_s = target


@dataclass
class RecordingVoice:
    spoken: List[Utterance] = field(default_factory=list)
    cancels: int = 0

    def speak(self, utterance: Utterance) -> None:
        self.spoken.append(utterance)

    def cancel(self) -> None:
        self.cancels += 1


@dataclass
class _RecordingHandle:
    closed: bool = False
    close_calls: int = 0

    def close(self) -> None:
        self.closed = True
        self.close_calls += 1


@dataclass
class RecordingNotifier:
    permission: str = "granted"
    grant_on_request: bool = True
    shown: List[AlertNotification] = field(default_factory=list)
    handles: List[_RecordingHandle] = field(default_factory=list)
    requests: int = 0

    def request_permission(self) -> str:
        self.requests += 1
        if self.permission == "default":
            self.permission = "granted" if self.grant_on_request else "denied"
        return self.permission

    def show(self, notification: AlertNotification) -> _RecordingHandle:
        self.shown.append(notification)
        h = _RecordingHandle()
        self.handles.append(h)
        return h


class FakeBackend:
    def __init__(self, reports: Optional[List[Any]] = None, gate: Optional[asyncio.Event] = None) -> None:
        self.reports = list(reports or [])
        self.gate = gate
        self.calls: List[tuple] = []
        self.forecast: Optional[WeatherForecast] = None

    async def fetch_risk(self, lat: float, lon: float, speed_kmh: int) -> RiskReport:
        self.calls.append((lat, lon, speed_kmh))
        if self.gate is not None:
            await self.gate.wait()
        item = self.reports.pop(0) if len(self.reports) > 1 else (self.reports[0] if self.reports else None)
        if isinstance(item, Exception):
            raise item
        if item is None:
            item = make_report(10)
        return item

    async def fetch_weather_forecast(self, lat: float, lon: float) -> Optional[WeatherForecast]:
        return self.forecast


def make_report(
    score: float,
    hotspot: float = 0.0,
    weather: float = 0.0,
    speed: float = 0.0,
    level: str = "Bad",
    weather_description: str = "Clear sky",
    speed_kmh: float = 60.0,
) -> RiskReport:
    d: Dict[str, Any] = {
        "overall_risk_score": score,
        "risk_level": level,
        "factors": {
            "accident_hotspot": {"score": hotspot, "label": "High", "message": "25+ accidents reported nearby."},
            "weather": {"score": weather, "description": weather_description},
            "current_speed": {"score": speed, "speed_kmh": speed_kmh, "message": "Speed noted."},
        },
    }
    return RiskReport.from_dict(d)


@dataclass
class AlertRig:
    machine: AlertStateMachine
    scheduler: ManualScheduler
    voice: RecordingVoice
    notifier: RecordingNotifier
    banner: MemoryBanner


def build_alert_rig(permission: str = "granted", cfg: Optional[AlertConfig] = None) -> AlertRig:
    scheduler = ManualScheduler()
    voice = RecordingVoice()
    notifier = RecordingNotifier(permission=permission)
    banner = MemoryBanner()
    machine = AlertStateMachine(
        cfg or AlertConfig(),
        voice=voice,
        notifier=notifier,
        banner=banner,
        scheduler=scheduler,
        clock_ms=scheduler.clock_ms,
    )
    return AlertRig(machine=machine, scheduler=scheduler, voice=voice, notifier=notifier, banner=banner)


async def settle(n: int = 20) -> None:
    for _ in range(n):
        await asyncio.sleep(0)


@pytest.fixture
def alert_rig() -> AlertRig:
    return build_alert_rig()
