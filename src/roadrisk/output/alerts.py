from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from roadrisk.output.channels import (
    PERMISSION_DEFAULT,
    PERMISSION_GRANTED,
    AlertNotification,
    BannerPayload,
    BannerSurface,
    NotificationChannel,
    NotificationHandle,
    Utterance,
    VoiceChannel,
)
from roadrisk.utils.timers import Scheduler, TimerHandle
from roadrisk.utils.types import RiskReport


logger = logging.getLogger("roadrisk.output.alerts")


class AlertState(enum.Enum):
    IDLE = "idle"
    ACTIVE = "active"


class Severity(enum.Enum):
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AlertConfig:
    threshold: float = 70.0
    critical_threshold: float = 85.0
    factor_threshold: float = 70.0
    auto_dismiss_s: float = 10.0
    notification_auto_close_s: float = 10.0
    lang: str = "en-US"
    notification_tag: str = "road-safety-alert"
    vibrate: Tuple[int, ...] = (200, 100, 200, 100, 200)

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "AlertConfig":
        threshold = float(d.get("threshold", 70.0))
        critical = float(d.get("critical_threshold", 85.0))
        if critical < threshold:
            raise ValueError("alerts.critical_threshold must be >= alerts.threshold")
        auto_dismiss_s = float(d.get("auto_dismiss_s", 10.0))
        if auto_dismiss_s <= 0.0:
            raise ValueError("alerts.auto_dismiss_s must be > 0")
        vibrate = d.get("vibrate", [200, 100, 200, 100, 200]) or []
        if not isinstance(vibrate, list):
            raise ValueError("alerts.vibrate must be a list of milliseconds")
        return AlertConfig(
            threshold=threshold,
            critical_threshold=critical,
            factor_threshold=float(d.get("factor_threshold", 70.0)),
            auto_dismiss_s=auto_dismiss_s,
            notification_auto_close_s=float(d.get("notification_auto_close_s", 10.0)),
            lang=str(d.get("lang", "en-US")),
            notification_tag=str(d.get("notification_tag", "road-safety-alert")),
            vibrate=tuple(int(x) for x in vibrate),
        )


def classify(score: float, cfg: AlertConfig) -> Severity:
    return Severity.CRITICAL if float(score) >= cfg.critical_threshold else Severity.WARNING


def compose_alert_message(report: RiskReport, factor_threshold: float = 70.0) -> str:
    f = report.factors
    parts: List[str] = []
    if f.accident_hotspot.score >= factor_threshold:
        parts.append(f"High accident risk area detected! {f.accident_hotspot.message}".rstrip())
    if f.weather.score >= factor_threshold:
        parts.append(f"Dangerous weather conditions: {f.weather.description}")
    if f.current_speed.score >= factor_threshold:
        parts.append(f"Excessive speed detected: {f.current_speed.speed_kmh:g} km/h")
    if not parts:
        parts.append(f"High risk area detected! Risk score: {report.display_score}")
    return " ".join(parts)


def recommendations(report: RiskReport, factor_threshold: float = 70.0) -> Tuple[str, ...]:
    f = report.factors
    out: List[str] = []
    if f.accident_hotspot.score >= factor_threshold:
        out.append("Reduce speed and increase following distance")
    if f.weather.score >= factor_threshold:
        out.append("Use headlights and reduce speed for weather conditions")
    if f.current_speed.score >= factor_threshold:
        out.append("Slow down to a safe speed immediately")
    out.append("Stay alert and be prepared to react")
    return tuple(out)


def build_utterance(message: str, severity: Severity, cfg: AlertConfig) -> Utterance:
    if severity is Severity.CRITICAL:
        return Utterance(
            text=f"Critical alert! {message}. Reduce speed immediately!",
            lang=cfg.lang,
            rate=1.1,
            pitch=1.2,
            volume=1.0,
        )
    return Utterance(
        text=f"Warning! {message}. Please drive carefully.",
        lang=cfg.lang,
        rate=1.0,
        pitch=1.0,
        volume=0.9,
    )


def build_notification(message: str, severity: Severity, cfg: AlertConfig) -> AlertNotification:
    critical = severity is Severity.CRITICAL
    return AlertNotification(
        title="CRITICAL ROAD ALERT" if critical else "HIGH RISK ALERT",
        body=message,
        vibrate=cfg.vibrate,
        tag=cfg.notification_tag,
        require_interaction=critical,
        auto_close_s=None if critical else cfg.notification_auto_close_s,
    )


def build_banner(report: RiskReport, message: str, severity: Severity, cfg: AlertConfig) -> BannerPayload:
    return BannerPayload(
        score=report.display_score,
        level=report.risk_level,
        alert_type="critical" if severity is Severity.CRITICAL else "high",
        message=message,
        recommendations=recommendations(report, cfg.factor_threshold),
    )


@dataclass
class AlertSession:
    report: RiskReport
    activated_at_ms: int
    severity: Severity
    message: str
    channels_played: bool = False
    dismiss_timer: Optional[TimerHandle] = None
    notification: Optional[NotificationHandle] = None
    notification_timer: Optional[TimerHandle] = None


class AlertStateMachine:
    """Single-session alert lifecycle: Idle -> Active -> Idle.

    A qualifying report while Idle opens a session and plays every channel once.
    Reports arriving while Active are ignored. The session ends on auto-dismiss,
    ``dismiss()`` or ``close()``; each path cancels the session's timers and speech.
    """

    def __init__(
        self,
        cfg: AlertConfig,
        voice: VoiceChannel,
        notifier: NotificationChannel,
        banner: BannerSurface,
        scheduler: Scheduler,
        clock_ms: Optional[Callable[[], int]] = None,
    ) -> None:
        self._cfg = cfg
        self._voice = voice
        self._notifier = notifier
        self._banner = banner
        self._scheduler = scheduler
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self._state = AlertState.IDLE
        self._session: Optional[AlertSession] = None
        self._spoke = False

    @property
    def state(self) -> AlertState:
        return self._state

    @property
    def session(self) -> Optional[AlertSession]:
        return self._session

    def offer(self, report: RiskReport) -> bool:
        if report.overall_risk_score < self._cfg.threshold:
            return False
        if self._state is AlertState.ACTIVE:
            logger.debug("Alert already active; ignoring report with score %d", report.display_score)
            return False

        severity = classify(report.overall_risk_score, self._cfg)
        session = AlertSession(
            report=report,
            activated_at_ms=int(self._clock_ms()),
            severity=severity,
            message=compose_alert_message(report, self._cfg.factor_threshold),
        )
        self._session = session
        self._state = AlertState.ACTIVE
        logger.info("Alert activated: %s score=%d %s", severity.value, report.display_score, session.message)

        session.dismiss_timer = self._scheduler.call_later(self._cfg.auto_dismiss_s, self._on_auto_dismiss)
        self._play(session)
        return True

    def dismiss(self) -> bool:
        return self._end("dismissed", close_notification=True)

    def close(self) -> None:
        self._end("torn down", close_notification=False)

    async def drain(self) -> None:
        for channel in (self._voice, self._notifier, self._banner):
            drain = getattr(channel, "drain", None)
            if drain is not None:
                await drain()

    def _on_auto_dismiss(self) -> None:
        session = self._session
        if session is not None:
            session.dismiss_timer = None
        self._end("auto-dismissed", close_notification=False)

    def _play(self, session: AlertSession) -> None:
        if session.channels_played:
            return
        session.channels_played = True
        utterance = build_utterance(session.message, session.severity, self._cfg)
        self._safe("voice", self._voice.cancel)
        self._spoke = self._safe("voice", self._voice.speak, utterance) is not _FAILED
        self._safe("notification", self._show_notification, session)
        payload = build_banner(session.report, session.message, session.severity, self._cfg)
        self._safe("banner", self._banner.show, payload, self.dismiss)

    def _show_notification(self, session: AlertSession) -> None:
        permission = self._notifier.permission
        if permission == PERMISSION_DEFAULT:
            permission = self._notifier.request_permission()
        if permission != PERMISSION_GRANTED:
            logger.debug("Notification permission is %s; skipping", permission)
            return
        notification = build_notification(session.message, session.severity, self._cfg)
        handle = self._notifier.show(notification)
        session.notification = handle
        if handle is not None and notification.auto_close_s is not None:
            session.notification_timer = self._scheduler.call_later(
                notification.auto_close_s, lambda: self._on_notification_timeout(session)
            )

    def _on_notification_timeout(self, session: AlertSession) -> None:
        handle = session.notification
        session.notification_timer = None
        session.notification = None
        if handle is not None:
            self._safe("notification", handle.close)

    def _end(self, reason: str, close_notification: bool) -> bool:
        session = self._session
        if self._state is not AlertState.ACTIVE or session is None:
            return False
        if session.dismiss_timer is not None:
            session.dismiss_timer.cancel()
            session.dismiss_timer = None
        if self._spoke:
            self._safe("voice", self._voice.cancel)
            self._spoke = False
        if session.notification_timer is not None:
            session.notification_timer.cancel()
            session.notification_timer = None
            close_notification = True
        if close_notification and session.notification is not None:
            self._safe("notification", session.notification.close)
        self._safe("banner", self._banner.clear)
        self._session = None
        self._state = AlertState.IDLE
        logger.info("Alert %s after %d ms", reason, int(self._clock_ms()) - session.activated_at_ms)
        return True

    def _safe(self, channel: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(*args)
        except Exception:
            logger.exception("Alert %s channel failed", channel)
            return _FAILED


_FAILED = object()
