from __future__ import annotations

import asyncio
import json
import logging
import subprocess
import urllib.request
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Tuple


logger = logging.getLogger("roadrisk.output.channels")

PERMISSION_GRANTED = "granted"
PERMISSION_DENIED = "denied"
PERMISSION_DEFAULT = "default"
_PERMISSIONS = {PERMISSION_GRANTED, PERMISSION_DENIED, PERMISSION_DEFAULT}


@dataclass(frozen=True)
class Utterance:
    text: str
    lang: str
    rate: float
    pitch: float
    volume: float


@dataclass(frozen=True)
class AlertNotification:
    title: str
    body: str
    vibrate: Tuple[int, ...]
    tag: str
    require_interaction: bool
    auto_close_s: Optional[float]


@dataclass(frozen=True)
class BannerPayload:
    score: int
    level: str
    alert_type: str
    message: str
    recommendations: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["recommendations"] = list(self.recommendations)
        return d


class VoiceChannel(Protocol):
    def speak(self, utterance: Utterance) -> None:
        ...

    def cancel(self) -> None:
        ...


class NotificationHandle(Protocol):
    def close(self) -> None:
        ...


class NotificationChannel(Protocol):
    @property
    def permission(self) -> str:
        ...

    def request_permission(self) -> str:
        ...

    def show(self, notification: AlertNotification) -> Optional[NotificationHandle]:
        ...


class BannerSurface(Protocol):
    def show(self, payload: BannerPayload, on_dismiss: Callable[[], Any]) -> None:
        ...

    def clear(self) -> None:
        ...


@dataclass
class LogVoice(VoiceChannel):
    level: str = "WARNING"

    def speak(self, utterance: Utterance) -> None:
        lvl = getattr(logging, str(self.level).upper(), logging.WARNING)
        logger.log(
            lvl,
            "VOICE [%s rate=%.1f pitch=%.1f vol=%.1f] %s",
            utterance.lang,
            utterance.rate,
            utterance.pitch,
            utterance.volume,
            utterance.text,
        )

    def cancel(self) -> None:
        logger.debug("VOICE cancel")


DEFAULT_SPEECH_COMMAND = ["espeak", "-v", "{lang}", "-s", "{rate_wpm}", "-p", "{pitch}", "-a", "{amplitude}", "{text}"]


@dataclass
class CommandVoice(VoiceChannel):
    """Speaks through an external TTS program; each argument is a format template."""

    command: List[str] = field(default_factory=lambda: list(DEFAULT_SPEECH_COMMAND))
    base_rate_wpm: int = 175
    stop_timeout_s: float = 1.0
    _proc: Optional[subprocess.Popen] = None

    def build_args(self, utterance: Utterance) -> List[str]:
        values = {
            "text": utterance.text,
            "lang": utterance.lang.lower(),
            "rate_wpm": str(int(self.base_rate_wpm * utterance.rate)),
            "pitch": str(int(max(0.0, min(99.0, 50.0 * utterance.pitch)))),
            "amplitude": str(int(max(0.0, min(200.0, 100.0 * utterance.volume)))),
        }
        return [str(part).format(**values) for part in self.command]

    def speak(self, utterance: Utterance) -> None:
        self.cancel()
        self._proc = subprocess.Popen(self.build_args(utterance), stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)

    def cancel(self) -> None:
        proc = self._proc
        self._proc = None
        if proc is None or proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=self.stop_timeout_s)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()


@dataclass
class _LogNotificationHandle(NotificationHandle):
    tag: str
    closed: bool = False

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            logger.info("NOTIFICATION closed tag=%s", self.tag)


@dataclass
class LogNotifier(NotificationChannel):
    level: str = "WARNING"
    initial_permission: str = PERMISSION_GRANTED
    grant_on_request: bool = True

    def __post_init__(self) -> None:
        if self.initial_permission not in _PERMISSIONS:
            raise ValueError(f"Unknown notification permission: {self.initial_permission}")
        self._permission = self.initial_permission

    @property
    def permission(self) -> str:
        return self._permission

    def request_permission(self) -> str:
        if self._permission == PERMISSION_DEFAULT:
            self._permission = PERMISSION_GRANTED if self.grant_on_request else PERMISSION_DENIED
        return self._permission

    def show(self, notification: AlertNotification) -> Optional[NotificationHandle]:
        lvl = getattr(logging, str(self.level).upper(), logging.WARNING)
        logger.log(
            lvl,
            "NOTIFICATION %s: %s (tag=%s require_interaction=%s)",
            notification.title,
            notification.body,
            notification.tag,
            notification.require_interaction,
        )
        return _LogNotificationHandle(tag=notification.tag)


@dataclass
class HttpWebhookNotifier(NotificationChannel):
    url: str
    headers: Dict[str, str]
    timeout_s: float = 2.0
    _pending: Set["asyncio.Future[None]"] = field(default_factory=set, init=False, repr=False, compare=False)

    @property
    def permission(self) -> str:
        return PERMISSION_GRANTED if self.url else PERMISSION_DENIED

    def request_permission(self) -> str:
        return self.permission

    def show(self, notification: AlertNotification) -> Optional[NotificationHandle]:
        payload = {
            "type": "road_risk_alert",
            "title": notification.title,
            "body": notification.body,
            "vibrate": list(notification.vibrate),
            "tag": notification.tag,
            "require_interaction": notification.require_interaction,
            "auto_close_s": notification.auto_close_s,
        }
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._post(payload)
        else:
            fut = loop.run_in_executor(None, self._post, payload)
            self._pending.add(fut)
            fut.add_done_callback(self._pending.discard)
        return None

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _post(self, payload: Dict[str, Any]) -> None:
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        req = urllib.request.Request(self.url, data=data, method="POST")
        req.add_header("Content-Type", "application/json")
        for k, v in self.headers.items():
            if k.lower() == "content-type":
                continue
            req.add_header(str(k), str(v))
        try:
            with urllib.request.urlopen(req, timeout=float(self.timeout_s)) as resp:
                _ = resp.read(1)
        except Exception:
            logger.exception("Failed to POST alert notification to webhook")


@dataclass
class MemoryBanner(BannerSurface):
    """Holds the banner a UI should currently render; ``dismiss`` is the user's close button."""

    current: Optional[BannerPayload] = None
    shown_count: int = 0
    _on_dismiss: Optional[Callable[[], Any]] = None

    def show(self, payload: BannerPayload, on_dismiss: Callable[[], Any]) -> None:
        self.current = payload
        self.shown_count += 1
        self._on_dismiss = on_dismiss

    def clear(self) -> None:
        self.current = None
        self._on_dismiss = None

    def dismiss(self) -> None:
        cb = self._on_dismiss
        if cb is not None:
            cb()


@dataclass
class LogBanner(BannerSurface):
    level: str = "WARNING"

    def show(self, payload: BannerPayload, on_dismiss: Callable[[], Any]) -> None:
        lvl = getattr(logging, str(self.level).upper(), logging.WARNING)
        logger.log(
            lvl,
            "BANNER %s score=%d/100 (%s): %s | %s",
            payload.alert_type.upper(),
            payload.score,
            payload.level,
            payload.message,
            "; ".join(payload.recommendations),
        )

    def clear(self) -> None:
        logger.debug("BANNER cleared")


def create_voice(cfg: Dict[str, Any]) -> VoiceChannel:
    t = str(cfg.get("type", "log")).lower()
    if t == "log":
        return LogVoice(level=str(cfg.get("level", "WARNING")))
    if t == "command":
        command = cfg.get("command") or list(DEFAULT_SPEECH_COMMAND)
        if not isinstance(command, list) or not command:
            raise ValueError("voice.command must be a non-empty list")
        return CommandVoice(command=[str(x) for x in command], base_rate_wpm=int(cfg.get("base_rate_wpm", 175)))
    raise ValueError(f"Unknown voice.type: {t}")


def create_notifier(cfg: Dict[str, Any]) -> NotificationChannel:
    t = str(cfg.get("type", "log")).lower()
    if t == "log":
        return LogNotifier(
            level=str(cfg.get("level", "WARNING")),
            initial_permission=str(cfg.get("permission", PERMISSION_GRANTED)).lower(),
            grant_on_request=bool(cfg.get("grant_on_request", True)),
        )
    if t == "http":
        http = dict(cfg.get("http", {}) or {})
        url = str(http.get("url", ""))
        if not url:
            raise ValueError("notifier.http.url is required when notifier.type=http")
        headers = http.get("headers", {}) or {}
        if not isinstance(headers, dict):
            raise ValueError("notifier.http.headers must be a dict")
        timeout_s = float(http.get("timeout_s", 2.0))
        return HttpWebhookNotifier(url=url, headers={str(k): str(v) for k, v in headers.items()}, timeout_s=timeout_s)
    raise ValueError(f"Unknown notifier.type: {t}")


def create_banner(cfg: Dict[str, Any]) -> BannerSurface:
    t = str(cfg.get("type", "memory")).lower()
    if t == "memory":
        return MemoryBanner()
    if t == "log":
        return LogBanner(level=str(cfg.get("level", "WARNING")))
    raise ValueError(f"Unknown banner.type: {t}")
