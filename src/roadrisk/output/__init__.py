from .alerts import (
    AlertConfig,
    AlertSession,
    AlertState,
    AlertStateMachine,
    Severity,
    classify,
    compose_alert_message,
    recommendations,
)
from .channels import (
    AlertNotification,
    BannerPayload,
    BannerSurface,
    CommandVoice,
    HttpWebhookNotifier,
    LogBanner,
    LogNotifier,
    LogVoice,
    MemoryBanner,
    NotificationChannel,
    Utterance,
    VoiceChannel,
    create_banner,
    create_notifier,
    create_voice,
)

__all__ = [
    "AlertConfig",
    "AlertNotification",
    "AlertSession",
    "AlertState",
    "AlertStateMachine",
    "BannerPayload",
    "BannerSurface",
    "CommandVoice",
    "HttpWebhookNotifier",
    "LogBanner",
    "LogNotifier",
    "LogVoice",
    "MemoryBanner",
    "NotificationChannel",
    "Severity",
    "Utterance",
    "VoiceChannel",
    "classify",
    "compose_alert_message",
    "create_banner",
    "create_notifier",
    "create_voice",
    "recommendations",
]
