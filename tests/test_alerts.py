import pytest

from conftest import AlertRig, build_alert_rig, make_report
from roadrisk.output.alerts import (
    AlertConfig,
    AlertState,
    Severity,
    classify,
    compose_alert_message,
    recommendations,
)


def test_below_threshold_does_not_activate(alert_rig: AlertRig) -> None:
    assert alert_rig.machine.offer(make_report(69)) is False
    assert alert_rig.machine.state is AlertState.IDLE
    assert alert_rig.voice.spoken == []
    assert alert_rig.banner.current is None


def test_second_report_while_active_is_deduplicated(alert_rig: AlertRig) -> None:
    assert alert_rig.machine.offer(make_report(90)) is True
    alert_rig.scheduler.advance(1.0)
    assert alert_rig.machine.offer(make_report(95)) is False
    assert len(alert_rig.voice.spoken) == 1
    assert len(alert_rig.notifier.shown) == 1
    assert alert_rig.banner.shown_count == 1
    assert alert_rig.machine.session is not None
    assert alert_rig.machine.session.report.overall_risk_score == 90


def test_critical_severity_at_85(alert_rig: AlertRig) -> None:
    alert_rig.machine.offer(make_report(85))
    u = alert_rig.voice.spoken[0]
    assert u.text.startswith("Critical alert!")
    assert u.text.endswith("Reduce speed immediately!")
    assert (u.rate, u.pitch, u.volume) == (1.1, 1.2, 1.0)
    assert u.lang == "en-US"
    n = alert_rig.notifier.shown[0]
    assert n.title == "CRITICAL ROAD ALERT"
    assert n.require_interaction is True
    assert n.auto_close_s is None
    assert n.tag == "road-safety-alert"
    assert n.vibrate == (200, 100, 200, 100, 200)
    assert alert_rig.banner.current is not None
    assert alert_rig.banner.current.alert_type == "critical"


def test_warning_severity_at_72(alert_rig: AlertRig) -> None:
    alert_rig.machine.offer(make_report(72))
    u = alert_rig.voice.spoken[0]
    assert u.text.startswith("Warning!")
    assert (u.rate, u.pitch, u.volume) == (1.0, 1.0, 0.9)
    n = alert_rig.notifier.shown[0]
    assert n.title == "HIGH RISK ALERT"
    assert n.require_interaction is False
    assert n.auto_close_s == 10.0
    assert alert_rig.banner.current.alert_type == "high"


def test_auto_dismiss_after_ten_seconds(alert_rig: AlertRig) -> None:
    alert_rig.machine.offer(make_report(72))
    alert_rig.scheduler.advance(9.9)
    assert alert_rig.machine.state is AlertState.ACTIVE
    alert_rig.scheduler.advance(0.1)
    assert alert_rig.machine.state is AlertState.IDLE
    assert alert_rig.banner.current is None
    assert alert_rig.notifier.handles[0].closed is True
    assert alert_rig.scheduler.live_timers() == []


def test_manual_dismiss_cancels_timer_and_speech(alert_rig: AlertRig) -> None:
    alert_rig.machine.offer(make_report(90))
    cancels_before = alert_rig.voice.cancels
    alert_rig.banner.dismiss()
    assert alert_rig.machine.state is AlertState.IDLE
    assert alert_rig.voice.cancels == cancels_before + 1
    assert alert_rig.scheduler.live_timers() == []
    assert alert_rig.notifier.handles[0].closed is True
    assert alert_rig.machine.dismiss() is False


def test_rearms_after_dismissal(alert_rig: AlertRig) -> None:
    alert_rig.machine.offer(make_report(90))
    alert_rig.machine.dismiss()
    assert alert_rig.machine.offer(make_report(75)) is True
    assert len(alert_rig.voice.spoken) == 2
    assert len(alert_rig.notifier.shown) == 2


def test_teardown_while_active_leaves_no_timers(alert_rig: AlertRig) -> None:
    alert_rig.machine.offer(make_report(80))
    cancels_before = alert_rig.voice.cancels
    alert_rig.machine.close()
    assert alert_rig.machine.state is AlertState.IDLE
    assert alert_rig.voice.cancels == cancels_before + 1
    assert alert_rig.scheduler.live_timers() == []
    alert_rig.scheduler.advance(30.0)
    assert alert_rig.machine.state is AlertState.IDLE


def test_critical_notification_persists_after_auto_dismiss(alert_rig: AlertRig) -> None:
    alert_rig.machine.offer(make_report(95))
    alert_rig.scheduler.advance(10.0)
    assert alert_rig.machine.state is AlertState.IDLE
    assert alert_rig.notifier.handles[0].closed is False


def test_notification_requires_permission() -> None:
    rig = build_alert_rig(permission="denied")
    rig.machine.offer(make_report(90))
    assert rig.notifier.shown == []
    assert rig.notifier.requests == 0
    assert len(rig.voice.spoken) == 1
    assert rig.banner.current is not None


def test_default_permission_is_requested_once() -> None:
    rig = build_alert_rig(permission="default")
    rig.machine.offer(make_report(90))
    assert rig.notifier.requests == 1
    assert len(rig.notifier.shown) == 1


def test_failing_channel_does_not_block_others() -> None:
    rig = build_alert_rig()

    def boom(*args) -> None:
        raise RuntimeError("speech engine missing")

    rig.voice.speak = boom  # type: ignore[assignment]
    assert rig.machine.offer(make_report(90)) is True
    assert len(rig.notifier.shown) == 1
    assert rig.banner.current is not None
    rig.machine.dismiss()
    assert rig.machine.state is AlertState.IDLE


def test_message_lists_qualifying_factors() -> None:
    r = make_report(92, hotspot=80, weather=75, speed=90, weather_description="Heavy rain", speed_kmh=140)
    msg = compose_alert_message(r)
    assert msg == (
        "High accident risk area detected! 25+ accidents reported nearby. "
        "Dangerous weather conditions: Heavy rain "
        "Excessive speed detected: 140 km/h"
    )
    recs = recommendations(r)
    assert len(recs) == 4
    assert recs[-1] == "Stay alert and be prepared to react"


def test_message_falls_back_to_overall_score() -> None:
    r = make_report(77, hotspot=30, weather=20, speed=10)
    assert compose_alert_message(r) == "High risk area detected! Risk score: 77"
    assert recommendations(r) == ("Stay alert and be prepared to react",)


def test_classify_and_config() -> None:
    cfg = AlertConfig.from_dict({"critical_threshold": 90})
    assert classify(89, cfg) is Severity.WARNING
    assert classify(90, cfg) is Severity.CRITICAL
    with pytest.raises(ValueError):
        AlertConfig.from_dict({"threshold": 80, "critical_threshold": 75})


def test_early_notification_close_is_not_repeated() -> None:
    rig = build_alert_rig(cfg=AlertConfig(notification_auto_close_s=2.0))
    rig.machine.offer(make_report(72))
    rig.scheduler.advance(2.0)
    assert rig.notifier.handles[0].close_calls == 1
    assert rig.machine.session.notification_timer is None
    assert rig.machine.state is AlertState.ACTIVE
    rig.machine.dismiss()
    assert rig.machine.state is AlertState.IDLE
    assert rig.notifier.handles[0].close_calls == 1
    assert rig.scheduler.live_timers() == []
