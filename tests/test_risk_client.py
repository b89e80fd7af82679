import asyncio
from typing import Any, Awaitable, Callable, Dict, List

import pytest
from aiohttp import test_utils, web

from roadrisk.risk.client import RiskClient, RiskServiceConfig
from roadrisk.risk.poller import PollerConfig, QueryOutcome, RiskPoller
from roadrisk.risk.errors import (
    BackendNotConfiguredError,
    RiskHttpError,
    RiskResponseError,
    RiskServiceError,
    RiskTimeoutError,
    RiskUnreachableError,
)

REPORT = {
    "overall_risk_score": 82,
    "risk_level": "Bad",
    "factors": {
        "accident_hotspot": {"score": 75, "label": "High", "message": "9 accidents reported nearby."},
        "weather": {"score": 20, "description": "Clear sky"},
        "current_speed": {"score": 40, "speed_kmh": 61, "message": "Speed within limits."},
    },
}


async def _with_server(
    routes: Dict[str, Callable[[web.Request], Awaitable[web.StreamResponse]]],
    body: Callable[[RiskClient], Awaitable[Any]],
    timeout_s: float = 5.0,
) -> Any:
    app = web.Application()
    for path, handler in routes.items():
        app.router.add_get(path, handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    base = str(server.make_url("")).rstrip("/")
    client = RiskClient(RiskServiceConfig(base_url=base, timeout_s=timeout_s, forecast_timeout_s=timeout_s))
    try:
        return await body(client)
    finally:
        await client.close()
        await server.close()


def test_fetch_risk_sends_query_and_parses_report() -> None:
    seen: List[Dict[str, str]] = []

    async def risk(request: web.Request) -> web.Response:
        seen.append(dict(request.query))
        return web.json_response(REPORT)

    async def forecast(request: web.Request) -> web.Response:
        return web.json_response({"temp": 31.5, "description": "haze", "time": "2025-01-01T12:00:00", "wind_speed": 2.5, "visibility": 4000})

    async def body(client: RiskClient) -> Any:
        report = await client.fetch_risk(26.8798111, 75.7807435, 60)
        fc = await client.fetch_weather_forecast(26.8798111, 75.7807435)
        return report, fc

    report, fc = asyncio.run(_with_server({"/api/risk": risk, "/api/weather-forecast": forecast}, body))
    assert seen[0]["speed"] == "60"
    assert abs(float(seen[0]["lat"]) - 26.8798111) < 1e-9
    assert report.overall_risk_score == 82
    assert report.factors.accident_hotspot.score == 75
    assert report.factors.current_speed.speed_kmh == 61
    assert fc is not None
    assert fc.description == "haze"
    assert fc.visibility == 4000.0


def test_http_error_status_is_distinct() -> None:
    async def risk(request: web.Request) -> web.Response:
        return web.Response(status=502, reason="Bad Gateway")

    async def body(client: RiskClient) -> RiskServiceError:
        try:
            await client.fetch_risk(0.0, 0.0, 10)
        except RiskServiceError as e:
            return e
        raise AssertionError("expected an error")

    err = asyncio.run(_with_server({"/api/risk": risk}, body))
    assert isinstance(err, RiskHttpError)
    assert err.status == 502
    assert err.kind == "http"
    assert "502" in err.user_message


def test_slow_backend_times_out() -> None:
    async def risk(request: web.Request) -> web.Response:
        await asyncio.sleep(0.5)
        return web.json_response(REPORT)

    async def body(client: RiskClient) -> RiskServiceError:
        try:
            await client.fetch_risk(0.0, 0.0, 10)
        except RiskServiceError as e:
            return e
        raise AssertionError("expected an error")

    err = asyncio.run(_with_server({"/api/risk": risk}, body, timeout_s=0.1))
    assert isinstance(err, RiskTimeoutError)
    assert "too long" in err.user_message


def test_malformed_body_is_a_response_error() -> None:
    async def risk(request: web.Request) -> web.Response:
        return web.Response(text="<html>starting up</html>", content_type="text/html")

    async def body(client: RiskClient) -> RiskServiceError:
        try:
            await client.fetch_risk(0.0, 0.0, 10)
        except RiskServiceError as e:
            return e
        raise AssertionError("expected an error")

    err = asyncio.run(_with_server({"/api/risk": risk}, body))
    assert isinstance(err, RiskResponseError)


def test_forecast_failure_is_absorbed() -> None:
    async def forecast(request: web.Request) -> web.Response:
        return web.Response(status=500)

    async def body(client: RiskClient) -> Any:
        return await client.fetch_weather_forecast(0.0, 0.0)

    assert asyncio.run(_with_server({"/api/weather-forecast": forecast}, body)) is None


def test_unreachable_backend() -> None:
    async def scenario() -> RiskServiceError:
        client = RiskClient(RiskServiceConfig(base_url="http://127.0.0.1:1", timeout_s=2.0))
        try:
            await client.fetch_risk(0.0, 0.0, 10)
        except RiskServiceError as e:
            return e
        finally:
            await client.close()
        raise AssertionError("expected an error")

    err = asyncio.run(scenario())
    assert isinstance(err, RiskUnreachableError)
    assert "http://127.0.0.1:1" in err.user_message


def test_missing_base_url_is_not_configured() -> None:
    async def scenario() -> None:
        client = RiskClient(RiskServiceConfig(base_url=""))
        with pytest.raises(BackendNotConfiguredError) as exc:
            await client.fetch_risk(0.0, 0.0, 10)
        assert exc.value.kind == "not_configured"
        assert await client.fetch_weather_forecast(0.0, 0.0) is None
        await client.close()

    asyncio.run(scenario())


def test_wrongly_typed_factors_are_read_as_missing() -> None:
    async def risk(request: web.Request) -> web.Response:
        return web.json_response({"overall_risk_score": 90, "factors": {"weather": "rain", "current_speed": [1, 2]}})

    async def body(client: RiskClient) -> Any:
        return await client.fetch_risk(0.0, 0.0, 10)

    report = asyncio.run(_with_server({"/api/risk": risk}, body))
    assert report.overall_risk_score == 90
    assert report.factors.weather.score == 0.0
    assert report.factors.weather.description == ""
    assert report.factors.current_speed.speed_kmh == 0.0


def test_undecodable_body_reaches_poller_as_error() -> None:
    async def risk(request: web.Request) -> web.Response:
        return web.Response(
            body=b'{"overall_risk_score": 90, "risk_level": "\xff\xfe"}',
            content_type="application/json",
            charset="utf-8",
        )

    async def body(client: RiskClient) -> List[QueryOutcome]:
        outcomes: List[QueryOutcome] = []
        poller = RiskPoller(PollerConfig(fetch_forecast=False), client, outcomes.append, clock_ms=lambda: 0)
        poller.maybe_query(26.9, 75.78, 40.0)
        await poller.drain()
        return outcomes

    outcomes = asyncio.run(_with_server({"/api/risk": risk}, body))
    assert len(outcomes) == 1
    assert isinstance(outcomes[0].error, RiskResponseError)
    assert outcomes[0].error.kind == "bad_response"
