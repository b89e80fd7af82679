from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import aiohttp

from roadrisk.risk.errors import (
    BackendNotConfiguredError,
    RiskHttpError,
    RiskResponseError,
    RiskTimeoutError,
    RiskUnreachableError,
)
from roadrisk.utils.config import api_base_url
from roadrisk.utils.types import RiskReport, WeatherForecast


logger = logging.getLogger("roadrisk.risk.client")


@dataclass(frozen=True)
class RiskServiceConfig:
    base_url: str = ""
    risk_path: str = "/api/risk"
    forecast_path: str = "/api/weather-forecast"
    timeout_s: float = 30.0
    forecast_timeout_s: float = 30.0

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    @staticmethod
    def from_dict(d: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> "RiskServiceConfig":
        timeout_s = float(d.get("timeout_s", 30.0))
        if timeout_s <= 0.0:
            raise ValueError("risk_service.timeout_s must be > 0")
        return RiskServiceConfig(
            base_url=api_base_url(d, environ),
            risk_path=str(d.get("risk_path", "/api/risk")),
            forecast_path=str(d.get("forecast_path", "/api/weather-forecast")),
            timeout_s=timeout_s,
            forecast_timeout_s=float(d.get("forecast_timeout_s", timeout_s)),
        )


class RiskClient:
    def __init__(self, cfg: RiskServiceConfig, session: Optional[aiohttp.ClientSession] = None) -> None:
        self._cfg = cfg
        self._session = session
        self._owns_session = session is None

    @property
    def config(self) -> RiskServiceConfig:
        return self._cfg

    async def fetch_risk(self, lat: float, lon: float, speed_kmh: int) -> RiskReport:
        if not self._cfg.configured:
            raise BackendNotConfiguredError()
        params = {"lat": str(float(lat)), "lon": str(float(lon)), "speed": str(int(speed_kmh))}
        data = await self._get_json(self._cfg.risk_path, params, self._cfg.timeout_s)
        try:
            return RiskReport.from_dict(data)
        except ValueError as e:
            raise RiskResponseError(str(e)) from e

    async def fetch_weather_forecast(self, lat: float, lon: float) -> Optional[WeatherForecast]:
        if not self._cfg.configured:
            return None
        params = {"lat": str(float(lat)), "lon": str(float(lon))}
        try:
            data = await self._get_json(self._cfg.forecast_path, params, self._cfg.forecast_timeout_s)
            if not isinstance(data, dict):
                raise RiskResponseError("forecast is not a JSON object")
            return WeatherForecast.from_dict(data)
        except (RiskTimeoutError, RiskHttpError, RiskUnreachableError, RiskResponseError) as e:
            logger.debug("Weather forecast unavailable: %s", e.detail)
            return None

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "RiskClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _get_json(self, path: str, params: Dict[str, str], timeout_s: float) -> Any:
        url = self._cfg.base_url + path
        session = self._get_session()
        try:
            async with session.get(url, params=params, timeout=aiohttp.ClientTimeout(total=float(timeout_s))) as resp:
                if resp.status >= 400:
                    raise RiskHttpError(resp.status, resp.reason)
                text = await resp.text()
        except asyncio.TimeoutError as e:
            raise RiskTimeoutError(timeout_s) from e
        except UnicodeDecodeError as e:
            raise RiskResponseError("body is not valid text") from e
        except aiohttp.ClientError as e:
            raise RiskUnreachableError(self._cfg.base_url) from e
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise RiskResponseError("body is not valid JSON") from e
