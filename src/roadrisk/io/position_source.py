from __future__ import annotations

import asyncio
import csv
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union


logger = logging.getLogger("roadrisk.io.position_source")

RawFix = Dict[str, Any]


class PositionUnavailableError(RuntimeError):
    """Terminal failure of a position source (permission denied, unsupported, gone)."""

    user_message = "Unable to access your location. Please check permissions."

    def __init__(self, reason: str = "position unavailable", code: str = "unavailable") -> None:
        super().__init__(reason)
        self.reason = reason
        self.code = code


class PositionSource(Protocol):
    def watch(self) -> AsyncIterator[RawFix]:
        ...


_CLOSED = object()


class QueuePositionSource(PositionSource):
    """Push-based source: an external producer feeds fixes with ``push`` and ends with ``close``/``fail``."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: "asyncio.Queue[Union[RawFix, PositionUnavailableError, object]]" = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def push(self, fix: RawFix) -> None:
        if self._closed:
            raise RuntimeError("QueuePositionSource is closed")
        self._queue.put_nowait(dict(fix))

    def fail(self, reason: str = "permission denied", code: str = "permission_denied") -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(PositionUnavailableError(reason, code=code))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def watch(self) -> AsyncIterator[RawFix]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, PositionUnavailableError):
                raise item
            yield item  # type: ignore[misc]


@dataclass(frozen=True)
class ReplayConfig:
    path: str
    realtime: bool = False
    time_scale: float = 1.0

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "ReplayConfig":
        path = str(d.get("path", ""))
        if not path:
            raise ValueError("source.path is required for replay sources")
        scale = float(d.get("time_scale", 1.0))
        if scale <= 0.0:
            raise ValueError("source.time_scale must be > 0")
        return ReplayConfig(path=path, realtime=bool(d.get("realtime", False)), time_scale=scale)


def _csv_value(v: Optional[str]) -> Any:
    if v is None:
        return None
    v = v.strip()
    if v == "":
        return None
    try:
        return float(v)
    except ValueError:
        return v


def load_fixes(path: str) -> List[RawFix]:
    p = Path(path)
    if not p.exists():
        raise PositionUnavailableError(f"Recorded track not found: {path}", code="unsupported")
    fixes: List[RawFix] = []
    if p.suffix.lower() == ".csv":
        with open(p, "r", newline="", encoding="utf-8") as f:
            for row in csv.DictReader(f):
                fixes.append({k: _csv_value(v) for k, v in row.items() if k})
        return fixes
    with open(p, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            obj = json.loads(line)
            if not isinstance(obj, dict):
                raise ValueError(f"{path}:{line_no}: expected a JSON object per line")
            fixes.append(obj)
    return fixes


class ReplayPositionSource(PositionSource):
    def __init__(self, cfg: ReplayConfig) -> None:
        self._cfg = cfg

    async def watch(self) -> AsyncIterator[RawFix]:
        fixes = load_fixes(self._cfg.path)
        logger.info("Replaying %d fixes from %s", len(fixes), self._cfg.path)
        prev_t: Optional[float] = None
        for fix in fixes:
            t = fix.get("timestamp_ms", fix.get("timestamp"))
            if self._cfg.realtime and prev_t is not None and isinstance(t, (int, float)):
                delay_s = max(0.0, (float(t) - prev_t) / 1000.0) / self._cfg.time_scale
                await asyncio.sleep(delay_s)
            else:
                await asyncio.sleep(0)
            if isinstance(t, (int, float)):
                prev_t = float(t)
            yield fix
