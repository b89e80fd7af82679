from __future__ import annotations

from typing import Optional


class RiskServiceError(RuntimeError):
    kind = "error"
    prefix = "Failed to fetch risk data. "

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    @property
    def user_message(self) -> str:
        return self.prefix + self.detail


class BackendNotConfiguredError(RiskServiceError):
    kind = "not_configured"
    prefix = ""

    def __init__(self, detail: str = "Backend URL not configured. Please check the monitor configuration.") -> None:
        super().__init__(detail)


class RiskTimeoutError(RiskServiceError):
    kind = "timeout"

    def __init__(self, timeout_s: Optional[float] = None) -> None:
        super().__init__("Backend is taking too long to respond. It may be starting up (wait 30-60s) or down.")
        self.timeout_s = timeout_s


class RiskHttpError(RiskServiceError):
    kind = "http"

    def __init__(self, status: int, reason: Optional[str] = None) -> None:
        super().__init__(f"Server error: {int(status)} {reason or ''}".rstrip() + ".")
        self.status = int(status)
        self.reason = reason or ""


class RiskUnreachableError(RiskServiceError):
    kind = "unreachable"

    def __init__(self, base_url: str) -> None:
        super().__init__(f"No response from backend. Check if backend is running at: {base_url}")
        self.base_url = base_url


class RiskResponseError(RiskServiceError):
    kind = "bad_response"

    def __init__(self, detail: str) -> None:
        super().__init__(f"Unexpected response from backend: {detail}")
