from .client import RiskClient, RiskServiceConfig
from .errors import (
    BackendNotConfiguredError,
    RiskHttpError,
    RiskResponseError,
    RiskServiceError,
    RiskTimeoutError,
    RiskUnreachableError,
)
from .poller import PollerConfig, QueryOutcome, RiskBackend, RiskPoller

__all__ = [
    "BackendNotConfiguredError",
    "PollerConfig",
    "QueryOutcome",
    "RiskBackend",
    "RiskClient",
    "RiskHttpError",
    "RiskPoller",
    "RiskResponseError",
    "RiskServiceConfig",
    "RiskServiceError",
    "RiskTimeoutError",
    "RiskUnreachableError",
]
