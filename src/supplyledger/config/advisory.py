"""Configuration for the optional advisory text classifier."""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx

from .env import env_float, env_int, optional_env

DEFAULT_ADVISORY_TIMEOUT_SECONDS = 5.0
DEFAULT_ADVISORY_RETRIES = 2


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    total: int = DEFAULT_ADVISORY_RETRIES
    backoff_factor: float = 0.5
    max_backoff_wait: float = 10.0
    status_forcelist: frozenset[int] = field(
        default_factory=lambda: frozenset({429, 500, 502, 503, 504})
    )
    retry_on_exceptions: tuple[type[httpx.HTTPError], ...] = (
        httpx.TimeoutException,
        httpx.NetworkError,
        httpx.RemoteProtocolError,
    )


@dataclass(frozen=True, slots=True)
class AdvisoryConfig:
    """Holds the advisory classifier endpoint; absent URL disables the hint."""

    base_url: str
    api_key: str | None = None
    timeout_seconds: float = DEFAULT_ADVISORY_TIMEOUT_SECONDS
    retry: RetryPolicy = field(default_factory=RetryPolicy)


def get_advisory_config() -> AdvisoryConfig | None:
    base_url = optional_env("SUPPLYLEDGER_ADVISORY_URL")
    if base_url is None:
        return None
    return AdvisoryConfig(
        base_url=base_url,
        api_key=optional_env("SUPPLYLEDGER_ADVISORY_API_KEY"),
        timeout_seconds=env_float(
            "SUPPLYLEDGER_ADVISORY_TIMEOUT_SECONDS", DEFAULT_ADVISORY_TIMEOUT_SECONDS
        ),
        retry=RetryPolicy(
            total=env_int("SUPPLYLEDGER_ADVISORY_RETRIES", DEFAULT_ADVISORY_RETRIES)
        ),
    )
