"""HTTP client for the external advisory text classifier.

The classifier only ever contributes a labelled hint. Any transport failure or
malformed answer is logged and yields ``None`` so callers carry on without it.
"""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from httpx_retries import Retry, RetryTransport
from pydantic import ValidationError

from supplyledger.domain.ports import AdvisoryHint

from .schema import ClassificationRequest, ClassificationResponse

if TYPE_CHECKING:
    from types import TracebackType

    from supplyledger.config import AdvisoryConfig, RetryPolicy
    from supplyledger.domain.model import DatasetType

log = getLogger(__name__)

CLASSIFY_PATH = "/classify"


def build_retry(policy: RetryPolicy) -> Retry:
    return Retry(
        total=policy.total,
        backoff_factor=policy.backoff_factor,
        max_backoff_wait=policy.max_backoff_wait,
        allowed_methods=("POST",),
        status_forcelist=tuple(policy.status_forcelist),
        retry_on_exceptions=policy.retry_on_exceptions,
    )


def build_transport(
    config: AdvisoryConfig, *, transport: httpx.BaseTransport | None = None
) -> RetryTransport:
    return RetryTransport(
        transport=transport or httpx.HTTPTransport(),
        retry=build_retry(config.retry),
    )


class HttpAdvisoryClassifier:
    """Synchronous :class:`~supplyledger.domain.ports.AdvisoryClassifier` over HTTP."""

    def __init__(
        self,
        config: AdvisoryConfig,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._config = config
        headers = {"Accept": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self._client = httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            headers=headers,
            transport=build_transport(config, transport=transport),
        )

    def __enter__(self) -> HttpAdvisoryClassifier:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def classify(self, text: str, *, dataset_type: DatasetType) -> AdvisoryHint | None:
        if not text.strip():
            return None
        request = ClassificationRequest(text=text, dataset_type=dataset_type.value)
        try:
            response = self._client.post(
                CLASSIFY_PATH, json=request.model_dump(by_alias=True)
            )
            response.raise_for_status()
            payload = ClassificationResponse.model_validate(response.json())
        except httpx.HTTPError as exc:
            log.warning("Advisory classifier unavailable: %s", exc)
            return None
        except (ValueError, ValidationError) as exc:
            log.warning("Advisory classifier returned an unusable answer: %s", exc)
            return None
        if not payload.label:
            return None
        return AdvisoryHint(
            label=payload.label,
            confidence=payload.confidence,
            rationale=payload.rationale,
            source=payload.model or "text-classifier",
        )
