"""Port for the optional advisory text classifier."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from supplyledger.domain.model import DatasetType


@dataclass(frozen=True, slots=True)
class AdvisoryHint:
    """Label proposed by an external classifier; informational only."""

    label: str
    confidence: float | None = None
    rationale: str | None = None
    source: str = "text-classifier"

    def to_dict(self) -> dict[str, object]:
        return {
            "label": self.label,
            "confidence": self.confidence,
            "rationale": self.rationale,
            "source": self.source,
        }


@runtime_checkable
class AdvisoryClassifier(Protocol):
    def classify(self, text: str, *, dataset_type: DatasetType) -> AdvisoryHint | None: ...
