"""Attribute-level similarity functions."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from enum import StrEnum

from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein

_PUNCTUATION = re.compile(r"[^\w\s]")


class MatcherKind(StrEnum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    TOKEN_SET = "token-set"


def normalize_text(value: object) -> str:
    text = unicodedata.normalize("NFKC", str(value)).casefold()
    text = _PUNCTUATION.sub(" ", text)
    return " ".join(text.split())


def is_absent(value: object) -> bool:
    return value is None or not normalize_text(value)


@dataclass(frozen=True, slots=True)
class AttributeMatcher:
    """Compare one canonical attribute.

    Non-identifying matchers (e.g. country) still contribute to a score but can
    never establish a match on their own.
    """

    attribute: str
    kind: MatcherKind
    weight: float = 1.0
    identifying: bool = True

    def similarity(self, left: object, right: object) -> float:
        a = normalize_text(left)
        b = normalize_text(right)
        if not a or not b:
            return 0.0
        if self.kind is MatcherKind.EXACT:
            return 1.0 if a.replace(" ", "") == b.replace(" ", "") else 0.0
        if self.kind is MatcherKind.FUZZY:
            return Levenshtein.normalized_similarity(a, b)
        return fuzz.token_set_ratio(a, b) / 100.0

    def with_weight(self, weight: float) -> AttributeMatcher:
        return AttributeMatcher(
            attribute=self.attribute, kind=self.kind, weight=weight, identifying=self.identifying
        )
