"""Advisory text classifier adapter."""

from __future__ import annotations

from .client import HttpAdvisoryClassifier, build_retry, build_transport

__all__ = ["HttpAdvisoryClassifier", "build_retry", "build_transport"]
