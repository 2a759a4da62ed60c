"""Errors raised while reading ledger, storage, operator, or advisory settings."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


class ConfigurationError(RuntimeError):
    """A ``SUPPLYLEDGER_*`` setting is present but unusable."""


class MissingConfigurationError(ConfigurationError):
    """Required variables are absent or blank; ``names`` lists all of them."""

    def __init__(self, names: Iterable[str]) -> None:
        self.names = tuple(sorted(names))
        super().__init__(f"Missing configuration for: {', '.join(self.names)}")
