"""Application configuration helpers."""

from __future__ import annotations

from .advisory import AdvisoryConfig, RetryPolicy, get_advisory_config
from .env import require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .ledger import LedgerSettings, get_ledger_settings
from .logging import configure_logging
from .operator import OperatorConfig, get_operator_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config

__all__ = [
    "AdvisoryConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "LedgerSettings",
    "MissingConfigurationError",
    "OperatorConfig",
    "RetryPolicy",
    "StorageConfig",
    "configure_logging",
    "get_advisory_config",
    "get_database_config",
    "get_ledger_settings",
    "get_operator_config",
    "get_storage_config",
    "require_env_vars",
]
