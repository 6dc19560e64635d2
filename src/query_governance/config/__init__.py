"""Configuration for the governance layer."""

from query_governance.config.settings import (
    DEFAULT_PII_COLUMNS,
    DEFAULT_RESTRICTED_TABLES,
    ConfigError,
    GovernanceConfig,
)

__all__ = [
    "DEFAULT_PII_COLUMNS",
    "DEFAULT_RESTRICTED_TABLES",
    "ConfigError",
    "GovernanceConfig",
]
