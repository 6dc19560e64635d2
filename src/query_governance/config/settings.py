"""Explicit configuration for the governance pipeline.

A ``GovernanceConfig`` is built once (from defaults, the environment, or a JSON
file) and passed into the pipeline at construction time. Rule evaluation never
reads the environment directly.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from query_governance.config.env import (
    read_names,
    read_number,
    read_setting,
    unrecognized_settings,
)
from query_governance.errors import GovernanceError

logger = logging.getLogger(__name__)

DEFAULT_RESTRICTED_TABLES = frozenset(
    {
        "payroll",
        "credentials",
        "audit_logs",
        "user_secrets",
        "password_history",
        "api_keys",
    }
)

DEFAULT_PII_COLUMNS = frozenset(
    {
        "ssn",
        "social_security_number",
        "tax_id",
        "email",
        "phone",
        "phone_number",
        "date_of_birth",
        "bank_account_number",
        "credit_card_number",
    }
)

_NAME_SET_FIELDS = ("restricted_tables", "pii_columns", "large_table_templates")
# Read elsewhere (metrics, audit buffer) but legal in the environment.
_PROCESS_SETTINGS = ("metrics_enabled", "audit_buffer_size")


class ConfigError(GovernanceError, ValueError):
    """Raised when configuration input cannot be parsed or validated."""

    reason_code = "invalid_config"


class GovernanceConfig(BaseModel):
    """Recognized configuration options for contract and guardrail checks."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tenant_column: str = "tenant_id"
    temporal_column: str = "as_of_date"
    partition_column_pattern: str = "yyyy_mm"
    restricted_tables: frozenset[str] = DEFAULT_RESTRICTED_TABLES
    pii_columns: frozenset[str] = DEFAULT_PII_COLUMNS
    large_table_templates: frozenset[str] = frozenset()
    parameter_sigils: str = Field("@:$", min_length=1)
    table_authorization_tag: str = "authorized-table"
    pii_approval_tag: str = "pii-approved"
    row_limit_exemption_tag: str = "unbounded-ok"
    sql_dialect: Optional[str] = None
    upstream_timeout_seconds: float = Field(5.0, gt=0)

    @field_validator(
        "tenant_column",
        "temporal_column",
        "table_authorization_tag",
        "pii_approval_tag",
        "row_limit_exemption_tag",
    )
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("must be a non-empty name")
        return normalized

    @field_validator(*_NAME_SET_FIELDS, mode="before")
    @classmethod
    def _normalize_name_set(cls, value: Any) -> frozenset[str]:
        if isinstance(value, str):
            value = value.split(",")
        return frozenset(str(item).strip().lower() for item in value or () if str(item).strip())

    @field_validator("partition_column_pattern")
    @classmethod
    def _check_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid regular expression: {exc}") from exc
        return value

    @field_validator("parameter_sigils")
    @classmethod
    def _check_sigils(cls, value: str) -> str:
        sigils = "".join(dict.fromkeys(value.strip()))
        if not sigils or any(ch.isalnum() or ch in "_'\"" for ch in sigils):
            raise ValueError("parameter sigils must be punctuation characters")
        return sigils

    def is_large_table(self, template_id: str) -> bool:
        """Return True when the template is flagged as reading a large table."""
        return (template_id or "").strip().lower() in self.large_table_templates

    def is_partition_column(self, column_name: str) -> bool:
        """Return True when a column name matches the partition name pattern."""
        match = re.fullmatch(self.partition_column_pattern, column_name or "", re.IGNORECASE)
        return match is not None

    @classmethod
    def from_env(cls) -> "GovernanceConfig":
        """Build configuration from ``GOVERNANCE_<FIELD>`` environment variables.

        Raises ConfigError for a ``GOVERNANCE_*`` variable that names no setting.
        """
        unknown = unrecognized_settings((*cls.model_fields, *_PROCESS_SETTINGS))
        if unknown:
            raise ConfigError(
                "Unrecognized governance settings in environment: " + ", ".join(unknown)
            )

        overrides: dict[str, Any] = {}
        try:
            for field_name in cls.model_fields:
                if field_name in _NAME_SET_FIELDS:
                    value = read_names(field_name)
                elif field_name == "upstream_timeout_seconds":
                    value = read_number(field_name)
                else:
                    value = read_setting(field_name)
                if value is not None:
                    overrides[field_name] = value
        except ValueError as exc:
            raise ConfigError(f"Invalid governance config from environment: {exc}") from exc

        if overrides:
            logger.info("Governance config overrides from environment: %s", sorted(overrides))
        return cls._build(overrides, source="environment")

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "GovernanceConfig":
        """Build configuration from a JSON object file."""
        config_path = Path(path)
        try:
            payload = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Cannot read governance config '{config_path}': {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigError(f"Governance config '{config_path}' must contain a JSON object.")
        return cls._build(payload, source=str(config_path))

    @classmethod
    def _build(cls, values: dict[str, Any], *, source: str) -> "GovernanceConfig":
        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigError(f"Invalid governance config from {source}: {exc}") from exc
