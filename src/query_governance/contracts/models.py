"""Template contract and rendered query models.

Contracts are validated once, when a registry is loaded. Shape problems
(blank or duplicate names, wrong types) are load errors; semantic gaps such as
a missing tenant filter are left to the contract validator so they show up as
named violations in a report.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
)

from query_governance.sql.structure import normalize_identifier


def _normalize_names(value: Any, field_name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        raise ValueError(f"{field_name} must be a list of column names, not a string")
    names: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"{field_name} entries must be strings, got {type(item).__name__}")
        name = normalize_identifier(item)
        if not name:
            raise ValueError(f"{field_name} contains a blank column name")
        if name in names:
            raise ValueError(f"{field_name} contains duplicate column '{name}'")
        names.append(name)
    return tuple(names)


class TemplateContract(BaseModel):
    """Declared contract of one named query template."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    template_id: str = Field(..., min_length=1)
    version: str = "1"
    required_filters: tuple[str, ...] = ()
    projected_columns: tuple[str, ...] = ()
    partition_columns: tuple[str, ...] = Field(
        default=(), validation_alias=AliasChoices("partition_columns", "partitions")
    )
    date_bounded: bool = True
    description: Optional[str] = None

    @field_validator("template_id")
    @classmethod
    def _strip_template_id(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("template_id must not be blank")
        return stripped

    @field_validator("version", mode="before")
    @classmethod
    def _coerce_version(cls, value: Any) -> str:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("required_filters", "projected_columns", "partition_columns", mode="before")
    @classmethod
    def _check_names(cls, value: Any, info: ValidationInfo) -> tuple[str, ...]:
        return _normalize_names(value, info.field_name)


class RenderedQuery(BaseModel):
    """SQL text produced by the external renderer for one invocation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    template_id: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1)
    sql_text: str
    template_version: Optional[str] = None

    @field_validator("template_id", "tenant_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


def schema_columns(expected_schema: Any) -> dict[str, Any]:
    """Return ``{column: type}`` for an expected response schema.

    Accepts a mapping of column name to type name, or a pydantic model class
    (its fields and annotations).
    """
    if isinstance(expected_schema, type) and issubclass(expected_schema, BaseModel):
        return {
            normalize_identifier(name): field.annotation
            for name, field in expected_schema.model_fields.items()
        }
    if isinstance(expected_schema, Mapping):
        return {normalize_identifier(str(name)): kind for name, kind in expected_schema.items()}
    raise TypeError(
        "expected_schema must be a mapping of column -> type or a pydantic model class, "
        f"got {type(expected_schema).__name__}"
    )
