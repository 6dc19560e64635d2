"""Contract consistency and schema-conformance checks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from query_governance.config import GovernanceConfig
from query_governance.contracts.models import TemplateContract, schema_columns
from query_governance.errors import ContractViolation

logger = logging.getLogger(__name__)


class ContractViolationCode(str, Enum):
    """Named contract violations."""

    MISSING_REQUIRED_FILTERS = "missing_required_filters"
    MISSING_TENANT_FILTER = "missing_tenant_filter"
    MISSING_TEMPORAL_FILTER = "missing_temporal_filter"
    PROJECTED_COLUMN_MISSING = "projected_column_missing"
    PROJECTED_COLUMN_UNEXPECTED = "projected_column_unexpected"
    UNTYPED_OUTPUT_COLUMN = "untyped_output_column"
    MISSING_PARTITION_COLUMNS = "missing_partition_columns"
    VERSION_MISMATCH = "version_mismatch"


@dataclass(frozen=True)
class ContractViolationDetail:
    """One failed contract check."""

    code: ContractViolationCode
    message: str
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for reports."""
        return {"code": self.code.value, "message": self.message, "details": self.details}


@dataclass(frozen=True)
class ContractValidationResult:
    """All violations found for one contract (empty when ok)."""

    violations: tuple[ContractViolationDetail, ...] = ()

    @property
    def ok(self) -> bool:
        """True when no check failed."""
        return not self.violations

    @property
    def codes(self) -> list[str]:
        """Violation codes in check order."""
        return [violation.code.value for violation in self.violations]

    def raise_for_violations(self) -> None:
        """Raise ContractViolation when any check failed."""
        if self.violations:
            raise ContractViolation(
                "; ".join(violation.message for violation in self.violations),
                violations=list(self.violations),
            )


def _is_untyped(kind: Any) -> bool:
    if kind is None:
        return True
    return isinstance(kind, str) and not kind.strip()


def validate_contract(
    contract: TemplateContract,
    expected_schema: Any,
    *,
    config: Optional[GovernanceConfig] = None,
    expected_version: Optional[str] = None,
) -> ContractValidationResult:
    """Check a contract for consistency and conformance to a response schema.

    Every check runs; the result lists all violations so a template gets one
    comprehensive report.

    Args:
        contract: The declared template contract.
        expected_schema: Agent-facing response schema (column -> type mapping or
            pydantic model class).
        config: Governance configuration (tenant / temporal column names).
        expected_version: Template version the caller rendered against, if known.

    Returns:
        ContractValidationResult listing every violation found.
    """
    config = config or GovernanceConfig()
    columns = schema_columns(expected_schema)
    violations: list[ContractViolationDetail] = []
    required = set(contract.required_filters)

    if not contract.required_filters:
        violations.append(
            ContractViolationDetail(
                code=ContractViolationCode.MISSING_REQUIRED_FILTERS,
                message="Contract declares no required filters.",
            )
        )

    if config.tenant_column not in required:
        violations.append(
            ContractViolationDetail(
                code=ContractViolationCode.MISSING_TENANT_FILTER,
                message=(
                    f"Required filters must include the tenant-scoping column "
                    f"'{config.tenant_column}'."
                ),
                details={"column": config.tenant_column},
            )
        )

    if contract.date_bounded and config.temporal_column not in required:
        violations.append(
            ContractViolationDetail(
                code=ContractViolationCode.MISSING_TEMPORAL_FILTER,
                message=(
                    f"Date-bounded template must require the temporal column "
                    f"'{config.temporal_column}'."
                ),
                details={"column": config.temporal_column},
            )
        )

    projected = set(contract.projected_columns)
    for column in sorted(set(columns) - projected):
        violations.append(
            ContractViolationDetail(
                code=ContractViolationCode.PROJECTED_COLUMN_MISSING,
                message=f"Response schema column '{column}' is not projected by the template.",
                details={"column": column},
            )
        )
    for column in [c for c in contract.projected_columns if c not in columns]:
        violations.append(
            ContractViolationDetail(
                code=ContractViolationCode.PROJECTED_COLUMN_UNEXPECTED,
                message=f"Projected column '{column}' is not part of the response schema.",
                details={"column": column},
            )
        )
    for column in [c for c in contract.projected_columns if c in columns]:
        if _is_untyped(columns[column]):
            violations.append(
                ContractViolationDetail(
                    code=ContractViolationCode.UNTYPED_OUTPUT_COLUMN,
                    message=f"Projected column '{column}' has no output type in the schema.",
                    details={"column": column},
                )
            )

    if not contract.partition_columns:
        violations.append(
            ContractViolationDetail(
                code=ContractViolationCode.MISSING_PARTITION_COLUMNS,
                message="Contract declares no partition columns.",
            )
        )

    if expected_version is not None and str(expected_version).strip() != contract.version:
        violations.append(
            ContractViolationDetail(
                code=ContractViolationCode.VERSION_MISMATCH,
                message=(
                    f"Template rendered against version '{expected_version}' but the "
                    f"registered contract is version '{contract.version}'."
                ),
                details={"expected": str(expected_version), "registered": contract.version},
            )
        )

    if violations:
        logger.info(
            "Contract %s failed %d check(s): %s",
            contract.template_id,
            len(violations),
            ", ".join(v.code.value for v in violations),
        )
    return ContractValidationResult(violations=tuple(violations))
