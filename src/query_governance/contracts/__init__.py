"""Template contracts: models, registry, and validation."""

from query_governance.contracts.models import RenderedQuery, TemplateContract, schema_columns
from query_governance.contracts.registry import ContractRegistry, ContractSource
from query_governance.contracts.validator import (
    ContractValidationResult,
    ContractViolationCode,
    ContractViolationDetail,
    validate_contract,
)

__all__ = [
    "ContractRegistry",
    "ContractSource",
    "ContractValidationResult",
    "ContractViolationCode",
    "ContractViolationDetail",
    "RenderedQuery",
    "TemplateContract",
    "schema_columns",
    "validate_contract",
]
