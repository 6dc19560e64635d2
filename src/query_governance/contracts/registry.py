"""Read-only registry of template contracts."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Protocol, Union

from pydantic import ValidationError

from query_governance.contracts.models import TemplateContract
from query_governance.errors import ContractLoadError, ContractNotFound

logger = logging.getLogger(__name__)

DEFAULT_CONTRACT_PATTERN = "*.meta.json"


class ContractSource(Protocol):
    """Anything the pipeline can resolve contracts from."""

    def get(self, template_id: str) -> TemplateContract:
        """Return the contract or raise ContractNotFound."""
        ...


class ContractRegistry:
    """Holds validated contracts keyed by template id.

    The registry is populated once at construction and never mutated, so it
    can be shared by any number of concurrent validations.
    """

    def __init__(self, contracts: Iterable[TemplateContract] = ()) -> None:
        """Index contracts by template id; duplicate ids are a load error."""
        indexed: dict[str, TemplateContract] = {}
        for contract in contracts:
            if not isinstance(contract, TemplateContract):
                raise ContractLoadError(
                    f"Registry entries must be TemplateContract, got {type(contract).__name__}."
                )
            if contract.template_id in indexed:
                raise ContractLoadError(
                    f"Duplicate contract for template '{contract.template_id}'.",
                    details={"template_id": contract.template_id},
                )
            indexed[contract.template_id] = contract
        self._contracts: Mapping[str, TemplateContract] = MappingProxyType(indexed)

    def get(self, template_id: str) -> TemplateContract:
        """Return the contract for a template id.

        Raises:
            ContractNotFound: when the template id is unknown.
        """
        contract = self._contracts.get((template_id or "").strip())
        if contract is None:
            raise ContractNotFound(template_id)
        return contract

    def template_ids(self) -> list[str]:
        """Return registered template ids in sorted order."""
        return sorted(self._contracts)

    def __contains__(self, template_id: object) -> bool:
        return isinstance(template_id, str) and template_id.strip() in self._contracts

    def __len__(self) -> int:
        return len(self._contracts)

    def __iter__(self) -> Iterator[TemplateContract]:
        return (self._contracts[key] for key in self.template_ids())

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "ContractRegistry":
        """Build a registry from raw contract records (e.g. decoded JSON)."""
        return cls(_parse_record(record, source="<records>") for record in records)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ContractRegistry":
        """Load a JSON file holding one contract object or a list of them."""
        file_path = Path(path)
        return cls(_load_contract_file(file_path))

    @classmethod
    def from_directory(
        cls, path: Union[str, Path], pattern: str = DEFAULT_CONTRACT_PATTERN
    ) -> "ContractRegistry":
        """Load every contract file matching ``pattern`` in a directory."""
        directory = Path(path)
        if not directory.is_dir():
            raise ContractLoadError(f"Contract directory '{directory}' does not exist.")

        contracts: list[TemplateContract] = []
        for file_path in sorted(directory.glob(pattern)):
            contracts.extend(_load_contract_file(file_path))
        registry = cls(contracts)
        logger.info("Loaded %d template contracts from %s", len(registry), directory)
        return registry


def _load_contract_file(file_path: Path) -> list[TemplateContract]:
    try:
        payload = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ContractLoadError(f"Cannot read contract file '{file_path}': {exc}") from exc

    records = payload if isinstance(payload, list) else [payload]
    return [_parse_record(record, source=str(file_path)) for record in records]


def _parse_record(record: Any, *, source: str) -> TemplateContract:
    if not isinstance(record, Mapping):
        raise ContractLoadError(
            f"Contract records must be JSON objects ({source}), got {type(record).__name__}."
        )
    try:
        return TemplateContract.model_validate(dict(record))
    except ValidationError as exc:
        template_id = record.get("template_id", "<unknown>")
        raise ContractLoadError(
            f"Invalid contract '{template_id}' in {source}: {exc}",
            details={"template_id": str(template_id), "source": source},
        ) from exc
