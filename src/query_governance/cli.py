import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from query_governance.config import GovernanceConfig
from query_governance.contracts import ContractRegistry
from query_governance.errors import GovernanceError
from query_governance.guardrails import GuardrailEngine
from query_governance.pipeline import ValidationPipeline
from query_governance.reporter import VerdictReporter

logger = logging.getLogger(__name__)

EXIT_ALLOW = 0
EXIT_BLOCK = 1
EXIT_INVALID = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="query-governance", description="Query governance validation CLI"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    val_parser = subparsers.add_parser("validate", help="Validate a rendered SQL file")
    val_parser.add_argument("--contracts", required=True, help="Directory of *.meta.json files")
    val_parser.add_argument("--template", required=True, help="Template id")
    val_parser.add_argument("--tenant", required=True, help="Authenticated tenant id")
    val_parser.add_argument("--sql-file", required=True, help="File holding the rendered SQL")
    val_parser.add_argument(
        "--schema-file", required=True, help="JSON object mapping output column -> type"
    )
    val_parser.add_argument(
        "--config", help="JSON governance config (default: GOVERNANCE_* environment)"
    )
    val_parser.add_argument("--template-version", help="Template version rendered against")
    val_parser.add_argument("--trace-id", help="Provenance id carried into the report")

    list_parser = subparsers.add_parser("list-contracts", help="List registered templates")
    list_parser.add_argument("--contracts", required=True, help="Directory of *.meta.json files")

    subparsers.add_parser("list-rules", help="List guardrail rules in evaluation order")
    return parser


def _load_config(path):
    if path:
        return GovernanceConfig.from_file(path)
    return GovernanceConfig.from_env()


def _run_validate(args) -> int:
    registry = ContractRegistry.from_directory(args.contracts)
    config = _load_config(args.config)
    sql_text = Path(args.sql_file).read_text(encoding="utf-8")
    schema = json.loads(Path(args.schema_file).read_text(encoding="utf-8"))

    pipeline = ValidationPipeline(registry, config=config)
    verdict = pipeline.validate(
        args.template,
        args.tenant,
        sql_text,
        schema,
        template_version=args.template_version,
    )
    reporter = VerdictReporter()
    print(reporter.to_json(verdict, sql_text=sql_text, trace_id=args.trace_id, indent=2))
    return EXIT_ALLOW if reporter.should_execute(verdict) else EXIT_BLOCK


def _run_list_contracts(args) -> int:
    registry = ContractRegistry.from_directory(args.contracts)
    for contract in registry:
        filters = ", ".join(contract.required_filters)
        print(f"{contract.template_id}\tv{contract.version}\t{filters}")
    return EXIT_ALLOW


def _run_list_rules(args) -> int:
    for rule in GuardrailEngine().rules:
        print(f"{rule.rule_id}\t{rule.category.value}\t{rule.severity.value}\t{rule.description}")
    return EXIT_ALLOW


def main(argv=None) -> int:
    """Run the query governance CLI."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    handlers = {
        "validate": _run_validate,
        "list-contracts": _run_list_contracts,
        "list-rules": _run_list_rules,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return EXIT_INVALID

    try:
        return handler(args)
    except (GovernanceError, ValueError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        return EXIT_INVALID


if __name__ == "__main__":
    sys.exit(main())
