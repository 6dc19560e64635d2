"""Validation pipeline: contract resolution, contract checks, guardrails, verdict."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from query_governance.audit import AuditEventType, emit_audit_event
from query_governance.config import GovernanceConfig
from query_governance.contracts.models import RenderedQuery, TemplateContract, schema_columns
from query_governance.contracts.registry import ContractSource
from query_governance.contracts.validator import validate_contract
from query_governance.errors import (
    ContractNotFound,
    InvalidValidationRequest,
    UpstreamUnavailable,
)
from query_governance.guardrails import GuardrailEngine, RuleContext
from query_governance.models import (
    GuardrailFinding,
    RuleCategory,
    Severity,
    ValidationVerdict,
)
from query_governance.observability import get_tracer, governance_metrics

logger = logging.getLogger(__name__)

CONTRACT_RESOLVED_RULE = "contract_resolved"
UPSTREAM_AVAILABLE_RULE = "upstream_available"

Renderer = Callable[[str, Mapping[str, Any]], Union[str, Awaitable[str]]]


def _require_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidValidationRequest(
            f"{name} must be a non-empty string.", details={"field": name}
        )
    return value.strip()


def _check_schema(expected_schema: Any) -> None:
    try:
        schema_columns(expected_schema)
    except TypeError as exc:
        raise InvalidValidationRequest(str(exc), details={"field": "expected_schema"}) from exc


def _failed_structural(rule_id: str, message: str) -> GuardrailFinding:
    return GuardrailFinding(
        rule_id=rule_id,
        category=RuleCategory.STRUCTURAL,
        severity=Severity.BLOCKING,
        passed=False,
        message=message,
    )


class ValidationPipeline:
    """Validates rendered SQL for a named template and tenant.

    Holds only immutable collaborators, so one instance can serve concurrent
    validations; identical inputs always produce equal verdicts.
    """

    def __init__(
        self,
        registry: ContractSource,
        config: Optional[GovernanceConfig] = None,
        engine: Optional[GuardrailEngine] = None,
    ) -> None:
        """Wire the contract source, configuration and rule engine."""
        self._registry = registry
        self._config = config or GovernanceConfig()
        self._engine = engine or GuardrailEngine()
        self._tracer = get_tracer(__name__)

    @property
    def config(self) -> GovernanceConfig:
        """The configuration every validation runs with."""
        return self._config

    def validate(
        self,
        template_id: str,
        tenant_id: str,
        rendered_sql: str,
        expected_schema: Any,
        *,
        template_version: Optional[str] = None,
    ) -> ValidationVerdict:
        """Validate one rendered query.

        Args:
            template_id: Named template the SQL was rendered from.
            tenant_id: Authenticated tenant of the caller.
            rendered_sql: SQL text produced by the renderer.
            expected_schema: Agent-facing response schema.
            template_version: Version the caller rendered against, if known.

        Returns:
            ValidationVerdict; BLOCK verdicts always carry a failed finding.

        Raises:
            InvalidValidationRequest: when an input is missing or ill-typed.
        """
        template_id = _require_text("template_id", template_id)
        tenant_id = _require_text("tenant_id", tenant_id)
        if not isinstance(rendered_sql, str):
            raise InvalidValidationRequest(
                "rendered_sql must be a string.", details={"field": "rendered_sql"}
            )
        _check_schema(expected_schema)

        with self._tracer.start_as_current_span(
            "governance.validate",
            attributes={"governance.template_id": template_id},
        ) as span:
            started = time.perf_counter()
            try:
                contract = self._registry.get(template_id)
            except ContractNotFound as exc:
                verdict = self._not_found(template_id, tenant_id, exc)
            except Exception as exc:
                upstream = UpstreamUnavailable(
                    "contract_registry", f"Contract lookup failed: {type(exc).__name__}: {exc}"
                )
                verdict = self._upstream_failure(template_id, tenant_id, upstream)
            else:
                verdict = self._evaluate(
                    contract,
                    template_id,
                    tenant_id,
                    rendered_sql,
                    expected_schema,
                    template_version=template_version,
                )
            self._record(span, verdict, started)
        return verdict

    def validate_rendered(self, query: RenderedQuery, expected_schema: Any) -> ValidationVerdict:
        """Validate an already-rendered query model."""
        return self.validate(
            query.template_id,
            query.tenant_id,
            query.sql_text,
            expected_schema,
            template_version=query.template_version,
        )

    async def validate_template(
        self,
        template_id: str,
        tenant_id: str,
        params: Mapping[str, Any],
        expected_schema: Any,
        renderer: Renderer,
        *,
        template_version: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> tuple[ValidationVerdict, Optional[RenderedQuery]]:
        """Resolve the contract, render the template and validate the result.

        The contract lookup and the renderer each run under ``asyncio.wait_for``;
        a failure or timeout of either is a BLOCK with an ``upstream_available``
        finding. Nothing is retried.

        Returns:
            ``(verdict, rendered_query)``; ``rendered_query`` is None when the
            query was never rendered.
        """
        template_id = _require_text("template_id", template_id)
        tenant_id = _require_text("tenant_id", tenant_id)
        _check_schema(expected_schema)
        if timeout is None:
            timeout = self._config.upstream_timeout_seconds

        with self._tracer.start_as_current_span(
            "governance.validate",
            attributes={"governance.template_id": template_id, "governance.rendered": True},
        ) as span:
            started = time.perf_counter()
            query = None
            try:
                contract = await _call_upstream(
                    "contract_registry", self._registry.get, template_id, timeout=timeout
                )
                sql_text = await _call_upstream(
                    "renderer", renderer, template_id, dict(params or {}), timeout=timeout
                )
                if not isinstance(sql_text, str):
                    raise UpstreamUnavailable(
                        "renderer", f"Renderer returned {type(sql_text).__name__}, not SQL text."
                    )
            except ContractNotFound as exc:
                verdict = self._not_found(template_id, tenant_id, exc)
            except UpstreamUnavailable as exc:
                verdict = self._upstream_failure(template_id, tenant_id, exc)
            else:
                query = RenderedQuery(
                    template_id=template_id,
                    tenant_id=tenant_id,
                    sql_text=sql_text,
                    template_version=template_version,
                )
                verdict = self._evaluate(
                    contract,
                    template_id,
                    tenant_id,
                    sql_text,
                    expected_schema,
                    template_version=template_version,
                )
            self._record(span, verdict, started)
        return verdict, query

    def _evaluate(
        self,
        contract: TemplateContract,
        template_id: str,
        tenant_id: str,
        sql_text: str,
        expected_schema: Any,
        *,
        template_version: Optional[str],
    ) -> ValidationVerdict:
        result = validate_contract(
            contract,
            expected_schema,
            config=self._config,
            expected_version=template_version,
        )
        findings = [
            GuardrailFinding(
                rule_id=f"contract_{violation.code.value}",
                category=RuleCategory.GOVERNANCE,
                severity=Severity.BLOCKING,
                passed=False,
                message=violation.message,
            )
            for violation in result.violations
        ]
        context = RuleContext(
            tenant_id=tenant_id,
            template_id=template_id,
            contract=contract,
            config=self._config,
        )
        findings.extend(self._engine.evaluate(sql_text, context))
        verdict = ValidationVerdict.build(
            template_id=template_id,
            tenant_id=tenant_id,
            contract_ok=result.ok,
            findings=findings,
        )
        logger.info(
            "Template %s (tenant %s): %s with %d blocking finding(s), %d warning(s)",
            template_id,
            tenant_id,
            verdict.decision.value,
            len(verdict.blocking_findings),
            len(verdict.warnings),
        )
        return verdict

    def _not_found(
        self, template_id: str, tenant_id: str, exc: ContractNotFound
    ) -> ValidationVerdict:
        logger.info("Blocking unknown template %s: %s", template_id, exc)
        emit_audit_event(
            AuditEventType.CONTRACT_NOT_FOUND,
            tenant_id=tenant_id,
            template_id=template_id,
            metadata={"reason_code": exc.reason_code},
        )
        return ValidationVerdict.build(
            template_id=template_id,
            tenant_id=tenant_id,
            contract_ok=False,
            findings=[_failed_structural(CONTRACT_RESOLVED_RULE, str(exc))],
        )

    def _upstream_failure(
        self, template_id: str, tenant_id: str, exc: UpstreamUnavailable
    ) -> ValidationVerdict:
        logger.warning("Blocking template %s, %s unavailable: %s", template_id, exc.dependency, exc)
        emit_audit_event(
            AuditEventType.UPSTREAM_UNAVAILABLE,
            tenant_id=tenant_id,
            template_id=template_id,
            metadata={"reason_code": exc.reason_code, "dependency": exc.dependency},
        )
        return ValidationVerdict.build(
            template_id=template_id,
            tenant_id=tenant_id,
            contract_ok=False,
            findings=[_failed_structural(UPSTREAM_AVAILABLE_RULE, exc.message)],
        )

    @staticmethod
    def _record(span: Any, verdict: ValidationVerdict, started: float) -> None:
        duration_ms = (time.perf_counter() - started) * 1000.0
        span.set_attribute("governance.decision", verdict.decision.value)
        span.set_attribute("governance.contract_ok", verdict.contract_ok)
        span.set_attribute(
            "governance.blocking_rules", ",".join(f.rule_id for f in verdict.blocking_findings)
        )
        governance_metrics.record_verdict(
            verdict.decision.value, verdict.contract_ok, duration_ms
        )


async def _call_upstream(dependency: str, func: Callable[..., Any], *args: Any, timeout: float):
    """Call a sync or async upstream under a timeout, mapping failures to UpstreamUnavailable."""
    try:
        if inspect.iscoroutinefunction(func):
            return await asyncio.wait_for(func(*args), timeout=timeout)
        result = await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
        if inspect.isawaitable(result):
            result = await asyncio.wait_for(result, timeout=timeout)
        return result
    except ContractNotFound:
        raise
    except asyncio.TimeoutError as exc:
        raise UpstreamUnavailable(
            dependency, f"{dependency} did not respond within {timeout:g}s."
        ) from exc
    except UpstreamUnavailable:
        raise
    except Exception as exc:
        raise UpstreamUnavailable(
            dependency, f"{dependency} failed: {type(exc).__name__}: {exc}"
        ) from exc
