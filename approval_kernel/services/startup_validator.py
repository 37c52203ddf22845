"""
StartupChainValidator -- boot-time check that critical chains exist.

Responsibility:
    Before the process serves traffic, confirms every required operation
    type has at least one active approval chain and reports configuration
    smells (uncovered roles, generous auto-approve thresholds, band gaps).

Architecture position:
    Kernel > Services.  Invoked by ``approval_services.bootstrap`` and the
    ``scripts/validate_approval_chains.py`` startup hook.

Invariants enforced:
    - A critical operation type with zero active chains, or whose check
      hit a store error, makes the report invalid; ``validate_or_raise``
      raises StartupValidationError and the hook exits non-zero.
    - High / medium types never block startup; they produce warnings.

Audit relevance:
    approval_startup_validated (info) or approval_startup_failed
    (critical) on every run.
"""

from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approval_engines.chain_selection import find_band_gaps
from approval_kernel.domain.approval import (
    ChainCoverage,
    ChainCoverageReport,
    RequiredChainSpec,
    StartupValidationReport,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.operations import (
    SYSTEM_USER_ID,
    Criticality,
    OperationType,
    Role,
)
from approval_kernel.exceptions import StartupValidationError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_event import AuditAction, AuditSeverity
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.chain_resolver import ApprovalChainResolver
from approval_kernel.services.security_audit import SecurityAuditLog

logger = get_logger("services.startup_validator")

STARTUP_ENTITY = "ApprovalChainConfiguration"

DEFAULT_REQUIRED_CHAINS: tuple[RequiredChainSpec, ...] = (
    RequiredChainSpec(
        OperationType.CAPITAL_ENTRY, Criticality.CRITICAL,
        (Role.ADMIN, Role.FINANCE), Decimal("1000"),
        "Capital injections and withdrawals",
    ),
    RequiredChainSpec(
        OperationType.PURCHASE, Criticality.CRITICAL,
        (Role.ADMIN, Role.FINANCE, Role.PURCHASING), Decimal("5000"),
        "Supplier purchases",
    ),
    RequiredChainSpec(
        OperationType.SALE_ORDER, Criticality.CRITICAL,
        (Role.ADMIN, Role.SALES, Role.FINANCE), Decimal("10000"),
        "Customer sale orders",
    ),
    RequiredChainSpec(
        OperationType.FINANCIAL_ADJUSTMENT, Criticality.CRITICAL,
        (Role.ADMIN, Role.FINANCE), None,
        "Manual ledger adjustments",
    ),
    RequiredChainSpec(
        OperationType.USER_ROLE_CHANGE, Criticality.CRITICAL,
        (Role.ADMIN,), None,
        "Role assignments",
    ),
    RequiredChainSpec(
        OperationType.SYSTEM_SETTING_CHANGE, Criticality.CRITICAL,
        (Role.ADMIN,), None,
        "System configuration changes",
    ),
    RequiredChainSpec(
        OperationType.WAREHOUSE_OPERATION, Criticality.HIGH,
        (Role.ADMIN, Role.WAREHOUSE), Decimal("2000"),
        "Warehouse stock movements",
    ),
    RequiredChainSpec(
        OperationType.SHIPPING_OPERATION, Criticality.MEDIUM,
        (Role.ADMIN, Role.WAREHOUSE, Role.SALES), Decimal("1500"),
        "Outbound shipments",
    ),
)


class StartupChainValidator:
    """
    Checks chain coverage for the required operation types.

    Non-goals:
        - Does NOT create missing chains (see approval_config.bridges).
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        resolver: ApprovalChainResolver,
        auditor: AuditorService,
        security_log: SecurityAuditLog,
        clock: Clock | None = None,
        required_chains: Iterable[RequiredChainSpec] = DEFAULT_REQUIRED_CHAINS,
        system_user_id: str = SYSTEM_USER_ID,
    ):
        self._session = session
        self._resolver = resolver
        self._auditor = auditor
        self._security_log = security_log
        self._clock = clock or SystemClock()
        self._required = tuple(required_chains)
        self._system_user_id = system_user_id

    def validate(self) -> StartupValidationReport:
        """Run every check and audit the outcome.  Never raises for store errors."""
        errors: list[str] = []
        warnings: list[str] = []
        missing_critical: list[OperationType] = []
        missing_non_critical: list[OperationType] = []

        for spec in self._required:
            op = spec.operation_type
            try:
                with self._session.begin_nested():
                    chains = self._resolver.get_active_chains(op)
            except SQLAlchemyError as exc:
                logger.critical(
                    "startup_chain_check_failed",
                    exc_info=exc,
                    extra={"operation_type": op.value},
                )
                message = f"{op.value}: chain check failed ({type(exc).__name__})"
                if spec.is_critical:
                    errors.append(message)
                    missing_critical.append(op)
                else:
                    warnings.append(message)
                    missing_non_critical.append(op)
                continue

            if not chains:
                if spec.is_critical:
                    errors.append(f"{op.value}: no active approval chain (critical)")
                    missing_critical.append(op)
                else:
                    warnings.append(
                        f"{op.value}: no active approval chain ({spec.criticality.value})"
                    )
                    missing_non_critical.append(op)
                continue

            warnings.extend(self._secondary_warnings(spec, chains))

        report = StartupValidationReport(
            is_valid=not errors,
            errors=tuple(errors),
            warnings=tuple(warnings),
            missing_critical=tuple(missing_critical),
            missing_non_critical=tuple(missing_non_critical),
            checked_at=self._clock.now(),
        )
        self._audit(report)
        return report

    def _secondary_warnings(self, spec: RequiredChainSpec, chains) -> list[str]:
        op = spec.operation_type.value
        warnings: list[str] = []

        covered = {role for chain in chains for role in chain.required_roles}
        for role in spec.required_roles:
            if role not in covered:
                warnings.append(f"{op}: required role {role.value} is not in any active chain")

        for chain in chains:
            threshold = chain.auto_approve_below
            if threshold is not None:
                if spec.max_auto_approve is None:
                    warnings.append(
                        f"{op}: chain {chain.chain_name} auto-approves below {threshold} "
                        "but this operation type allows no auto-approval"
                    )
                elif threshold > spec.max_auto_approve:
                    warnings.append(
                        f"{op}: chain {chain.chain_name} auto-approves below {threshold}, "
                        f"above the ceiling {spec.max_auto_approve}"
                    )
            if chain.priority < 1:
                warnings.append(
                    f"{op}: chain {chain.chain_name} has priority {chain.priority} (< 1)"
                )
            if chain.auto_approve_same_user and spec.is_critical:
                warnings.append(
                    f"{op}: chain {chain.chain_name} auto-approves the requester's own "
                    "operations on a critical type"
                )

        for low, high in find_band_gaps(chains):
            upper = "unbounded" if high is None else str(high)
            warnings.append(f"{op}: no chain covers amounts between {low} and {upper}")

        return warnings

    def _audit(self, report: StartupValidationReport) -> None:
        details = {
            "errors": list(report.errors),
            "warning_count": len(report.warnings),
            "missing_critical": [op.value for op in report.missing_critical],
            "missing_non_critical": [op.value for op in report.missing_non_critical],
        }
        if report.is_valid:
            for warning in report.warnings:
                logger.warning("startup_chain_warning", extra={"warning": warning})
            self._auditor.record_security_event(
                entity_type=STARTUP_ENTITY,
                entity_id="startup",
                action=AuditAction.APPROVAL_STARTUP_VALIDATED,
                actor_id=self._system_user_id,
                description=(
                    f"Approval chains validated for {len(self._required)} operation "
                    f"types with {len(report.warnings)} warnings"
                ),
                new_values=details,
                severity=AuditSeverity.INFO,
            )
            logger.info("approval_startup_validated", extra=details)
        else:
            self._security_log.record(
                entity_type=STARTUP_ENTITY,
                entity_id="startup",
                action=AuditAction.APPROVAL_STARTUP_FAILED,
                description="; ".join(report.errors),
                actor_id=self._system_user_id,
                new_values=details,
            )

    def validate_or_raise(self) -> StartupValidationReport:
        """
        Validate and raise when a critical chain is missing.

        Raises:
            StartupValidationError: report is invalid.
        """
        report = self.validate()
        if not report.is_valid:
            raise StartupValidationError(
                [op.value for op in report.missing_critical],
                list(report.errors),
            )
        return report

    def get_approval_chain_coverage(self) -> ChainCoverageReport:
        """Active chain counts for each required operation type."""
        coverage = []
        for spec in self._required:
            count = len(self._resolver.get_active_chains(spec.operation_type))
            coverage.append(ChainCoverage(
                operation_type=spec.operation_type,
                criticality=spec.criticality,
                active_chains=count,
            ))
        return ChainCoverageReport(
            coverage=tuple(coverage),
            missing_critical=tuple(
                c.operation_type for c in coverage
                if c.active_chains == 0 and c.criticality == Criticality.CRITICAL
            ),
        )
