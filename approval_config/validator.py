"""
Configuration Validator (``approval_config.validator``).

Responsibility
--------------
Validates an ``ApprovalConfigurationSet`` before it is used to seed
chains or build kernel inputs.

Invariants enforced
-------------------
* Known vocabulary -- operation types, roles and criticalities must be
  members of the kernel enumerations.
* Chain name uniqueness.
* Band order -- ``min_amount <= max_amount``; amounts non-negative.
* Every chain lists at least one role.
* Settings are positive / non-negative where it matters.
* Critical operation types in ``required_chains`` should be covered by at
  least one active configured chain (warning; the database may already
  hold chains that are not in this set).

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``)  -> configuration
  MUST NOT be used.
* Validation warnings  -> configuration may be used but should be reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from approval_config.schema import ApprovalConfigurationSet, ChainDef
from approval_kernel.domain.operations import Criticality, OperationType, Role

_OPERATION_TYPES = {op.value for op in OperationType}
_ROLES = {role.value for role in Role}
_CRITICALITIES = {c.value for c in Criticality}


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings do not block use but should be reviewed.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: ApprovalConfigurationSet) -> ConfigValidationResult:
    """
    Validate a configuration set.

    Postconditions:
        - Returns a ``ConfigValidationResult`` with errors and warnings.
    """
    result = ConfigValidationResult()

    _validate_settings(config, result)
    _validate_chain_uniqueness(config, result)
    for chain in config.chains:
        _validate_chain(chain, result)
    _validate_required_chains(config, result)

    return result


def _validate_settings(config: ApprovalConfigurationSet, result: ConfigValidationResult) -> None:
    s = config.settings
    if s.approval_max_age_hours <= 0:
        result.add_error(f"approval_max_age_hours must be positive, got {s.approval_max_age_hours}")
    if s.default_escalation_hours <= 0:
        result.add_error(
            f"default_escalation_hours must be positive, got {s.default_escalation_hours}"
        )
    if s.amount_tolerance_floor < 0 or s.amount_tolerance_ratio < 0:
        result.add_error("Amount tolerances must be non-negative")
    if not s.system_user_id:
        result.add_error("system_user_id must not be empty")
    if s.escalation_interval_seconds <= 0:
        result.add_error("escalation_interval_seconds must be positive")


def _validate_chain_uniqueness(
    config: ApprovalConfigurationSet, result: ConfigValidationResult
) -> None:
    """Check that chain names are unique."""
    seen: set[str] = set()
    for chain in config.chains:
        if chain.chain_name in seen:
            result.add_error(f"Duplicate chain: {chain.chain_name} appears more than once")
        seen.add(chain.chain_name)


def _validate_chain(chain: ChainDef, result: ConfigValidationResult) -> None:
    name = chain.chain_name
    if chain.operation_type not in _OPERATION_TYPES:
        result.add_error(f"Chain '{name}': unknown operation type '{chain.operation_type}'")
    if not chain.required_roles:
        result.add_error(f"Chain '{name}': required_roles is empty")
    for role in chain.required_roles:
        if role not in _ROLES:
            result.add_error(f"Chain '{name}': unknown role '{role}'")
    for label, value in (
        ("min_amount", chain.min_amount),
        ("max_amount", chain.max_amount),
        ("auto_approve_below", chain.auto_approve_below),
    ):
        if value is not None and value < 0:
            result.add_error(f"Chain '{name}': {label} must be non-negative")
    if (
        chain.min_amount is not None
        and chain.max_amount is not None
        and chain.min_amount > chain.max_amount
    ):
        result.add_error(
            f"Chain '{name}': min_amount {chain.min_amount} exceeds max_amount {chain.max_amount}"
        )
    if chain.priority < 1:
        result.add_warning(f"Chain '{name}': priority {chain.priority} is below 1")
    if chain.escalate_after_hours is not None and chain.escalate_after_hours <= 0:
        result.add_error(f"Chain '{name}': escalate_after_hours must be positive")


def _validate_required_chains(
    config: ApprovalConfigurationSet, result: ConfigValidationResult
) -> None:
    seen: set[str] = set()
    for required in config.required_chains:
        op = required.operation_type
        if op not in _OPERATION_TYPES:
            result.add_error(f"Required chain: unknown operation type '{op}'")
            continue
        if op in seen:
            result.add_error(f"Required chain: {op} listed more than once")
        seen.add(op)
        if required.criticality not in _CRITICALITIES:
            result.add_error(f"Required chain {op}: unknown criticality '{required.criticality}'")
        for role in required.required_roles:
            if role not in _ROLES:
                result.add_error(f"Required chain {op}: unknown role '{role}'")

        active = [c for c in config.chains_for(op) if c.is_active]
        if not active and required.criticality == Criticality.CRITICAL.value:
            result.add_warning(f"Critical operation type {op} has no configured chain")
        for chain in active:
            if chain.auto_approve_below is None:
                continue
            if required.max_auto_approve is None:
                result.add_warning(
                    f"Chain '{chain.chain_name}' auto-approves but {op} allows no auto-approval"
                )
            elif chain.auto_approve_below > required.max_auto_approve:
                result.add_warning(
                    f"Chain '{chain.chain_name}' auto-approves below "
                    f"{chain.auto_approve_below}, above the {op} ceiling "
                    f"{required.max_auto_approve}"
                )
