"""
ApprovalConfigurationSet schema.

Defines the human-authored, reviewable source artifact for approval
configuration.  YAML fragments are parsed into these types by the loader,
validated by the validator, and translated into kernel inputs by the
bridges.

Amounts are kept as Decimal; a missing bound or threshold is None.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalSettings:
    """Engine tunables."""

    approval_max_age_hours: int = 24
    default_escalation_hours: int = 48
    system_user_id: str = "system"
    amount_tolerance_floor: Decimal = Decimal("0.01")
    amount_tolerance_ratio: Decimal = Decimal("0.001")
    default_currency: str = "USD"
    escalation_interval_seconds: int = 3600


# ---------------------------------------------------------------------------
# Chains
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainDef:
    """An approval chain to seed into ``approval_chains``."""

    chain_name: str
    operation_type: str
    required_roles: tuple[str, ...]
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    auto_approve_below: Decimal | None = None
    auto_approve_same_user: bool = False
    priority: int = 1
    is_active: bool = True
    escalate_after_hours: int | None = None
    description: str = ""


@dataclass(frozen=True)
class RequiredChainDef:
    """An operation type that must be covered by an active chain at boot."""

    operation_type: str
    criticality: str
    required_roles: tuple[str, ...]
    max_auto_approve: Decimal | None = None
    description: str = ""


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalConfigurationSet:
    """A complete approval configuration set (one directory under sets/)."""

    config_id: str
    version: int
    description: str = ""
    settings: ApprovalSettings = field(default_factory=ApprovalSettings)
    chains: tuple[ChainDef, ...] = ()
    required_chains: tuple[RequiredChainDef, ...] = ()
    checksum: str = ""

    def chains_for(self, operation_type: str) -> tuple[ChainDef, ...]:
        return tuple(c for c in self.chains if c.operation_type == operation_type)
