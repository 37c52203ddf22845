"""
Operation domain types (``approval_kernel.domain.operations``).

Responsibility
--------------
Closed enumerations for operation types, roles, criticality and priority,
plus the per-operation-type payload contract: which payload fields are
security-material (core fields), where the amount and currency live,
which field identifies the affected entity, and how priority and
business context are derived.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* Every ``OperationType`` member has an ``OperationSpec``; the module
  refuses to import otherwise, so a new operation type cannot ship
  without a core-field rule.
* ``CRITICAL_OPERATION_TYPES`` is a fixed allowlist; it is not
  configurable at runtime.
* Unparseable amounts extract as ``None`` (never as zero), so a malformed
  amount can never fall under an auto-approve threshold.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


SYSTEM_USER_ID = "system"


class OperationType(str, Enum):
    """Sensitive business operations routed through the approval engine."""

    CAPITAL_ENTRY = "capital_entry"
    PURCHASE = "purchase"
    SALE_ORDER = "sale_order"
    WAREHOUSE_OPERATION = "warehouse_operation"
    SHIPPING_OPERATION = "shipping_operation"
    FINANCIAL_ADJUSTMENT = "financial_adjustment"
    USER_ROLE_CHANGE = "user_role_change"
    SYSTEM_SETTING_CHANGE = "system_setting_change"
    OPERATING_EXPENSE = "operating_expense"
    SUPPLY_PURCHASE = "supply_purchase"


class Role(str, Enum):
    """User roles known to the approval engine."""

    ADMIN = "admin"
    FINANCE = "finance"
    PURCHASING = "purchasing"
    SALES = "sales"
    WAREHOUSE = "warehouse"
    WORKER = "worker"


class Criticality(str, Enum):
    """How severe a missing approval chain is for an operation type."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Priority(str, Enum):
    """Request priority, used for routing and time estimates."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# Operation types that may never bypass approval, whoever the caller is.
CRITICAL_OPERATION_TYPES: frozenset[OperationType] = frozenset({
    OperationType.CAPITAL_ENTRY,
    OperationType.PURCHASE,
    OperationType.SALE_ORDER,
    OperationType.FINANCIAL_ADJUSTMENT,
    OperationType.USER_ROLE_CHANGE,
    OperationType.SYSTEM_SETTING_CHANGE,
})


# =========================================================================
# Amount parsing
# =========================================================================


def parse_amount(value: Any) -> Decimal | None:
    """Parse a payload amount into Decimal.

    Accepts Decimal, int, float (via str) and numeric strings (commas
    allowed as thousands separators).  Returns None for missing, boolean
    or unparseable values.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        value = str(value)
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "")
        if not cleaned:
            return None
        try:
            parsed = Decimal(cleaned)
        except InvalidOperation:
            return None
        return parsed if parsed.is_finite() else None
    return None


# =========================================================================
# Per-operation payload contract (tagged union)
# =========================================================================


@dataclass(frozen=True)
class OperationSpec:
    """Payload contract for one operation type.

    ``core_fields`` are compared between the approved snapshot and the
    executed payload.  Dotted names address nested objects.
    """

    operation_type: OperationType
    core_fields: tuple[str, ...]
    amount_fields: tuple[str, ...] = ()
    currency_field: str | None = None
    entity_id_fields: tuple[str, ...] = ("id", "entityId")
    describe: Callable[[Mapping[str, Any]], str] = field(
        default=lambda data: "", compare=False, repr=False,
    )
    prioritize: Callable[[Mapping[str, Any], Decimal | None], Priority] = field(
        default=lambda data, amount: Priority.NORMAL, compare=False, repr=False,
    )


def _capital_priority(data: Mapping[str, Any], amount: Decimal | None) -> Priority:
    if data.get("type") == "CapitalOut" and amount is not None and amount > 10000:
        return Priority.HIGH
    return Priority.NORMAL


def _purchase_priority(data: Mapping[str, Any], amount: Decimal | None) -> Priority:
    if amount is None:
        return Priority.NORMAL
    if amount > 50000:
        return Priority.HIGH
    if amount > 20000:
        return Priority.NORMAL
    return Priority.LOW


def _sale_priority(data: Mapping[str, Any], amount: Decimal | None) -> Priority:
    if amount is not None and amount > 100000:
        return Priority.URGENT
    if amount is not None and amount > 50000:
        return Priority.HIGH
    return Priority.NORMAL


_SENSITIVE_SETTINGS = frozenset({"PREVENT_NEGATIVE_BALANCE", "USD_ETB_RATE"})


OPERATION_SPECS: dict[OperationType, OperationSpec] = {
    OperationType.CAPITAL_ENTRY: OperationSpec(
        operation_type=OperationType.CAPITAL_ENTRY,
        core_fields=("amount", "type", "paymentCurrency"),
        amount_fields=("amount",),
        currency_field="paymentCurrency",
        entity_id_fields=("reference",),
        describe=lambda d: f"Capital {d.get('type')}: {d.get('description')}",
        prioritize=_capital_priority,
    ),
    OperationType.PURCHASE: OperationSpec(
        operation_type=OperationType.PURCHASE,
        core_fields=("total", "currency", "supplierId", "weight"),
        amount_fields=("total",),
        currency_field="currency",
        entity_id_fields=("supplierId",),
        describe=lambda d: f"Purchase: {d.get('weight')}kg at {d.get('pricePerKg')} per kg",
        prioritize=_purchase_priority,
    ),
    OperationType.SALE_ORDER: OperationSpec(
        operation_type=OperationType.SALE_ORDER,
        core_fields=("totalAmount", "currency", "customerId"),
        amount_fields=("totalAmount",),
        currency_field="currency",
        entity_id_fields=("customerId",),
        describe=lambda d: f"Sales Order: {d.get('currency')} {d.get('totalAmount')}",
        prioritize=_sale_priority,
    ),
    OperationType.WAREHOUSE_OPERATION: OperationSpec(
        operation_type=OperationType.WAREHOUSE_OPERATION,
        core_fields=("qtyKgTotal", "warehouse"),
        entity_id_fields=("id",),
        describe=lambda d: f"Warehouse operation: {d.get('status') or 'status change'}",
    ),
    OperationType.SHIPPING_OPERATION: OperationSpec(
        operation_type=OperationType.SHIPPING_OPERATION,
        core_fields=("totalWeight", "destinationAddress"),
        amount_fields=("totalAmount", "amountPaid"),
        currency_field="currency",
        entity_id_fields=("customerId", "shipmentId"),
        describe=lambda d: f"Shipping operation: {d.get('shipmentNumber') or 'new shipment'}",
    ),
    OperationType.FINANCIAL_ADJUSTMENT: OperationSpec(
        operation_type=OperationType.FINANCIAL_ADJUSTMENT,
        core_fields=("amount", "currency", "accountId"),
        amount_fields=("amount",),
        currency_field="currency",
        entity_id_fields=("accountId", "id"),
        describe=lambda d: f"Financial adjustment: {d.get('reason') or 'unspecified'}",
        prioritize=lambda d, amount: Priority.HIGH,
    ),
    OperationType.USER_ROLE_CHANGE: OperationSpec(
        operation_type=OperationType.USER_ROLE_CHANGE,
        core_fields=("role",),
        entity_id_fields=("userId", "id"),
        describe=lambda d: f"User role change: {d.get('role')}",
        prioritize=lambda d, amount: (
            Priority.URGENT if d.get("role") == Role.ADMIN.value else Priority.HIGH
        ),
    ),
    OperationType.SYSTEM_SETTING_CHANGE: OperationSpec(
        operation_type=OperationType.SYSTEM_SETTING_CHANGE,
        core_fields=("key", "value"),
        entity_id_fields=("key",),
        describe=lambda d: f"System setting: {d.get('key')} = {d.get('value')}",
        prioritize=lambda d, amount: (
            Priority.HIGH if d.get("key") in _SENSITIVE_SETTINGS else Priority.NORMAL
        ),
    ),
    OperationType.OPERATING_EXPENSE: OperationSpec(
        operation_type=OperationType.OPERATING_EXPENSE,
        core_fields=("amount", "currency", "categoryId"),
        amount_fields=("amount",),
        currency_field="currency",
        entity_id_fields=("categoryId", "id"),
        describe=lambda d: f"Operating expense: {d.get('description')}",
    ),
    OperationType.SUPPLY_PURCHASE: OperationSpec(
        operation_type=OperationType.SUPPLY_PURCHASE,
        core_fields=("total", "currency", "supplierId"),
        amount_fields=("total",),
        currency_field="currency",
        entity_id_fields=("supplierId",),
        describe=lambda d: f"Supply purchase from {d.get('supplierId')}",
    ),
}

_missing_specs = set(OperationType) - set(OPERATION_SPECS)
if _missing_specs:
    raise RuntimeError(
        "Operation types without a payload contract: "
        + ", ".join(sorted(t.value for t in _missing_specs))
    )


def get_operation_spec(operation_type: OperationType | str) -> OperationSpec:
    """Return the payload contract for an operation type.

    Raises:
        ValueError: if ``operation_type`` is not a known operation type.
    """
    return OPERATION_SPECS[OperationType(operation_type)]


def resolve_field(data: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted field path (``a.b.c``) against nested mappings."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current


@dataclass(frozen=True)
class OperationPayload:
    """Operation data split into its core subset and an extension map.

    The tag is ``operation_type``; ``core`` holds exactly the fields the
    operation's spec marks as security-material (dotted paths flattened to
    their full path), ``extensions`` holds everything else untouched.
    """

    operation_type: OperationType
    core: Mapping[str, Any]
    extensions: Mapping[str, Any]

    @classmethod
    def from_data(
        cls, operation_type: OperationType | str, data: Mapping[str, Any],
    ) -> OperationPayload:
        spec = get_operation_spec(operation_type)
        core = {name: resolve_field(data, name) for name in spec.core_fields}
        top_level_core = {name.split(".", 1)[0] for name in spec.core_fields if "." not in name}
        extensions = {k: v for k, v in data.items() if k not in top_level_core}
        return cls(
            operation_type=spec.operation_type,
            core=core,
            extensions=extensions,
        )


# =========================================================================
# Context extraction
# =========================================================================


@dataclass(frozen=True)
class ExtractedOperationContext:
    """Amount, currency and routing hints derived from an operation payload."""

    operation_type: OperationType
    amount: Decimal | None
    currency: str | None
    business_context: str
    priority: Priority
    entity_id: str | None


def extract_amount(operation_type: OperationType | str, data: Mapping[str, Any]) -> Decimal | None:
    """First parseable amount among the spec's amount fields, else None."""
    spec = get_operation_spec(operation_type)
    for name in spec.amount_fields:
        amount = parse_amount(resolve_field(data, name))
        if amount is not None:
            return amount
    return None


def extract_entity_id(operation_type: OperationType | str, data: Mapping[str, Any]) -> str | None:
    """Identifier of the entity an operation touches (supplier, customer, key...)."""
    spec = get_operation_spec(operation_type)
    for name in spec.entity_id_fields:
        value = resolve_field(data, name)
        if value is not None and value != "":
            return str(value)
    return None


def extract_operation_context(
    operation_type: OperationType | str,
    data: Mapping[str, Any],
    default_currency: str = "USD",
) -> ExtractedOperationContext:
    """Derive amount, currency, business context and priority from a payload."""
    spec = get_operation_spec(operation_type)
    amount = extract_amount(spec.operation_type, data)
    currency = None
    if spec.currency_field is not None:
        currency = data.get(spec.currency_field) or default_currency
    return ExtractedOperationContext(
        operation_type=spec.operation_type,
        amount=amount,
        currency=currency,
        business_context=spec.describe(data),
        priority=spec.prioritize(data, amount),
        entity_id=extract_entity_id(spec.operation_type, data),
    )


_HOURS_PER_STEP: dict[Priority, int] = {
    Priority.URGENT: 2,
    Priority.HIGH: 6,
    Priority.NORMAL: 24,
    Priority.LOW: 48,
}


def estimate_approval_time(total_steps: int, priority: Priority | str) -> str:
    """Human-readable turnaround estimate from step count and priority."""
    hours_per_step = _HOURS_PER_STEP.get(Priority(priority), 24)
    total_hours = max(total_steps, 1) * hours_per_step
    if total_hours < 24:
        return f"{total_hours} hours"
    if total_hours < 168:
        days = -(-total_hours // 24)
        return f"{days} business day{'s' if days > 1 else ''}"
    weeks = -(-total_hours // 168)
    return f"{weeks} week{'s' if weeks > 1 else ''}"
