"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads the YAML fragments of one configuration set (``root.yaml``,
``chains.yaml``, ``required_chains.yaml``) and parses them into typed
``approval_config.schema`` dataclass instances.  Runtime callers use
``approval_config.get_active_config()`` instead.

Invariants enforced
-------------------
* YAML is read with ``yaml.safe_load`` only.
* Parse errors raise ``ValueError`` or ``KeyError``; required keys have
  no silent defaults.
* Amounts are parsed as Decimal from their string form, never via float.
* ``compute_checksum`` is deterministic for identical fragment content.

Failure modes
-------------
* Missing ``root.yaml``  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    ApprovalConfigurationSet,
    ApprovalSettings,
    ChainDef,
    RequiredChainDef,
)

ROOT_FILE = "root.yaml"
CHAINS_FILE = "chains.yaml"
REQUIRED_CHAINS_FILE = "required_chains.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any) -> Decimal | None:
    """Parse an optional amount from YAML (string or number)."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse amount from {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Cannot parse amount from {value!r}") from exc


def parse_settings(data: dict[str, Any]) -> ApprovalSettings:
    """Parse ApprovalSettings; unspecified keys keep their defaults."""
    defaults = ApprovalSettings()
    return ApprovalSettings(
        approval_max_age_hours=int(
            data.get("approval_max_age_hours", defaults.approval_max_age_hours)
        ),
        default_escalation_hours=int(
            data.get("default_escalation_hours", defaults.default_escalation_hours)
        ),
        system_user_id=str(data.get("system_user_id", defaults.system_user_id)),
        amount_tolerance_floor=parse_decimal(
            data.get("amount_tolerance_floor", defaults.amount_tolerance_floor)
        ),
        amount_tolerance_ratio=parse_decimal(
            data.get("amount_tolerance_ratio", defaults.amount_tolerance_ratio)
        ),
        default_currency=str(data.get("default_currency", defaults.default_currency)),
        escalation_interval_seconds=int(
            data.get("escalation_interval_seconds", defaults.escalation_interval_seconds)
        ),
    )


def parse_chain(data: dict[str, Any]) -> ChainDef:
    """Parse a ChainDef from a dict."""
    escalate = data.get("escalate_after_hours")
    return ChainDef(
        chain_name=data["chain_name"],
        operation_type=data["operation_type"],
        required_roles=tuple(data["required_roles"]),
        min_amount=parse_decimal(data.get("min_amount")),
        max_amount=parse_decimal(data.get("max_amount")),
        auto_approve_below=parse_decimal(data.get("auto_approve_below")),
        auto_approve_same_user=bool(data.get("auto_approve_same_user", False)),
        priority=int(data.get("priority", 1)),
        is_active=bool(data.get("is_active", True)),
        escalate_after_hours=int(escalate) if escalate is not None else None,
        description=data.get("description", ""),
    )


def parse_required_chain(data: dict[str, Any]) -> RequiredChainDef:
    """Parse a RequiredChainDef from a dict."""
    return RequiredChainDef(
        operation_type=data["operation_type"],
        criticality=data["criticality"],
        required_roles=tuple(data["required_roles"]),
        max_auto_approve=parse_decimal(data.get("max_auto_approve")),
        description=data.get("description", ""),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_configuration_set(directory: Path) -> ApprovalConfigurationSet:
    """
    Load one configuration set directory.

    ``chains.yaml`` and ``required_chains.yaml`` are optional; a set
    without them simply declares no chains / no required chains.
    """
    root = load_yaml_file(directory / ROOT_FILE)
    chains_path = directory / CHAINS_FILE
    required_path = directory / REQUIRED_CHAINS_FILE
    chains_raw = load_yaml_file(chains_path) if chains_path.exists() else {}
    required_raw = load_yaml_file(required_path) if required_path.exists() else {}

    return ApprovalConfigurationSet(
        config_id=root["config_id"],
        version=int(root["version"]),
        description=root.get("description", ""),
        settings=parse_settings(root.get("settings") or {}),
        chains=tuple(parse_chain(c) for c in chains_raw.get("chains") or ()),
        required_chains=tuple(
            parse_required_chain(r) for r in required_raw.get("required_chains") or ()
        ),
        checksum=compute_checksum({
            "root": root,
            "chains": chains_raw,
            "required_chains": required_raw,
        }),
    )
