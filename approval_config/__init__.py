"""
approval_config -- single public entrypoint for approval configuration.

Responsibility:
    Provides the ONLY way to obtain approval configuration at runtime
    through ``get_active_config()``: engine settings, the chains to seed
    and the required-chain table checked at boot.

Architecture position:
    Configuration -- YAML-driven, validated before use.  This package sits
    above ``approval_kernel`` and below ``approval_services``.  The kernel
    MUST NEVER import from ``approval_config``; bridges in this package
    translate configuration into kernel-compatible inputs.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - A configuration with validation errors is never returned.
    - Deterministic checksum: identical YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration set does not exist.
    - ``ValueError`` -- schema or validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``APPROVAL_CONFIG_TRACE`` log entry carrying config_id, version,
    checksum and chain counts, tying every approval decision back to the
    configuration that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from approval_config.loader import load_configuration_set
from approval_config.schema import ApprovalConfigurationSet
from approval_config.validator import ConfigValidationResult, validate_configuration

_logger = logging.getLogger("approval_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_CONFIG_NAME = "default"


def get_active_config(
    config_dir: Path | None = None,
    config_name: str = DEFAULT_CONFIG_NAME,
) -> ApprovalConfigurationSet:
    """The ONLY public configuration entrypoint.

    Args:
        config_dir: Override path to the configuration sets directory.
            Defaults to approval_config/sets/.
        config_name: Name of the set (subdirectory) to load.

    Raises:
        FileNotFoundError: If the set directory or its root.yaml is missing.
        ValueError: If configuration validation fails.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    set_dir = sets_dir / config_name
    if not (set_dir / "root.yaml").exists():
        raise FileNotFoundError(f"Configuration set not found: {set_dir}")

    config = load_configuration_set(set_dir)

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("approval_config_warning", extra={"warning": warning})

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "chain_count": len(config.chains),
            "required_chain_count": len(config.required_chains),
        },
    )
    return config


__all__ = [
    "ApprovalConfigurationSet",
    "ConfigValidationResult",
    "DEFAULT_CONFIG_NAME",
    "get_active_config",
    "validate_configuration",
]
