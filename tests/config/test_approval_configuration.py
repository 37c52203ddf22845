"""
Tests for approval_config: YAML loading, validation, bridges and seeding.
"""

from dataclasses import replace
from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from approval_config import get_active_config, validate_configuration
from approval_config.bridges import (
    build_required_chain_specs,
    build_validation_policy,
    seed_approval_chains,
)
from approval_config.loader import (
    compute_checksum,
    load_configuration_set,
    parse_chain,
    parse_decimal,
    parse_settings,
)
from approval_config.schema import ApprovalConfigurationSet, ApprovalSettings, ChainDef, RequiredChainDef
from approval_kernel.domain.operations import Criticality, OperationType, Role
from approval_kernel.models.audit_event import AuditAction


def write_set(base: Path, name: str = "custom", root=None, chains=None, required=None) -> Path:
    set_dir = base / name
    set_dir.mkdir(parents=True)
    root = root if root is not None else {"config_id": "test-set", "version": 3}
    (set_dir / "root.yaml").write_text(yaml.safe_dump(root))
    if chains is not None:
        (set_dir / "chains.yaml").write_text(yaml.safe_dump({"chains": chains}))
    if required is not None:
        (set_dir / "required_chains.yaml").write_text(yaml.safe_dump({"required_chains": required}))
    return set_dir


CHAIN = {
    "chain_name": "purchase_all",
    "operation_type": "purchase",
    "required_roles": ["purchasing", "finance"],
    "min_amount": "0",
    "auto_approve_below": "250.50",
}


# =============================================================================
# Loader
# =============================================================================


class TestParsing:

    @pytest.mark.parametrize("raw, expected", [
        ("20000.01", Decimal("20000.01")),
        (5000, Decimal("5000")),
        (None, None),
        ("", None),
    ])
    def test_parse_decimal(self, raw, expected):
        assert parse_decimal(raw) == expected

    @pytest.mark.parametrize("raw", ["lots", True])
    def test_parse_decimal_rejects_garbage(self, raw):
        with pytest.raises(ValueError):
            parse_decimal(raw)

    def test_settings_defaults(self):
        assert parse_settings({}) == ApprovalSettings()

    def test_settings_overrides(self):
        settings = parse_settings({"approval_max_age_hours": 12, "amount_tolerance_ratio": "0.002"})
        assert settings.approval_max_age_hours == 12
        assert settings.amount_tolerance_ratio == Decimal("0.002")

    def test_chain_defaults(self):
        chain = parse_chain(CHAIN)
        assert chain.required_roles == ("purchasing", "finance")
        assert chain.max_amount is None
        assert chain.auto_approve_below == Decimal("250.50")
        assert chain.priority == 1
        assert chain.is_active is True
        assert chain.escalate_after_hours is None

    def test_chain_requires_name(self):
        with pytest.raises(KeyError):
            parse_chain({"operation_type": "purchase", "required_roles": ["admin"]})

    def test_checksum_is_deterministic_and_order_independent(self):
        assert compute_checksum({"a": 1, "b": [1, 2]}) == compute_checksum({"b": [1, 2], "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


class TestLoadConfigurationSet:

    def test_load_custom_set(self, tmp_path):
        set_dir = write_set(
            tmp_path, chains=[CHAIN],
            required=[{"operation_type": "purchase", "criticality": "critical", "required_roles": ["admin"]}],
        )
        config = load_configuration_set(set_dir)
        assert config.config_id == "test-set"
        assert config.version == 3
        assert [c.chain_name for c in config.chains] == ["purchase_all"]
        assert config.required_chains[0].max_auto_approve is None
        assert len(config.checksum) == 64

    def test_optional_fragments(self, tmp_path):
        config = load_configuration_set(write_set(tmp_path))
        assert config.chains == ()
        assert config.required_chains == ()

    def test_same_content_same_checksum(self, tmp_path):
        a = load_configuration_set(write_set(tmp_path, "a", chains=[CHAIN]))
        b = load_configuration_set(write_set(tmp_path, "b", chains=[CHAIN]))
        assert a.checksum == b.checksum

    def test_chains_for(self, tmp_path):
        config = load_configuration_set(write_set(tmp_path, chains=[CHAIN]))
        assert len(config.chains_for("purchase")) == 1
        assert config.chains_for("sale_order") == ()


class TestGetActiveConfig:

    def test_default_set(self, default_config):
        assert default_config.config_id == "approval-default"
        assert len(default_config.chains) == 13
        assert len(default_config.required_chains) == 8
        assert default_config.settings.approval_max_age_hours == 24

    def test_missing_set(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(config_dir=tmp_path, config_name="nope")

    def test_invalid_set_is_refused(self, tmp_path):
        write_set(tmp_path, chains=[dict(CHAIN, operation_type="teleport")])
        with pytest.raises(ValueError, match="unknown operation type 'teleport'"):
            get_active_config(config_dir=tmp_path, config_name="custom")

    def test_trace_log_emitted(self, tmp_path, captured_logs):
        write_set(tmp_path, chains=[CHAIN])
        config = get_active_config(config_dir=tmp_path, config_name="custom")
        traces = [r for r in captured_logs() if r["message"] == "APPROVAL_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["checksum"] == config.checksum
        assert traces[0]["chain_count"] == 1


# =============================================================================
# Validator
# =============================================================================


def make_config(chains=(), required=(), settings=None) -> ApprovalConfigurationSet:
    return ApprovalConfigurationSet(
        config_id="t",
        version=1,
        settings=settings or ApprovalSettings(),
        chains=tuple(chains),
        required_chains=tuple(required),
    )


def chain_def(**overrides) -> ChainDef:
    fields = dict(chain_name="c", operation_type="purchase", required_roles=("finance",))
    fields.update(overrides)
    return ChainDef(**fields)


class TestValidateConfiguration:

    def test_default_set_has_no_errors_or_warnings(self, default_config):
        result = validate_configuration(default_config)
        assert result.is_valid
        assert result.warnings == []

    def test_duplicate_chain_names(self):
        result = validate_configuration(make_config([chain_def(), chain_def()]))
        assert any("Duplicate chain" in e for e in result.errors)

    def test_unknown_role(self):
        result = validate_configuration(make_config([chain_def(required_roles=("wizard",))]))
        assert any("unknown role 'wizard'" in e for e in result.errors)

    def test_empty_roles(self):
        result = validate_configuration(make_config([chain_def(required_roles=())]))
        assert any("required_roles is empty" in e for e in result.errors)

    def test_inverted_band(self):
        chain = chain_def(min_amount=Decimal("100"), max_amount=Decimal("10"))
        result = validate_configuration(make_config([chain]))
        assert any("exceeds max_amount" in e for e in result.errors)

    def test_negative_threshold(self):
        result = validate_configuration(make_config([chain_def(auto_approve_below=Decimal("-1"))]))
        assert any("auto_approve_below must be non-negative" in e for e in result.errors)

    def test_nonpositive_escalation(self):
        result = validate_configuration(make_config([chain_def(escalate_after_hours=0)]))
        assert any("escalate_after_hours must be positive" in e for e in result.errors)

    def test_low_priority_is_a_warning(self):
        result = validate_configuration(make_config([chain_def(priority=0)]))
        assert result.is_valid
        assert any("priority 0" in w for w in result.warnings)

    def test_bad_settings(self):
        settings = replace(ApprovalSettings(), approval_max_age_hours=0, system_user_id="")
        result = validate_configuration(make_config(settings=settings))
        assert len(result.errors) == 2

    def test_required_chain_vocabulary(self):
        required = [
            RequiredChainDef("teleport", "critical", ("admin",)),
            RequiredChainDef("purchase", "apocalyptic", ("admin",)),
        ]
        result = validate_configuration(make_config(required=required))
        assert any("unknown operation type 'teleport'" in e for e in result.errors)
        assert any("unknown criticality 'apocalyptic'" in e for e in result.errors)

    def test_uncovered_critical_type_warns(self):
        required = [RequiredChainDef("user_role_change", "critical", ("admin",))]
        result = validate_configuration(make_config(required=required))
        assert result.is_valid
        assert result.warnings == ["Critical operation type user_role_change has no configured chain"]

    def test_threshold_above_ceiling_warns(self):
        required = [RequiredChainDef("purchase", "critical", ("finance",), Decimal("5000"))]
        chains = [chain_def(auto_approve_below=Decimal("7500"))]
        result = validate_configuration(make_config(chains, required))
        assert any("above the purchase ceiling 5000" in w for w in result.warnings)


# =============================================================================
# Bridges
# =============================================================================


class TestBridges:

    def test_required_chain_specs(self, default_config):
        specs = build_required_chain_specs(default_config)
        by_type = {s.operation_type: s for s in specs}
        assert by_type[OperationType.PURCHASE].criticality == Criticality.CRITICAL
        assert by_type[OperationType.PURCHASE].max_auto_approve == Decimal("5000")
        assert by_type[OperationType.SHIPPING_OPERATION].criticality == Criticality.MEDIUM
        assert by_type[OperationType.USER_ROLE_CHANGE].required_roles == (Role.ADMIN,)
        assert sum(1 for s in specs if s.is_critical) == 6

    def test_validation_policy(self):
        settings = replace(
            ApprovalSettings(), approval_max_age_hours=6,
            amount_tolerance_floor=Decimal("1"), amount_tolerance_ratio=Decimal("0.01"),
        )
        policy = build_validation_policy(make_config(settings=settings))
        assert policy.max_age_hours == 6
        assert policy.tolerance_floor == Decimal("1")
        assert policy.tolerance_ratio == Decimal("0.01")


class TestSeedApprovalChains:

    def test_seeds_every_default_chain(self, session, default_config, deterministic_clock, chain_resolver):
        created = seed_approval_chains(session, default_config, actor_id="ops", clock=deterministic_clock)
        assert len(created) == 13
        large = chain_resolver.find_chain(OperationType.PURCHASE, 20000.01)
        assert large.chain_name == "purchase_large"
        assert large.escalate_after_hours == 24
        assert large.required_roles == (Role.PURCHASING, Role.FINANCE, Role.ADMIN)

    @pytest.mark.parametrize("op, amount, expected", [
        (OperationType.PURCHASE, "20000", "purchase_standard"),
        (OperationType.PURCHASE, "20000.005", "purchase_large"),
        (OperationType.SALE_ORDER, "50000", "sale_standard"),
        (OperationType.SALE_ORDER, "50000.005", "sale_large"),
        (OperationType.CAPITAL_ENTRY, "50000.005", "capital_large"),
    ])
    def test_default_bands_are_contiguous(self, chain_resolver, seeded_chains, op, amount, expected):
        assert chain_resolver.find_chain(op, amount).chain_name == expected

    def test_seeding_is_idempotent(self, session, default_config, deterministic_clock):
        seed_approval_chains(session, default_config, clock=deterministic_clock)
        assert seed_approval_chains(session, default_config, clock=deterministic_clock) == []

    def test_existing_rows_are_not_overwritten(
        self, session, default_config, deterministic_clock, create_chain, chain_resolver,
    ):
        create_chain(
            OperationType.USER_ROLE_CHANGE, chain_name="user_role_change",
            required_roles=(Role.ADMIN, Role.FINANCE),
        )
        created = seed_approval_chains(session, default_config, clock=deterministic_clock)
        assert "user_role_change" not in created
        chain = chain_resolver.find_chain(OperationType.USER_ROLE_CHANGE)
        assert chain.required_roles == (Role.ADMIN, Role.FINANCE)

    def test_seeding_is_audited(self, session, default_config, deterministic_clock, auditor_service):
        seed_approval_chains(session, default_config, actor_id="ops", clock=deterministic_clock)
        events = auditor_service.get_events_by_action(AuditAction.APPROVAL_CHAIN_SEEDED)
        assert len(events) == 13
        assert all(e.actor_id == "ops" for e in events)

    def test_default_actor_is_system_identity(self, session, default_config, deterministic_clock, auditor_service):
        seed_approval_chains(session, default_config, clock=deterministic_clock)
        events = auditor_service.get_events_by_action(AuditAction.APPROVAL_CHAIN_SEEDED)
        assert {e.actor_id for e in events} == {"system"}

    def test_seeding_summary_is_logged(self, session, default_config, deterministic_clock, captured_logs):
        created = seed_approval_chains(session, default_config, clock=deterministic_clock)

        summaries = [r for r in captured_logs() if r["message"] == "approval_chains_seeded"]
        assert len(created) == 13
        assert summaries[-1]["created_count"] == 13
        assert summaries[-1]["skipped_count"] == 0
        assert summaries[-1]["config_id"] == "approval-default"
