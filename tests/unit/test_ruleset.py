"""
Unit tests for the ruleset registry.

Tests cover:
- Rule registration order and duplicates
- Running rules and converting raised exceptions
- Skip overrides and the expected rule count
- Rule options parsing
"""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest
from conftest import StubRule

from kubestig.config import RuleOptionsConfig, SkipConfig
from kubestig.rule import CheckResult, SeverityLevel, SkipRule, Status, Target
from kubestig.ruleset import (
    DuplicateRuleError,
    RuleCountMismatchError,
    RuleOptionsError,
    Ruleset,
    finalize_rules,
    get_option_or_none,
    parse_rule_options,
)


@dataclass
class PortOptions:
    """Options type used to exercise parse_rule_options."""

    ports: list[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data):
        return cls(ports=[int(p) for p in data.get("ports", [])])

    def validate(self):
        return [f"ports[{i}]: invalid port {p}" for i, p in enumerate(self.ports) if p < 1]


def stub_rules(count: int) -> list[StubRule]:
    return [
        StubRule(str(240000 + i), f"rule {i}", [CheckResult.passed("ok")])
        for i in range(count)
    ]


class TestRuleset:
    """Tests for Ruleset."""

    def test_add_rules_keeps_order(self):
        """Test rules are returned in registration order."""
        ruleset = Ruleset("test", "Test", "v1")
        rules = stub_rules(3)

        ruleset.add_rules(*rules)

        assert [r.id for r in ruleset.rules()] == ["240000", "240001", "240002"]

    def test_duplicate_rule(self):
        """Test registering an ID twice fails."""
        ruleset = Ruleset("test", "Test", "v1")
        ruleset.add_rules(StubRule("242400", results=[CheckResult.passed("ok")]))

        with pytest.raises(DuplicateRuleError, match="242400 is already registered"):
            ruleset.add_rules(StubRule("242400", results=[CheckResult.passed("ok")]))

    def test_run_collects_results(self, ctx):
        """Test every rule contributes one rule result."""
        ruleset = Ruleset("test", "Test", "v1")
        ruleset.add_rules(
            StubRule("1", results=[CheckResult.passed("ok")]),
            StubRule("2", results=[[CheckResult.failed("bad"), CheckResult.failed("bad")]]),
        )

        result = ruleset.run(ctx)

        assert [rr.rule_id for rr in result.rule_results] == ["1", "2"]
        summary = result.summary()
        assert summary["Passed"] == 1
        assert summary["Failed"] == 2
        assert summary["Errored"] == 0
        assert result.duration_seconds >= 0

    def test_raised_exception_becomes_errored(self, ctx):
        """Test an exception is reported and the run continues."""
        ruleset = Ruleset("test", "Test", "v1")
        after = StubRule("2", results=[CheckResult.passed("ok")])
        ruleset.add_rules(
            StubRule("1", "broken", [RuntimeError("kubelet config unavailable")],
                     SeverityLevel.HIGH),
            after,
        )

        result = ruleset.run(ctx)

        broken = result.rule_results[0]
        assert broken.rule_name == "broken"
        assert broken.severity == SeverityLevel.HIGH
        assert broken.check_results == (
            CheckResult(Status.ERRORED, "kubelet config unavailable", Target()),
        )
        assert after.calls == 1

    def test_run_rule(self, ctx):
        """Test a single rule can be run by ID."""
        ruleset = Ruleset("test", "Test", "v1")
        ruleset.add_rules(*stub_rules(2))

        result = ruleset.run_rule(ctx, "240001")

        assert result.rule_id == "240001"
        with pytest.raises(KeyError):
            ruleset.run_rule(ctx, "999999")

    def test_to_dict(self, ctx):
        """Test serialization of a ruleset result."""
        ruleset = Ruleset("test", "Test", "v1")
        ruleset.add_rules(*stub_rules(1))

        data = ruleset.run(ctx).to_dict()

        assert data["id"] == "test"
        assert data["version"] == "v1"
        assert data["summary"]["Passed"] == 1
        assert data["rules"][0]["rule_id"] == "240000"


class TestFinalizeRules:
    """Tests for finalize_rules."""

    def test_count_mismatch(self):
        """Test a revision with one rule missing is rejected."""
        with pytest.raises(RuleCountMismatchError) as exc_info:
            finalize_rules(stub_rules(90), {}, 91)

        assert str(exc_info.value) == "revision expects 91 registered rules, but got: 90"

    def test_skip_override(self, ctx):
        """Test an enabled skip replaces the rule with an Accepted SkipRule."""
        rules = stub_rules(3)
        options = {
            "240001": RuleOptionsConfig(
                "240001", skip=SkipConfig(enabled=True, justification="N/A")
            ),
            "240002": RuleOptionsConfig(
                "240002", skip=SkipConfig(enabled=False, justification="ignored")
            ),
        }

        finalized = finalize_rules(rules, options, 3)

        assert finalized[0] is rules[0]
        assert finalized[2] is rules[2]
        skipped = finalized[1]
        assert isinstance(skipped, SkipRule)
        assert skipped.id == "240001"
        assert skipped.name == "rule 1"
        assert skipped.severity == SeverityLevel.MEDIUM
        result = skipped.run(ctx)
        assert result.check_results == (CheckResult(Status.ACCEPTED, "N/A", Target()),)


class TestParseRuleOptions:
    """Tests for parse_rule_options and get_option_or_none."""

    def test_parses_valid_options(self):
        """Test arguments are turned into the options type."""
        options = parse_rule_options(PortOptions, {"ports": [22, "443"]}, "242414")

        assert options.ports == [22, 443]

    def test_validation_errors(self):
        """Test validation errors are reported with the rule ID."""
        with pytest.raises(RuleOptionsError) as exc_info:
            parse_rule_options(PortOptions, {"ports": [0, 22, -1]}, "242414")

        assert exc_info.value.rule_id == "242414"
        assert exc_info.value.errors == ["ports[0]: invalid port 0", "ports[2]: invalid port -1"]
        assert str(exc_info.value).startswith("rule option 242414 error:")

    def test_non_mapping(self):
        """Test arguments must be a mapping."""
        with pytest.raises(RuleOptionsError, match="must be a mapping"):
            parse_rule_options(PortOptions, ["ports"], "242414")

    def test_unparseable_values(self):
        """Test conversion errors are reported as option errors."""
        with pytest.raises(RuleOptionsError, match="242414"):
            parse_rule_options(PortOptions, {"ports": ["http"]}, "242414")

    def test_get_option_or_none(self):
        """Test missing options or arguments yield None."""
        rule_options = {
            "1": RuleOptionsConfig("1", args={"ports": [80]}),
            "2": RuleOptionsConfig("2", skip=SkipConfig(enabled=True)),
        }

        assert get_option_or_none(PortOptions, rule_options, "1").ports == [80]
        assert get_option_or_none(PortOptions, rule_options, "2") is None
        assert get_option_or_none(PortOptions, rule_options, "3") is None
