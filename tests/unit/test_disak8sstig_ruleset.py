"""
Unit tests for the DISA Kubernetes STIG ruleset.

Tests cover:
- Registration of every v2r1 rule
- Node rules wrapped with retries
- Operator skip overrides and rule options
- Unknown revisions
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from kubestig.config import RuleOptionsConfig, RulesetArgs, RulesetConfig, SkipConfig
from kubestig.kubernetes.opspod import OPS_POD_PREFIX
from kubestig.kubernetes.pod import SimplePodContext
from kubestig.rule import CheckResult, RetryableRule, SkipRule, Status, Target
from kubestig.ruleset import RuleOptionsError, RulesetError
from kubestig.ruleset.disak8sstig import (
    RULESET_ID,
    V2R1_RULE_COUNT,
    DisaKubernetesStigRuleset,
    retryerrors,
)
from kubestig.ruleset.disak8sstig.options import FileOwnerOptions, Options242414
from kubestig.ruleset.disak8sstig.rules import NodeRule, Rule242400, Rule242414

NODE_RULE_IDS = {
    "242393", "242394", "242404", "242406", "242407",
    "242449", "242450", "242452", "242453",
}


def ruleset_config(*rule_options: RuleOptionsConfig, **args) -> RulesetConfig:
    return RulesetConfig(
        id=RULESET_ID,
        version="v2r1",
        args=RulesetArgs(**args),
        rule_options={o.rule_id: o for o in rule_options},
    )


def build(core_v1, *rule_options: RuleOptionsConfig, **args) -> DisaKubernetesStigRuleset:
    return DisaKubernetesStigRuleset(core_v1, MagicMock(), ruleset_config(*rule_options, **args))


class TestDisaKubernetesStigRuleset:
    """Tests for DisaKubernetesStigRuleset."""

    def test_registers_all_v2r1_rules(self, core_v1):
        """Test v2r1 registers 91 uniquely identified rules."""
        ruleset = build(core_v1)

        ids = [rule.id for rule in ruleset.rules()]
        assert V2R1_RULE_COUNT == 91
        assert len(ids) == 91
        assert len(set(ids)) == 91
        assert ruleset.id == RULESET_ID
        assert ruleset.version == "v2r1"

    def test_rule_names_carry_severity_and_id(self, core_v1):
        """Test every rule name ends with its severity and ID."""
        for rule in build(core_v1).rules():
            assert rule.severity is not None
            assert rule.name.endswith(f"({rule.severity.value.upper()} {rule.id})")

    def test_node_rules_are_retryable(self, core_v1):
        """Test node rules are wrapped with the configured retry budget."""
        rules = {rule.id: rule for rule in build(core_v1, max_retries=3).rules()}

        for rule_id in NODE_RULE_IDS:
            rule = rules[rule_id]
            assert isinstance(rule, RetryableRule)
            assert isinstance(rule.base_rule, NodeRule)
            assert rule.max_retries == 3

    def test_ops_pod_args_reach_node_rules(self, core_v1):
        """Test ops pod image and namespace are passed to node rules."""
        rules = {
            rule.id: rule
            for rule in build(
                core_v1, ops_pod_image="registry.local/ops:1", ops_pod_namespace="audit"
            ).rules()
        }

        base_rule = rules["242393"].base_rule
        assert base_rule.image == "registry.local/ops:1"
        assert base_rule.namespace == "audit"

    def test_skip_override(self, ctx, core_v1):
        """Test an operator skip yields one Accepted result with the justification."""
        ruleset = build(
            core_v1,
            RuleOptionsConfig("242400", skip=SkipConfig(enabled=True, justification="N/A")),
        )

        rule = next(r for r in ruleset.rules() if r.id == "242400")
        assert isinstance(rule, SkipRule)
        result = ruleset.run_rule(ctx, "242400")
        assert result.check_results == (CheckResult(Status.ACCEPTED, "N/A", Target()),)
        assert len(ruleset.rules()) == 91

    def test_unskipped_rule_runs(self, ctx, core_v1):
        """Test 242400 reports missing nodes when not skipped."""
        ruleset = build(core_v1)

        assert isinstance(next(r for r in ruleset.rules() if r.id == "242400"), Rule242400)
        result = ruleset.run_rule(ctx, "242400")
        assert result.check_results == (
            CheckResult(Status.SKIPPED, "No nodes found.", Target(kind="nodeList")),
        )

    def test_rule_options_are_parsed(self, core_v1):
        """Test rule arguments reach the rule as typed options."""
        ruleset = build(
            core_v1,
            RuleOptionsConfig(
                "242414",
                args={
                    "acceptedPods": [
                        {
                            "podMatchLabels": {"app": "ingress"},
                            "namespaceMatchLabels": {"team": "edge"},
                            "ports": [80, 443],
                            "justification": "ingress controller",
                        }
                    ]
                },
            ),
            RuleOptionsConfig(
                "242406", args={"expectedFileOwner": {"users": ["0", "65534"]}}
            ),
        )
        rules = {rule.id: rule for rule in ruleset.rules()}

        rule242414 = rules["242414"]
        assert isinstance(rule242414, Rule242414)
        assert isinstance(rule242414.options, Options242414)
        assert rule242414.options.accepted_pods[0].ports == [80, 443]
        options242406 = rules["242406"].base_rule.options
        assert isinstance(options242406, FileOwnerOptions)
        assert options242406.expected_file_owner.users == ["0", "65534"]

    def test_invalid_rule_options(self, core_v1):
        """Test invalid rule arguments fail construction."""
        with pytest.raises(RuleOptionsError, match="rule option 242414 error"):
            build(
                core_v1,
                RuleOptionsConfig(
                    "242414",
                    args={"acceptedPods": [{"podMatchLabels": {"app": "x"}, "ports": [80]}]},
                ),
            )

    def test_unknown_version(self, core_v1):
        """Test unknown revisions are rejected."""
        config = RulesetConfig(id=RULESET_ID, version="v1r11")

        with pytest.raises(RulesetError, match="unknown disa-kubernetes-stig version v1r11"):
            DisaKubernetesStigRuleset(core_v1, MagicMock(), config)

    def test_unexpected_ruleset_id(self, core_v1):
        """Test configurations of other rulesets are rejected."""
        config = RulesetConfig(id="security-hardened-k8s", version="v2r1")

        with pytest.raises(RulesetError, match="unexpected ruleset id"):
            DisaKubernetesStigRuleset(core_v1, MagicMock(), config)

    def test_full_run_on_empty_cluster(self, ctx, core_v1):
        """Test a run over an empty cluster yields one result per rule."""
        result = build(core_v1).run(ctx)

        assert len(result.rule_results) == 91
        assert all(rr.check_results for rr in result.rule_results)
        assert result.summary()["Errored"] == 0

    @patch("kubestig.ruleset.disak8sstig.ruleset.client.CoreV1Api")
    def test_from_api_client(self, mock_core_v1, api_client):
        """Test the default pod context carries additional ops pod labels."""
        ruleset = DisaKubernetesStigRuleset.from_api_client(
            api_client, ruleset_config(), additional_ops_pod_labels={"team": "security"}
        )

        mock_core_v1.assert_called_with(api_client)
        assert ruleset.core_v1 is mock_core_v1.return_value
        assert isinstance(ruleset.pod_context, SimplePodContext)
        assert ruleset.pod_context.additional_pod_labels == {"team": "security"}


class TestRetryErrors:
    """Tests for the transient error expressions."""

    def test_ops_pod_not_found(self):
        """Test only ops pods are matched."""
        assert retryerrors.OPS_POD_NOT_FOUND.search(
            f'pods "{OPS_POD_PREFIX}-242393-x7k2p" not found'
        )
        assert not retryerrors.OPS_POD_NOT_FOUND.search('pods "nginx-1" not found')

    def test_container_errors(self):
        """Test container lookup failures on nodes."""
        assert retryerrors.CONTAINER_NOT_FOUND_ON_NODE.search(
            "container with name kubelet not (yet) found on node node-1"
        )
        assert retryerrors.CONTAINER_FILE_NOT_FOUND_ON_NODE.search(
            "Could not find file /etc/kubernetes/kubelet.conf in container with id abc"
        )
        assert retryerrors.CONTAINER_NOT_READY.search(
            "container with name pause not (yet) in status ready"
        )
