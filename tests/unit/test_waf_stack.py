"""
Unit tests for the WAF Stack
Tests the web ACL rules, default action and optional association
"""

import aws_cdk as core
import aws_cdk.assertions as assertions
import pytest

from stacks.config import WafConfig, WafRule
from stacks.waf_stack import WafStack


class TestWafStack:
    """Test class for WAF Stack"""

    @pytest.fixture
    def app(self):
        """Create CDK app for testing"""
        return core.App()

    @pytest.fixture
    def stack(self, app):
        """Create WAF stack for testing"""
        return WafStack(app, "test-waf-stack")

    @pytest.fixture
    def template(self, stack):
        """Create CDK template for assertions"""
        return assertions.Template.from_stack(stack)

    def _web_acl(self, template):
        acls = template.find_resources("AWS::WAFv2::WebACL")
        assert len(acls) == 1
        return next(iter(acls.values()))["Properties"]

    def test_single_managed_rule_default_allow(self, template):
        """Test one managed rule group at priority 1 with default allow"""
        properties = self._web_acl(template)

        assert list(properties["DefaultAction"].keys()) == ["Allow"]
        assert properties["Scope"] == "REGIONAL"
        assert properties["Name"] == "MyWebACL"

        rules = properties["Rules"]
        assert len(rules) == 1
        assert rules[0]["Priority"] == 1
        assert rules[0]["Statement"]["ManagedRuleGroupStatement"] == {
            "VendorName": "AWS",
            "Name": "AWSManagedRulesCommonRuleSet",
        }
        assert "OverrideAction" in rules[0]
        assert "Action" not in rules[0]

    def test_visibility_config(self, template):
        """Test metrics and sampling are enabled"""
        template.has_resource_properties("AWS::WAFv2::WebACL", {
            "VisibilityConfig": {
                "CloudWatchMetricsEnabled": True,
                "SampledRequestsEnabled": True,
                "MetricName": "test-waf-stack-WebACL",
            }
        })

    def test_unattached_by_default(self, template):
        """Test that no association is made without a resource"""
        template.resource_count_is("AWS::WAFv2::WebACLAssociation", 0)

    def test_association(self, app):
        """Test the association to a front-facing resource"""
        arn = "arn:aws:elasticloadbalancing:us-east-1:123456789012:loadbalancer/app/web/abc"
        stack = WafStack(app, "test-waf-associated", resource_arn=arn)
        template = assertions.Template.from_stack(stack)
        template.has_resource_properties("AWS::WAFv2::WebACLAssociation", {
            "ResourceArn": arn,
        })

    def test_custom_rules_in_priority_order(self, app):
        """Test custom rules carry their own actions and are ordered by priority"""
        config = WafConfig(
            default_action="block",
            rules=(
                WafRule(name="GeoAllow", priority=20, kind="geo_match",
                        country_codes=("JP", "US"), action="allow"),
                WafRule(name="RateLimit", priority=10, kind="rate_based",
                        limit=2000, action="block"),
            ),
        )
        stack = WafStack(app, "test-waf-custom", config=config)
        properties = self._web_acl(assertions.Template.from_stack(stack))

        assert list(properties["DefaultAction"].keys()) == ["Block"]
        rules = properties["Rules"]
        assert [rule["Priority"] for rule in rules] == [10, 20]
        assert rules[0]["Statement"]["RateBasedStatement"] == {
            "Limit": 2000,
            "AggregateKeyType": "IP",
        }
        assert list(rules[0]["Action"].keys()) == ["Block"]
        assert rules[1]["Statement"]["GeoMatchStatement"] == {"CountryCodes": ["JP", "US"]}
        assert list(rules[1]["Action"].keys()) == ["Allow"]

    def test_duplicate_priorities_rejected(self, app):
        """Test that two rules cannot share a priority"""
        config = WafConfig(
            rules=(
                WafRule(name="Common", priority=1, group_name="AWSManagedRulesCommonRuleSet"),
                WafRule(name="BadInputs", priority=1, group_name="AWSManagedRulesKnownBadInputsRuleSet"),
            ),
        )
        with pytest.raises(ValueError, match="share priorities"):
            WafStack(app, "test-waf-duplicate", config=config)

    def test_unknown_default_action_rejected(self):
        """Test that only allow and block are valid defaults"""
        with pytest.raises(ValueError, match="default_action"):
            WafConfig(default_action="count").validate()
