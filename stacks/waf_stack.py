#!/usr/bin/env python3
from typing import Optional

from aws_cdk import (
    Stack,
    aws_wafv2 as wafv2,
    CfnOutput,
)
from constructs import Construct

from stacks.config import WafConfig, WafRule


def _visibility(metric_name: str) -> wafv2.CfnWebACL.VisibilityConfigProperty:
    return wafv2.CfnWebACL.VisibilityConfigProperty(
        cloud_watch_metrics_enabled=True,
        metric_name=metric_name,
        sampled_requests_enabled=True,
    )


def _rule_action(action: str) -> wafv2.CfnWebACL.RuleActionProperty:
    if action == "allow":
        return wafv2.CfnWebACL.RuleActionProperty(allow=wafv2.CfnWebACL.AllowActionProperty())
    if action == "count":
        return wafv2.CfnWebACL.RuleActionProperty(count=wafv2.CfnWebACL.CountActionProperty())
    return wafv2.CfnWebACL.RuleActionProperty(block=wafv2.CfnWebACL.BlockActionProperty())


def _managed_statement(rule: WafRule) -> wafv2.CfnWebACL.StatementProperty:
    return wafv2.CfnWebACL.StatementProperty(
        managed_rule_group_statement=wafv2.CfnWebACL.ManagedRuleGroupStatementProperty(
            vendor_name=rule.vendor_name,
            name=rule.group_name,
        )
    )


def _rate_based_statement(rule: WafRule) -> wafv2.CfnWebACL.StatementProperty:
    return wafv2.CfnWebACL.StatementProperty(
        rate_based_statement=wafv2.CfnWebACL.RateBasedStatementProperty(
            limit=rule.limit,
            aggregate_key_type="IP",
        )
    )


def _geo_match_statement(rule: WafRule) -> wafv2.CfnWebACL.StatementProperty:
    return wafv2.CfnWebACL.StatementProperty(
        geo_match_statement=wafv2.CfnWebACL.GeoMatchStatementProperty(
            country_codes=list(rule.country_codes),
        )
    )


STATEMENT_BUILDERS = {
    "managed": _managed_statement,
    "rate_based": _rate_based_statement,
    "geo_match": _geo_match_statement,
}


def build_rule(rule: WafRule) -> wafv2.CfnWebACL.RuleProperty:
    statement = STATEMENT_BUILDERS[rule.kind](rule)
    if rule.kind == "managed":
        # Managed groups keep the actions their vendor defines
        return wafv2.CfnWebACL.RuleProperty(
            name=rule.name,
            priority=rule.priority,
            statement=statement,
            override_action=wafv2.CfnWebACL.OverrideActionProperty(none={}),
            visibility_config=_visibility(rule.name),
        )
    return wafv2.CfnWebACL.RuleProperty(
        name=rule.name,
        priority=rule.priority,
        statement=statement,
        action=_rule_action(rule.action),
        visibility_config=_visibility(rule.name),
    )


class WafStack(Stack):
    """Web ACL evaluated first-match-wins by priority, with a default action."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: WafConfig = None,
        resource_arn: Optional[str] = None,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.config = config or WafConfig()
        self.config.validate()

        if self.config.default_action == "block":
            default_action = wafv2.CfnWebACL.DefaultActionProperty(
                block=wafv2.CfnWebACL.BlockActionProperty()
            )
        else:
            default_action = wafv2.CfnWebACL.DefaultActionProperty(
                allow=wafv2.CfnWebACL.AllowActionProperty()
            )

        self.web_acl = wafv2.CfnWebACL(
            self,
            "WebACL",
            name=self.config.name,
            scope=self.config.scope,
            default_action=default_action,
            visibility_config=_visibility(f"{self.stack_name}-WebACL"),
            rules=[build_rule(rule) for rule in self.config.ordered_rules],
        )

        # Without an association the ACL exists but filters nothing
        self.association = None
        resource_arn = resource_arn or self.config.resource_arn
        if resource_arn:
            self.association = wafv2.CfnWebACLAssociation(
                self,
                "WebACLAssociation",
                resource_arn=resource_arn,
                web_acl_arn=self.web_acl.attr_arn,
            )

        # Outputs
        CfnOutput(
            self,
            "WebAclArn",
            value=self.web_acl.attr_arn,
            description="ARN of the web ACL",
        )
