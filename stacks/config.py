"""
Typed configuration for the infrastructure stacks.

Values come from the CDK context (``cdk.json`` or ``-c key=value``) and are
merged over the defaults below. Every section is validated before any
construct is created, so a bad value aborts ``cdk synth`` with a readable
message instead of a half-built template.
"""

import collections.abc
import ipaddress
import json
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union, get_args, get_origin

logger = logging.getLogger(__name__)

DEFAULT_SECRET_ARN = "arn:aws:secretsmanager:ap-northeast-1:123456:secret:sample"

ENGINE_DEFAULT_PORTS = {
    "AURORA_MYSQL": 3306,
    "AURORA_POSTGRESQL": 5432,
}

ENGINE_DEFAULT_VERSIONS = {
    "AURORA_MYSQL": "8.0.mysql_aurora.3.04.0",
    "AURORA_POSTGRESQL": "15.4",
}

WAF_RULE_KINDS = ("managed", "rate_based", "geo_match")
WAF_RULE_ACTIONS = ("allow", "block", "count")
WAF_DEFAULT_ACTIONS = ("allow", "block")
WAF_SCOPES = ("REGIONAL", "CLOUDFRONT")


@dataclass(frozen=True)
class NetworkConfig:
    cidr: str = "10.0.0.0/16"
    max_azs: int = 2
    subnet_cidr_mask: int = 24
    nat_gateways: int = 1
    s3_gateway_endpoint: bool = True

    def validate(self) -> None:
        try:
            network = ipaddress.IPv4Network(self.cidr)
        except ValueError as e:
            raise ValueError(f"network.cidr is not a valid IPv4 block: {self.cidr}") from e

        if self.max_azs < 1:
            raise ValueError("network.max_azs must be at least 1")
        if not network.prefixlen < self.subnet_cidr_mask <= 28:
            raise ValueError(
                f"network.subnet_cidr_mask must be between /{network.prefixlen + 1} and /28"
            )
        if not 0 <= self.nat_gateways <= self.max_azs:
            raise ValueError("network.nat_gateways must be between 0 and network.max_azs")

        # Three tiers per availability zone
        available = 2 ** (self.subnet_cidr_mask - network.prefixlen)
        if 3 * self.max_azs > available:
            raise ValueError(
                f"network.cidr {self.cidr} cannot hold {3 * self.max_azs} "
                f"/{self.subnet_cidr_mask} subnets"
            )

    @property
    def has_egress(self) -> bool:
        return self.nat_gateways > 0


@dataclass(frozen=True)
class ComputeConfig:
    instance_type: str = "t3.micro"
    min_capacity: int = 2
    max_capacity: int = 6
    cpu_target_percent: int = 95
    cooldown_minutes: int = 10
    http_port: int = 80
    stickiness_minutes: int = 5
    bootstrap_commands: Tuple[str, ...] = (
        "yum install -y httpd",
        "systemctl enable --now httpd",
    )
    enable_bastion: bool = False

    def validate(self) -> None:
        if self.min_capacity < 1:
            raise ValueError("compute.min_capacity must be at least 1")
        if self.min_capacity > self.max_capacity:
            raise ValueError(
                f"compute.min_capacity ({self.min_capacity}) exceeds "
                f"compute.max_capacity ({self.max_capacity})"
            )
        if not 0 < self.cpu_target_percent <= 100:
            raise ValueError("compute.cpu_target_percent must be in (0, 100]")
        if self.cooldown_minutes < 0:
            raise ValueError("compute.cooldown_minutes cannot be negative")
        if not 1 <= self.http_port <= 65535:
            raise ValueError(f"compute.http_port out of range: {self.http_port}")
        if not self.bootstrap_commands:
            raise ValueError("compute.bootstrap_commands needs at least one command")


@dataclass(frozen=True)
class DatabaseConfig:
    engine: str = "AURORA_MYSQL"
    engine_version: Optional[str] = None
    secret_arn: str = DEFAULT_SECRET_ARN
    instance_type: str = "t3.medium"
    reader_count: int = 1
    port: Optional[int] = None
    parameters: Mapping[str, str] = field(
        default_factory=lambda: {
            "character_set_client": "utf8mb4",
            "character_set_server": "utf8mb4",
            "collation_server": "utf8mb4_general_ci",
        }
    )

    def validate(self) -> None:
        if self.engine not in ENGINE_DEFAULT_PORTS:
            raise ValueError(
                f"database.engine must be one of {sorted(ENGINE_DEFAULT_PORTS)}, got {self.engine}"
            )
        # arn:partition:secretsmanager:region:account:secret:name
        parts = self.secret_arn.split(":")
        if len(parts) < 7 or parts[0] != "arn" or parts[2] != "secretsmanager" or parts[5] != "secret":
            raise ValueError(f"database.secret_arn is not a Secrets Manager ARN: {self.secret_arn}")
        if self.reader_count < 0:
            raise ValueError("database.reader_count cannot be negative")
        if not 1 <= self.database_port <= 65535:
            raise ValueError(f"database.port out of range: {self.database_port}")

    @property
    def database_port(self) -> int:
        return self.port if self.port is not None else ENGINE_DEFAULT_PORTS[self.engine]

    @property
    def version(self) -> str:
        return self.engine_version or ENGINE_DEFAULT_VERSIONS[self.engine]


@dataclass(frozen=True)
class ServerlessConfig:
    bucket_name: Optional[str] = None
    queue_name: str = "serverless-queue"
    key_prefix: Optional[str] = None
    key_suffix: Optional[str] = None
    function_timeout_seconds: int = 30
    function_memory_mb: int = 256

    def validate(self) -> None:
        if not 1 <= self.function_timeout_seconds <= 900:
            raise ValueError("serverless.function_timeout_seconds must be between 1 and 900")
        if not 128 <= self.function_memory_mb <= 10240:
            raise ValueError("serverless.function_memory_mb must be between 128 and 10240")


@dataclass(frozen=True)
class WafRule:
    name: str
    priority: int
    kind: str = "managed"
    vendor_name: str = "AWS"
    group_name: Optional[str] = None
    limit: Optional[int] = None
    country_codes: Tuple[str, ...] = ()
    action: str = "block"

    def validate(self) -> None:
        if self.kind not in WAF_RULE_KINDS:
            raise ValueError(f"waf rule {self.name}: unknown kind {self.kind}")
        if self.priority < 0:
            raise ValueError(f"waf rule {self.name}: priority cannot be negative")
        if self.kind == "managed" and not self.group_name:
            raise ValueError(f"waf rule {self.name}: managed rules need a group_name")
        if self.kind == "rate_based" and (self.limit is None or self.limit < 10):
            raise ValueError(f"waf rule {self.name}: rate_based rules need a limit >= 10")
        if self.kind == "geo_match" and not self.country_codes:
            raise ValueError(f"waf rule {self.name}: geo_match rules need country_codes")
        if self.kind != "managed" and self.action not in WAF_RULE_ACTIONS:
            raise ValueError(f"waf rule {self.name}: unknown action {self.action}")


def _default_waf_rules() -> Tuple[WafRule, ...]:
    return (
        WafRule(
            name="AWS-AWSManagedRulesCommonRuleSet",
            priority=1,
            kind="managed",
            vendor_name="AWS",
            group_name="AWSManagedRulesCommonRuleSet",
        ),
    )


@dataclass(frozen=True)
class WafConfig:
    name: str = "MyWebACL"
    scope: str = "REGIONAL"
    default_action: str = "allow"
    rules: Tuple[WafRule, ...] = field(default_factory=_default_waf_rules)
    resource_arn: Optional[str] = None
    associate_load_balancer: bool = False

    def validate(self) -> None:
        if self.scope not in WAF_SCOPES:
            raise ValueError(f"waf.scope must be one of {WAF_SCOPES}, got {self.scope}")
        if self.default_action not in WAF_DEFAULT_ACTIONS:
            raise ValueError(
                f"waf.default_action must be one of {WAF_DEFAULT_ACTIONS}, got {self.default_action}"
            )
        if self.associate_load_balancer and self.scope != "REGIONAL":
            raise ValueError("waf.associate_load_balancer requires REGIONAL scope")

        priorities = [rule.priority for rule in self.rules]
        duplicates = sorted({p for p in priorities if priorities.count(p) > 1})
        if duplicates:
            raise ValueError(f"waf rules share priorities: {duplicates}")
        names = [rule.name for rule in self.rules]
        if len(set(names)) != len(names):
            raise ValueError("waf rule names must be unique")

        for rule in self.rules:
            rule.validate()

    @property
    def ordered_rules(self) -> List[WafRule]:
        return sorted(self.rules, key=lambda rule: rule.priority)


@dataclass(frozen=True)
class AppConfig:
    account: Optional[str] = None
    region: str = "ap-northeast-1"
    project_name: str = "BasicServer"
    environment: str = "dev"
    network: NetworkConfig = field(default_factory=NetworkConfig)
    compute: ComputeConfig = field(default_factory=ComputeConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    serverless: ServerlessConfig = field(default_factory=ServerlessConfig)
    waf: WafConfig = field(default_factory=WafConfig)

    def validate(self) -> None:
        for section in (self.network, self.compute, self.database, self.serverless, self.waf):
            section.validate()

    @property
    def tags(self) -> Dict[str, str]:
        return {"Project": self.project_name, "Environment": self.environment}


def _parse_section(raw: Any, key: str) -> Dict[str, Any]:
    """Context values given with ``-c`` arrive as strings."""
    if raw is None:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"context value for '{key}' is not valid JSON") from e
    if not isinstance(raw, dict):
        raise ValueError(f"context value for '{key}' must be an object")
    return raw


def _coerce(value: Any, annotation: Any, label: str) -> Any:
    """Check one context value against its field type."""
    if get_origin(annotation) is Union:
        if value is None:
            return None
        annotation = next(arg for arg in get_args(annotation) if arg is not type(None))

    origin = get_origin(annotation)
    if origin is tuple:
        # JSON lists become tuples to match the declared field types
        if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
            raise ValueError(f"{label} must be a list of strings")
        return tuple(value)
    if origin is collections.abc.Mapping:
        if not isinstance(value, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in value.items()
        ):
            raise ValueError(f"{label} must be an object of string values")
        return dict(value)
    if annotation is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{label} must be an integer, got {value!r}")
        return value
    if not isinstance(value, annotation):
        raise ValueError(f"{label} must be a {annotation.__name__}, got {value!r}")
    return value


def _apply_overrides(base, overrides: Dict[str, Any], key: str):
    types = {f.name: f.type for f in fields(base)}
    unknown = sorted(set(overrides) - set(types))
    if unknown:
        raise ValueError(f"unknown {key} settings: {', '.join(unknown)}")

    values = {
        name: _coerce(value, types[name], f"{key}.{name}")
        for name, value in overrides.items()
    }
    return replace(base, **values)


def _build_waf(overrides: Dict[str, Any]) -> WafConfig:
    overrides = dict(overrides)
    rules = overrides.pop("rules", None)
    waf = _apply_overrides(WafConfig(), overrides, "waf")
    if rules is not None:
        if not isinstance(rules, list):
            raise ValueError("waf.rules must be a list")
        parsed = []
        for index, raw_rule in enumerate(rules):
            if not isinstance(raw_rule, dict) or "name" not in raw_rule or "priority" not in raw_rule:
                raise ValueError("each waf rule needs at least a name and a priority")
            rule = WafRule(raw_rule["name"], raw_rule["priority"])
            parsed.append(_apply_overrides(rule, raw_rule, f"waf.rules[{index}]"))
        waf = replace(waf, rules=tuple(parsed))
    return waf


def load_config(node) -> AppConfig:
    """Build and validate an AppConfig from a construct node's context."""
    base = AppConfig()
    config = replace(
        base,
        account=node.try_get_context("account") or base.account,
        region=node.try_get_context("region") or base.region,
        project_name=node.try_get_context("project") or base.project_name,
        environment=node.try_get_context("environment") or base.environment,
        network=_apply_overrides(
            base.network, _parse_section(node.try_get_context("network"), "network"), "network"
        ),
        compute=_apply_overrides(
            base.compute, _parse_section(node.try_get_context("compute"), "compute"), "compute"
        ),
        database=_apply_overrides(
            base.database, _parse_section(node.try_get_context("database"), "database"), "database"
        ),
        serverless=_apply_overrides(
            base.serverless,
            _parse_section(node.try_get_context("serverless"), "serverless"),
            "serverless",
        ),
        waf=_build_waf(_parse_section(node.try_get_context("waf"), "waf")),
    )
    config.validate()

    logger.info(
        "Loaded configuration for %s (%s) in %s",
        config.project_name,
        config.environment,
        config.region,
    )
    logger.debug("Configuration: %s", config)
    return config
