"""Render an EdgeConfig into CloudFront, WAFv2 and S3 resource arguments.

Distribution, origin access control and IP set arguments use the snake_case
shapes of the matching ``pulumi_aws`` resources, so EdgeDistribution passes
them straight through. Web ACL rules stay in the WAFv2 API shape, because they
are handed over as ``rule_json``.
"""

import re
from collections.abc import Iterator, Mapping
from typing import Any, Literal

from edgeroute.config import EdgeConfig
from edgeroute.context import context
from edgeroute.exceptions import ConfigurationError
from edgeroute.origins.base import OriginConfig, OriginKind
from edgeroute.routing.behaviors import CacheBehavior
from edgeroute.waf.managed import ManagedRuleGroupStatement
from edgeroute.waf.rules import (
    AccessRule,
    AndStatement,
    IPSetStatement,
    NotStatement,
    OrStatement,
    RuleAction,
    RuleStatement,
)

WAF_SCOPE = "CLOUDFRONT"
# Web ACLs for CloudFront always live in us-east-1.
WAF_REGION = "us-east-1"
VIEWER_MIN_PROTOCOL_VERSION = "TLSv1.2_2021"
ALLOW_LABEL_NAMESPACE = "edgeroute:allow:"
ALLOW_LABELLED_RULE = "edgeroute-allow-labelled"

# Method sets CloudFront accepts, in the order it lists them.
_ALLOWED_METHOD_SETS = (
    ("GET", "HEAD"),
    ("GET", "HEAD", "OPTIONS"),
    ("GET", "HEAD", "OPTIONS", "PUT", "POST", "PATCH", "DELETE"),
)
_CACHED_METHOD_SETS = (("GET", "HEAD"), ("GET", "HEAD", "OPTIONS"))
# Protocols CloudFront can negotiate with a custom origin.
_ORIGIN_SSL_PROTOCOLS = ("TLSv1", "TLSv1.1", "TLSv1.2")
_METRIC_NAME_RE = re.compile(r"[^\w-]")


def _method_set(
    methods: frozenset[str], allowed_sets: tuple[tuple[str, ...], ...], what: str, pattern: str
) -> list[str]:
    for method_set in allowed_sets:
        if methods == frozenset(method_set):
            return list(method_set)
    raise ConfigurationError(
        f"Behavior '{pattern}': CloudFront does not support {what} "
        f"{', '.join(sorted(methods))}. Use one of: "
        + "; ".join(", ".join(s) for s in allowed_sets)
    )


def render_origin_access_control(origin: OriginConfig) -> dict[str, Any]:
    return {
        "name": context().prefix(f"{origin.id}-oac"),
        "description": f"Origin Access Control for {origin.id}",
        "origin_access_control_origin_type": "s3",
        "signing_behavior": origin.signing.signing_behavior.cloudfront_value,
        "signing_protocol": origin.signing.protocol_version,
    }


def render_origin(origin: OriginConfig, oac_ids: Mapping[str, Any]) -> dict[str, Any]:
    """Origin arguments for ``origin``.

    ``oac_ids`` maps signed static origins to their origin access control id,
    which may still be a pulumi Output.
    """
    rendered: dict[str, Any] = {
        "origin_id": origin.id,
        "domain_name": origin.address,
        "origin_path": origin.origin_path,
        "connection_attempts": 1,
        "connection_timeout": min(10, max(1, int(origin.timeout))),
    }
    if origin.kind is OriginKind.STATIC:
        rendered["s3_origin_config"] = {"origin_access_identity": ""}
        if origin.signing is not None:
            if origin.id not in oac_ids:
                raise ConfigurationError(f"No origin access control for origin '{origin.id}'")
            rendered["origin_access_control_id"] = oac_ids[origin.id]
        return rendered

    if origin.min_tls_version not in _ORIGIN_SSL_PROTOCOLS:
        raise ConfigurationError(
            f"Origin '{origin.id}': CloudFront cannot require {origin.min_tls_version} "
            f"from custom origins, the highest floor is TLSv1.2"
        )
    floor = _ORIGIN_SSL_PROTOCOLS.index(origin.min_tls_version)
    rendered["custom_origin_config"] = {
        "http_port": 80,
        "https_port": 443,
        "origin_protocol_policy": origin.protocol_policy,
        "origin_ssl_protocols": list(_ORIGIN_SSL_PROTOCOLS[floor:]),
        "origin_read_timeout": int(origin.timeout),
        "origin_keepalive_timeout": 5,
    }
    return rendered


def render_cache_behavior(behavior: CacheBehavior) -> dict[str, Any]:
    allowed = _method_set(
        behavior.allowed_methods, _ALLOWED_METHOD_SETS, "allowed methods", behavior.pattern
    )
    cached = _method_set(
        behavior.cached_methods, _CACHED_METHOD_SETS, "cached methods", behavior.pattern
    )
    cookies: dict[str, Any] = {"forward": behavior.cookie_forwarding.forward}
    if behavior.cookie_forwarding.forward == "whitelist":
        cookies["whitelisted_names"] = sorted(behavior.cookie_forwarding.whitelisted_names)

    rendered = {
        "target_origin_id": behavior.origin_id,
        "viewer_protocol_policy": behavior.viewer_protocol_policy.value,
        "allowed_methods": allowed,
        "cached_methods": cached,
        "compress": behavior.compress,
        "forwarded_values": {
            "query_string": behavior.query_forwarding,
            "cookies": cookies,
        },
        "min_ttl": behavior.min_ttl,
        "default_ttl": behavior.default_ttl,
        "max_ttl": behavior.max_ttl,
    }
    if not behavior.is_default:
        rendered = {"path_pattern": behavior.pattern, **rendered}
    return rendered


def render_distribution(
    config: EdgeConfig,
    oac_ids: Mapping[str, Any] | None = None,
    web_acl_arn: Any = None,
) -> dict[str, Any]:
    """Build the ``pulumi_aws.cloudfront.Distribution`` arguments for ``config``.

    Behaviors keep their declaration order, which is also the order CloudFront
    evaluates them in.
    """
    oac_ids = oac_ids or {}
    ordered = [render_cache_behavior(b) for b in config.behaviors if not b.is_default]
    default = next(b for b in config.behaviors if b.is_default)

    if config.certificate_arn:
        viewer_certificate = {
            "acm_certificate_arn": config.certificate_arn,
            "ssl_support_method": "sni-only",
            "minimum_protocol_version": VIEWER_MIN_PROTOCOL_VERSION,
        }
    else:
        viewer_certificate = {"cloudfront_default_certificate": True}

    distribution: dict[str, Any] = {
        "enabled": True,
        "is_ipv6_enabled": True,
        "http_version": "http2and3",
        "comment": f"Edge {context().prefix(config.name)}",
        "aliases": list(config.aliases) or None,
        "default_root_object": config.default_root_object or "",
        "origins": [render_origin(o, oac_ids) for o in config.origins],
        "default_cache_behavior": render_cache_behavior(default),
        "ordered_cache_behaviors": ordered or None,
        "price_class": config.price_class,
        "restrictions": {"geo_restriction": {"restriction_type": "none"}},
        "viewer_certificate": viewer_certificate,
    }
    if web_acl_arn is not None:
        distribution["web_acl_id"] = web_acl_arn
    return distribution


def walk_statements(statement: RuleStatement) -> Iterator[RuleStatement]:
    yield statement
    if isinstance(statement, AndStatement | OrStatement):
        for child in statement.statements:
            yield from walk_statements(child)
    elif isinstance(statement, NotStatement):
        yield from walk_statements(statement.statement)


def ip_set_statements(config: EdgeConfig) -> list[IPSetStatement]:
    found: dict[str, IPSetStatement] = {}
    for rule in config.rules:
        for statement in walk_statements(rule.statement):
            if not isinstance(statement, IPSetStatement):
                continue
            if statement.name in found and found[statement.name] != statement:
                raise ConfigurationError(
                    f"IP set '{statement.name}' is defined twice with different addresses"
                )
            found[statement.name] = statement
    return list(found.values())


def render_ip_set(statement: IPSetStatement) -> dict[str, Any]:
    return {
        "name": context().prefix(statement.name),
        "scope": WAF_SCOPE,
        "ip_address_version": statement.ip_version,
        "addresses": [str(n) for n in statement.networks],
    }


def _metric_name(name: str) -> str:
    return _METRIC_NAME_RE.sub("-", name)[:128]


def _visibility(metric_name: str, *, sampled: bool) -> dict[str, Any]:
    return {
        "SampledRequestsEnabled": sampled,
        "CloudWatchMetricsEnabled": True,
        "MetricName": _metric_name(metric_name),
    }


def _action(action: RuleAction | Literal["allow", "block"]) -> dict[str, Any]:
    return {"block": {}} if RuleAction(action) is RuleAction.BLOCK else {"allow": {}}


def allow_label(rule: AccessRule) -> str:
    return f"{ALLOW_LABEL_NAMESPACE}{_metric_name(rule.name)}"


def render_rule(rule: AccessRule, ip_set_arns: Mapping[str, str]) -> dict[str, Any]:
    """Render ``rule`` in the WAFv2 API shape.

    WAFv2 stops at the first matching allow rule, while a later block rule has
    to win here. Allow rules are therefore rendered as count rules that label
    the request, and `render_rules` appends one rule that allows labelled
    requests after all others.
    """
    rendered: dict[str, Any] = {
        "Name": rule.name,
        "Priority": rule.priority,
        "Statement": rule.statement.to_wafv2(ip_set_arns),
        "VisibilityConfig": _visibility(rule.metric_name, sampled=rule.sampled),
    }
    if isinstance(rule.statement, ManagedRuleGroupStatement):
        # Managed groups keep their own block actions.
        rendered["OverrideAction"] = {"None": {}}
    elif rule.action is RuleAction.BLOCK:
        rendered["Action"] = {"Block": {}}
    else:
        rendered["Action"] = {"Count": {}}
        rendered["RuleLabels"] = [{"Name": allow_label(rule)}]
    return rendered


def render_rules(config: EdgeConfig, ip_set_arns: Mapping[str, str]) -> list[dict[str, Any]]:
    rules = [render_rule(rule, ip_set_arns) for rule in config.rules]
    allow_rules = [rule for rule in config.rules if rule.action is RuleAction.ALLOW]
    if not allow_rules:
        return rules
    if any(rule.name == ALLOW_LABELLED_RULE for rule in config.rules):
        raise ConfigurationError(f"Rule name '{ALLOW_LABELLED_RULE}' is reserved")
    rules.append(
        {
            "Name": ALLOW_LABELLED_RULE,
            "Priority": max(rule.priority for rule in config.rules) + 1,
            "Statement": {
                "LabelMatchStatement": {"Scope": "NAMESPACE", "Key": ALLOW_LABEL_NAMESPACE}
            },
            "Action": {"Allow": {}},
            "VisibilityConfig": _visibility(
                ALLOW_LABELLED_RULE, sampled=any(rule.sampled for rule in allow_rules)
            ),
        }
    )
    return rules


def render_web_acl(config: EdgeConfig) -> dict[str, Any]:
    """Build the ``pulumi_aws.wafv2.WebAcl`` arguments, rules excluded.

    The rules depend on IP set ARNs and go into ``rule_json``, see `render_rules`.
    """
    name = context().prefix(f"{config.name}-acl")
    return {
        "name": name,
        "scope": WAF_SCOPE,
        "description": f"Access rules for edge {context().prefix(config.name)}",
        "default_action": _action(config.default_action),
        "visibility_config": {
            "cloudwatch_metrics_enabled": True,
            "metric_name": _metric_name(name),
            "sampled_requests_enabled": config.telemetry.sample_default_action,
        },
    }


def render_bucket_policy(bucket: str, distribution_arn: str) -> dict[str, Any]:
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "AllowCloudFrontServicePrincipal",
                "Effect": "Allow",
                "Principal": {"Service": "cloudfront.amazonaws.com"},
                "Action": "s3:GetObject",
                "Resource": f"arn:aws:s3:::{bucket}/*",
                "Condition": {"StringEquals": {"AWS:SourceArn": distribution_arn}},
            }
        ],
    }


def signed_buckets(config: EdgeConfig) -> list[str]:
    """Buckets behind signed static origins, once each, in declaration order."""
    buckets: list[str] = []
    for origin in config.static_origins:
        if origin.signing is not None and origin.bucket not in buckets:
            buckets.append(origin.bucket)
    return buckets


def render_edge(config: EdgeConfig) -> dict[str, Any]:
    """Render every resource with placeholders for ids only known after deployment."""
    signed = [o for o in config.static_origins if o.signing is not None]
    ip_sets = ip_set_statements(config)
    return {
        "origin_access_controls": {o.id: render_origin_access_control(o) for o in signed},
        "ip_sets": [render_ip_set(s) for s in ip_sets],
        "web_acl": {
            **render_web_acl(config),
            "rules": render_rules(config, {s.name: f"<ip-set:{s.name}>" for s in ip_sets}),
        },
        "distribution": render_distribution(
            config, {o.id: f"<oac:{o.id}>" for o in signed}, "<web-acl-arn>"
        ),
        "bucket_policies": {
            bucket: render_bucket_policy(bucket, "<distribution-arn>")
            for bucket in signed_buckets(config)
        },
    }
