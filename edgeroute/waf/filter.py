import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import final

from edgeroute.exceptions import AccessBlockedError, ConfigurationError
from edgeroute.http import EdgeRequest
from edgeroute.telemetry import NullTelemetrySink, Sample, TelemetrySink, emit, emit_sample
from edgeroute.waf.managed import ManagedRuleGroupStatement
from edgeroute.waf.rules import AccessRule, Labels, RuleAction

logger = logging.getLogger(__name__)

DEFAULT_ACTION_METRIC = "default"


@final
@dataclass(frozen=True)
class AccessDecision:
    action: RuleAction
    rule_name: str | None = None
    labels: Labels = ()

    @property
    def allowed(self) -> bool:
        return self.action is RuleAction.ALLOW

    @property
    def blocked(self) -> bool:
        return self.action is RuleAction.BLOCK


def validate_rules(rules: Iterable[AccessRule]) -> tuple[AccessRule, ...]:
    """Check a rule list and return it sorted by priority."""
    rules = tuple(rules)
    seen: dict[int, str] = {}
    for rule in rules:
        if rule.priority in seen:
            raise ConfigurationError(
                f"Access rules '{seen[rule.priority]}' and '{rule.name}' share priority "
                f"{rule.priority}"
            )
        seen[rule.priority] = rule.name
        if (
            isinstance(rule.statement, ManagedRuleGroupStatement)
            and rule.action is not RuleAction.BLOCK
        ):
            raise ConfigurationError(
                f"Access rule '{rule.name}': managed rule groups can only block"
            )
    names = [rule.name for rule in rules]
    if len(set(names)) != len(names):
        raise ConfigurationError("Access rule names must be unique")
    return tuple(sorted(rules, key=lambda r: r.priority))


def evaluate_rules(
    rules: tuple[AccessRule, ...], request: EdgeRequest, default_action: RuleAction
) -> tuple[AccessDecision, AccessRule | None]:
    """Evaluate ``rules`` in order and stop at the first matching block rule.

    A matching allow rule does not end evaluation, a later block rule still
    wins. When no block rule matches, the first matching allow rule decides,
    and the default action applies only when nothing matched at all.

    Rules must already be sorted by priority. Returns the decision and the rule
    that produced it, or None when the default action applied.
    """
    allowed: tuple[AccessDecision, AccessRule] | None = None
    for rule in rules:
        labels = rule.statement.match(request)
        if labels is None:
            continue
        if rule.action is RuleAction.BLOCK:
            return AccessDecision(rule.action, rule.name, labels), rule
        if allowed is None:
            allowed = AccessDecision(rule.action, rule.name, labels), rule
    if allowed is not None:
        return allowed
    return AccessDecision(default_action), None


class AccessControlFilter:
    """Ordered rule set that decides whether a request may proceed."""

    def __init__(
        self,
        rules: Iterable[AccessRule] = (),
        default_action: RuleAction | str = RuleAction.ALLOW,
        telemetry: TelemetrySink | None = None,
        sample_default_action: bool = False,
    ) -> None:
        self._rules = validate_rules(rules)
        self.default_action = RuleAction(default_action)
        self.telemetry = telemetry or NullTelemetrySink()
        self.sample_default_action = sample_default_action

    @property
    def rules(self) -> tuple[AccessRule, ...]:
        return self._rules

    def evaluate(self, request: EdgeRequest) -> AccessDecision:
        decision, rule = evaluate_rules(self._rules, request, self.default_action)
        metric_name = rule.metric_name if rule else DEFAULT_ACTION_METRIC
        emit(self.telemetry, "waf.evaluations", metric_name, decision.action.value)
        if (rule.sampled if rule else self.sample_default_action):
            emit_sample(self.telemetry, _sample(decision, metric_name, request))
        if decision.blocked:
            logger.debug(
                "Access rule '%s' blocked %s %s", decision.rule_name, request.method, request.path
            )
        return decision

    def enforce(self, request: EdgeRequest) -> AccessDecision:
        """Evaluate ``request`` and raise `AccessBlockedError` if it is blocked."""
        decision = self.evaluate(request)
        if decision.blocked:
            raise AccessBlockedError(decision.rule_name)
        return decision


def _sample(decision: AccessDecision, metric_name: str, request: EdgeRequest) -> Sample:
    return Sample(
        source="waf",
        labels={
            "metric": metric_name,
            "action": decision.action.value,
            "rule": decision.rule_name or DEFAULT_ACTION_METRIC,
        },
        request={
            "method": request.method,
            "path": request.path,
            "query": request.query,
            "client_ip": request.client_ip,
            "user_agent": request.headers.get("User-Agent"),
        },
    )
