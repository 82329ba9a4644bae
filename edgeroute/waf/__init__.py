from .filter import AccessControlFilter, AccessDecision
from .managed import ManagedRuleGroupRegistry, ManagedRuleGroupStatement
from .rules import (
    AccessRule,
    AndStatement,
    ByteMatchStatement,
    IPSetStatement,
    MatchAllStatement,
    NotStatement,
    OrStatement,
    RegexMatchStatement,
    RuleAction,
    SizeConstraintStatement,
)

__all__ = [
    "AccessControlFilter",
    "AccessDecision",
    "AccessRule",
    "AndStatement",
    "ByteMatchStatement",
    "IPSetStatement",
    "ManagedRuleGroupRegistry",
    "ManagedRuleGroupStatement",
    "MatchAllStatement",
    "NotStatement",
    "OrStatement",
    "RegexMatchStatement",
    "RuleAction",
    "SizeConstraintStatement",
]
