import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, final

from edgeroute.exceptions import ConfigurationError
from edgeroute.http import EdgeRequest
from edgeroute.waf.rules import (
    ByteMatchStatement,
    FieldToMatch,
    Labels,
    NotStatement,
    OrStatement,
    RegexMatchStatement,
    RuleStatement,
    SizeConstraintStatement,
    TextTransformation,
)

logger = logging.getLogger(__name__)

_DECODE = (TextTransformation.URL_DECODE,)
_DECODE_LOWER = (TextTransformation.URL_DECODE, TextTransformation.LOWERCASE)
_XSS_TRANSFORMS = (
    TextTransformation.URL_DECODE,
    TextTransformation.HTML_ENTITY_DECODE,
    TextTransformation.LOWERCASE,
)
_XSS_REGEX = r"<\s*script|javascript\s*:|<[^>]+\son\w+\s*=|<\s*iframe"
_SQLI_REGEX = (
    r"\bunion\b.+\bselect\b|'\s*or\s+'?\d+'?\s*=\s*'?\d|\bor\s+1\s*=\s*1\b"
    r"|;\s*(drop|delete|insert|update)\s|\bsleep\s*\(\s*\d+\s*\)|'\s*--"
)
_LOG4J_REGEX = r"\$\{\s*jndi\s*:"


@final
@dataclass(frozen=True)
class ManagedRule:
    name: str
    statement: RuleStatement


type ManagedRuleFactory = Callable[[], list[ManagedRule]]


class ManagedRuleGroupRegistry:
    _groups: ClassVar[dict[tuple[str, str], tuple[ManagedRule, ...]]] = {}

    @classmethod
    def add_group(cls, vendor: str, name: str, rules: list[ManagedRule]) -> None:
        key = (vendor, name)
        if key in cls._groups:
            raise ValueError(f"Managed rule group '{vendor}/{name}' is already registered")
        cls._groups[key] = tuple(rules)

    @classmethod
    def get_group(cls, vendor: str, name: str) -> tuple[ManagedRule, ...]:
        try:
            return cls._groups[(vendor, name)]
        except KeyError:
            raise ConfigurationError(f"Unknown managed rule group '{vendor}/{name}'") from None

    @classmethod
    def all_groups(cls) -> list[tuple[str, str]]:
        return sorted(cls._groups)


def managed_rule_group(
    vendor: str, name: str
) -> Callable[[ManagedRuleFactory], ManagedRuleFactory]:
    def decorator(factory: ManagedRuleFactory) -> ManagedRuleFactory:
        ManagedRuleGroupRegistry.add_group(vendor, name, factory())
        return factory

    return decorator


@final
@dataclass(frozen=True)
class ManagedRuleGroupStatement(RuleStatement):
    """Match when any rule of a registered managed group matches.

    The group is looked up when the statement is created, so an unknown group
    fails configuration rather than the first request.
    """

    vendor: str
    name: str
    excluded_rules: frozenset[str] = frozenset()
    _rules: tuple[ManagedRule, ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "excluded_rules", frozenset(self.excluded_rules))
        rules = ManagedRuleGroupRegistry.get_group(self.vendor, self.name)
        unknown = self.excluded_rules - {rule.name for rule in rules}
        if unknown:
            raise ConfigurationError(
                f"Managed rule group '{self.vendor}/{self.name}' has no rules named "
                f"{', '.join(sorted(unknown))}"
            )
        object.__setattr__(
            self, "_rules", tuple(r for r in rules if r.name not in self.excluded_rules)
        )

    @property
    def rules(self) -> tuple[ManagedRule, ...]:
        return self._rules

    def match(self, request: EdgeRequest) -> Labels | None:
        for rule in self._rules:
            if rule.statement.matches(request):
                logger.debug("Managed rule %s/%s:%s matched", self.vendor, self.name, rule.name)
                return (f"{self.name}:{rule.name}",)
        return None

    def to_wafv2(self, ip_set_arns: Mapping[str, str]) -> dict[str, Any]:  # noqa: ARG002
        statement: dict[str, Any] = {"VendorName": self.vendor, "Name": self.name}
        if self.excluded_rules:
            statement["ExcludedRules"] = [{"Name": n} for n in sorted(self.excluded_rules)]
        return {"ManagedRuleGroupStatement": statement}


def _any_field(fields: tuple[str, ...], factory: Callable[[FieldToMatch], RuleStatement]):
    return OrStatement(tuple(factory(FieldToMatch.parse(f)) for f in fields))


@managed_rule_group("AWS", "AWSManagedRulesCommonRuleSet")
def common_rule_set() -> list[ManagedRule]:
    return [
        ManagedRule(
            "NoUserAgent_HEADER",
            NotStatement(
                SizeConstraintStatement(FieldToMatch.parse("header:User-Agent"), (), "GT", 0)
            ),
        ),
        ManagedRule(
            "SizeRestrictions_QUERYSTRING",
            SizeConstraintStatement(FieldToMatch.parse("query_string"), (), "GT", 2048),
        ),
        ManagedRule(
            "SizeRestrictions_URIPATH",
            SizeConstraintStatement(FieldToMatch.parse("uri_path"), (), "GT", 1024),
        ),
        ManagedRule(
            "SizeRestrictions_BODY",
            SizeConstraintStatement(FieldToMatch.parse("body"), (), "GT", 8192),
        ),
        ManagedRule(
            "EC2MetaDataSSRF_QUERYARGUMENTS",
            ByteMatchStatement(FieldToMatch.parse("query_string"), _DECODE, "169.254.169.254"),
        ),
        ManagedRule(
            "GenericLFI_URIPATH",
            _any_field(
                ("uri_path", "query_string"),
                lambda f: RegexMatchStatement(f, _DECODE, r"\.\.[/\\]"),
            ),
        ),
        ManagedRule(
            "RestrictedExtensions_URIPATH",
            RegexMatchStatement(
                FieldToMatch.parse("uri_path"),
                _DECODE_LOWER,
                r"\.(log|ini|cfg|conf|env|bak|backup|sql)$",
            ),
        ),
        ManagedRule(
            "CrossSiteScripting_QUERYARGUMENTS",
            RegexMatchStatement(FieldToMatch.parse("query_string"), _XSS_TRANSFORMS, _XSS_REGEX),
        ),
        ManagedRule(
            "CrossSiteScripting_BODY",
            RegexMatchStatement(FieldToMatch.parse("body"), _XSS_TRANSFORMS, _XSS_REGEX),
        ),
    ]


@managed_rule_group("AWS", "AWSManagedRulesKnownBadInputsRuleSet")
def known_bad_inputs_rule_set() -> list[ManagedRule]:
    return [
        ManagedRule(
            "Host_localhost_HEADER",
            RegexMatchStatement(
                FieldToMatch.parse("header:Host"),
                (TextTransformation.LOWERCASE,),
                r"^(localhost|127\.0\.0\.1)(:\d+)?$",
            ),
        ),
        ManagedRule(
            "PROPFIND_METHOD",
            ByteMatchStatement(FieldToMatch.parse("method"), (), "PROPFIND", "EXACTLY"),
        ),
        ManagedRule(
            "ExploitablePaths_URIPATH",
            RegexMatchStatement(
                FieldToMatch.parse("uri_path"),
                _DECODE_LOWER,
                r"/(\.git|\.svn|wp-config\.php|actuator|solr|web-inf)(/|$)",
            ),
        ),
        ManagedRule(
            "Log4JRCE",
            _any_field(
                ("uri_path", "query_string", "body", "header:User-Agent", "header:Referer"),
                lambda f: RegexMatchStatement(f, _DECODE_LOWER, _LOG4J_REGEX),
            ),
        ),
    ]


@managed_rule_group("AWS", "AWSManagedRulesSQLiRuleSet")
def sqli_rule_set() -> list[ManagedRule]:
    return [
        ManagedRule(
            "SQLi_QUERYARGUMENTS",
            RegexMatchStatement(FieldToMatch.parse("query_string"), _DECODE_LOWER, _SQLI_REGEX),
        ),
        ManagedRule(
            "SQLi_BODY",
            RegexMatchStatement(FieldToMatch.parse("body"), _DECODE_LOWER, _SQLI_REGEX),
        ),
        ManagedRule(
            "SQLi_COOKIE",
            RegexMatchStatement(FieldToMatch.parse("header:Cookie"), _DECODE_LOWER, _SQLI_REGEX),
        ),
    ]
