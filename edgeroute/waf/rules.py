"""Access rules and the statements they match requests with.

Statements mirror the WAFv2 statement types so a rule set can be evaluated
locally and rendered into a web ACL from the same definition.

Statement types:
- ByteMatchStatement: substring or positional match on one request field
- RegexMatchStatement: regular expression match on one request field
- SizeConstraintStatement: compare the size of one request field
- IPSetStatement: match the client address against CIDR ranges
- AndStatement, OrStatement, NotStatement: combine statements
- MatchAllStatement: match every request
- ManagedRuleGroupStatement: delegate to a named managed rule group
"""

import html
import ipaddress
import operator
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, final
from urllib.parse import unquote_plus

from edgeroute.http import EdgeRequest

type Labels = tuple[str, ...]
type RequestField = Literal["uri_path", "query_string", "method", "body", "header"]
type PositionalConstraint = Literal[
    "EXACTLY", "STARTS_WITH", "ENDS_WITH", "CONTAINS", "CONTAINS_WORD"
]
type ComparisonOperator = Literal["EQ", "NE", "LE", "LT", "GE", "GT"]

_RULE_NAME_RE = re.compile(r"^[\w-]{1,128}$")
_COMPARISONS: dict[str, Callable[[int, int], bool]] = {
    "EQ": operator.eq,
    "NE": operator.ne,
    "LE": operator.le,
    "LT": operator.lt,
    "GE": operator.ge,
    "GT": operator.gt,
}


class RuleAction(Enum):
    ALLOW = "allow"
    BLOCK = "block"


class TextTransformation(Enum):
    NONE = "NONE"
    LOWERCASE = "LOWERCASE"
    URL_DECODE = "URL_DECODE"
    HTML_ENTITY_DECODE = "HTML_ENTITY_DECODE"
    COMPRESS_WHITE_SPACE = "COMPRESS_WHITE_SPACE"

    def apply(self, value: str) -> str:
        match self:
            case TextTransformation.LOWERCASE:
                return value.lower()
            case TextTransformation.URL_DECODE:
                return unquote_plus(value)
            case TextTransformation.HTML_ENTITY_DECODE:
                return html.unescape(value)
            case TextTransformation.COMPRESS_WHITE_SPACE:
                return re.sub(r"\s+", " ", value)
        return value


def _transformations(values: Iterable[TextTransformation | str]) -> tuple[TextTransformation, ...]:
    transformations = tuple(TextTransformation(v) for v in values)
    return transformations or (TextTransformation.NONE,)


@final
@dataclass(frozen=True)
class FieldToMatch:
    field: RequestField
    name: str | None = None

    def __post_init__(self) -> None:
        if self.field not in ("uri_path", "query_string", "method", "body", "header"):
            raise ValueError(f"Unsupported field to match: '{self.field}'")
        if (self.field == "header") != bool(self.name):
            raise ValueError("A header name is required for, and only for, the 'header' field")

    @classmethod
    def parse(cls, value: "FieldToMatch | str") -> "FieldToMatch":
        """Parse 'uri_path', 'query_string', 'method', 'body' or 'header:<name>'."""
        if isinstance(value, FieldToMatch):
            return value
        if not isinstance(value, str):
            raise TypeError(f"Field to match must be a string, got {type(value).__name__}")
        kind, _, name = value.partition(":")
        return cls(kind, name or None)

    def extract(self, request: EdgeRequest) -> str:
        match self.field:
            case "uri_path":
                return request.path
            case "query_string":
                return request.query
            case "method":
                return request.method
            case "body":
                return request.body.decode("utf-8", errors="replace")
        return request.headers.get(self.name, "")

    def to_wafv2(self) -> dict[str, Any]:
        match self.field:
            case "uri_path":
                return {"UriPath": {}}
            case "query_string":
                return {"QueryString": {}}
            case "method":
                return {"Method": {}}
            case "body":
                return {"Body": {"OversizeHandling": "CONTINUE"}}
        return {"SingleHeader": {"Name": self.name.lower()}}


def _render_transformations(transformations: tuple[TextTransformation, ...]) -> list[dict]:
    return [{"Priority": idx, "Type": t.value} for idx, t in enumerate(transformations)]


class RuleStatement(ABC):
    @abstractmethod
    def match(self, request: EdgeRequest) -> Labels | None:
        """Return the labels of the match, or None when the request does not match."""

    def matches(self, request: EdgeRequest) -> bool:
        return self.match(request) is not None

    @abstractmethod
    def to_wafv2(self, ip_set_arns: Mapping[str, str]) -> dict[str, Any]:
        """Render the statement in the WAFv2 API shape."""


@dataclass(frozen=True)
class _FieldStatement(RuleStatement):
    field_to_match: FieldToMatch
    text_transformations: tuple[TextTransformation, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "field_to_match", FieldToMatch.parse(self.field_to_match))
        object.__setattr__(
            self, "text_transformations", _transformations(self.text_transformations)
        )

    def _value(self, request: EdgeRequest) -> str:
        value = self.field_to_match.extract(request)
        for transformation in self.text_transformations:
            value = transformation.apply(value)
        return value


@final
@dataclass(frozen=True)
class ByteMatchStatement(_FieldStatement):
    search_string: str = ""
    positional_constraint: PositionalConstraint = "CONTAINS"

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.search_string:
            raise ValueError("Byte match search string cannot be empty")
        if self.positional_constraint not in (
            "EXACTLY",
            "STARTS_WITH",
            "ENDS_WITH",
            "CONTAINS",
            "CONTAINS_WORD",
        ):
            raise ValueError(f"Invalid positional constraint '{self.positional_constraint}'")

    def match(self, request: EdgeRequest) -> Labels | None:
        value = self._value(request)
        needle = self.search_string
        match self.positional_constraint:
            case "EXACTLY":
                matched = value == needle
            case "STARTS_WITH":
                matched = value.startswith(needle)
            case "ENDS_WITH":
                matched = value.endswith(needle)
            case "CONTAINS_WORD":
                matched = re.search(rf"(?<!\w){re.escape(needle)}(?!\w)", value) is not None
            case _:
                matched = needle in value
        return () if matched else None

    def to_wafv2(self, ip_set_arns: Mapping[str, str]) -> dict[str, Any]:  # noqa: ARG002
        return {
            "ByteMatchStatement": {
                "SearchString": self.search_string.encode(),
                "FieldToMatch": self.field_to_match.to_wafv2(),
                "TextTransformations": _render_transformations(self.text_transformations),
                "PositionalConstraint": self.positional_constraint,
            }
        }


@final
@dataclass(frozen=True)
class RegexMatchStatement(_FieldStatement):
    regex: str = ""
    _compiled: re.Pattern | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.regex:
            raise ValueError("Regex cannot be empty")
        try:
            object.__setattr__(self, "_compiled", re.compile(self.regex))
        except re.error as e:
            raise ValueError(f"Invalid regex '{self.regex}': {e}") from e

    def match(self, request: EdgeRequest) -> Labels | None:
        return () if self._compiled.search(self._value(request)) else None

    def to_wafv2(self, ip_set_arns: Mapping[str, str]) -> dict[str, Any]:  # noqa: ARG002
        return {
            "RegexMatchStatement": {
                "RegexString": self.regex,
                "FieldToMatch": self.field_to_match.to_wafv2(),
                "TextTransformations": _render_transformations(self.text_transformations),
            }
        }


@final
@dataclass(frozen=True)
class SizeConstraintStatement(_FieldStatement):
    comparison_operator: ComparisonOperator = "GT"
    size: int = 0

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.comparison_operator not in _COMPARISONS:
            raise ValueError(f"Invalid comparison operator '{self.comparison_operator}'")
        if self.size < 0:
            raise ValueError("Size cannot be negative")

    def match(self, request: EdgeRequest) -> Labels | None:
        size = len(self._value(request).encode())
        return () if _COMPARISONS[self.comparison_operator](size, self.size) else None

    def to_wafv2(self, ip_set_arns: Mapping[str, str]) -> dict[str, Any]:  # noqa: ARG002
        return {
            "SizeConstraintStatement": {
                "FieldToMatch": self.field_to_match.to_wafv2(),
                "ComparisonOperator": self.comparison_operator,
                "Size": self.size,
                "TextTransformations": _render_transformations(self.text_transformations),
            }
        }


@final
@dataclass(frozen=True)
class IPSetStatement(RuleStatement):
    name: str
    addresses: tuple[str, ...]
    _networks: tuple = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not _RULE_NAME_RE.match(self.name):
            raise ValueError(f"Invalid IP set name '{self.name}'")
        object.__setattr__(self, "addresses", tuple(self.addresses))
        if not self.addresses:
            raise ValueError(f"IP set '{self.name}' cannot be empty")
        networks = tuple(ipaddress.ip_network(a, strict=False) for a in self.addresses)
        if len({n.version for n in networks}) > 1:
            raise ValueError(f"IP set '{self.name}' mixes IPv4 and IPv6 ranges")
        object.__setattr__(self, "_networks", networks)

    @property
    def networks(self) -> tuple:
        return self._networks

    @property
    def ip_version(self) -> Literal["IPV4", "IPV6"]:
        return "IPV6" if self._networks[0].version == 6 else "IPV4"  # noqa: PLR2004

    def match(self, request: EdgeRequest) -> Labels | None:
        if not request.client_ip:
            return None
        try:
            address = ipaddress.ip_address(request.client_ip)
        except ValueError:
            return None
        return () if any(address in network for network in self._networks) else None

    def to_wafv2(self, ip_set_arns: Mapping[str, str]) -> dict[str, Any]:
        if self.name not in ip_set_arns:
            raise ValueError(f"IP set '{self.name}' has not been created")
        return {"IPSetReferenceStatement": {"ARN": ip_set_arns[self.name]}}


@final
@dataclass(frozen=True)
class AndStatement(RuleStatement):
    statements: tuple[RuleStatement, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "statements", tuple(self.statements))
        if len(self.statements) < 2:  # noqa: PLR2004
            raise ValueError("An AND statement needs at least two statements")

    def match(self, request: EdgeRequest) -> Labels | None:
        labels: Labels = ()
        for statement in self.statements:
            matched = statement.match(request)
            if matched is None:
                return None
            labels += matched
        return labels

    def to_wafv2(self, ip_set_arns: Mapping[str, str]) -> dict[str, Any]:
        return {"AndStatement": {"Statements": [s.to_wafv2(ip_set_arns) for s in self.statements]}}


@final
@dataclass(frozen=True)
class OrStatement(RuleStatement):
    statements: tuple[RuleStatement, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "statements", tuple(self.statements))
        if len(self.statements) < 2:  # noqa: PLR2004
            raise ValueError("An OR statement needs at least two statements")

    def match(self, request: EdgeRequest) -> Labels | None:
        return next(
            (m for m in (s.match(request) for s in self.statements) if m is not None), None
        )

    def to_wafv2(self, ip_set_arns: Mapping[str, str]) -> dict[str, Any]:
        return {"OrStatement": {"Statements": [s.to_wafv2(ip_set_arns) for s in self.statements]}}


@final
@dataclass(frozen=True)
class NotStatement(RuleStatement):
    statement: RuleStatement

    def match(self, request: EdgeRequest) -> Labels | None:
        return None if self.statement.matches(request) else ()

    def to_wafv2(self, ip_set_arns: Mapping[str, str]) -> dict[str, Any]:
        return {"NotStatement": {"Statement": self.statement.to_wafv2(ip_set_arns)}}


@final
@dataclass(frozen=True)
class MatchAllStatement(RuleStatement):
    def match(self, request: EdgeRequest) -> Labels | None:  # noqa: ARG002
        return ()

    def to_wafv2(self, ip_set_arns: Mapping[str, str]) -> dict[str, Any]:  # noqa: ARG002
        # WAFv2 has no match-all statement; every URI path is at least 0 bytes long.
        return {
            "SizeConstraintStatement": {
                "FieldToMatch": {"UriPath": {}},
                "ComparisonOperator": "GE",
                "Size": 0,
                "TextTransformations": [{"Priority": 0, "Type": "NONE"}],
            }
        }


@final
@dataclass(frozen=True)
class AccessRule:
    name: str
    priority: int
    action: RuleAction
    statement: RuleStatement
    metric_name: str | None = None
    sampled: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not _RULE_NAME_RE.match(self.name):
            raise ValueError(
                f"Invalid access rule name {self.name!r}. "
                "Use 1-128 letters, digits, '_' or '-'."
            )
        if not isinstance(self.priority, int) or isinstance(self.priority, bool):
            raise TypeError(f"Access rule '{self.name}': priority must be an integer")
        if self.priority < 0:
            raise ValueError(f"Access rule '{self.name}': priority cannot be negative")
        if not isinstance(self.action, RuleAction):
            object.__setattr__(self, "action", RuleAction(str(self.action).lower()))
        if not isinstance(self.statement, RuleStatement):
            raise TypeError(
                f"Access rule '{self.name}': statement must be a RuleStatement, "
                f"got {type(self.statement).__name__}"
            )
        if self.metric_name is None:
            object.__setattr__(self, "metric_name", self.name)
