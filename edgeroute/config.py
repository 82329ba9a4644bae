import json
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, TypedDict, TypeVar, final

import boto3

from edgeroute.exceptions import ConfigurationError
from edgeroute.origins.base import OriginConfig, OriginKind
from edgeroute.origins.signing import SigningConfig
from edgeroute.routing.behaviors import CacheBehavior, CookieForwardingDict, validate_behaviors
from edgeroute.telemetry import DEFAULT_SAMPLE_CAPACITY, NullTelemetrySink, TelemetrySink
from edgeroute.waf.filter import validate_rules
from edgeroute.waf.managed import ManagedRuleGroupStatement
from edgeroute.waf.rules import (
    AccessRule,
    AndStatement,
    ByteMatchStatement,
    FieldToMatch,
    IPSetStatement,
    MatchAllStatement,
    NotStatement,
    OrStatement,
    RegexMatchStatement,
    RuleAction,
    RuleStatement,
    SizeConstraintStatement,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, kw_only=True)
class AwsConfig:
    """AWS configuration for provisioning and for static origins.

    Both profile and region are optional overrides. When not specified, boto3's
    standard credential and region resolution chain applies (environment
    variables, shared config files, SSO, instance roles).
    """

    profile: str | None = None
    region: str | None = None

    def session(self) -> boto3.Session:
        return boto3.Session(profile_name=self.profile, region_name=self.region)


class TelemetryConfigDict(TypedDict, total=False):
    enabled: bool
    sample_capacity: int
    sample_default_action: bool


@final
@dataclass(frozen=True, kw_only=True)
class TelemetryConfig:
    enabled: bool = True
    sample_capacity: int = DEFAULT_SAMPLE_CAPACITY
    sample_default_action: bool = False

    def __post_init__(self) -> None:
        if self.sample_capacity < 1:
            raise ValueError("sample_capacity must be at least 1")

    def create_sink(self) -> TelemetrySink:
        if not self.enabled:
            return NullTelemetrySink()
        return TelemetrySink(self.sample_capacity)


class SigningConfigDict(TypedDict, total=False):
    signing_behavior: Literal["always", "never", "if-requested", "no-override"]
    protocol_version: Literal["sigv4"]


class OriginConfigDict(TypedDict, total=False):
    id: str
    kind: Literal["static", "dynamic"]
    address: str
    protocol_policy: Literal["https-only", "match-viewer"]
    origin_path: str
    signing: SigningConfigDict | None
    min_tls_version: Literal["TLSv1", "TLSv1.1", "TLSv1.2", "TLSv1.3"]
    timeout: float
    bucket: str
    region: str


class CacheBehaviorDict(TypedDict, total=False):
    pattern: str
    origin_id: str
    allowed_methods: list[str]
    cached_methods: list[str]
    query_forwarding: bool
    cookie_forwarding: Literal["none", "all"] | CookieForwardingDict
    viewer_protocol_policy: Literal["redirect-to-https", "https-only", "allow-all"]
    min_ttl: int
    default_ttl: int
    max_ttl: int
    compress: bool


class AccessRuleDict(TypedDict, total=False):
    name: str
    priority: int
    action: Literal["allow", "block"]
    statement: dict[str, Any]
    metric_name: str
    sampled: bool


class EdgeConfigDict(TypedDict, total=False):
    name: str
    origins: list[OriginConfigDict]
    behaviors: list[CacheBehaviorDict]
    rules: list[AccessRuleDict]
    default_action: Literal["allow", "block"]
    default_root_object: str | None
    aliases: list[str]
    certificate_arn: str
    price_class: Literal["PriceClass_100", "PriceClass_200", "PriceClass_All"]
    telemetry: TelemetryConfigDict
    aws: dict[str, str]


PRICE_CLASSES = ("PriceClass_100", "PriceClass_200", "PriceClass_All")


@final
@dataclass(frozen=True, kw_only=True)
class EdgeConfig:
    """Validated configuration of one edge.

    Construction is all-or-nothing: an instance only exists when every origin,
    behavior and access rule is valid and all references resolve.
    """

    name: str = "edge"
    origins: tuple[OriginConfig, ...]
    behaviors: tuple[CacheBehavior, ...]
    rules: tuple[AccessRule, ...] = ()
    default_action: RuleAction = RuleAction.ALLOW
    default_root_object: str | None = "index.html"
    aliases: tuple[str, ...] = ()
    certificate_arn: str | None = None
    price_class: str = "PriceClass_100"
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    aws: AwsConfig = field(default_factory=AwsConfig)

    def __post_init__(self) -> None:
        object.__setattr__(self, "origins", tuple(self.origins))
        object.__setattr__(self, "behaviors", tuple(self.behaviors))
        object.__setattr__(self, "aliases", tuple(self.aliases))
        object.__setattr__(self, "default_action", RuleAction(self.default_action))

        origin_ids = [o.id for o in self.origins]
        duplicates = sorted({i for i in origin_ids if origin_ids.count(i) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate origin ids: {', '.join(duplicates)}")
        validate_behaviors(self.behaviors, set(origin_ids))
        object.__setattr__(self, "rules", validate_rules(self.rules))

        if self.default_root_object is not None and (
            not self.default_root_object or self.default_root_object.startswith("/")
        ):
            raise ConfigurationError(
                "default_root_object must be an object name without a leading '/'"
            )
        if self.price_class not in PRICE_CLASSES:
            raise ConfigurationError(
                f"Invalid price class '{self.price_class}'. "
                f"Must be one of {', '.join(PRICE_CLASSES)}."
            )
        if self.aliases and not self.certificate_arn:
            raise ConfigurationError("Aliases need a certificate_arn for the viewer certificate")

    def origin(self, origin_id: str) -> OriginConfig:
        return next(o for o in self.origins if o.id == origin_id)

    @property
    def static_origins(self) -> tuple[OriginConfig, ...]:
        return tuple(o for o in self.origins if o.kind is OriginKind.STATIC)

    @classmethod
    def from_dict(cls, data: EdgeConfigDict) -> "EdgeConfig":
        """Build a configuration from plain data, such as a parsed JSON document.

        Any field-level error is reported as a ConfigurationError naming the
        entry it came from.
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError(
                f"Edge configuration must be a mapping, got {type(data).__name__}"
            )
        unknown = set(data) - set(EdgeConfigDict.__annotations__)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        origins = _parse_entries(data.get("origins", ()), "origins", parse_origin)
        behaviors = _parse_entries(data.get("behaviors", ()), "behaviors", parse_behavior)
        rules = _parse_entries(data.get("rules", ()), "rules", parse_rule)

        try:
            options = {
                key: data[key]
                for key in ("name", "default_action", "certificate_arn", "price_class")
                if key in data
            }
            if "default_root_object" in data:
                options["default_root_object"] = data["default_root_object"]
            telemetry = TelemetryConfig(**data.get("telemetry", {}))
            aws = AwsConfig(**data.get("aws", {}))
            return cls(
                origins=origins,
                behaviors=behaviors,
                rules=rules,
                aliases=tuple(data.get("aliases", ())),
                telemetry=telemetry,
                aws=aws,
                **options,
            )
        except ConfigurationError:
            raise
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid edge configuration: {e}") from e


def _parse_entries(
    entries: Iterable[Any], section: str, parser: Callable[[Any], T]
) -> tuple[T, ...]:
    if isinstance(entries, str | bytes) or not isinstance(entries, Iterable):
        raise ConfigurationError(f"'{section}' must be a list")
    parsed = []
    for idx, entry in enumerate(entries):
        where = f"{section}[{idx}]"
        if isinstance(entry, Mapping):
            label = entry.get("id") or entry.get("pattern") or entry.get("name")
            where = f"{where} ({label})" if label else where
        try:
            parsed.append(parser(entry))
        except ConfigurationError as e:
            raise ConfigurationError(f"{where}: {e}") from e
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            message = f"missing key {e}" if isinstance(e, KeyError) else str(e)
            raise ConfigurationError(f"{where}: {message}") from e
    return tuple(parsed)


def parse_origin(data: OriginConfig | OriginConfigDict) -> OriginConfig:
    if isinstance(data, OriginConfig):
        return data
    values = dict(data)
    signing = values.pop("signing", None)
    if signing is not None and not isinstance(signing, SigningConfig):
        signing = SigningConfig(**signing)
    return OriginConfig(**values, signing=signing)


def parse_behavior(data: CacheBehavior | CacheBehaviorDict) -> CacheBehavior:
    return data if isinstance(data, CacheBehavior) else CacheBehavior(**data)


def parse_rule(data: AccessRule | AccessRuleDict) -> AccessRule:
    if isinstance(data, AccessRule):
        return data
    values = dict(data)
    values["statement"] = parse_statement(values["statement"])
    return AccessRule(**values)


def _field_statement_args(body: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "field_to_match": FieldToMatch.parse(body["field"]),
        "text_transformations": tuple(body.get("text_transformations", ())),
    }


_STATEMENT_PARSERS: dict[str, Callable[[Any], RuleStatement]] = {
    "byte_match": lambda body: ByteMatchStatement(
        **_field_statement_args(body),
        search_string=body["search_string"],
        positional_constraint=body.get("positional_constraint", "CONTAINS"),
    ),
    "regex_match": lambda body: RegexMatchStatement(
        **_field_statement_args(body), regex=body["regex"]
    ),
    "size_constraint": lambda body: SizeConstraintStatement(
        **_field_statement_args(body),
        comparison_operator=body["comparison_operator"],
        size=body["size"],
    ),
    "ip_set": lambda body: IPSetStatement(body["name"], tuple(body["addresses"])),
    "and": lambda body: AndStatement(tuple(parse_statement(s) for s in body)),
    "or": lambda body: OrStatement(tuple(parse_statement(s) for s in body)),
    "not": lambda body: NotStatement(parse_statement(body)),
    "match_all": lambda body: MatchAllStatement(),  # noqa: ARG005
    "managed_rule_group": lambda body: ManagedRuleGroupStatement(
        body.get("vendor", "AWS"), body["name"], frozenset(body.get("excluded_rules", ()))
    ),
}


def parse_statement(data: RuleStatement | Mapping[str, Any]) -> RuleStatement:
    """Parse a statement given as a single-key mapping, e.g. ``{"not": {...}}``."""
    if isinstance(data, RuleStatement):
        return data
    if not isinstance(data, Mapping) or len(data) != 1:
        raise ValueError("A statement must be a mapping with exactly one statement type")
    ((kind, body),) = data.items()
    if kind not in _STATEMENT_PARSERS:
        raise ValueError(
            f"Unknown statement type '{kind}'. "
            f"Must be one of {', '.join(sorted(_STATEMENT_PARSERS))}."
        )
    return _STATEMENT_PARSERS[kind](body)


def load_config(path: str | Path) -> EdgeConfig:
    """Load and validate an edge configuration from a JSON file."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Configuration file {path} is not valid JSON: {e}") from e
    config = EdgeConfig.from_dict(data)
    logger.debug(
        "Loaded edge configuration '%s' from %s: %d origins, %d behaviors, %d rules",
        config.name,
        path,
        len(config.origins),
        len(config.behaviors),
        len(config.rules),
    )
    return config
