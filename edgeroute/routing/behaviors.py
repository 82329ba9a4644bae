from collections.abc import Collection, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Literal, TypedDict, final

from edgeroute.exceptions import ConfigurationError, MethodNotAllowedError, NoMatchingOriginError
from edgeroute.http import EdgeRequest, HTTPMethod, Scheme, normalize_method
from edgeroute.origins.base import Origin
from edgeroute.routing.patterns import DEFAULT_PATTERN, pattern_matches, validate_pattern

# CloudFront's default quota for cache behaviors per distribution.
MAX_CACHE_BEHAVIORS = 25
DEFAULT_TTL = 86400
MAX_TTL = 31536000

type MethodsInput = str | HTTPMethod | Iterable[str | HTTPMethod]


class ViewerProtocolPolicy(Enum):
    REDIRECT_TO_HTTPS = "redirect-to-https"
    HTTPS_ONLY = "https-only"
    ALLOW_ALL = "allow-all"


class CookieForwardingDict(TypedDict, total=False):
    forward: Literal["none", "all", "whitelist"]
    whitelisted_names: list[str]


@final
@dataclass(frozen=True)
class CookieForwarding:
    forward: Literal["none", "all", "whitelist"] = "none"
    whitelisted_names: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if self.forward not in ("none", "all", "whitelist"):
            raise ValueError(
                f"Invalid cookie forwarding '{self.forward}'. "
                "Only 'none', 'all' and 'whitelist' are supported."
            )
        object.__setattr__(self, "whitelisted_names", frozenset(self.whitelisted_names))
        if self.forward == "whitelist" and not self.whitelisted_names:
            raise ValueError("Cookie whitelist cannot be empty")
        if self.forward != "whitelist" and self.whitelisted_names:
            raise ValueError("Cookie names can only be given with 'whitelist' forwarding")

    @classmethod
    def whitelist(cls, *names: str) -> "CookieForwarding":
        return cls("whitelist", frozenset(names))

    @classmethod
    def parse(
        cls, value: "CookieForwarding | CookieForwardingDict | str | None"
    ) -> "CookieForwarding":
        """Normalize cookie forwarding input.

        Accepts an instance, "none"/"all", a dict with ``forward`` and
        ``whitelisted_names``, or None (no cookies forwarded).
        """
        if value is None:
            return cls()
        if isinstance(value, CookieForwarding):
            return value
        if isinstance(value, str):
            return cls(value)
        if isinstance(value, dict):
            return cls(
                value.get("forward", "whitelist"),
                frozenset(value.get("whitelisted_names", ())),
            )
        raise TypeError(f"Invalid cookie forwarding type: {type(value).__name__}")

    def select(self, cookies: Mapping[str, str]) -> tuple[tuple[str, str], ...]:
        """Return the forwarded cookies as sorted name/value pairs."""
        if self.forward == "none":
            return ()
        if self.forward == "all":
            return tuple(sorted(cookies.items()))
        return tuple(sorted((k, v) for k, v in cookies.items() if k in self.whitelisted_names))


def _normalize_methods(methods: MethodsInput) -> frozenset[str]:
    if isinstance(methods, str | HTTPMethod):
        methods = [methods]
    normalized = frozenset(normalize_method(m) for m in methods)
    if not normalized:
        raise ValueError("Method set cannot be empty")
    return normalized


@final
@dataclass(frozen=True, kw_only=True)
class CacheBehavior:
    pattern: str
    origin_id: str
    allowed_methods: frozenset[str] = frozenset({"GET", "HEAD"})
    cached_methods: frozenset[str] = frozenset({"GET", "HEAD"})
    query_forwarding: bool = False
    cookie_forwarding: CookieForwarding = field(default_factory=CookieForwarding)
    viewer_protocol_policy: ViewerProtocolPolicy = ViewerProtocolPolicy.REDIRECT_TO_HTTPS
    min_ttl: int = 0
    default_ttl: int = DEFAULT_TTL
    max_ttl: int = MAX_TTL
    compress: bool = True

    def __post_init__(self) -> None:
        validate_pattern(self.pattern)
        if not self.origin_id:
            raise ValueError(f"Behavior '{self.pattern}' must reference an origin")
        object.__setattr__(self, "allowed_methods", _normalize_methods(self.allowed_methods))
        object.__setattr__(self, "cached_methods", _normalize_methods(self.cached_methods))
        object.__setattr__(
            self, "cookie_forwarding", CookieForwarding.parse(self.cookie_forwarding)
        )
        object.__setattr__(
            self, "viewer_protocol_policy", ViewerProtocolPolicy(self.viewer_protocol_policy)
        )
        if not self.cached_methods <= self.allowed_methods:
            extra = ", ".join(sorted(self.cached_methods - self.allowed_methods))
            raise ValueError(
                f"Behavior '{self.pattern}': cached methods must be a subset of allowed "
                f"methods, got extra {extra}"
            )
        if not 0 <= self.min_ttl <= self.default_ttl <= self.max_ttl:
            raise ValueError(
                f"Behavior '{self.pattern}': TTLs must satisfy 0 <= min_ttl <= default_ttl "
                "<= max_ttl"
            )

    @property
    def is_default(self) -> bool:
        return self.pattern == DEFAULT_PATTERN

    def matches(self, path: str) -> bool:
        return pattern_matches(self.pattern, path)

    def allows(self, method: str) -> bool:
        return method.upper() in self.allowed_methods

    def caches(self, method: str) -> bool:
        return method.upper() in self.cached_methods


@final
@dataclass(frozen=True)
class CacheKey:
    """Request attributes that decide whether two requests may share a cached response."""

    pattern: str
    path: str
    query: str
    cookies: tuple[tuple[str, str], ...]
    protocol: Scheme


@final
@dataclass(frozen=True)
class Resolution:
    behavior: CacheBehavior
    origin: Origin


def validate_behaviors(
    behaviors: Iterable[CacheBehavior], origin_ids: Collection[str]
) -> tuple[tuple[CacheBehavior, ...], CacheBehavior]:
    """Check a behavior list and split it into ordered behaviors and the default.

    Raises NoMatchingOriginError when there is no default behavior or a
    behavior references an unknown origin, ConfigurationError otherwise.
    """
    behaviors = tuple(behaviors)
    defaults = [b for b in behaviors if b.is_default]
    if not defaults:
        raise NoMatchingOriginError(
            f"Behavior table needs exactly one default behavior with pattern "
            f"'{DEFAULT_PATTERN}'"
        )
    if len(defaults) > 1:
        raise ConfigurationError(
            f"Behavior table has {len(defaults)} default behaviors, exactly one is allowed"
        )
    ordered = tuple(b for b in behaviors if not b.is_default)
    if len(ordered) > MAX_CACHE_BEHAVIORS:
        raise ConfigurationError(
            f"Behavior table has {len(ordered)} behaviors, at most "
            f"{MAX_CACHE_BEHAVIORS} are allowed besides the default"
        )

    seen: set[str] = set()
    for behavior in ordered:
        if behavior.pattern in seen:
            raise ConfigurationError(f"Duplicate behavior pattern '{behavior.pattern}'")
        seen.add(behavior.pattern)

    for behavior in behaviors:
        if behavior.origin_id not in origin_ids:
            raise NoMatchingOriginError(
                f"Behavior '{behavior.pattern}' references unknown origin "
                f"'{behavior.origin_id}'"
            )
    return ordered, defaults[0]


def select_behavior(
    ordered: tuple[CacheBehavior, ...], default: CacheBehavior, path: str
) -> CacheBehavior:
    """Return the first behavior matching ``path``, falling back to the default."""
    return next((b for b in ordered if b.matches(path)), default)


def cache_key(request: EdgeRequest, behavior: CacheBehavior) -> CacheKey:
    return CacheKey(
        pattern=behavior.pattern,
        path=request.path,
        query=request.query if behavior.query_forwarding else "",
        cookies=behavior.cookie_forwarding.select(request.cookies),
        protocol=request.scheme,
    )


class BehaviorTable:
    """Ordered, validated and immutable set of cache behaviors.

    Non-default behaviors are evaluated in declaration order; the default
    behavior is evaluated last and matches every path.
    """

    __slots__ = ("_default", "_ordered", "_origins")

    def __init__(self, behaviors: Iterable[CacheBehavior], origins: Mapping[str, Origin]) -> None:
        ordered, default = validate_behaviors(behaviors, origins)
        self._ordered = ordered
        self._default = default
        self._origins = MappingProxyType(dict(origins))

    def __setattr__(self, name: str, value: object) -> None:
        if hasattr(self, "_origins"):
            raise AttributeError(f"{type(self).__name__} is immutable")
        object.__setattr__(self, name, value)

    @property
    def behaviors(self) -> tuple[CacheBehavior, ...]:
        """All behaviors in evaluation order, default last."""
        return (*self._ordered, self._default)

    @property
    def default(self) -> CacheBehavior:
        return self._default

    @property
    def origins(self) -> Mapping[str, Origin]:
        return self._origins

    def __iter__(self) -> Iterator[CacheBehavior]:
        return iter(self.behaviors)

    def __len__(self) -> int:
        return len(self._ordered) + 1

    def select(self, path: str) -> CacheBehavior:
        return select_behavior(self._ordered, self._default, path)

    def resolve(self, path: str, method: str) -> Resolution:
        behavior = self.select(path)
        if not behavior.allows(method):
            raise MethodNotAllowedError(method.upper(), behavior.pattern, behavior.allowed_methods)
        return Resolution(behavior, self._origins[behavior.origin_id])

    def cache_key(self, request: EdgeRequest, behavior: CacheBehavior) -> CacheKey:
        return cache_key(request, behavior)
