import pytest

from edgeroute.exceptions import ConfigurationError, MethodNotAllowedError, NoMatchingOriginError
from edgeroute.http import EdgeRequest, HTTPMethod
from edgeroute.routing.behaviors import (
    MAX_CACHE_BEHAVIORS,
    BehaviorTable,
    CacheBehavior,
    CookieForwarding,
    ViewerProtocolPolicy,
    cache_key,
)


@pytest.mark.parametrize(
    "path",
    ["/", "/index.html", "/api", "/a/b/c/d/e", "/%2e%2e/etc/passwd", "/api/users?x=1"],
)
def test_every_path_resolves_for_get(table, path):
    resolution = table.resolve(path, "GET")
    assert resolution.behavior is not None
    assert resolution.origin is table.origins[resolution.behavior.origin_id]


def test_earlier_behavior_wins_over_default(table, api_origin):
    resolution = table.resolve("/api/users", "GET")

    assert resolution.behavior.pattern == "/api/*"
    assert resolution.origin is api_origin


def test_declaration_order_decides_between_overlapping_patterns(origins, default_behavior):
    specific = CacheBehavior(pattern="/api/health", origin_id="assets")
    broad = CacheBehavior(pattern="/api/*", origin_id="api")

    specific_first = BehaviorTable([specific, broad, default_behavior], origins)
    broad_first = BehaviorTable([broad, specific, default_behavior], origins)

    assert specific_first.select("/api/health") is specific
    assert broad_first.select("/api/health") is broad


def test_default_is_evaluated_last_wherever_declared(origins, api_behavior, default_behavior):
    table = BehaviorTable([default_behavior, api_behavior], origins)

    assert table.behaviors == (api_behavior, default_behavior)
    assert table.select("/api/users") is api_behavior
    assert len(table) == 2


def test_method_not_allowed_does_not_fall_through(table):
    with pytest.raises(MethodNotAllowedError) as exc_info:
        table.resolve("/", "POST")

    assert exc_info.value.method == "POST"
    assert exc_info.value.pattern == "*"
    assert exc_info.value.allowed == frozenset({"GET", "HEAD", "OPTIONS"})


def test_method_check_is_case_insensitive(table):
    assert table.resolve("/api/users", "post").behavior.pattern == "/api/*"


def test_resolve_is_idempotent(table):
    first = table.resolve("/api/users", "GET")
    second = table.resolve("/api/users", "GET")

    assert first == second
    assert first.behavior is second.behavior
    assert first.origin is second.origin


def test_table_is_immutable(table, default_behavior):
    with pytest.raises(AttributeError, match="immutable"):
        table._default = default_behavior


def test_missing_default_behavior(origins, api_behavior):
    with pytest.raises(NoMatchingOriginError, match="exactly one default behavior"):
        BehaviorTable([api_behavior], origins)


def test_two_default_behaviors(origins, default_behavior):
    other = CacheBehavior(pattern="*", origin_id="api")
    with pytest.raises(ConfigurationError, match="2 default behaviors"):
        BehaviorTable([default_behavior, other], origins)


def test_duplicate_pattern(origins, api_behavior, default_behavior):
    duplicate = CacheBehavior(pattern="/api/*", origin_id="assets")
    with pytest.raises(ConfigurationError, match="Duplicate behavior pattern '/api/\\*'"):
        BehaviorTable([api_behavior, duplicate, default_behavior], origins)


def test_unknown_origin(origins, default_behavior):
    orphan = CacheBehavior(pattern="/media/*", origin_id="media")
    with pytest.raises(NoMatchingOriginError, match="unknown origin 'media'"):
        BehaviorTable([orphan, default_behavior], origins)


def test_behavior_limit(origins, default_behavior):
    behaviors = [
        CacheBehavior(pattern=f"/p{idx}/*", origin_id="assets")
        for idx in range(MAX_CACHE_BEHAVIORS + 1)
    ]
    with pytest.raises(ConfigurationError, match="at most 25"):
        BehaviorTable([*behaviors, default_behavior], origins)


def test_cached_methods_must_be_subset_of_allowed():
    with pytest.raises(ValueError, match="subset of allowed methods, got extra OPTIONS"):
        CacheBehavior(
            pattern="/x/*",
            origin_id="api",
            allowed_methods=["GET", "HEAD"],
            cached_methods=["GET", "HEAD", "OPTIONS"],
        )


def test_methods_are_normalized():
    behavior = CacheBehavior(
        pattern="/x/*",
        origin_id="api",
        allowed_methods=["get", HTTPMethod.HEAD, "options"],
        cached_methods="get",
    )
    assert behavior.allowed_methods == frozenset({"GET", "HEAD", "OPTIONS"})
    assert behavior.cached_methods == frozenset({"GET"})


@pytest.mark.parametrize(
    ("kwargs", "error"),
    [
        ({"allowed_methods": ["FETCH"]}, "Invalid HTTP method"),
        ({"allowed_methods": []}, "cannot be empty"),
        ({"origin_id": ""}, "must reference an origin"),
        ({"min_ttl": 10, "default_ttl": 5}, "TTLs must satisfy"),
        ({"viewer_protocol_policy": "http-only"}, "is not a valid ViewerProtocolPolicy"),
        ({"cookie_forwarding": "some"}, "Invalid cookie forwarding"),
    ],
)
def test_invalid_behavior(kwargs, error):
    values = {"pattern": "/x/*", "origin_id": "api", **kwargs}
    with pytest.raises(ValueError, match=error):
        CacheBehavior(**values)


def test_viewer_protocol_policy_accepts_string():
    behavior = CacheBehavior(pattern="/x/*", origin_id="api", viewer_protocol_policy="https-only")
    assert behavior.viewer_protocol_policy is ViewerProtocolPolicy.HTTPS_ONLY


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, CookieForwarding("none")),
        ("all", CookieForwarding("all")),
        ({"whitelisted_names": ["session"]}, CookieForwarding.whitelist("session")),
        (
            {"forward": "whitelist", "whitelisted_names": ["a", "b"]},
            CookieForwarding.whitelist("a", "b"),
        ),
    ],
)
def test_cookie_forwarding_parse(value, expected):
    assert CookieForwarding.parse(value) == expected


def test_cookie_forwarding_rejects_empty_whitelist():
    with pytest.raises(ValueError, match="whitelist cannot be empty"):
        CookieForwarding("whitelist")


def test_cookie_forwarding_rejects_names_without_whitelist():
    with pytest.raises(ValueError, match="only be given with 'whitelist'"):
        CookieForwarding("all", frozenset({"session"}))


def test_cookie_forwarding_select():
    cookies = {"session": "abc", "theme": "dark", "tracking": "1"}

    assert CookieForwarding("none").select(cookies) == ()
    assert CookieForwarding("all").select(cookies) == (
        ("session", "abc"),
        ("theme", "dark"),
        ("tracking", "1"),
    )
    assert CookieForwarding.whitelist("session", "lang").select(cookies) == (("session", "abc"),)


def _request(path="/api/users", query="", cookie=None, scheme="https"):
    headers = {"Host": "example.com"}
    if cookie:
        headers["Cookie"] = cookie
    return EdgeRequest("GET", path, query=query, headers=headers, scheme=scheme)


def test_identical_requests_share_cache_key(api_behavior):
    first = cache_key(_request(query="page=2"), api_behavior)
    second = cache_key(_request(query="page=2"), api_behavior)

    assert first == second
    assert hash(first) == hash(second)


def test_query_is_part_of_key_when_forwarded(api_behavior):
    assert cache_key(_request(query="page=1"), api_behavior) != cache_key(
        _request(query="page=2"), api_behavior
    )


def test_query_is_ignored_when_not_forwarded(default_behavior):
    first = cache_key(_request("/docs", query="page=1"), default_behavior)
    second = cache_key(_request("/docs", query="page=2"), default_behavior)

    assert first == second
    assert first.query == ""


def test_only_forwarded_cookies_are_part_of_key():
    behavior = CacheBehavior(
        pattern="/app/*",
        origin_id="api",
        cookie_forwarding=CookieForwarding.whitelist("session"),
    )
    base = cache_key(_request("/app/home", cookie="session=1; tracking=a"), behavior)
    other_tracking = cache_key(_request("/app/home", cookie="tracking=b; session=1"), behavior)
    other_session = cache_key(_request("/app/home", cookie="session=2"), behavior)

    assert base == other_tracking
    assert base != other_session
    assert base.cookies == (("session", "1"),)


def test_protocol_is_part_of_key(api_behavior):
    https = cache_key(_request(scheme="https"), api_behavior)
    http = cache_key(_request(scheme="http"), api_behavior)

    assert https != http
    assert http.protocol == "http"
