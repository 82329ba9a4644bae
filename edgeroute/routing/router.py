"""Request pipeline of the edge.

Every request walks the same steps against one immutable snapshot of the
configuration:

1. select the cache behavior for the path
2. enforce the viewer protocol policy (redirect or reject plain HTTP)
3. evaluate the access rules
4. check the method against the behavior
5. look the response up in the cache
6. forward the request to the origin, signed when the origin requires it
7. store cacheable responses
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, final

from requests.structures import CaseInsensitiveDict

from edgeroute.exceptions import (
    AccessBlockedError,
    ConfigurationError,
    OriginUnavailableError,
    SignatureInvalidError,
)
from edgeroute.http import EdgeRequest, EdgeResponse, format_cookie_header
from edgeroute.origins.base import Origin, OriginKind, OriginRuntime
from edgeroute.origins.registry import OriginRegistry
from edgeroute.origins.signing import OriginAuthenticator
from edgeroute.routing.behaviors import (
    BehaviorTable,
    CacheBehavior,
    Resolution,
    ViewerProtocolPolicy,
)
from edgeroute.routing.cache import ResponseCache, response_ttl
from edgeroute.telemetry import NullTelemetrySink, TelemetrySink, emit, emit_observation
from edgeroute.waf.filter import AccessControlFilter

if TYPE_CHECKING:
    from edgeroute.config import EdgeConfig

logger = logging.getLogger(__name__)

DEFAULT_ROOT_OBJECT = "index.html"
CACHE_HEADER = "X-Cache"


@final
@dataclass(frozen=True)
class RouteState:
    """Everything a request needs, published and replaced as one reference."""

    table: BehaviorTable
    access_filter: AccessControlFilter
    authenticator: OriginAuthenticator | None = None
    default_root_object: str | None = DEFAULT_ROOT_OBJECT

    def __post_init__(self) -> None:
        for origin in self.table.origins.values():
            if origin.signing is not None and self.authenticator is None:
                raise ConfigurationError(
                    f"Origin '{origin.id}' has a signing config but no authenticator is set"
                )


def aws_runtime(config: "EdgeConfig") -> OriginRuntime:
    """Runtime backed by the configured AWS profile and region.

    An authenticator is only resolved when some origin signs its requests.
    """
    session = config.aws.session()
    authenticator = None
    if any(origin.signing is not None for origin in config.origins):
        try:
            authenticator = OriginAuthenticator.from_session(session)
        except ValueError as e:
            raise ConfigurationError(f"Origin signing: {e}") from e
    return OriginRuntime(boto3_session=session, authenticator=authenticator)


def build_state(
    config: "EdgeConfig",
    runtime: OriginRuntime | None = None,
    telemetry: TelemetrySink | None = None,
) -> RouteState:
    """Build origins, the behavior table and the access filter for ``config``.

    Nothing is published here; a failure leaves whatever is live untouched.
    """
    runtime = runtime or aws_runtime(config)
    origins: dict[str, Origin] = {}
    for origin_config in config.origins:
        try:
            origins[origin_config.id] = OriginRegistry.build(origin_config, runtime)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Origin '{origin_config.id}': {e}") from e
    return RouteState(
        table=BehaviorTable(config.behaviors, origins),
        access_filter=AccessControlFilter(
            config.rules,
            config.default_action,
            telemetry,
            sample_default_action=config.telemetry.sample_default_action,
        ),
        authenticator=runtime.authenticator,
        default_root_object=config.default_root_object,
    )


class EdgeRouter:
    def __init__(
        self,
        state: RouteState,
        telemetry: TelemetrySink | None = None,
        cache: ResponseCache | None = None,
    ) -> None:
        self._state = state
        self.telemetry = telemetry or NullTelemetrySink()
        self.cache = cache

    @classmethod
    def from_config(
        cls,
        config: "EdgeConfig",
        runtime: OriginRuntime | None = None,
        telemetry: TelemetrySink | None = None,
        cache: ResponseCache | None = None,
    ) -> "EdgeRouter":
        telemetry = telemetry or config.telemetry.create_sink()
        return cls(build_state(config, runtime, telemetry), telemetry, cache)

    @property
    def state(self) -> RouteState:
        return self._state

    def swap(self, state: RouteState) -> None:
        """Publish a new configuration. In-flight requests finish on the old one."""
        if not isinstance(state, RouteState):
            raise TypeError(f"Expected RouteState, got {type(state).__name__}")
        self._state = state
        if self.cache is not None:
            self.cache.clear()
        logger.info(
            "Published edge configuration with %d behaviors and %d access rules",
            len(state.table),
            len(state.access_filter.rules),
        )

    def resolve(self, path: str, method: str) -> Resolution:
        return self._state.table.resolve(path, method)

    def handle(self, request: EdgeRequest) -> EdgeResponse:
        state = self._state
        behavior = state.table.select(request.path)
        try:
            response = self._handle(state, behavior, request)
        except AccessBlockedError as e:
            # The rule name stays in telemetry and logs.
            logger.debug("Denied %s %s: %s", request.method, request.path, e)
            response = EdgeResponse.error(403)
        emit(self.telemetry, "router.requests", behavior.pattern, str(response.status))
        return response

    def _handle(
        self, state: RouteState, behavior: CacheBehavior, request: EdgeRequest
    ) -> EdgeResponse:
        if request.scheme == "http":
            policy = behavior.viewer_protocol_policy
            if policy is ViewerProtocolPolicy.REDIRECT_TO_HTTPS:
                if not request.host:
                    # Nowhere to redirect to.
                    return EdgeResponse.error(400)
                return EdgeResponse.redirect(replace(request, scheme="https").url)
            if policy is ViewerProtocolPolicy.HTTPS_ONLY:
                return EdgeResponse.error(403)

        state.access_filter.enforce(request)

        if not behavior.allows(request.method):
            logger.debug(
                "Method %s not allowed for behavior '%s'", request.method, behavior.pattern
            )
            response = EdgeResponse.error(405)
            allow = ", ".join(sorted(behavior.allowed_methods))
            return response.with_headers({**response.headers, "Allow": allow})

        origin = state.table.origins[behavior.origin_id]
        key = state.table.cache_key(request, behavior)
        use_cache = self.cache is not None and behavior.caches(request.method)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                body = b"" if request.method == "HEAD" else cached.body
                return replace(cached, body=body).with_headers(
                    {**cached.headers, CACHE_HEADER: "Hit from edge"}
                )

        forwarded = self.forward_request(state, request, behavior, origin)
        if origin.signing is not None:
            forwarded = state.authenticator.sign_request(forwarded, origin)

        response = self._fetch(origin, forwarded)
        headers = CaseInsensitiveDict(response.headers)
        if not behavior.caches(request.method):
            headers["Cache-Control"] = "no-store"
        elif use_cache:
            headers[CACHE_HEADER] = "Miss from edge"
        response = response.with_headers(headers)

        if use_cache and request.method == "GET" and response.status == 200:  # noqa: PLR2004
            self.cache.put(key, response, response_ttl(response, behavior))
        return response

    def forward_request(
        self,
        state: RouteState,
        request: EdgeRequest,
        behavior: CacheBehavior,
        origin: Origin,
    ) -> EdgeRequest:
        """Apply the behavior's forwarding policy to ``request``."""
        headers = CaseInsensitiveDict(request.headers)
        headers["Host"] = origin.address
        headers.pop("Cookie", None)
        cookies = dict(behavior.cookie_forwarding.select(request.cookies))
        if cookies:
            headers["Cookie"] = format_cookie_header(cookies)
        if request.client_ip:
            previous = headers.get("X-Forwarded-For")
            headers["X-Forwarded-For"] = (
                f"{previous}, {request.client_ip}" if previous else request.client_ip
            )

        path = request.path
        if (
            path == "/"
            and behavior.is_default
            and origin.kind is OriginKind.STATIC
            and state.default_root_object
        ):
            path = f"/{state.default_root_object}"

        return replace(
            request,
            path=path,
            query=request.query if behavior.query_forwarding else "",
            headers=headers,
            host=origin.address,
        )

    def _fetch(self, origin: Origin, request: EdgeRequest) -> EdgeResponse:
        started = time.perf_counter()
        try:
            return origin.fetch(request)
        except OriginUnavailableError as e:
            reason = "timeout" if e.timeout else "connection"
            emit(self.telemetry, "origin.errors", origin.id, reason)
            logger.warning("Origin '%s' failed with %s: %s", origin.id, reason, e.reason)
            return EdgeResponse.error(e.status_code)
        except SignatureInvalidError as e:
            emit(self.telemetry, "origin.errors", origin.id, "signature")
            logger.warning("%s", e)
            return EdgeResponse.error(403)
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            emit_observation(self.telemetry, "origin.latency_ms", origin.id, value=elapsed_ms)
