from .behaviors import (
    BehaviorTable,
    CacheBehavior,
    CacheKey,
    CookieForwarding,
    Resolution,
    ViewerProtocolPolicy,
)
from .cache import ResponseCache
from .router import EdgeRouter, RouteState, build_state

__all__ = [
    "BehaviorTable",
    "CacheBehavior",
    "CacheKey",
    "CookieForwarding",
    "EdgeRouter",
    "Resolution",
    "ResponseCache",
    "RouteState",
    "ViewerProtocolPolicy",
    "build_state",
]
