from .base import Origin, OriginConfig, OriginKind, OriginRuntime
from .registry import OriginRegistry
from .signing import OriginAuthenticator, SigningBehavior, SigningConfig

__all__ = [
    "Origin",
    "OriginAuthenticator",
    "OriginConfig",
    "OriginKind",
    "OriginRegistry",
    "OriginRuntime",
    "SigningBehavior",
    "SigningConfig",
]
