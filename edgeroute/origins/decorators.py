from __future__ import annotations

from edgeroute.origins.base import OriginKind
from edgeroute.origins.registry import OriginRegistry


def _register_origin(origin_cls: type, kind: OriginKind) -> None:
    origin_cls.kind = kind
    OriginRegistry.add_origin(origin_cls)


def register_origin(kind: OriginKind) -> callable:
    def wrapper(origin_cls: type) -> type:
        _register_origin(origin_cls, kind)
        return origin_cls

    return wrapper
