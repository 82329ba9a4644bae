import importlib
from typing import ClassVar

from edgeroute.origins.base import Origin, OriginConfig, OriginKind, OriginRuntime

_ORIGIN_MODULES = ("edgeroute.origins.static", "edgeroute.origins.dynamic")


class OriginRegistry:
    _origins: ClassVar[dict[OriginKind, type[Origin]]] = {}
    _initialized = False

    @classmethod
    def add_origin(cls, origin_cls: type[Origin]) -> None:
        if origin_cls.kind in cls._origins and cls._origins[origin_cls.kind] is not origin_cls:
            raise ValueError(f"An origin class is already registered for {origin_cls.kind}")
        cls._origins[origin_cls.kind] = origin_cls

    @classmethod
    def all_origins(cls) -> dict[OriginKind, type[Origin]]:
        return dict(cls._origins)

    @classmethod
    def _ensure_origins_loaded(cls) -> None:
        """Lazy load origin modules to avoid circular imports."""
        if cls._initialized:
            return
        for module_name in _ORIGIN_MODULES:
            importlib.import_module(module_name)
        cls._initialized = True

    @classmethod
    def get_origin_class(cls, kind: OriginKind) -> type[Origin]:
        cls._ensure_origins_loaded()
        try:
            return cls._origins[kind]
        except KeyError:
            raise ValueError(f"No origin implementation registered for kind: {kind}") from None

    @classmethod
    def build(cls, config: OriginConfig, runtime: OriginRuntime | None = None) -> Origin:
        return cls.get_origin_class(config.kind).build(config, runtime or OriginRuntime())
