from dataclasses import dataclass
from typing import ClassVar

from edgeroute.config import AwsConfig


@dataclass(frozen=True)
class AppContext:
    """Context information available while an edge is rendered or provisioned."""

    name: str
    env: str
    aws: AwsConfig

    def prefix(self, name: str | None = None) -> str:
        """Get resource name prefix or prefixed name.

        Args:
            name: Optional name to prefix. If None, returns just the prefix with trailing dash.

        Returns:
            If name is None: "{app}-{env}-"
            If name provided: "{app}-{env}-{name}"
        """
        base = f"{self.name.lower()}-{self.env.lower()}-"
        return base if name is None else f"{base}{name}"


class _ContextStore:
    _instance: ClassVar[AppContext | None] = None

    @classmethod
    def set(cls, context: AppContext) -> None:
        """Set the global context. Can only be called once."""
        if cls._instance is not None:
            raise RuntimeError("Context has already been initialized")
        cls._instance = context

    @classmethod
    def get(cls) -> AppContext:
        if cls._instance is None:
            raise RuntimeError(
                "edgeroute context not initialized. This usually means you're calling "
                "context() outside of a render or provision run."
            )
        return cls._instance

    @classmethod
    def clear(cls) -> None:
        """Clear the context. Only used for testing."""
        cls._instance = None


def context() -> AppContext:
    """Get the current app context.

    Raises:
        RuntimeError: If called before context is initialized.
    """
    return _ContextStore.get()
