class EdgeRouteError(Exception):
    """Base class for all edgeroute errors."""


class ConfigurationError(EdgeRouteError, ValueError):
    """Raised when edge configuration is invalid. The configuration never goes live."""


class NoMatchingOriginError(ConfigurationError):
    """Raised when a request could not be bound to any origin.

    With a valid behavior table this cannot happen at request time, so it is
    reported while the table is being built.
    """


class MethodNotAllowedError(EdgeRouteError):
    """Raised when the selected behavior does not allow the request method."""

    def __init__(self, method: str, pattern: str, allowed: frozenset[str]):
        self.method = method
        self.pattern = pattern
        self.allowed = allowed
        super().__init__(
            f"Method '{method}' is not allowed for behavior '{pattern}'. "
            f"Allowed: {', '.join(sorted(allowed))}."
        )


class AccessBlockedError(EdgeRouteError):
    """Raised when an access rule blocks the request."""

    def __init__(self, rule_name: str | None):
        self.rule_name = rule_name
        super().__init__(f"Request blocked by access rule '{rule_name or 'default'}'.")


class OriginUnavailableError(EdgeRouteError):
    """Raised when the bound origin times out or cannot be reached."""

    def __init__(self, origin_id: str, reason: str, *, timeout: bool = False):
        self.origin_id = origin_id
        self.reason = reason
        self.timeout = timeout
        super().__init__(f"Origin '{origin_id}' unavailable: {reason}")

    @property
    def status_code(self) -> int:
        return 504 if self.timeout else 502


class SignatureInvalidError(EdgeRouteError):
    """Raised on the origin side when a request carries no valid signature."""

    def __init__(self, origin_id: str, path: str):
        self.origin_id = origin_id
        self.path = path
        super().__init__(f"Origin '{origin_id}' rejected unsigned request for {path}")
