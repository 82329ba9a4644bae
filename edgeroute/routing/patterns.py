from fnmatch import fnmatchcase
from functools import lru_cache

DEFAULT_PATTERN = "*"
PATTERN_MAX_LENGTH = 255
_GLOB_CHARS = frozenset("*?")


def split_path(path: str) -> tuple[str, ...]:
    """Split a URL path into its non-empty segments."""
    return tuple(segment for segment in path.split("/") if segment)


def validate_pattern(pattern: str) -> None:
    if not isinstance(pattern, str):
        raise TypeError(f"Path pattern must be a string, got {type(pattern).__name__}")
    if pattern == DEFAULT_PATTERN:
        return
    if not pattern.startswith("/"):
        raise ValueError(f"Path pattern '{pattern}' must start with '/'")
    if len(pattern) > PATTERN_MAX_LENGTH:
        raise ValueError(f"Path pattern '{pattern[:32]}...' is too long")
    if "**" in pattern:
        raise ValueError(f"Path pattern '{pattern}' uses '**'; a single '*' spans segments")


@lru_cache(maxsize=1024)
def _compile(pattern: str) -> tuple[str, ...]:
    return split_path(pattern)


def _match_segments(pattern: tuple[str, ...], path: tuple[str, ...]) -> bool:
    if not pattern:
        return not path
    head, rest = pattern[0], pattern[1:]
    if head == "*":
        # One or more whole segments, shortest first.
        return any(_match_segments(rest, path[i:]) for i in range(1, len(path) - len(rest) + 1))
    if not path:
        return False
    if _GLOB_CHARS.isdisjoint(head):
        matched = head == path[0]
    else:
        matched = fnmatchcase(path[0], head)
    return matched and _match_segments(rest, path[1:])


def pattern_matches(pattern: str, path: str) -> bool:
    """Return True when ``path`` matches ``pattern``.

    A segment that is exactly ``*`` matches one or more path segments at that
    position. Any other segment matches exactly one path segment, literally or
    as a glob when it contains ``*`` or ``?``. The default pattern ``*``
    matches every path. Matching is case-sensitive.
    """
    if pattern == DEFAULT_PATTERN:
        return True
    return _match_segments(_compile(pattern), split_path(path))
