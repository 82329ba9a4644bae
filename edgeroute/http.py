from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from http import HTTPStatus
from typing import Literal, final
from urllib.parse import urlsplit

from requests.structures import CaseInsensitiveDict

type Scheme = Literal["http", "https"]

# Headers that describe a single connection and are never relayed between hops.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)


class HTTPMethod(Enum):
    GET = "GET"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    PUT = "PUT"
    POST = "POST"
    PATCH = "PATCH"
    DELETE = "DELETE"


HTTP_METHODS = frozenset(m.value for m in HTTPMethod)
READ_ONLY_METHODS = frozenset({"GET", "HEAD"})


def normalize_method(method: str | HTTPMethod) -> str:
    if isinstance(method, HTTPMethod):
        return method.value
    if not isinstance(method, str):
        raise TypeError(f"HTTP method must be a string, got {type(method).__name__}")
    method_upper_case = method.upper()
    if method_upper_case not in HTTP_METHODS:
        raise ValueError(
            f"Invalid HTTP method: {method}. Must be one of {', '.join(sorted(HTTP_METHODS))}."
        )
    return method_upper_case


def parse_cookie_header(value: str | None) -> dict[str, str]:
    """Split a Cookie header into name/value pairs. Later duplicates win."""
    cookies: dict[str, str] = {}
    if not value:
        return cookies
    for part in value.split(";"):
        name, sep, cookie_value = part.strip().partition("=")
        if not sep or not name:
            continue
        cookies[name.strip()] = cookie_value.strip()
    return cookies


def format_cookie_header(cookies: Mapping[str, str]) -> str:
    return "; ".join(f"{name}={value}" for name, value in cookies.items())


@final
@dataclass(frozen=True)
class EdgeRequest:
    method: str
    path: str
    query: str = ""
    headers: Mapping[str, str] = field(default_factory=CaseInsensitiveDict)
    body: bytes = b""
    scheme: Scheme = "https"
    host: str = ""
    client_ip: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        if not isinstance(self.headers, CaseInsensitiveDict):
            object.__setattr__(self, "headers", CaseInsensitiveDict(self.headers))
        if not self.path.startswith("/"):
            raise ValueError(f"Request path must start with '/', got '{self.path}'")
        if self.scheme not in ("http", "https"):
            raise ValueError(f"Unsupported scheme '{self.scheme}'")
        if not self.host:
            object.__setattr__(self, "host", self.headers.get("Host", ""))

    @classmethod
    def from_url(
        cls,
        url: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: bytes = b"",
        client_ip: str | None = None,
    ) -> "EdgeRequest":
        parsed = urlsplit(url)
        all_headers = CaseInsensitiveDict(headers or {})
        all_headers.setdefault("Host", parsed.netloc)
        return cls(
            method=method,
            path=parsed.path or "/",
            query=parsed.query,
            headers=all_headers,
            body=body,
            scheme=parsed.scheme or "https",
            host=parsed.netloc,
            client_ip=client_ip,
        )

    @property
    def url(self) -> str:
        if not self.host:
            raise ValueError(f"Request for '{self.path}' has no host")
        base = f"{self.scheme}://{self.host}{self.path}"
        return f"{base}?{self.query}" if self.query else base

    @property
    def cookies(self) -> dict[str, str]:
        return parse_cookie_header(self.headers.get("Cookie"))

    def with_headers(self, headers: Mapping[str, str]) -> "EdgeRequest":
        return replace(self, headers=CaseInsensitiveDict(headers))


@final
@dataclass(frozen=True)
class EdgeResponse:
    status: int
    headers: Mapping[str, str] = field(default_factory=CaseInsensitiveDict)
    body: bytes = b""

    def __post_init__(self) -> None:
        if not isinstance(self.headers, CaseInsensitiveDict):
            object.__setattr__(self, "headers", CaseInsensitiveDict(self.headers))

    @classmethod
    def redirect(cls, location: str, status: int = HTTPStatus.MOVED_PERMANENTLY) -> "EdgeResponse":
        return cls(status=int(status), headers={"Location": location, "Content-Length": "0"})

    @classmethod
    def error(cls, status: int) -> "EdgeResponse":
        phrase = HTTPStatus(status).phrase
        body = (
            f"<!DOCTYPE html><html><head><title>{status} {phrase}</title></head>"
            f"<body><h1>{status} {phrase}</h1></body></html>"
        ).encode()
        return cls(
            status=status,
            headers={
                "Content-Type": "text/html",
                "Content-Length": str(len(body)),
                "Cache-Control": "no-store",
            },
            body=body,
        )

    def with_headers(self, headers: Mapping[str, str]) -> "EdgeResponse":
        return replace(self, headers=CaseInsensitiveDict(headers))
