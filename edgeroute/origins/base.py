import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, ClassVar, Literal, final

from edgeroute.origins.signing import SigningConfig

if TYPE_CHECKING:
    import boto3
    import requests

    from edgeroute.http import EdgeRequest, EdgeResponse, Scheme
    from edgeroute.origins.signing import OriginAuthenticator

OriginProtocolPolicy = Literal["https-only", "match-viewer"]
TlsVersion = Literal["TLSv1", "TLSv1.1", "TLSv1.2", "TLSv1.3"]
TLS_VERSIONS: tuple[TlsVersion, ...] = ("TLSv1", "TLSv1.1", "TLSv1.2", "TLSv1.3")
DEFAULT_MIN_TLS_VERSION: TlsVersion = "TLSv1.2"
DEFAULT_ORIGIN_TIMEOUT = 30.0
MAX_ORIGIN_TIMEOUT = 180.0

_ORIGIN_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
# bucket.s3.amazonaws.com, bucket.s3.region.amazonaws.com, bucket.s3-region.amazonaws.com
_S3_ADDRESS_RE = re.compile(
    r"^(?P<bucket>[a-z0-9][a-z0-9.-]{1,61}[a-z0-9])\.s3(?:[.-](?P<region>[a-z0-9-]+))?"
    r"\.amazonaws\.com$"
)


class OriginKind(Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"


@final
@dataclass(frozen=True, kw_only=True)
class OriginConfig:
    id: str
    kind: OriginKind
    address: str
    protocol_policy: OriginProtocolPolicy = "https-only"
    origin_path: str = ""
    signing: SigningConfig | None = None
    min_tls_version: TlsVersion = DEFAULT_MIN_TLS_VERSION
    timeout: float = DEFAULT_ORIGIN_TIMEOUT
    bucket: str | None = None
    region: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, OriginKind):
            object.__setattr__(self, "kind", OriginKind(self.kind))
        self._validate_id()
        self._validate_address()
        self._validate_transport()
        if self.kind is OriginKind.STATIC:
            self._validate_static()
        elif self.signing is not None:
            raise ValueError(f"Origin '{self.id}': only static origins can be signed")

    def _validate_id(self) -> None:
        if not isinstance(self.id, str) or not _ORIGIN_ID_RE.match(self.id):
            raise ValueError(
                f"Invalid origin id {self.id!r}. Use 1-128 letters, digits, '.', '_' or '-'."
            )

    def _validate_address(self) -> None:
        if not isinstance(self.address, str):
            raise TypeError(f"Origin '{self.id}': address must be a string")
        if not self.address.strip():
            raise ValueError(f"Origin '{self.id}': address cannot be empty")
        if "://" in self.address or "/" in self.address:
            raise ValueError(
                f"Origin '{self.id}': address must be a bare domain name, got '{self.address}'"
            )
        if self.origin_path and (
            not self.origin_path.startswith("/") or self.origin_path.endswith("/")
        ):
            raise ValueError(
                f"Origin '{self.id}': origin_path must start with '/' and not end with '/'"
            )

    def _validate_transport(self) -> None:
        if self.protocol_policy not in ("https-only", "match-viewer"):
            raise ValueError(
                f"Origin '{self.id}': invalid protocol policy '{self.protocol_policy}'. "
                "Only 'https-only' and 'match-viewer' are supported."
            )
        if self.min_tls_version not in TLS_VERSIONS:
            raise ValueError(
                f"Origin '{self.id}': invalid minimum TLS version '{self.min_tls_version}'"
            )
        if not 0 < self.timeout <= MAX_ORIGIN_TIMEOUT:
            raise ValueError(
                f"Origin '{self.id}': timeout must be between 0 and {MAX_ORIGIN_TIMEOUT} seconds"
            )

    def _validate_static(self) -> None:
        if self.protocol_policy != "https-only":
            raise ValueError(f"Static origin '{self.id}' must use 'https-only'")
        match = _S3_ADDRESS_RE.match(self.address)
        if self.bucket is None:
            if match is None:
                raise ValueError(
                    f"Static origin '{self.id}': cannot derive bucket from address "
                    f"'{self.address}', set 'bucket' explicitly"
                )
            object.__setattr__(self, "bucket", match["bucket"])
        if self.region is None and match is not None and match["region"]:
            object.__setattr__(self, "region", match["region"])

    @property
    def signed(self) -> bool:
        return self.signing is not None and self.signing.enforced


@dataclass(frozen=True)
class OriginRuntime:
    """Clients shared by the origins built from one configuration."""

    boto3_session: "boto3.Session | None" = None
    http_session: "requests.Session | None" = None
    authenticator: "OriginAuthenticator | None" = None


class Origin(ABC):
    kind: ClassVar[OriginKind | None] = None

    def __init__(self, config: OriginConfig) -> None:
        self.config = config

    @classmethod
    @abstractmethod
    def build(cls, config: OriginConfig, runtime: OriginRuntime) -> "Origin":
        pass

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def address(self) -> str:
        return self.config.address

    @property
    def signing(self) -> SigningConfig | None:
        return self.config.signing

    @property
    def timeout(self) -> float:
        return self.config.timeout

    def scheme_for(self, viewer_scheme: "Scheme") -> "Scheme":
        if self.config.protocol_policy == "https-only":
            return "https"
        return viewer_scheme

    @abstractmethod
    def fetch(self, request: "EdgeRequest") -> "EdgeResponse":
        """Serve ``request``. Raises OriginUnavailableError on timeout or connection failure."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, address={self.address!r})"
