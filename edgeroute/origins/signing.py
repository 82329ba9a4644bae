"""Signed access between the router and private origins.

The router signs every request it forwards to a static origin with AWS
Signature Version 4. The origin side validates the signature before serving
anything, so the object store only answers traffic that came through the
router even when its read policy would otherwise be public.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, final
from urllib.parse import urlsplit

from botocore.auth import SIGV4_TIMESTAMP, SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials, ReadOnlyCredentials
from requests.structures import CaseInsensitiveDict

if TYPE_CHECKING:
    from edgeroute.http import EdgeRequest
    from edgeroute.origins.base import Origin

logger = logging.getLogger(__name__)

SIGNING_ALGORITHM = "AWS4-HMAC-SHA256"
SIGNING_PROTOCOLS = ("sigv4",)
DEFAULT_MAX_SKEW = timedelta(minutes=5)
CONTENT_SHA256_HEADER = "X-Amz-Content-SHA256"

_AUTHORIZATION_RE = re.compile(
    r"^AWS4-HMAC-SHA256\s+"
    r"Credential=(?P<credential>[^,\s]+),\s*"
    r"SignedHeaders=(?P<signed_headers>[^,\s]+),\s*"
    r"Signature=(?P<signature>[0-9a-f]{64})$"
)


class SigningBehavior(Enum):
    ALWAYS = "always"
    NEVER = "never"
    IF_REQUESTED = "if-requested"

    @classmethod
    def parse(cls, value: SigningBehavior | str) -> SigningBehavior:
        if isinstance(value, SigningBehavior):
            return value
        # CloudFront calls the if-requested behavior "no-override".
        normalized = {"no-override": "if-requested"}.get(value.lower(), value.lower())
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(
                f"Invalid signing behavior '{value}'. "
                f"Must be one of {', '.join(b.value for b in cls)}."
            ) from None

    @property
    def cloudfront_value(self) -> str:
        return "no-override" if self is SigningBehavior.IF_REQUESTED else self.value


@final
@dataclass(frozen=True)
class SigningConfig:
    signing_behavior: SigningBehavior = SigningBehavior.ALWAYS
    protocol_version: str = "sigv4"

    def __post_init__(self) -> None:
        object.__setattr__(self, "signing_behavior", SigningBehavior.parse(self.signing_behavior))
        if self.protocol_version not in SIGNING_PROTOCOLS:
            raise ValueError(
                f"Unsupported signing protocol '{self.protocol_version}'. "
                f"Supported: {', '.join(SIGNING_PROTOCOLS)}."
            )

    @property
    def enforced(self) -> bool:
        """Whether the origin must reject unsigned requests."""
        return self.signing_behavior is not SigningBehavior.NEVER


def _payload_hash(body: bytes) -> str:
    return hashlib.sha256(body or b"").hexdigest()


class OriginAuthenticator:
    """Signs forwarded requests and validates them on the origin side.

    Both sides share the same credentials, the way CloudFront and S3 share
    trust through an origin access control.
    """

    def __init__(
        self,
        credentials: Credentials | ReadOnlyCredentials,
        region: str,
        service: str = "s3",
        max_skew: timedelta = DEFAULT_MAX_SKEW,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if not region:
            raise ValueError("Signing region cannot be empty")
        self.credentials = credentials
        self.region = region
        self.service = service
        self.max_skew = max_skew
        self._clock = clock or (lambda: datetime.now(UTC))

    @classmethod
    def from_session(cls, session, region: str | None = None, **kwargs) -> OriginAuthenticator:
        """Build an authenticator from a boto3 session's resolved credentials."""
        credentials = session.get_credentials()
        if credentials is None:
            raise ValueError("No AWS credentials available for origin signing")
        return cls(credentials.get_frozen_credentials(), region or session.region_name, **kwargs)

    def _signer(self) -> SigV4Auth:
        return SigV4Auth(self.credentials, self.service, self.region)

    def sign_request(self, request: EdgeRequest, origin: Origin) -> EdgeRequest:
        """Return a copy of ``request`` carrying a fresh signature for ``origin``.

        Requests to origins without a signing config are returned unchanged.
        """
        signing = origin.signing
        if signing is None or signing.signing_behavior is SigningBehavior.NEVER:
            return request
        if (
            signing.signing_behavior is SigningBehavior.IF_REQUESTED
            and "Authorization" in request.headers
        ):
            logger.debug("Keeping viewer Authorization header for origin '%s'", origin.id)
            return request

        headers = CaseInsensitiveDict(request.headers)
        # A Date header would replace X-Amz-Date as the signed timestamp.
        for name in ("Authorization", "Date", "X-Amz-Date", "X-Amz-Security-Token"):
            headers.pop(name, None)
        headers["Host"] = origin.address
        headers[CONTENT_SHA256_HEADER] = _payload_hash(request.body)

        aws_request = AWSRequest(
            method=request.method,
            url=_origin_url(origin.address, request.path, request.query),
            headers=dict(headers),
            data=request.body,
        )
        self._signer().add_auth(aws_request)
        for name in ("Authorization", "X-Amz-Date", "X-Amz-Security-Token"):
            if name in aws_request.headers:
                headers[name] = aws_request.headers[name]
        return request.with_headers(headers)

    def validate(self, request: EdgeRequest) -> bool:
        """Return True only if ``request`` carries a valid, fresh signature."""
        match = _AUTHORIZATION_RE.match(request.headers.get("Authorization", "").strip())
        if match is None:
            logger.debug("Rejecting request to %s: missing or malformed signature", request.path)
            return False

        credential = match["credential"].split("/")
        if len(credential) != 5:  # noqa: PLR2004
            return False
        access_key, date_stamp, region, service, terminator = credential
        if not hmac.compare_digest(access_key, self.credentials.access_key):
            logger.debug("Rejecting request to %s: unknown access key", request.path)
            return False
        if (region, service, terminator) != (self.region, self.service, "aws4_request"):
            return False

        amz_date = request.headers.get("X-Amz-Date", "")
        try:
            signed_at = datetime.strptime(amz_date, SIGV4_TIMESTAMP).replace(tzinfo=UTC)
        except ValueError:
            return False
        if not amz_date.startswith(date_stamp):
            return False
        if abs(self._clock() - signed_at) > self.max_skew:
            logger.debug(
                "Rejecting request to %s: stale signature from %s", request.path, amz_date
            )
            return False

        payload_hash = request.headers.get(CONTENT_SHA256_HEADER)
        if payload_hash is not None and payload_hash != _payload_hash(request.body):
            return False

        signed_headers = match["signed_headers"].split(";")
        if "host" not in signed_headers or "x-amz-date" not in signed_headers:
            return False
        headers = {}
        for name in signed_headers:
            if name not in request.headers:
                return False
            headers[name] = request.headers[name]

        aws_request = AWSRequest(
            method=request.method,
            url=_origin_url(headers["host"], request.path, request.query),
            headers=headers,
            data=request.body,
        )
        aws_request.context["timestamp"] = amz_date
        signer = self._signer()
        canonical_request = signer.canonical_request(aws_request)
        string_to_sign = signer.string_to_sign(aws_request, canonical_request)
        expected = signer.signature(string_to_sign, aws_request)
        return hmac.compare_digest(expected, match["signature"])


def _origin_url(host: str, path: str, query: str) -> str:
    url = f"https://{host}{path}"
    if query:
        url = f"{url}?{query}"
    # Reject anything that would change the authority being signed.
    if urlsplit(url).netloc != host:
        raise ValueError(f"Invalid origin host '{host}'")
    return url
