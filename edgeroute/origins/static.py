import logging
from urllib.parse import unquote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    HTTPClientError,
    ReadTimeoutError,
)

from edgeroute.exceptions import OriginUnavailableError, SignatureInvalidError
from edgeroute.http import READ_ONLY_METHODS, EdgeRequest, EdgeResponse
from edgeroute.origins.base import Origin, OriginConfig, OriginKind, OriginRuntime
from edgeroute.origins.decorators import register_origin
from edgeroute.origins.signing import OriginAuthenticator

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})
_FORBIDDEN_CODES = frozenset({"403", "AccessDenied", "Forbidden"})
_NOT_MODIFIED_CODES = frozenset({"304", "NotModified"})
# S3 response fields relayed to the viewer, keyed by HTTP header name.
_OBJECT_HEADERS = {
    "Content-Type": "ContentType",
    "Content-Length": "ContentLength",
    "Content-Encoding": "ContentEncoding",
    "Cache-Control": "CacheControl",
    "ETag": "ETag",
}


@register_origin(OriginKind.STATIC)
class StaticOrigin(Origin):
    """Read-only object store origin.

    Only GET and HEAD are served. When the origin is signed, every request must
    carry a valid signature from the router; anything else raises
    `SignatureInvalidError` before the object store is touched.
    """

    def __init__(
        self,
        config: OriginConfig,
        s3_client,
        authenticator: OriginAuthenticator | None = None,
    ) -> None:
        super().__init__(config)
        if config.signed and authenticator is None:
            raise ValueError(f"Static origin '{config.id}' is signed but has no authenticator")
        if not config.signed:
            logger.warning(
                "Static origin '%s' accepts unsigned requests and is reachable without the router",
                config.id,
            )
        self._s3 = s3_client
        self._authenticator = authenticator

    @classmethod
    def build(cls, config: OriginConfig, runtime: OriginRuntime) -> "StaticOrigin":
        session = runtime.boto3_session or boto3.Session(region_name=config.region)
        client = session.client(
            "s3",
            region_name=config.region or session.region_name,
            config=BotoConfig(
                connect_timeout=config.timeout,
                read_timeout=config.timeout,
                # Retries belong to callers of the edge, not to the edge itself.
                retries={"total_max_attempts": 1},
            ),
        )
        return cls(config, client, runtime.authenticator)

    @property
    def bucket(self) -> str:
        return self.config.bucket

    def object_key(self, path: str) -> str:
        key = unquote(path).lstrip("/")
        if self.config.origin_path:
            key = f"{self.config.origin_path.lstrip('/')}/{key}"
        return key

    def validate(self, request: EdgeRequest) -> bool:
        if not self.config.signed:
            return True
        return self._authenticator.validate(request)

    def fetch(self, request: EdgeRequest) -> EdgeResponse:
        if request.method not in READ_ONLY_METHODS:
            response = EdgeResponse.error(405)
            return response.with_headers({**response.headers, "Allow": "GET, HEAD"})

        if not self.validate(request):
            raise SignatureInvalidError(self.id, request.path)

        key = self.object_key(request.path)
        if not key or key.endswith("/"):
            return EdgeResponse.error(404)

        params = {"Bucket": self.bucket, "Key": key}
        for header, param in (("If-None-Match", "IfNoneMatch"), ("If-Match", "IfMatch")):
            if header in request.headers:
                params[param] = request.headers[header]

        try:
            if request.method == "HEAD":
                response = self._s3.head_object(**params)
                body = b""
            else:
                response = self._s3.get_object(**params)
                body = response["Body"].read()
        except ClientError as e:
            return self._error_response(e, key)
        except (ConnectTimeoutError, ReadTimeoutError) as e:
            raise OriginUnavailableError(self.id, str(e), timeout=True) from e
        except (EndpointConnectionError, HTTPClientError) as e:
            raise OriginUnavailableError(self.id, str(e)) from e

        headers = {}
        for header, field_name in _OBJECT_HEADERS.items():
            if response.get(field_name) is not None:
                headers[header] = str(response[field_name])
        if response.get("LastModified") is not None:
            headers["Last-Modified"] = response["LastModified"].strftime(
                "%a, %d %b %Y %H:%M:%S GMT"
            )
        return EdgeResponse(status=200, headers=headers, body=body)

    def _error_response(self, error: ClientError, key: str) -> EdgeResponse:
        code = error.response.get("Error", {}).get("Code", "")
        if code in _NOT_FOUND_CODES:
            logger.debug("Static origin '%s' has no object '%s'", self.id, key)
            return EdgeResponse.error(404)
        if code in _FORBIDDEN_CODES:
            return EdgeResponse.error(403)
        if code in _NOT_MODIFIED_CODES:
            return EdgeResponse(status=304)
        raise OriginUnavailableError(self.id, f"object store error {code or 'unknown'}") from error
