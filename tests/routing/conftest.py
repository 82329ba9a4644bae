import pytest

from edgeroute.http import EdgeRequest, EdgeResponse
from edgeroute.origins.base import Origin, OriginConfig, OriginKind, OriginRuntime
from edgeroute.origins.signing import SigningConfig
from edgeroute.routing.behaviors import BehaviorTable, CacheBehavior


class RecordingOrigin(Origin):
    """Origin that records forwarded requests and answers with a canned response."""

    def __init__(self, config: OriginConfig, response: EdgeResponse | None = None) -> None:
        super().__init__(config)
        self.kind = config.kind
        self.response = response or EdgeResponse(
            status=200, headers={"Content-Type": "text/plain"}, body=b"ok"
        )
        self.error: Exception | None = None
        self.requests: list[EdgeRequest] = []

    @classmethod
    def build(cls, config: OriginConfig, runtime: OriginRuntime) -> "RecordingOrigin":
        return cls(config)

    def fetch(self, request: EdgeRequest) -> EdgeResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def static_origin():
    return RecordingOrigin(
        OriginConfig(
            id="assets",
            kind=OriginKind.STATIC,
            address="assets-bucket.s3.us-east-1.amazonaws.com",
            signing=SigningConfig(),
        )
    )


@pytest.fixture
def api_origin():
    return RecordingOrigin(
        OriginConfig(id="api", kind=OriginKind.DYNAMIC, address="abc123.lambda-url.on.aws")
    )


@pytest.fixture
def origins(static_origin, api_origin):
    return {"assets": static_origin, "api": api_origin}


@pytest.fixture
def api_behavior():
    return CacheBehavior(
        pattern="/api/*",
        origin_id="api",
        allowed_methods=["GET", "HEAD", "OPTIONS", "PUT", "POST", "PATCH", "DELETE"],
        cached_methods=["GET", "HEAD"],
        query_forwarding=True,
        cookie_forwarding="all",
        min_ttl=0,
        default_ttl=0,
        max_ttl=60,
    )


@pytest.fixture
def default_behavior():
    return CacheBehavior(
        pattern="*",
        origin_id="assets",
        allowed_methods=["GET", "HEAD", "OPTIONS"],
        cached_methods=["GET", "HEAD"],
    )


@pytest.fixture
def table(api_behavior, default_behavior, origins):
    return BehaviorTable([api_behavior, default_behavior], origins)
