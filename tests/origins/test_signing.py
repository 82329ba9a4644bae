from dataclasses import replace
from datetime import UTC, datetime, timedelta
from unittest.mock import Mock

import pytest
from botocore.credentials import Credentials

from edgeroute.http import EdgeRequest
from edgeroute.origins.base import OriginConfig, OriginKind
from edgeroute.origins.signing import OriginAuthenticator, SigningBehavior, SigningConfig

ADDRESS = "assets-bucket.s3.us-east-1.amazonaws.com"


def _origin(signing_behavior="always"):
    config = OriginConfig(
        id="assets",
        kind=OriginKind.STATIC,
        address=ADDRESS,
        signing=SigningConfig(signing_behavior),
    )
    return Mock(id=config.id, address=config.address, signing=config.signing)


def _request(path="/logo.png", query="", headers=None, body=b"", method="GET"):
    return EdgeRequest(
        method, path, query=query, headers={"Host": ADDRESS, **(headers or {})}, body=body
    )


def test_signed_request_validates(authenticator):
    signed = authenticator.sign_request(_request(query="v=2"), _origin())

    assert signed.headers["Authorization"].startswith("AWS4-HMAC-SHA256 Credential=AKIDEXAMPLE/")
    assert "X-Amz-Date" in signed.headers
    assert authenticator.validate(signed)


def test_signing_does_not_mutate_original(authenticator):
    original = _request()

    authenticator.sign_request(original, _origin())

    assert "Authorization" not in original.headers


def test_unsigned_request_is_rejected(authenticator):
    assert not authenticator.validate(_request())


def test_malformed_authorization_is_rejected(authenticator):
    request = _request(headers={"Authorization": "Bearer token"})

    assert not authenticator.validate(request)


@pytest.mark.parametrize(
    "tamper",
    [
        lambda r: replace(r, path="/secret.png"),
        lambda r: replace(r, query="v=3"),
        lambda r: replace(r, method="DELETE"),
        lambda r: r.with_headers({**r.headers, "Host": "other-bucket.s3.amazonaws.com"}),
        lambda r: r.with_headers({**r.headers, "X-Amz-Date": "20200101T000000Z"}),
    ],
)
def test_tampered_request_is_rejected(authenticator, tamper):
    signed = authenticator.sign_request(_request(query="v=2"), _origin())

    assert not authenticator.validate(tamper(signed))


def test_body_is_covered_by_signature(authenticator):
    signed = authenticator.sign_request(_request(body=b"hello", method="PUT"), _origin())

    assert authenticator.validate(signed)
    assert not authenticator.validate(replace(signed, body=b"goodbye"))


def test_signature_from_other_key_is_rejected(authenticator):
    other = OriginAuthenticator(Credentials("AKIDOTHER", "other-secret"), "us-east-1")
    signed = other.sign_request(_request(), _origin())

    assert other.validate(signed)
    assert not authenticator.validate(signed)


def test_signature_with_wrong_secret_is_rejected(authenticator):
    forged = OriginAuthenticator(Credentials("AKIDEXAMPLE", "guessed"), "us-east-1")

    assert not authenticator.validate(forged.sign_request(_request(), _origin()))


def test_signature_for_other_region_is_rejected(authenticator, credentials):
    eu = OriginAuthenticator(credentials, "eu-west-1")

    assert not authenticator.validate(eu.sign_request(_request(), _origin()))


def test_stale_signature_is_rejected(authenticator, credentials):
    later = OriginAuthenticator(
        credentials, "us-east-1", clock=lambda: datetime.now(UTC) + timedelta(minutes=10)
    )
    signed = authenticator.sign_request(_request(), _origin())

    assert not later.validate(signed)


def test_viewer_authorization_is_replaced(authenticator):
    request = _request(headers={"Authorization": "Basic dXNlcjpwYXNz", "Date": "yesterday"})

    signed = authenticator.sign_request(request, _origin("always"))

    assert signed.headers["Authorization"].startswith("AWS4-HMAC-SHA256")
    assert "Date" not in signed.headers
    assert authenticator.validate(signed)


def test_if_requested_keeps_viewer_authorization(authenticator):
    request = _request(headers={"Authorization": "Basic dXNlcjpwYXNz"})

    signed = authenticator.sign_request(request, _origin("if-requested"))

    assert signed is request


def test_never_leaves_request_unsigned(authenticator):
    request = _request()

    assert authenticator.sign_request(request, _origin("never")) is request


def test_origin_without_signing_is_left_alone(authenticator):
    request = _request()

    assert authenticator.sign_request(request, Mock(signing=None)) is request


def test_from_session(boto3_session):
    authenticator = OriginAuthenticator.from_session(boto3_session)

    assert authenticator.region == "us-east-1"
    assert authenticator.credentials.access_key == "AKIDEXAMPLE"


def test_from_session_without_credentials():
    session = Mock()
    session.get_credentials.return_value = None

    with pytest.raises(ValueError, match="No AWS credentials"):
        OriginAuthenticator.from_session(session, "us-east-1")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("always", SigningBehavior.ALWAYS),
        ("NEVER", SigningBehavior.NEVER),
        ("if-requested", SigningBehavior.IF_REQUESTED),
        ("no-override", SigningBehavior.IF_REQUESTED),
    ],
)
def test_signing_behavior_parse(value, expected):
    assert SigningBehavior.parse(value) is expected


def test_signing_config_validation():
    with pytest.raises(ValueError, match="Invalid signing behavior"):
        SigningConfig("sometimes")
    with pytest.raises(ValueError, match="Unsupported signing protocol"):
        SigningConfig(protocol_version="sigv2")


def test_signing_config_cloudfront_value():
    assert SigningConfig("if-requested").signing_behavior.cloudfront_value == "no-override"
    assert SigningConfig().signing_behavior.cloudfront_value == "always"
    assert SigningConfig().enforced
    assert not SigningConfig("never").enforced
