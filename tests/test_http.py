import pytest

from edgeroute.http import (
    EdgeRequest,
    EdgeResponse,
    HTTPMethod,
    format_cookie_header,
    normalize_method,
    parse_cookie_header,
)


def test_request_from_url():
    request = EdgeRequest.from_url(
        "http://www.example.com/api/users?page=2", headers={"Accept": "application/json"}
    )

    assert request.scheme == "http"
    assert request.host == "www.example.com"
    assert request.path == "/api/users"
    assert request.query == "page=2"
    assert request.headers["accept"] == "application/json"
    assert request.headers["Host"] == "www.example.com"
    assert request.url == "http://www.example.com/api/users?page=2"


def test_request_defaults():
    request = EdgeRequest("get", "/", headers={"host": "example.com"})

    assert request.method == "GET"
    assert request.host == "example.com"
    assert request.scheme == "https"
    assert request.url == "https://example.com/"


def test_url_needs_a_host():
    with pytest.raises(ValueError, match="has no host"):
        _ = EdgeRequest("GET", "/login").url


@pytest.mark.parametrize(
    ("kwargs", "error"),
    [
        ({"path": "relative"}, "must start with '/'"),
        ({"path": "/", "scheme": "ftp"}, "Unsupported scheme"),
    ],
)
def test_request_validation(kwargs, error):
    with pytest.raises(ValueError, match=error):
        EdgeRequest("GET", **kwargs)


def test_request_cookies():
    request = EdgeRequest("GET", "/", headers={"Cookie": "a=1; b=2; bad; a=3"})

    assert request.cookies == {"a": "3", "b": "2"}


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, {}), ("", {}), ("a=1", {"a": "1"}), (" a = 1 ;b=x=y", {"a": "1", "b": "x=y"})],
)
def test_parse_cookie_header(value, expected):
    assert parse_cookie_header(value) == expected


def test_format_cookie_header():
    assert format_cookie_header({"a": "1", "b": "2"}) == "a=1; b=2"


def test_normalize_method():
    assert normalize_method("patch") == "PATCH"
    assert normalize_method(HTTPMethod.OPTIONS) == "OPTIONS"
    with pytest.raises(ValueError, match="Invalid HTTP method"):
        normalize_method("TRACE")


def test_error_response_is_generic():
    response = EdgeResponse.error(403)

    assert response.status == 403
    assert b"403 Forbidden" in response.body
    assert response.headers["cache-control"] == "no-store"
    assert response.headers["Content-Length"] == str(len(response.body))


def test_redirect_response():
    response = EdgeResponse.redirect("https://example.com/")

    assert response.status == 301
    assert response.headers["Location"] == "https://example.com/"
