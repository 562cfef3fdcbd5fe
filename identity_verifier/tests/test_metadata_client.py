"""
Metadata service fetcher tests.

The metadata endpoint is replaced by an httpx.MockTransport; no network
traffic leaves the process.
"""

from __future__ import annotations

import httpx
import pytest

from identity_verifier.app.config import VerifierConfig
from identity_verifier.app.errors import FetchError
from identity_verifier.app.services.metadata_client import MetadataServiceFetcher


DOCUMENT_PATH = "/latest/dynamic/instance-identity/document"


def _fetcher(handler, **config_overrides) -> MetadataServiceFetcher:
    config = VerifierConfig(**config_overrides)
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return MetadataServiceFetcher(config, http_client=client)


class _MetadataService:
    """Minimal IMDS double recording every request it receives."""

    def __init__(self, resources=None, token="session-token") -> None:
        self.resources = resources or {DOCUMENT_PATH: b'{"region": "x"}'}
        self.token = token
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.method == "PUT" and request.url.path == "/latest/api/token":
            return httpx.Response(200, text=self.token)

        if request.method != "GET":
            return httpx.Response(405)

        if self.token is not None and (
            request.headers.get("X-aws-ec2-metadata-token") != self.token
        ):
            return httpx.Response(401)

        body = self.resources.get(request.url.path)
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body)


# ---------------------------------------------------------------------------
# IMDSv2 session tokens
# ---------------------------------------------------------------------------

def test_fetch_obtains_token_and_returns_body():
    service = _MetadataService()
    fetcher = _fetcher(service)

    body = fetcher.fetch(DOCUMENT_PATH)

    assert body == b'{"region": "x"}'

    token_request, get_request = service.requests
    assert token_request.method == "PUT"
    assert token_request.headers["X-aws-ec2-metadata-token-ttl-seconds"] == "60"
    assert get_request.url == httpx.URL(
        "http://169.254.169.254/latest/dynamic/instance-identity/document"
    )


def test_token_is_reused_across_fetches():
    service = _MetadataService()
    fetcher = _fetcher(service)

    fetcher.fetch(DOCUMENT_PATH)
    fetcher.fetch(DOCUMENT_PATH)

    methods = [r.method for r in service.requests]
    assert methods == ["PUT", "GET", "GET"]


def test_token_failure_raises_fetch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403)

    fetcher = _fetcher(handler)

    with pytest.raises(FetchError) as exc_info:
        fetcher.fetch(DOCUMENT_PATH)

    assert exc_info.value.locator == "/latest/api/token"
    assert "HTTP 403" in exc_info.value.detail


def test_empty_token_raises_fetch_error():
    fetcher = _fetcher(_MetadataService(token=""))

    with pytest.raises(FetchError, match="empty"):
        fetcher.fetch(DOCUMENT_PATH)


def test_imdsv1_mode_sends_no_token():
    service = _MetadataService(token=None)
    fetcher = _fetcher(service, USE_IMDSV2=False)

    fetcher.fetch(DOCUMENT_PATH)

    (request,) = service.requests
    assert request.method == "GET"
    assert "X-aws-ec2-metadata-token" not in request.headers


# ---------------------------------------------------------------------------
# Failure modes
# ---------------------------------------------------------------------------

def test_non_200_raises_fetch_error():
    fetcher = _fetcher(_MetadataService())

    with pytest.raises(FetchError) as exc_info:
        fetcher.fetch("/latest/dynamic/instance-identity/pkcs7")

    assert exc_info.value.locator == "/latest/dynamic/instance-identity/pkcs7"
    assert "HTTP 404" in str(exc_info.value)


def test_redirect_is_not_followed():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "169.254.169.254":
            return httpx.Response(
                302, headers={"Location": "http://attacker.example/doc"}
            )
        return httpx.Response(200, content=b"forged")

    fetcher = _fetcher(handler, USE_IMDSV2=False)

    with pytest.raises(FetchError, match="HTTP 302"):
        fetcher.fetch(DOCUMENT_PATH)


def test_transport_error_raises_fetch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    fetcher = _fetcher(handler, USE_IMDSV2=False)

    with pytest.raises(FetchError, match="connection refused"):
        fetcher.fetch(DOCUMENT_PATH)


def test_oversized_response_raises_fetch_error():
    service = _MetadataService(
        resources={DOCUMENT_PATH: b"x" * 2048}, token=None
    )
    fetcher = _fetcher(service, USE_IMDSV2=False, MAX_RESPONSE_BYTES=1024)

    with pytest.raises(FetchError, match="exceeds limit"):
        fetcher.fetch(DOCUMENT_PATH)


def test_response_at_limit_is_accepted():
    service = _MetadataService(
        resources={DOCUMENT_PATH: b"x" * 1024}, token=None
    )
    fetcher = _fetcher(service, USE_IMDSV2=False, MAX_RESPONSE_BYTES=1024)

    assert fetcher.fetch(DOCUMENT_PATH) == b"x" * 1024


# ---------------------------------------------------------------------------
# Locators and lifecycle
# ---------------------------------------------------------------------------

def test_absolute_locator_is_used_as_is():
    service = _MetadataService(token=None)
    fetcher = _fetcher(service, USE_IMDSV2=False)

    fetcher.fetch("http://169.254.169.254" + DOCUMENT_PATH)

    assert service.requests[0].url.path == DOCUMENT_PATH


def test_custom_base_url_is_honoured():
    service = _MetadataService(token=None)
    fetcher = _fetcher(
        service,
        USE_IMDSV2=False,
        METADATA_BASE_URL="http://metadata.internal:8080/",
    )

    fetcher.fetch(DOCUMENT_PATH)

    url = service.requests[0].url
    assert url.host == "metadata.internal"
    assert url.port == 8080


def test_injected_client_is_not_closed():
    client = httpx.Client(transport=httpx.MockTransport(_MetadataService()))

    with MetadataServiceFetcher(VerifierConfig(), http_client=client):
        pass

    assert not client.is_closed
    client.close()


def test_owned_client_is_closed():
    fetcher = MetadataServiceFetcher(VerifierConfig())
    fetcher.close()

    assert fetcher._client.is_closed
