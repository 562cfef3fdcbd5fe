"""
Byte fetching from the instance metadata service.

The verifiers never perform I/O. They consume bytes supplied through the
ByteFetcher interface, which this module implements for the link-local
metadata endpoint.

HARD GUARANTEES:
- synchronous, one request per resource, no retries
- redirects are never followed
- response bodies are bounded by MAX_RESPONSE_BYTES
- every transport or protocol failure surfaces as FetchError
"""

from __future__ import annotations

import logging
import time
from typing import Annotated, Optional, Protocol

import httpx

from identity_verifier.app.config import VerifierConfig
from identity_verifier.app.errors import FetchError

logger = logging.getLogger(__name__)


class ByteFetcher(Protocol):
    """
    Interface for retrieving raw resource bytes.

    Implementations must raise FetchError on any failure and must not
    interpret the bytes they return.
    """

    def fetch(self, locator: str) -> bytes:
        ...


class MetadataServiceFetcher:
    """
    ByteFetcher backed by the instance metadata service.

    With USE_IMDSV2 enabled, a session token is obtained with
    PUT /latest/api/token and attached to every GET. The token is reused
    until shortly before its requested TTL elapses.
    """

    TOKEN_PATH = "/latest/api/token"
    TOKEN_HEADER = "X-aws-ec2-metadata-token"
    TOKEN_TTL_HEADER = "X-aws-ec2-metadata-token-ttl-seconds"

    # Refresh the token this many seconds before it would expire.
    _TOKEN_EXPIRY_MARGIN_SECONDS = 5

    def __init__(
        self,
        config: VerifierConfig,
        http_client: Annotated[
            Optional[httpx.Client],
            "Persistent HTTP client (created when omitted)",
        ] = None,
    ) -> None:
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            timeout=httpx.Timeout(config.FETCH_TIMEOUT_SECONDS),
            follow_redirects=False,
        )
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "MetadataServiceFetcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fetch(self, locator: str) -> bytes:
        """
        Fetch the bytes of a metadata resource.

        `locator` is either an absolute URL or a path relative to
        METADATA_BASE_URL.

        Raises:
            FetchError
        """
        url = self._resolve(locator)
        headers = {}

        if self._config.USE_IMDSV2:
            headers[self.TOKEN_HEADER] = self._session_token()

        logger.debug("Fetching %s", url)

        try:
            with self._client.stream(
                "GET",
                url,
                headers=headers,
                timeout=self._config.FETCH_TIMEOUT_SECONDS,
                follow_redirects=False,
            ) as response:
                if response.status_code != 200:
                    raise FetchError(
                        locator,
                        f"metadata service returned HTTP {response.status_code}",
                    )
                return self._read_bounded(locator, response)
        except httpx.HTTPError as exc:
            raise FetchError(locator, str(exc) or type(exc).__name__) from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve(self, locator: str) -> str:
        if locator.startswith(("http://", "https://")):
            return locator
        if not locator.startswith("/"):
            locator = "/" + locator
        return f"{self._config.METADATA_BASE_URL}{locator}"

    def _read_bounded(self, locator: str, response: httpx.Response) -> bytes:
        limit = self._config.MAX_RESPONSE_BYTES

        declared = response.headers.get("Content-Length")
        if declared is not None and declared.isdigit() and int(declared) > limit:
            raise FetchError(
                locator,
                f"response of {declared} bytes exceeds limit of {limit}",
            )

        body = bytearray()
        for chunk in response.iter_bytes():
            body.extend(chunk)
            if len(body) > limit:
                raise FetchError(
                    locator, f"response exceeds limit of {limit} bytes"
                )

        return bytes(body)

    def _session_token(self) -> str:
        now = time.monotonic()
        if self._token is not None and now < self._token_expires_at:
            return self._token

        ttl = self._config.IMDS_TOKEN_TTL_SECONDS
        url = self._resolve(self.TOKEN_PATH)

        try:
            response = self._client.put(
                url,
                headers={self.TOKEN_TTL_HEADER: str(ttl)},
                timeout=self._config.FETCH_TIMEOUT_SECONDS,
                follow_redirects=False,
            )
        except httpx.HTTPError as exc:
            raise FetchError(
                self.TOKEN_PATH, str(exc) or type(exc).__name__
            ) from exc

        if response.status_code != 200:
            raise FetchError(
                self.TOKEN_PATH,
                f"token request returned HTTP {response.status_code}",
            )

        token = response.text.strip()
        if not token:
            raise FetchError(self.TOKEN_PATH, "token response was empty")

        self._token = token
        self._token_expires_at = now + max(
            ttl - self._TOKEN_EXPIRY_MARGIN_SECONDS, 0
        )
        logger.debug("Obtained IMDSv2 session token (ttl=%ds)", ttl)

        return token
