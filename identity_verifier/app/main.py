"""
FastAPI entrypoint for the instance identity verifier.

Exposes the two verification pipelines over HTTP, both for
caller-supplied material and for the local instance's own metadata.

Startup loads the embedded trust anchors. A corrupt anchor raises
TrustAnchorCorrupt out of the startup hook, and the service refuses to
start; there is no degraded mode.

Run with:
    uvicorn identity_verifier.app.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from identity_verifier.app.config import VerifierConfig
from identity_verifier.app.coordinator.coordinator import (
    IdentityVerificationCoordinator,
)
from identity_verifier.app.coordinator.envelope_signature_verification import (
    EnvelopeSignatureVerifier,
)
from identity_verifier.app.coordinator.raw_signature_verification import (
    RawSignatureVerifier,
)
from identity_verifier.app.schemas.requests import (
    EnvelopeVerificationRequest,
    RawVerificationRequest,
    TrustAnchorInfo,
    TrustAnchorListing,
)
from identity_verifier.app.schemas.verification_report import (
    EnvelopeSignatureResult,
    IdentityVerificationReport,
    RawSignatureResult,
)
from identity_verifier.app.services.metadata_client import (
    ByteFetcher,
    MetadataServiceFetcher,
)
from identity_verifier.app.trust.anchors import TrustAnchorStore, load_trust_anchors


# ---------------------------------------------------------------------------
# Presentation helpers (presentation-only)
# ---------------------------------------------------------------------------

def pretty_json(data: Any) -> str:
    return json.dumps(
        data,
        ensure_ascii=False,
        allow_nan=False,
        indent=2,
        separators=(", ", ": "),
    )


class PrettyJSONResponse(Response):
    """Pretty-printed JSON response for human-readable console output."""

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        return pretty_json(content).encode("utf-8")


# ---------------------------------------------------------------------------
# Application setup
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Instance Identity Verifier",
    description=(
        "Verifies instance identity documents against embedded trust anchors"
    ),
    version="0.1.0",
)


def configure(
    config: VerifierConfig,
    trust_anchors: TrustAnchorStore,
    fetcher: ByteFetcher,
) -> None:
    """
    Wire the application state.

    Separated from the startup hook so tests can supply their own
    anchors and fetcher.
    """
    raw_verifier = RawSignatureVerifier(
        trust_anchors,
        candidates=config.RAW_SIGNATURE_ALGORITHMS,
    )
    envelope_verifier = EnvelopeSignatureVerifier(trust_anchors)

    app.state.config = config
    app.state.trust_anchors = trust_anchors
    app.state.fetcher = fetcher
    app.state.raw_verifier = raw_verifier
    app.state.envelope_verifier = envelope_verifier
    app.state.coordinator = IdentityVerificationCoordinator(
        config=config,
        fetcher=fetcher,
        trust_anchors=trust_anchors,
        raw_verifier=raw_verifier,
        envelope_verifier=envelope_verifier,
    )


# ---------------------------------------------------------------------------
# Startup / Shutdown
# ---------------------------------------------------------------------------

@app.on_event("startup")
def startup_event() -> None:
    """
    Application startup hook.

    Configuration and trust anchors are loaded once and treated as
    immutable for the lifetime of the process.
    """
    if getattr(app.state, "coordinator", None) is not None:
        return

    config = VerifierConfig.from_env()
    configure(
        config=config,
        trust_anchors=load_trust_anchors(),
        fetcher=MetadataServiceFetcher(config),
    )


@app.on_event("shutdown")
def shutdown_event() -> None:
    fetcher = getattr(app.state, "fetcher", None)
    if isinstance(fetcher, MetadataServiceFetcher):
        fetcher.close()


# ---------------------------------------------------------------------------
# API Routes
# ---------------------------------------------------------------------------

@app.post(
    "/verify/raw",
    response_model=RawSignatureResult,
    response_class=PrettyJSONResponse,
    summary="Verify a document against its detached signature",
)
def verify_raw(
    body: RawVerificationRequest,
    request: Request,
) -> RawSignatureResult:
    verifier: RawSignatureVerifier = request.app.state.raw_verifier
    return verifier.verify_raw(body.document.encode("utf-8"), body.signature)


@app.post(
    "/verify/envelope",
    response_model=EnvelopeSignatureResult,
    response_class=PrettyJSONResponse,
    summary="Verify a signed PKCS#7 envelope",
)
def verify_envelope(
    body: EnvelopeVerificationRequest,
    request: Request,
) -> EnvelopeSignatureResult:
    verifier: EnvelopeSignatureVerifier = request.app.state.envelope_verifier
    document = (
        body.document.encode("utf-8") if body.document is not None else None
    )
    return verifier.verify_envelope(body.envelope.encode("utf-8"), document)


@app.post(
    "/verify/instance",
    response_model=IdentityVerificationReport,
    response_class=PrettyJSONResponse,
    summary="Fetch and verify this instance's identity document",
)
def verify_instance(request: Request) -> IdentityVerificationReport:
    coordinator: IdentityVerificationCoordinator = request.app.state.coordinator
    return coordinator.run()


@app.get(
    "/trust-anchors",
    response_model=TrustAnchorListing,
    response_class=PrettyJSONResponse,
    summary="List the embedded trust anchors",
)
def trust_anchors(request: Request) -> TrustAnchorListing:
    store: TrustAnchorStore = request.app.state.trust_anchors
    return TrustAnchorListing(
        anchors=[
            TrustAnchorInfo(
                name=anchor.name,
                subject=anchor.subject,
                key_type=anchor.key_type,
                fingerprint_sha256=anchor.fingerprint_sha256,
            )
            for anchor in store.anchors()
        ]
    )


@app.get(
    "/health",
    summary="Service health check",
)
def health_check() -> JSONResponse:
    """Simple health check endpoint."""
    return JSONResponse(
        content={
            "status": "ok",
            "service": "identity-verifier",
        }
    )
