"""
Central verification coordinator.

The coordinator owns I/O ordering only. It fetches material through the
ByteFetcher, hands it to the verifiers, and assembles the report.

It MUST NOT:
- interpret the identity document
- make trust decisions of its own
- let a failure in one pipeline prevent the other from running

Execution order:
    1. Fetch the identity document (shared by both pipelines)
    2. Raw path: fetch /signature, verify against the RSA anchor
    3. Envelope path: fetch /pkcs7, verify against the envelope anchor
    4. Aggregate into an IdentityVerificationReport
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import uuid4

from identity_verifier.app.config import VerifierConfig
from identity_verifier.app.coordinator.envelope_signature_verification import (
    EnvelopeSignatureVerifier,
)
from identity_verifier.app.coordinator.raw_signature_verification import (
    RawSignatureVerifier,
)
from identity_verifier.app.errors import FetchError
from identity_verifier.app.schemas.verification_report import (
    EnvelopeSignatureResult,
    ErrorKind,
    EvaluationError,
    IdentityVerificationReport,
    RawSignatureResult,
    VerificationStatus,
    overall_status,
)
from identity_verifier.app.services.metadata_client import ByteFetcher
from identity_verifier.app.trust.anchors import TrustAnchorStore

logger = logging.getLogger(__name__)


def _fetch_error(exc: FetchError) -> EvaluationError:
    return EvaluationError(kind=ErrorKind.FETCH_ERROR, message=str(exc))


class IdentityVerificationCoordinator:
    """
    Drives both verification pipelines for the local instance.
    """

    def __init__(
        self,
        config: VerifierConfig,
        fetcher: ByteFetcher,
        trust_anchors: TrustAnchorStore,
        raw_verifier: Optional[RawSignatureVerifier] = None,
        envelope_verifier: Optional[EnvelopeSignatureVerifier] = None,
    ) -> None:
        self._config = config
        self._fetcher = fetcher

        self._raw_verifier = raw_verifier or RawSignatureVerifier(
            trust_anchors,
            candidates=config.RAW_SIGNATURE_ALGORITHMS,
        )
        self._envelope_verifier = envelope_verifier or EnvelopeSignatureVerifier(
            trust_anchors
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, report_id: Optional[str] = None) -> IdentityVerificationReport:
        report_id = report_id or str(uuid4())
        logger.info("Verification run %s started", report_id)

        document: Optional[bytes] = None
        document_error: Optional[FetchError] = None

        try:
            document = self._fetcher.fetch(self._config.DOCUMENT_PATH)
        except FetchError as exc:
            logger.warning("Identity document unavailable: %s", exc)
            document_error = exc

        raw_result = None
        if self._config.ENABLE_RAW_VERIFICATION:
            raw_result = self._run_raw(document, document_error)

        envelope_result = None
        if self._config.ENABLE_ENVELOPE_VERIFICATION:
            envelope_result = self._run_envelope(document)

        executed = [r for r in (raw_result, envelope_result) if r is not None]
        status = overall_status([r.status for r in executed])

        logger.info("Verification run %s finished: %s", report_id, status.value)

        return IdentityVerificationReport(
            report_id=report_id,
            status=status,
            document=document,
            raw_signature=raw_result,
            envelope_signature=envelope_result,
        )

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    def _run_raw(
        self,
        document: Optional[bytes],
        document_error: Optional[FetchError],
    ) -> RawSignatureResult:
        if document is None:
            return RawSignatureResult(
                status=VerificationStatus.NOT_EVALUATED,
                error=_fetch_error(document_error),
            )

        try:
            signature = self._fetcher.fetch(self._config.SIGNATURE_PATH)
        except FetchError as exc:
            logger.warning("Detached signature unavailable: %s", exc)
            return RawSignatureResult(
                status=VerificationStatus.NOT_EVALUATED,
                error=_fetch_error(exc),
            )

        return self._raw_verifier.verify_raw(document, signature)

    def _run_envelope(self, document: Optional[bytes]) -> EnvelopeSignatureResult:
        try:
            envelope = self._fetcher.fetch(self._config.ENVELOPE_PATH)
        except FetchError as exc:
            logger.warning("Signed envelope unavailable: %s", exc)
            return EnvelopeSignatureResult(
                status=VerificationStatus.NOT_EVALUATED,
                error=_fetch_error(exc),
            )

        result = self._envelope_verifier.verify_envelope(envelope, document)

        if result.content_matches_document is False:
            logger.warning(
                "Envelope content differs from the fetched identity document"
            )

        return result
