"""
Raw Signature Verification (RSV).

Checks the detached base64 /signature over the identity document against
the RSA trust anchor.

The provider does not publish which algorithm it signs with, so the
signature is probed under a small closed set of candidate algorithms.
Every candidate is evaluated and reported; there is no short-circuit on
the first success or the first failure.

Candidates whose key type differs from the anchor's (DSA and ECDSA against
the RSA anchor) are kept in the default set and always report FAILED with
a key-type mismatch. They document which schemes were considered and are
deterministic; they can be pruned through configuration.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Dict, List, Optional, Sequence, Union

from identity_verifier.app.errors import SignatureDecodeError
from identity_verifier.app.schemas.verification_report import (
    DEFAULT_CANDIDATE_ALGORITHMS,
    AlgorithmOutcome,
    ErrorKind,
    EvaluationError,
    RawSignatureResult,
    SignatureAlgorithm,
    VerificationStatus,
)
from identity_verifier.app.trust.anchors import TrustAnchorStore
from identity_verifier.app.utils.signature_schemes import (
    KeyType,
    PaddingScheme,
    SignatureCheckFailed,
    SignatureScheme,
    check_signature,
)

logger = logging.getLogger(__name__)


_RSA = KeyType.RSA
_PKCS1 = PaddingScheme.PKCS1V15
_PSS = PaddingScheme.PSS

ALGORITHM_SCHEMES: Dict[SignatureAlgorithm, SignatureScheme] = {
    SignatureAlgorithm.SHA1_WITH_RSA: SignatureScheme(_RSA, "sha1", _PKCS1),
    SignatureAlgorithm.SHA256_WITH_RSA: SignatureScheme(_RSA, "sha256", _PKCS1),
    SignatureAlgorithm.SHA384_WITH_RSA: SignatureScheme(_RSA, "sha384", _PKCS1),
    SignatureAlgorithm.SHA512_WITH_RSA: SignatureScheme(_RSA, "sha512", _PKCS1),
    SignatureAlgorithm.SHA256_WITH_RSA_PSS: SignatureScheme(_RSA, "sha256", _PSS),
    SignatureAlgorithm.SHA384_WITH_RSA_PSS: SignatureScheme(_RSA, "sha384", _PSS),
    SignatureAlgorithm.SHA512_WITH_RSA_PSS: SignatureScheme(_RSA, "sha512", _PSS),
    SignatureAlgorithm.DSA_WITH_SHA1: SignatureScheme(KeyType.DSA, "sha1"),
    SignatureAlgorithm.DSA_WITH_SHA256: SignatureScheme(KeyType.DSA, "sha256"),
    SignatureAlgorithm.ECDSA_WITH_SHA1: SignatureScheme(KeyType.EC, "sha1"),
    SignatureAlgorithm.ECDSA_WITH_SHA256: SignatureScheme(KeyType.EC, "sha256"),
    SignatureAlgorithm.ECDSA_WITH_SHA384: SignatureScheme(KeyType.EC, "sha384"),
    SignatureAlgorithm.ECDSA_WITH_SHA512: SignatureScheme(KeyType.EC, "sha512"),
}


def decode_detached_signature(signature_b64: Union[str, bytes]) -> bytes:
    """
    Decode the base64 detached signature.

    The metadata service wraps the signature across lines, so ASCII
    whitespace is ignored. Anything else outside the base64 alphabet, bad
    padding, or an empty signature is rejected.

    Raises:
        SignatureDecodeError
    """
    if isinstance(signature_b64, str):
        try:
            signature_b64 = signature_b64.encode("ascii")
        except UnicodeEncodeError as exc:
            raise SignatureDecodeError(
                "Signature contains non-ASCII characters"
            ) from exc

    compact = b"".join(signature_b64.split())

    if not compact:
        raise SignatureDecodeError("Signature is empty")

    try:
        decoded = base64.b64decode(compact, validate=True)
    except binascii.Error as exc:
        raise SignatureDecodeError(
            f"Signature is not valid base64: {exc}"
        ) from exc

    if not decoded:
        raise SignatureDecodeError("Signature decodes to zero bytes")

    return decoded


class RawSignatureVerifier:
    """
    Raw Signature Verification (RSV).

    Stateless apart from the read-only trust store and the candidate list
    fixed at construction. Safe to call repeatedly with identical results.
    """

    def __init__(
        self,
        trust_anchors: TrustAnchorStore,
        candidates: Optional[Sequence[SignatureAlgorithm]] = None,
    ) -> None:
        self._trust_anchors = trust_anchors
        self._candidates = tuple(
            candidates if candidates is not None
            else DEFAULT_CANDIDATE_ALGORITHMS
        )

        if not self._candidates:
            raise ValueError("At least one candidate algorithm is required")

    @property
    def candidates(self) -> tuple:
        return self._candidates

    def verify_raw(
        self,
        document: bytes,
        signature_b64: Union[str, bytes],
    ) -> RawSignatureResult:
        """
        Probe the detached signature over `document` under every candidate.

        A malformed signature yields NOT_EVALUATED with a
        SIGNATURE_DECODE_ERROR and no cryptographic check is attempted.
        """
        try:
            signature = decode_detached_signature(signature_b64)
        except SignatureDecodeError as exc:
            logger.warning("Detached signature could not be decoded: %s", exc)
            return RawSignatureResult(
                status=VerificationStatus.NOT_EVALUATED,
                error=EvaluationError(
                    kind=ErrorKind.SIGNATURE_DECODE_ERROR,
                    message=str(exc),
                ),
            )

        public_key = self._trust_anchors.rsa_anchor.public_key
        outcomes: List[AlgorithmOutcome] = []

        for algorithm in self._candidates:
            outcomes.append(
                self._check_candidate(algorithm, public_key, signature, document)
            )

        verified = [o.algorithm.value for o in outcomes if o.verified]

        if verified:
            logger.info("Detached signature verified under %s", verified)
            return RawSignatureResult(
                status=VerificationStatus.VERIFIED,
                outcomes=outcomes,
            )

        logger.warning(
            "Detached signature did not verify under any of %d candidates",
            len(outcomes),
        )
        return RawSignatureResult(
            status=VerificationStatus.FAILED,
            outcomes=outcomes,
            reason="No candidate algorithm validated the signature",
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_candidate(
        algorithm: SignatureAlgorithm,
        public_key,
        signature: bytes,
        document: bytes,
    ) -> AlgorithmOutcome:
        scheme = ALGORITHM_SCHEMES[algorithm]

        try:
            check_signature(public_key, scheme, signature, document)
        except SignatureCheckFailed as exc:
            logger.debug("Candidate %s failed: %s", algorithm.value, exc.reason)
            return AlgorithmOutcome(
                algorithm=algorithm,
                verified=False,
                reason=exc.reason,
            )

        return AlgorithmOutcome(algorithm=algorithm, verified=True)
