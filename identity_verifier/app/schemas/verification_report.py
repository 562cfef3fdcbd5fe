"""
Verification report schemas.

Every verification attempt produces an itemized, structured outcome
rather than a single boolean:

- RawSignatureResult lists one AlgorithmOutcome per candidate algorithm;
- EnvelopeSignatureResult carries the envelope verdict and the recovered
  embedded content;
- IdentityVerificationReport aggregates both pipelines for one instance.

Two kinds of negative outcome are kept apart on purpose:

- status == NOT_EVALUATED plus an `error`: the check could not be
  performed (fetch failure, undecodable signature, malformed envelope);
- status == FAILED plus a `reason`: the check was performed and the
  signature did not validate.
"""

from __future__ import annotations

import base64
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    model_validator,
)


# ---------------------------------------------------------------------------
# Enumerations (FROZEN CONTRACTS)
# ---------------------------------------------------------------------------


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    FAILED = "failed"
    NOT_EVALUATED = "not_evaluated"


class ErrorKind(str, Enum):
    """Why a check could not be performed."""

    FETCH_ERROR = "fetch_error"
    SIGNATURE_DECODE_ERROR = "signature_decode_error"
    ENVELOPE_FORMAT_ERROR = "envelope_format_error"


class SignatureAlgorithm(str, Enum):
    """
    Signature algorithm identifiers probed on the raw path.

    Names follow the conventional X.509 signature algorithm spelling.
    """

    SHA1_WITH_RSA = "SHA1WithRSA"
    SHA256_WITH_RSA = "SHA256WithRSA"
    SHA384_WITH_RSA = "SHA384WithRSA"
    SHA512_WITH_RSA = "SHA512WithRSA"
    SHA256_WITH_RSA_PSS = "SHA256WithRSAPSS"
    SHA384_WITH_RSA_PSS = "SHA384WithRSAPSS"
    SHA512_WITH_RSA_PSS = "SHA512WithRSAPSS"
    DSA_WITH_SHA1 = "DSAWithSHA1"
    DSA_WITH_SHA256 = "DSAWithSHA256"
    ECDSA_WITH_SHA1 = "ECDSAWithSHA1"
    ECDSA_WITH_SHA256 = "ECDSAWithSHA256"
    ECDSA_WITH_SHA384 = "ECDSAWithSHA384"
    ECDSA_WITH_SHA512 = "ECDSAWithSHA512"


# Probed in this order when no override is configured.
DEFAULT_CANDIDATE_ALGORITHMS = (
    SignatureAlgorithm.SHA256_WITH_RSA,
    SignatureAlgorithm.DSA_WITH_SHA256,
    SignatureAlgorithm.ECDSA_WITH_SHA256,
)


# ---------------------------------------------------------------------------
# Shared building blocks
# ---------------------------------------------------------------------------


class EvaluationError(BaseModel):
    """A recoverable condition that prevented a check from running."""

    kind: ErrorKind = Field(
        ...,
        description="Error category",
    )

    message: str = Field(
        ...,
        description="Human-readable detail",
    )

    model_config = ConfigDict(frozen=True)


class AlgorithmOutcome(BaseModel):
    """Result of checking the detached signature under one algorithm."""

    algorithm: SignatureAlgorithm = Field(
        ...,
        description="Candidate signature algorithm",
    )

    verified: bool = Field(
        ...,
        description="Whether the signature validated under this algorithm",
    )

    reason: Optional[str] = Field(
        None,
        description="Why validation failed. Absent when verified.",
    )

    @model_validator(mode="after")
    def reason_iff_failed(self):
        if self.verified and self.reason is not None:
            raise ValueError("A verified outcome must not carry a reason")
        if not self.verified and not self.reason:
            raise ValueError("A failed outcome must carry a reason")
        return self

    model_config = ConfigDict(frozen=True)


# Bytes travel in JSON with the same alphabet the metadata service uses.
def _standard_base64(value: Optional[bytes]) -> Optional[str]:
    if value is None:
        return None
    return base64.b64encode(value).decode("ascii")


def _check_status_invariants(status, error, reason) -> None:
    if status == VerificationStatus.NOT_EVALUATED:
        if error is None:
            raise ValueError("NOT_EVALUATED results must carry an error")
    elif error is not None:
        raise ValueError("Only NOT_EVALUATED results may carry an error")

    if status == VerificationStatus.FAILED and not reason:
        raise ValueError("FAILED results must carry a reason")
    if status != VerificationStatus.FAILED and reason is not None:
        raise ValueError("Only FAILED results may carry a reason")


# ---------------------------------------------------------------------------
# Raw path
# ---------------------------------------------------------------------------


class RawSignatureResult(BaseModel):
    """
    Outcome of the detached-signature (raw) path.

    Every configured candidate is reported; evaluation never stops at the
    first success or failure.
    """

    status: VerificationStatus = Field(
        ...,
        description="VERIFIED if any candidate validated",
    )

    outcomes: List[AlgorithmOutcome] = Field(
        default_factory=list,
        description="Per-algorithm outcomes, in probing order",
    )

    reason: Optional[str] = Field(
        None,
        description="Summary reason when no candidate validated",
    )

    error: Optional[EvaluationError] = Field(
        None,
        description="Why the check could not be performed",
    )

    @model_validator(mode="after")
    def enforce_raw_invariants(self):
        _check_status_invariants(self.status, self.error, self.reason)

        if self.status == VerificationStatus.NOT_EVALUATED:
            if self.outcomes:
                raise ValueError(
                    "No algorithm outcomes may be present when the raw "
                    "check was not evaluated"
                )
            return self

        if not self.outcomes:
            raise ValueError("An evaluated raw check must list its outcomes")

        any_verified = any(o.verified for o in self.outcomes)
        if any_verified != (self.status == VerificationStatus.VERIFIED):
            raise ValueError(
                "Raw status must be VERIFIED exactly when some algorithm "
                "outcome is verified"
            )

        return self

    @property
    def verified_algorithms(self) -> List[SignatureAlgorithm]:
        return [o.algorithm for o in self.outcomes if o.verified]

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Envelope path
# ---------------------------------------------------------------------------


class EnvelopeSignatureResult(BaseModel):
    """
    Outcome of the signed-envelope (PKCS#7) path.

    `content` is the payload recovered from the envelope. It is only
    authenticated when status is VERIFIED.
    """

    status: VerificationStatus = Field(
        ...,
        description="Envelope verdict",
    )

    reason: Optional[str] = Field(
        None,
        description="Why the envelope did not validate",
    )

    error: Optional[EvaluationError] = Field(
        None,
        description="Why the check could not be performed",
    )

    content: Optional[bytes] = Field(
        None,
        description=(
            "Embedded (or supplied detached) content. Standard base64 "
            "in JSON."
        ),
    )

    signer_count: int = Field(
        0,
        ge=0,
        description="Number of signers found in the envelope",
    )

    discarded_certificate_count: int = Field(
        0,
        ge=0,
        description=(
            "Certificates carried by the envelope that were discarded "
            "in favour of the trust anchor"
        ),
    )

    content_matches_document: Optional[bool] = Field(
        None,
        description=(
            "Whether the embedded content equals an independently "
            "fetched document. None when no comparison was made."
        ),
    )

    @model_validator(mode="after")
    def enforce_envelope_invariants(self):
        _check_status_invariants(self.status, self.error, self.reason)

        if self.status == VerificationStatus.NOT_EVALUATED and (
            self.content is not None or self.signer_count
        ):
            raise ValueError(
                "An envelope that was not evaluated cannot expose content "
                "or signers"
            )

        if self.status == VerificationStatus.VERIFIED and self.content is None:
            raise ValueError("A verified envelope must expose its content")

        return self

    @field_serializer("content", when_used="json")
    def serialize_content(self, v: Optional[bytes]) -> Optional[str]:
        return _standard_base64(v)

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Top-level report
# ---------------------------------------------------------------------------


class IdentityVerificationReport(BaseModel):
    """
    Aggregate report for one run against the metadata service.

    The overall status is FAILED when any executed pipeline failed,
    VERIFIED when every executed pipeline verified, and NOT_EVALUATED
    otherwise (some pipeline could not be performed).
    """

    report_id: str = Field(
        ...,
        description="Unique identifier for this verification run",
    )

    generated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the report was generated (UTC)",
    )

    status: VerificationStatus = Field(
        ...,
        description="Overall verdict",
    )

    document: Optional[bytes] = Field(
        None,
        description=(
            "The identity document as fetched, if available. Standard "
            "base64 in JSON."
        ),
    )

    raw_signature: Optional[RawSignatureResult] = Field(
        None,
        description="Raw path result. None when the path is disabled.",
    )

    envelope_signature: Optional[EnvelopeSignatureResult] = Field(
        None,
        description="Envelope path result. None when the path is disabled.",
    )

    @field_serializer("document", when_used="json")
    def serialize_document(self, v: Optional[bytes]) -> Optional[str]:
        return _standard_base64(v)

    @model_validator(mode="after")
    def enforce_report_flow(self):
        executed = [
            r for r in (self.raw_signature, self.envelope_signature)
            if r is not None
        ]

        if not executed:
            raise ValueError("At least one pipeline must be executed")

        if self.status != overall_status([r.status for r in executed]):
            raise ValueError(
                "Report status is inconsistent with pipeline results"
            )

        return self

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )


def overall_status(statuses: List[VerificationStatus]) -> VerificationStatus:
    if any(s == VerificationStatus.FAILED for s in statuses):
        return VerificationStatus.FAILED
    if all(s == VerificationStatus.VERIFIED for s in statuses):
        return VerificationStatus.VERIFIED
    return VerificationStatus.NOT_EVALUATED
