"""
Request bodies accepted by the HTTP interface.

Text fields carry exactly what the metadata service serves: the identity
document as JSON text, the signature and envelope as base64 text.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RawVerificationRequest(BaseModel):
    document: str = Field(
        ...,
        min_length=1,
        description="Identity document, as served by /document",
    )

    signature: str = Field(
        ...,
        description="Base64 detached signature, as served by /signature",
    )

    model_config = ConfigDict(frozen=True, extra="forbid")


class EnvelopeVerificationRequest(BaseModel):
    envelope: str = Field(
        ...,
        description="Base64 signed envelope, as served by /pkcs7",
    )

    document: Optional[str] = Field(
        None,
        description=(
            "Independently fetched identity document, compared with the "
            "embedded content"
        ),
    )

    model_config = ConfigDict(frozen=True, extra="forbid")


class TrustAnchorInfo(BaseModel):
    name: str
    subject: str
    key_type: str
    fingerprint_sha256: str

    model_config = ConfigDict(frozen=True)


class TrustAnchorListing(BaseModel):
    anchors: List[TrustAnchorInfo]

    model_config = ConfigDict(frozen=True)
