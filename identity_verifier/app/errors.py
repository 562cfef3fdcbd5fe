"""
Error taxonomy for instance identity verification.

Two families exist:

- TrustAnchorCorrupt is fatal. It can only be raised while the embedded
  trust anchors are parsed, and signals a defective build artifact.
  Startup must abort; there is no alternate anchor source.

- IdentityVerificationError subclasses are recoverable. They mean a check
  could not be performed (material unavailable or unreadable). They are
  raised by low-level helpers and converted into structured results by
  the verifiers and the coordinator.

A verification that ran and did not validate is NOT an error. It is the
"failed" outcome of a result object.
"""

from __future__ import annotations


class TrustAnchorCorrupt(RuntimeError):
    """Raised when an embedded trust anchor certificate cannot be loaded."""

    def __init__(self, anchor_name: str, detail: str) -> None:
        super().__init__(f"Trust anchor '{anchor_name}' is corrupt: {detail}")
        self.anchor_name = anchor_name
        self.detail = detail


class IdentityVerificationError(Exception):
    """Base class for recoverable verification errors."""


class FetchError(IdentityVerificationError):
    """Raised when the byte fetcher cannot retrieve a resource."""

    def __init__(self, locator: str, detail: str) -> None:
        super().__init__(f"Failed to fetch {locator}: {detail}")
        self.locator = locator
        self.detail = detail


class SignatureDecodeError(IdentityVerificationError):
    """Raised when a detached signature is not valid base64."""


class EnvelopeFormatError(IdentityVerificationError):
    """Raised when a signed envelope cannot be unarmored or parsed."""
