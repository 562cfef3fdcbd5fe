"""
Envelope Signature Verification (ESV).

Checks the /pkcs7 signed envelope, a CMS SignedData structure that
embeds the identity document together with its signature. The metadata
service serves it as bare base64 without PEM armor.

Pipeline:
    1. Armor and unarmor      -> exactly one PKCS7 block, no trailing data
    2. Parse                  -> ContentInfo(signed_data), strict DER
    3. Trust override         -> discard certificates carried by the
                                 envelope, bind the envelope trust anchor
    4. Signer validation      -> message digest + signature per signer

Step 3 is the security control of this path. An attacker can always
embed a self-issued certificate that "validates" a forged document; the
result of this module therefore answers "was this signed by our trust
anchor", never "was this signed by some certificate it carries".

Exception handling policy:
    Armor and DER parsing problems raise EnvelopeFormatError and become
    NOT_EVALUATED. Anything found once the structure is parsed (missing
    content, unknown algorithms, foreign signer, digest or signature
    mismatch) becomes FAILED. Logic errors propagate.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

from asn1crypto import cms, core
from asn1crypto import pem as asn1_pem
from asn1crypto import x509 as asn1_x509

from identity_verifier.app.errors import EnvelopeFormatError
from identity_verifier.app.schemas.verification_report import (
    EnvelopeSignatureResult,
    ErrorKind,
    EvaluationError,
    VerificationStatus,
)
from identity_verifier.app.trust.anchors import TrustAnchor, TrustAnchorStore
from identity_verifier.app.utils.signature_schemes import (
    KeyType,
    PaddingScheme,
    SignatureCheckFailed,
    SignatureScheme,
    check_signature,
    compute_digest,
    is_supported_hash,
)

logger = logging.getLogger(__name__)


PKCS7_HEADER = b"-----BEGIN PKCS7-----"
PKCS7_FOOTER = b"-----END PKCS7-----"

# Tag byte of a DER SET OF; signed attributes are signed under this tag,
# not under the [0] IMPLICIT tag they carry inside SignerInfo.
_DER_SET_TAG = b"\x31"


# ----------------------------------------------------------------------
# Parsed envelope
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class SignedEnvelope:
    """
    A parsed SignedData envelope.

    `embedded_certificates` are whatever the envelope carried and are
    NEVER used for verification. `verification_certificates` is empty
    until substitute_trust_anchor() binds the externally supplied anchor.
    """

    content_type: str
    content: Optional[bytes]
    signer_infos: Tuple[cms.SignerInfo, ...]
    embedded_certificates: Tuple[asn1_x509.Certificate, ...]
    verification_certificates: Tuple[TrustAnchor, ...] = ()

    def substitute_trust_anchor(self, anchor: TrustAnchor) -> "SignedEnvelope":
        """
        Discard any certificates carried by the envelope; verify only
        against the externally supplied trust anchor.
        """
        return replace(
            self,
            embedded_certificates=(),
            verification_certificates=(anchor,),
        )


def armor_envelope(envelope: bytes) -> bytes:
    """Wrap a bare base64 envelope in PKCS7 PEM armor."""
    body = envelope.strip()
    if body.startswith(PKCS7_HEADER):
        return body
    return PKCS7_HEADER + b"\n" + body + b"\n" + PKCS7_FOOTER


def decode_envelope_armor(envelope: bytes) -> bytes:
    """
    Armor the envelope and decode it to DER.

    Raises:
        EnvelopeFormatError: if the armored text is not exactly one PKCS7
            block, has data after the end marker, or does not decode.
    """
    armored = armor_envelope(envelope)

    footer_at = armored.find(PKCS7_FOOTER)
    if footer_at < 0:
        raise EnvelopeFormatError("PKCS7 armor has no end marker")

    if armored[footer_at + len(PKCS7_FOOTER):].strip():
        raise EnvelopeFormatError("Unexpected data after the PKCS7 block")

    body = b"".join(armored[len(PKCS7_HEADER):footer_at].split())
    try:
        base64.b64decode(body, validate=True)
    except binascii.Error as exc:
        raise EnvelopeFormatError(
            f"PKCS7 body is not valid base64: {exc}"
        ) from exc

    try:
        object_name, _headers, der = asn1_pem.unarmor(armored)
    except (ValueError, TypeError) as exc:
        raise EnvelopeFormatError(
            f"PKCS7 armor does not decode: {exc}"
        ) from exc

    if object_name != "PKCS7":
        raise EnvelopeFormatError(
            f"Expected a PKCS7 block, found '{object_name}'"
        )

    if not der:
        raise EnvelopeFormatError("PKCS7 block is empty")

    return der


def parse_envelope(der: bytes) -> SignedEnvelope:
    """
    Parse DER bytes into a SignedEnvelope.

    Raises:
        EnvelopeFormatError: if the bytes are not a single well-formed
            ContentInfo holding SignedData.
    """
    try:
        content_info = cms.ContentInfo.load(der, strict=True)
        content_type = content_info["content_type"].native
    except (ValueError, TypeError) as exc:
        raise EnvelopeFormatError(
            f"Envelope is not a valid ContentInfo structure: {exc}"
        ) from exc

    if content_type != "signed_data":
        raise EnvelopeFormatError(
            f"Envelope content type is '{content_type}', expected signed_data"
        )

    try:
        signed_data = content_info["content"]
        # Force a full parse so structural damage surfaces here rather than
        # during signer validation.
        _ = signed_data.native

        encap = signed_data["encap_content_info"]
        encap_content = encap["content"]
        content = (
            None if isinstance(encap_content, core.Void)
            else encap_content.native
        )

        certificate_set = signed_data["certificates"]
        embedded_certificates = (
            ()
            if isinstance(certificate_set, core.Void)
            else tuple(
                choice.chosen
                for choice in certificate_set
                if choice.name == "certificate"
            )
        )

        return SignedEnvelope(
            content_type=encap["content_type"].native,
            content=content if isinstance(content, bytes) else None,
            signer_infos=tuple(signed_data["signer_infos"]),
            embedded_certificates=embedded_certificates,
        )
    except (ValueError, TypeError, KeyError) as exc:
        raise EnvelopeFormatError(
            f"SignedData structure is malformed: {exc}"
        ) from exc


# ----------------------------------------------------------------------
# Signer validation
# ----------------------------------------------------------------------


def _signer_matches(sid: cms.SignerIdentifier, cert: asn1_x509.Certificate) -> bool:
    if sid.name == "issuer_and_serial_number":
        issuer_and_serial = sid.chosen
        return (
            issuer_and_serial["issuer"] == cert.issuer
            and issuer_and_serial["serial_number"].native == cert.serial_number
        )

    if sid.name == "subject_key_identifier":
        return (
            cert.key_identifier is not None
            and sid.chosen.native == cert.key_identifier
        )

    return False


def _scheme_for(signer_info: cms.SignerInfo) -> SignatureScheme:
    digest_name = signer_info["digest_algorithm"]["algorithm"].native
    if not is_supported_hash(digest_name):
        raise SignatureCheckFailed(
            f"unsupported digest algorithm '{digest_name}'"
        )

    signature_algorithm = signer_info["signature_algorithm"]
    try:
        algo = signature_algorithm.signature_algo
    except ValueError:
        raise SignatureCheckFailed(
            "unsupported signature algorithm "
            f"'{signature_algorithm['algorithm'].native}'"
        ) from None

    if algo == "rsassa_pkcs1v15":
        return SignatureScheme(KeyType.RSA, digest_name, PaddingScheme.PKCS1V15)

    if algo == "rsassa_pss":
        params = signature_algorithm["parameters"]
        return SignatureScheme(
            KeyType.RSA,
            params["hash_algorithm"]["algorithm"].native,
            PaddingScheme.PSS,
            pss_salt_length=params["salt_length"].native,
            mgf_hash_name=(
                params["mask_gen_algorithm"]["parameters"]["algorithm"].native
            ),
        )

    if algo == "dsa":
        return SignatureScheme(KeyType.DSA, digest_name)

    if algo == "ecdsa":
        return SignatureScheme(KeyType.EC, digest_name)

    raise SignatureCheckFailed(f"unsupported signature algorithm '{algo}'")


def _signed_attribute_values(signed_attrs: cms.CMSAttributes) -> dict:
    values = {}
    for attr in signed_attrs:
        attr_type = attr["type"].native
        if attr_type in values:
            raise SignatureCheckFailed(
                f"signed attribute '{attr_type}' appears more than once"
            )
        values[attr_type] = attr["values"]
    return values


def _single_value(values: dict, name: str):
    if name not in values:
        raise SignatureCheckFailed(f"signed attribute '{name}' is missing")
    if len(values[name]) != 1:
        raise SignatureCheckFailed(
            f"signed attribute '{name}' must hold exactly one value"
        )
    return values[name][0].native


def _signed_bytes(
    signer_info: cms.SignerInfo,
    envelope: SignedEnvelope,
    content: bytes,
    digest_name: str,
) -> bytes:
    """
    Return the bytes the signature was computed over.

    Without signed attributes this is the content itself. With them, the
    content is bound through the message-digest attribute and the
    signature covers the attribute SET.
    """
    signed_attrs = signer_info["signed_attrs"]

    if isinstance(signed_attrs, core.Void):
        return content

    values = _signed_attribute_values(signed_attrs)

    if _single_value(values, "content_type") != envelope.content_type:
        raise SignatureCheckFailed(
            "content-type attribute does not match the encapsulated content"
        )

    claimed_digest = _single_value(values, "message_digest")
    computed_digest = compute_digest(digest_name, content)

    if not hmac.compare_digest(claimed_digest, computed_digest):
        raise SignatureCheckFailed(
            "message digest does not match the envelope content"
        )

    return _DER_SET_TAG + signed_attrs.dump()[1:]


class EnvelopeSignatureVerifier:
    """
    Envelope Signature Verification (ESV).

    Stateless apart from the read-only trust store.
    """

    def __init__(self, trust_anchors: TrustAnchorStore) -> None:
        self._trust_anchors = trust_anchors

    def verify_envelope(
        self,
        envelope: bytes,
        document: Optional[bytes] = None,
    ) -> EnvelopeSignatureResult:
        """
        Validate a signed envelope against the envelope trust anchor.

        `document`, when supplied, is an independently fetched copy of the
        identity document. It is compared with the embedded content, and
        used as detached content if the envelope embeds none.
        """
        try:
            parsed = parse_envelope(decode_envelope_armor(envelope))
        except EnvelopeFormatError as exc:
            logger.warning("Signed envelope could not be parsed: %s", exc)
            return EnvelopeSignatureResult(
                status=VerificationStatus.NOT_EVALUATED,
                error=EvaluationError(
                    kind=ErrorKind.ENVELOPE_FORMAT_ERROR,
                    message=str(exc),
                ),
            )

        discarded = len(parsed.embedded_certificates)
        if discarded:
            logger.info(
                "Discarding %d certificate(s) carried by the envelope",
                discarded,
            )

        bound = parsed.substitute_trust_anchor(
            self._trust_anchors.envelope_anchor
        )

        content = bound.content if bound.content is not None else document

        content_matches_document = None
        if bound.content is not None and document is not None:
            content_matches_document = hmac.compare_digest(
                bound.content, document
            )

        result_fields = dict(
            content=content,
            signer_count=len(bound.signer_infos),
            discarded_certificate_count=discarded,
            content_matches_document=content_matches_document,
        )

        try:
            self._verify_signers(bound, content)
        except SignatureCheckFailed as exc:
            logger.warning("Signed envelope failed verification: %s", exc)
            return EnvelopeSignatureResult(
                status=VerificationStatus.FAILED,
                reason=exc.reason,
                **result_fields,
            )

        logger.info(
            "Signed envelope verified (%d signer(s))", len(bound.signer_infos)
        )
        return EnvelopeSignatureResult(
            status=VerificationStatus.VERIFIED,
            **result_fields,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _verify_signers(
        envelope: SignedEnvelope,
        content: Optional[bytes],
    ) -> None:
        if content is None:
            raise SignatureCheckFailed(
                "envelope carries no content and no detached document "
                "was supplied"
            )

        if not envelope.signer_infos:
            raise SignatureCheckFailed("envelope has no signers")

        for index, signer_info in enumerate(envelope.signer_infos):
            anchor = _find_certificate(signer_info, envelope.verification_certificates)
            if anchor is None:
                raise SignatureCheckFailed(
                    f"signer {index} is not the trust anchor; certificates "
                    "carried by the envelope are not trusted"
                )

            scheme = _scheme_for(signer_info)
            digest_name = signer_info["digest_algorithm"]["algorithm"].native
            signed = _signed_bytes(signer_info, envelope, content, digest_name)

            try:
                check_signature(
                    anchor.public_key,
                    scheme,
                    signer_info["signature"].native,
                    signed,
                )
            except SignatureCheckFailed as exc:
                raise SignatureCheckFailed(
                    f"signer {index}: {exc.reason}"
                ) from exc


def _find_certificate(
    signer_info: cms.SignerInfo,
    certificates: Tuple[TrustAnchor, ...],
) -> Optional[TrustAnchor]:
    sid = signer_info["sid"]
    matches: List[TrustAnchor] = [
        anchor for anchor in certificates
        if _signer_matches(sid, anchor.asn1_certificate)
    ]
    return matches[0] if matches else None
