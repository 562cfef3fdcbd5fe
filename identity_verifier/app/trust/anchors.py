"""
Embedded trust anchors for instance identity verification.

Two certificates are compiled into this module:

- the RSA certificate used to check the detached /signature over the
  identity document (raw path);
- the DSA certificate used to check the PKCS#7 /pkcs7 envelope
  (envelope path).

They are fixed, audited roots. They are never read from disk, fetched,
or refreshed at runtime; changing them requires a new build. Each one is
pinned by SHA-256 fingerprint so that an edited or truncated constant
fails loudly at startup instead of silently changing what is trusted.

The store is built exactly once per process via load_trust_anchors().
Tests and alternate deployments construct their own store explicitly
with TrustAnchorStore.from_pem().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization

from identity_verifier.app.errors import TrustAnchorCorrupt
from identity_verifier.app.utils.signature_schemes import key_type_of

logger = logging.getLogger(__name__)


RSA_ANCHOR_NAME = "rsa"
ENVELOPE_ANCHOR_NAME = "envelope"


# ----------------------------------------------------------------------
# Embedded certificates (FIXED TRUST ROOTS)
# ----------------------------------------------------------------------

RSA_ANCHOR_PEM = """-----BEGIN CERTIFICATE-----
MIIDIjCCAougAwIBAgIJAKnL4UEDMN/FMA0GCSqGSIb3DQEBBQUAMGoxCzAJBgNV
BAYTAlVTMRMwEQYDVQQIEwpXYXNoaW5ndG9uMRAwDgYDVQQHEwdTZWF0dGxlMRgw
FgYDVQQKEw9BbWF6b24uY29tIEluYy4xGjAYBgNVBAMTEWVjMi5hbWF6b25hd3Mu
Y29tMB4XDTE0MDYwNTE0MjgwMloXDTI0MDYwNTE0MjgwMlowajELMAkGA1UEBhMC
VVMxEzARBgNVBAgTCldhc2hpbmd0b24xEDAOBgNVBAcTB1NlYXR0bGUxGDAWBgNV
BAoTD0FtYXpvbi5jb20gSW5jLjEaMBgGA1UEAxMRZWMyLmFtYXpvbmF3cy5jb20w
gZ8wDQYJKoZIhvcNAQEBBQADgY0AMIGJAoGBAIe9GN//SRK2knbjySG0ho3yqQM3
e2TDhWO8D2e8+XZqck754gFSo99AbT2RmXClambI7xsYHZFapbELC4H91ycihvrD
jbST1ZjkLQgga0NE1q43eS68ZeTDccScXQSNivSlzJZS8HJZjgqzBlXjZftjtdJL
XeE4hwvo0sD4f3j9AgMBAAGjgc8wgcwwHQYDVR0OBBYEFCXWzAgVyrbwnFncFFIs
77VBdlE4MIGcBgNVHSMEgZQwgZGAFCXWzAgVyrbwnFncFFIs77VBdlE4oW6kbDBq
MQswCQYDVQQGEwJVUzETMBEGA1UECBMKV2FzaGluZ3RvbjEQMA4GA1UEBxMHU2Vh
dHRsZTEYMBYGA1UEChMPQW1hem9uLmNvbSBJbmMuMRowGAYDVQQDExFlYzIuYW1h
em9uYXdzLmNvbYIJAKnL4UEDMN/FMAwGA1UdEwQFMAMBAf8wDQYJKoZIhvcNAQEF
BQADgYEAFYcz1OgEhQBXIwIdsgCOS8vEtiJYF+j9uO6jz7VOmJqO+pRlAbRlvY8T
C1haGgSI/A1uZUKs/Zfnph0oEI0/hu1IIJ/SKBDtN5lvmZ/IzbOPIJWirlsllQIQ
7zvWbGd9c9+Rm3p04oTvhup99la7kZqevJK0QRdD/6NpCKsqP/0=
-----END CERTIFICATE-----"""

ENVELOPE_ANCHOR_PEM = """-----BEGIN CERTIFICATE-----
MIIC7TCCAq0CCQCWukjZ5V4aZzAJBgcqhkjOOAQDMFwxCzAJBgNVBAYTAlVTMRkw
FwYDVQQIExBXYXNoaW5ndG9uIFN0YXRlMRAwDgYDVQQHEwdTZWF0dGxlMSAwHgYD
VQQKExdBbWF6b24gV2ViIFNlcnZpY2VzIExMQzAeFw0xMjAxMDUxMjU2MTJaFw0z
ODAxMDUxMjU2MTJaMFwxCzAJBgNVBAYTAlVTMRkwFwYDVQQIExBXYXNoaW5ndG9u
IFN0YXRlMRAwDgYDVQQHEwdTZWF0dGxlMSAwHgYDVQQKExdBbWF6b24gV2ViIFNl
cnZpY2VzIExMQzCCAbcwggEsBgcqhkjOOAQBMIIBHwKBgQCjkvcS2bb1VQ4yt/5e
ih5OO6kK/n1Lzllr7D8ZwtQP8fOEpp5E2ng+D6Ud1Z1gYipr58Kj3nssSNpI6bX3
VyIQzK7wLclnd/YozqNNmgIyZecN7EglK9ITHJLP+x8FtUpt3QbyYXJdmVMegN6P
hviYt5JH/nYl4hh3Pa1HJdskgQIVALVJ3ER11+Ko4tP6nwvHwh6+ERYRAoGBAI1j
k+tkqMVHuAFcvAGKocTgsjJem6/5qomzJuKDmbJNu9Qxw3rAotXau8Qe+MBcJl/U
hhy1KHVpCGl9fueQ2s6IL0CaO/buycU1CiYQk40KNHCcHfNiZbdlx1E9rpUp7bnF
lRa2v1ntMX3caRVDdbtPEWmdxSCYsYFDk4mZrOLBA4GEAAKBgEbmeve5f8LIE/Gf
MNmP9CM5eovQOGx5ho8WqD+aTebs+k2tn92BBPqeZqpWRa5P/+jrdKml1qx4llHW
MXrs3IgIb6+hUIB+S8dz8/mmO0bpr76RoZVCXYab2CZedFut7qc3WUH9+EUAH5mw
vSeDCOUMYQR7R9LINYwouHIziqQYMAkGByqGSM44BAMDLwAwLAIUWXBlk40xTwSw
7HX32MxXYruse9ACFBNGmdX2ZBrVNGrN9N2f6ROk0k9K
-----END CERTIFICATE-----"""

# SHA-256 over the DER encoding of each certificate above.
RSA_ANCHOR_SHA256 = (
    "094dda7658b9167e0f9e6cd639adf5bc1a75e05d869c5b2e7501baeae58a85bc"
)
ENVELOPE_ANCHOR_SHA256 = (
    "e3aab1950fcca420843f1477b701eee16d5700dedaf512cabb1c46016131159d"
)


# ----------------------------------------------------------------------
# Anchor objects
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class TrustAnchor:
    """
    A parsed, immutable trust anchor.

    Both representations of the certificate are kept: the cryptography
    object owns the public key, the asn1crypto object is what CMS signer
    identifiers are matched against.
    """

    name: str
    certificate: x509.Certificate
    asn1_certificate: asn1_x509.Certificate

    @property
    def public_key(self):
        return self.certificate.public_key()

    @property
    def fingerprint_sha256(self) -> str:
        return self.certificate.fingerprint(hashes.SHA256()).hex()

    @property
    def subject(self) -> str:
        return self.certificate.subject.rfc4514_string()

    @property
    def key_type(self) -> str:
        return key_type_of(self.public_key).value


def _load_anchor(
    name: str,
    pem_text: str,
    expected_sha256: Optional[str],
) -> TrustAnchor:
    if "-----BEGIN CERTIFICATE-----" not in pem_text:
        raise TrustAnchorCorrupt(name, "no PEM CERTIFICATE block found")

    try:
        certificate = x509.load_pem_x509_certificate(pem_text.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as exc:
        raise TrustAnchorCorrupt(name, str(exc)) from exc

    der = certificate.public_bytes(serialization.Encoding.DER)

    try:
        asn1_certificate = asn1_x509.Certificate.load(der)
    except ValueError as exc:
        raise TrustAnchorCorrupt(name, str(exc)) from exc

    anchor = TrustAnchor(
        name=name,
        certificate=certificate,
        asn1_certificate=asn1_certificate,
    )

    if (
        expected_sha256 is not None
        and anchor.fingerprint_sha256 != expected_sha256.lower()
    ):
        raise TrustAnchorCorrupt(
            name,
            f"fingerprint {anchor.fingerprint_sha256} does not match the "
            f"pinned value {expected_sha256.lower()}",
        )

    return anchor


class TrustAnchorStore:
    """
    Read-only holder of the two verification roots.

    Construction either fully succeeds or raises TrustAnchorCorrupt.
    There are no mutators.
    """

    __slots__ = ("_rsa_anchor", "_envelope_anchor")

    def __init__(
        self,
        rsa_anchor: TrustAnchor,
        envelope_anchor: TrustAnchor,
    ) -> None:
        self._rsa_anchor = rsa_anchor
        self._envelope_anchor = envelope_anchor

    @classmethod
    def from_pem(
        cls,
        rsa_pem: str,
        envelope_pem: str,
        *,
        rsa_sha256: Optional[str] = None,
        envelope_sha256: Optional[str] = None,
    ) -> "TrustAnchorStore":
        """
        Parse both anchors from PEM text.

        Raises:
            TrustAnchorCorrupt: if either PEM is malformed, does not hold a
                parseable certificate, or differs from its pinned
                fingerprint.
        """
        return cls(
            rsa_anchor=_load_anchor(RSA_ANCHOR_NAME, rsa_pem, rsa_sha256),
            envelope_anchor=_load_anchor(
                ENVELOPE_ANCHOR_NAME, envelope_pem, envelope_sha256
            ),
        )

    @property
    def rsa_anchor(self) -> TrustAnchor:
        return self._rsa_anchor

    @property
    def envelope_anchor(self) -> TrustAnchor:
        return self._envelope_anchor

    def anchors(self) -> tuple[TrustAnchor, TrustAnchor]:
        return (self._rsa_anchor, self._envelope_anchor)


@lru_cache(maxsize=1)
def load_trust_anchors() -> TrustAnchorStore:
    """
    Build the process-wide store from the embedded constants.

    Memoized: the constants are parsed once and every caller receives the
    same immutable store. A TrustAnchorCorrupt raised here is not cached
    and must abort startup.
    """
    try:
        store = TrustAnchorStore.from_pem(
            RSA_ANCHOR_PEM,
            ENVELOPE_ANCHOR_PEM,
            rsa_sha256=RSA_ANCHOR_SHA256,
            envelope_sha256=ENVELOPE_ANCHOR_SHA256,
        )
    except TrustAnchorCorrupt as exc:
        logger.error("Embedded trust anchor failed to load: %s", exc)
        raise

    for anchor in store.anchors():
        logger.info(
            "Loaded trust anchor '%s' (%s, sha256=%s)",
            anchor.name,
            anchor.key_type,
            anchor.fingerprint_sha256,
        )

    return store
