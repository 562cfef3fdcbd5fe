"""
Public-key signature checking shared by both verification paths.

A SignatureScheme binds the public-key type a signature requires, the
digest it is computed over, and (for RSA) the padding. check_signature()
either returns normally or raises SignatureCheckFailed carrying a
human-readable reason. A key-type mismatch is a deterministic failure
and is reported without touching the signature bytes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, padding, rsa


class KeyType(str, Enum):
    RSA = "RSA"
    DSA = "DSA"
    EC = "EC"
    ED25519 = "Ed25519"
    ED448 = "Ed448"
    UNKNOWN = "unknown"


class PaddingScheme(str, Enum):
    NONE = "none"
    PKCS1V15 = "pkcs1v15"
    PSS = "pss"


_HASHES = {
    "sha1": hashes.SHA1,
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}


class SignatureCheckFailed(Exception):
    """A signature was checked and did not validate."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class SignatureScheme:
    key_type: KeyType
    hash_name: str
    padding: PaddingScheme = PaddingScheme.NONE
    # PSS only. None means "salt length equals digest length".
    pss_salt_length: Optional[int] = None
    mgf_hash_name: Optional[str] = None


def key_type_of(public_key) -> KeyType:
    if isinstance(public_key, rsa.RSAPublicKey):
        return KeyType.RSA
    if isinstance(public_key, dsa.DSAPublicKey):
        return KeyType.DSA
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return KeyType.EC
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        return KeyType.ED25519
    if isinstance(public_key, ed448.Ed448PublicKey):
        return KeyType.ED448
    return KeyType.UNKNOWN


def is_supported_hash(name: str) -> bool:
    return name in _HASHES


def hash_algorithm(name: str) -> hashes.HashAlgorithm:
    try:
        return _HASHES[name]()
    except KeyError:
        raise SignatureCheckFailed(
            f"unsupported digest algorithm '{name}'"
        ) from None


def compute_digest(name: str, data: bytes) -> bytes:
    h = hashes.Hash(hash_algorithm(name))
    h.update(data)
    return h.finalize()


def _rsa_padding(scheme: SignatureScheme) -> padding.AsymmetricPadding:
    if scheme.padding is PaddingScheme.PSS:
        mgf_hash = hash_algorithm(scheme.mgf_hash_name or scheme.hash_name)
        salt_length = (
            scheme.pss_salt_length
            if scheme.pss_salt_length is not None
            else padding.PSS.DIGEST_LENGTH
        )
        return padding.PSS(mgf=padding.MGF1(mgf_hash), salt_length=salt_length)
    return padding.PKCS1v15()


def check_signature(
    public_key,
    scheme: SignatureScheme,
    signature: bytes,
    data: bytes,
) -> None:
    """
    Verify `signature` over `data` with `public_key` under `scheme`.

    Raises:
        SignatureCheckFailed: on key-type mismatch, unsupported digest,
            or cryptographic mismatch.
    """
    actual = key_type_of(public_key)

    if actual is not scheme.key_type:
        raise SignatureCheckFailed(
            f"scheme requires a {scheme.key_type.value} public key, "
            f"but the trust anchor holds a {actual.value} key"
        )

    digest = hash_algorithm(scheme.hash_name)

    try:
        if actual is KeyType.RSA:
            public_key.verify(signature, data, _rsa_padding(scheme), digest)
        elif actual is KeyType.DSA:
            public_key.verify(signature, data, digest)
        elif actual is KeyType.EC:
            public_key.verify(signature, data, ec.ECDSA(digest))
        else:
            raise SignatureCheckFailed(
                f"{actual.value} keys are not supported"
            )
    except InvalidSignature:
        raise SignatureCheckFailed(
            "signature does not match the data under this scheme"
        ) from None
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise SignatureCheckFailed(
            f"signature could not be checked: {exc}"
        ) from exc
