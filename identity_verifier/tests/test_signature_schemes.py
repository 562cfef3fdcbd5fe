from __future__ import annotations

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import dsa, ec, padding

from identity_verifier.app.utils.signature_schemes import (
    KeyType,
    PaddingScheme,
    SignatureCheckFailed,
    SignatureScheme,
    check_signature,
    key_type_of,
)
from identity_verifier.tests.fixtures.certificate_factory import ec_key, rsa_key


DATA = b"instance identity"


@pytest.fixture(scope="module")
def rsa_private_key():
    return rsa_key()


def test_key_types_are_recognised(rsa_private_key):
    assert key_type_of(rsa_private_key.public_key()) is KeyType.RSA
    assert key_type_of(ec_key().public_key()) is KeyType.EC
    assert key_type_of(object()) is KeyType.UNKNOWN


def test_rsa_pss_with_digest_length_salt(rsa_private_key):
    signature = rsa_private_key.sign(
        DATA,
        padding.PSS(
            mgf=padding.MGF1(hashes.SHA256()),
            salt_length=padding.PSS.DIGEST_LENGTH,
        ),
        hashes.SHA256(),
    )

    check_signature(
        rsa_private_key.public_key(),
        SignatureScheme(KeyType.RSA, "sha256", PaddingScheme.PSS),
        signature,
        DATA,
    )


def test_pkcs1_scheme_rejects_pss_signature(rsa_private_key):
    signature = rsa_private_key.sign(
        DATA,
        padding.PSS(
            mgf=padding.MGF1(hashes.SHA256()),
            salt_length=padding.PSS.DIGEST_LENGTH,
        ),
        hashes.SHA256(),
    )

    with pytest.raises(SignatureCheckFailed, match="does not match"):
        check_signature(
            rsa_private_key.public_key(),
            SignatureScheme(KeyType.RSA, "sha256", PaddingScheme.PKCS1V15),
            signature,
            DATA,
        )


def test_dsa_signature_verifies():
    key = dsa.generate_private_key(key_size=2048)
    signature = key.sign(DATA, hashes.SHA256())

    check_signature(
        key.public_key(),
        SignatureScheme(KeyType.DSA, "sha256"),
        signature,
        DATA,
    )


def test_ecdsa_signature_verifies():
    key = ec_key()
    signature = key.sign(DATA, ec.ECDSA(hashes.SHA384()))

    check_signature(
        key.public_key(),
        SignatureScheme(KeyType.EC, "sha384"),
        signature,
        DATA,
    )


def test_key_type_mismatch_is_reported_without_checking(rsa_private_key):
    with pytest.raises(SignatureCheckFailed) as exc_info:
        check_signature(
            rsa_private_key.public_key(),
            SignatureScheme(KeyType.DSA, "sha256"),
            b"not even a signature",
            DATA,
        )

    assert exc_info.value.reason == (
        "scheme requires a DSA public key, but the trust anchor holds a "
        "RSA key"
    )


def test_unsupported_digest_is_a_failure(rsa_private_key):
    with pytest.raises(SignatureCheckFailed, match="unsupported digest"):
        check_signature(
            rsa_private_key.public_key(),
            SignatureScheme(KeyType.RSA, "md5", PaddingScheme.PKCS1V15),
            b"\x00" * 256,
            DATA,
        )
