from __future__ import annotations

import pytest
from pydantic import ValidationError

from identity_verifier.app.config import VerifierConfig
from identity_verifier.app.schemas.verification_report import (
    DEFAULT_CANDIDATE_ALGORITHMS,
    SignatureAlgorithm,
)


def test_defaults():
    config = VerifierConfig()

    assert config.ENABLE_RAW_VERIFICATION is True
    assert config.ENABLE_ENVELOPE_VERIFICATION is True
    assert config.RAW_SIGNATURE_ALGORITHMS == DEFAULT_CANDIDATE_ALGORITHMS
    assert config.METADATA_BASE_URL == "http://169.254.169.254"
    assert config.USE_IMDSV2 is True


def test_config_is_frozen():
    config = VerifierConfig()

    with pytest.raises(ValidationError):
        config.USE_IMDSV2 = False


def test_both_pipelines_disabled_is_rejected():
    with pytest.raises(ValidationError, match="cannot both be false"):
        VerifierConfig(
            ENABLE_RAW_VERIFICATION=False,
            ENABLE_ENVELOPE_VERIFICATION=False,
        )


@pytest.mark.parametrize(
    "overrides",
    [
        {"RAW_SIGNATURE_ALGORITHMS": ()},
        {"RAW_SIGNATURE_ALGORITHMS": ("SHA256WithRSA", "SHA256WithRSA")},
        {"RAW_SIGNATURE_ALGORITHMS": ("MD5WithRSA",)},
        {"METADATA_BASE_URL": "ftp://169.254.169.254"},
        {"DOCUMENT_PATH": "latest/dynamic/instance-identity/document"},
        {"IMDS_TOKEN_TTL_SECONDS": 0},
        {"IMDS_TOKEN_TTL_SECONDS": 21601},
        {"FETCH_TIMEOUT_SECONDS": 0},
        {"MAX_RESPONSE_BYTES": 0},
    ],
)
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(ValidationError):
        VerifierConfig(**overrides)


def test_base_url_trailing_slash_is_stripped():
    config = VerifierConfig(METADATA_BASE_URL="http://metadata.internal/")

    assert config.METADATA_BASE_URL == "http://metadata.internal"


def test_from_env(monkeypatch):
    monkeypatch.setenv("IID_VERIFIER_ENABLE_RAW_VERIFICATION", "false")
    monkeypatch.setenv(
        "IID_VERIFIER_RAW_SIGNATURE_ALGORITHMS",
        "SHA256WithRSA, SHA512WithRSAPSS",
    )
    monkeypatch.setenv("IID_VERIFIER_USE_IMDSV2", "0")
    monkeypatch.setenv("IID_VERIFIER_IMDS_TOKEN_TTL_SECONDS", "300")
    monkeypatch.setenv("IID_VERIFIER_MAX_RESPONSE_BYTES", "4096")

    config = VerifierConfig.from_env()

    assert config.ENABLE_RAW_VERIFICATION is False
    assert config.ENABLE_ENVELOPE_VERIFICATION is True
    assert config.RAW_SIGNATURE_ALGORITHMS == (
        SignatureAlgorithm.SHA256_WITH_RSA,
        SignatureAlgorithm.SHA512_WITH_RSA_PSS,
    )
    assert config.USE_IMDSV2 is False
    assert config.IMDS_TOKEN_TTL_SECONDS == 300
    assert config.MAX_RESPONSE_BYTES == 4096


def test_from_env_without_variables_matches_defaults(monkeypatch):
    for name in VerifierConfig.model_fields:
        monkeypatch.delenv(f"IID_VERIFIER_{name}", raising=False)

    assert VerifierConfig.from_env() == VerifierConfig()
