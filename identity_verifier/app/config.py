"""
Runtime configuration for the instance identity verifier.

Environment-driven, parsed once at startup and immutable afterwards.
Configuration selects which pipelines run and how the metadata service
is reached. It never influences what is trusted: the trust anchors are
compiled in and cannot be configured.
"""

from __future__ import annotations

import os
from typing import Tuple

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from identity_verifier.app.schemas.verification_report import (
    DEFAULT_CANDIDATE_ALGORITHMS,
    SignatureAlgorithm,
)

ENV_PREFIX = "IID_VERIFIER_"

# IMDSv2 session tokens may live at most six hours.
MAX_IMDS_TOKEN_TTL_SECONDS = 21600


class VerifierConfig(BaseModel):
    """
    Runtime configuration for the verifier.

    Read-only at runtime. Invalid combinations fail at construction.
    """

    # ------------------------------------------------------------------
    # Pipeline gates
    # ------------------------------------------------------------------

    ENABLE_RAW_VERIFICATION: bool = Field(
        True,
        description="Verify the detached /signature over the document",
    )

    ENABLE_ENVELOPE_VERIFICATION: bool = Field(
        True,
        description="Verify the /pkcs7 signed envelope",
    )

    RAW_SIGNATURE_ALGORITHMS: Tuple[SignatureAlgorithm, ...] = Field(
        DEFAULT_CANDIDATE_ALGORITHMS,
        description="Candidate algorithms probed on the raw path, in order",
    )

    # ------------------------------------------------------------------
    # Metadata service
    # ------------------------------------------------------------------

    METADATA_BASE_URL: str = Field(
        "http://169.254.169.254",
        description="Base URL of the instance metadata service",
    )

    DOCUMENT_PATH: str = Field(
        "/latest/dynamic/instance-identity/document",
        description="Identity document resource",
    )

    SIGNATURE_PATH: str = Field(
        "/latest/dynamic/instance-identity/signature",
        description="Detached base64 signature resource",
    )

    ENVELOPE_PATH: str = Field(
        "/latest/dynamic/instance-identity/pkcs7",
        description="Signed envelope resource (base64, no armor)",
    )

    USE_IMDSV2: bool = Field(
        True,
        description="Obtain an IMDSv2 session token before fetching",
    )

    IMDS_TOKEN_TTL_SECONDS: int = Field(
        60,
        description="Lifetime requested for the IMDSv2 session token",
    )

    FETCH_TIMEOUT_SECONDS: float = Field(
        2.0,
        description="Per-request timeout for metadata service calls",
    )

    MAX_RESPONSE_BYTES: int = Field(
        64 * 1024,
        description="Upper bound on a single metadata response body",
    )

    # ------------------------------------------------------------------
    # Validators (Pydantic v2)
    # ------------------------------------------------------------------

    @field_validator("ENABLE_ENVELOPE_VERIFICATION")
    @classmethod
    def at_least_one_pipeline(cls, v: bool, info: ValidationInfo) -> bool:
        if not v and not info.data.get("ENABLE_RAW_VERIFICATION"):
            raise ValueError(
                "ENABLE_RAW_VERIFICATION and ENABLE_ENVELOPE_VERIFICATION "
                "cannot both be false."
            )
        return v

    @field_validator("RAW_SIGNATURE_ALGORITHMS")
    @classmethod
    def validate_candidates(
        cls, v: Tuple[SignatureAlgorithm, ...]
    ) -> Tuple[SignatureAlgorithm, ...]:
        if not v:
            raise ValueError("RAW_SIGNATURE_ALGORITHMS must not be empty.")
        if len(set(v)) != len(v):
            raise ValueError("RAW_SIGNATURE_ALGORITHMS contains duplicates.")
        return v

    @field_validator("METADATA_BASE_URL")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(
                f"METADATA_BASE_URL must be an http(s) URL, got '{v}'"
            )
        return v.rstrip("/")

    @field_validator("DOCUMENT_PATH", "SIGNATURE_PATH", "ENVELOPE_PATH")
    @classmethod
    def validate_resource_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"Resource path must start with '/': '{v}'")
        return v

    @field_validator("IMDS_TOKEN_TTL_SECONDS")
    @classmethod
    def validate_token_ttl(cls, v: int) -> int:
        if not 1 <= v <= MAX_IMDS_TOKEN_TTL_SECONDS:
            raise ValueError(
                "IMDS_TOKEN_TTL_SECONDS must be between 1 and "
                f"{MAX_IMDS_TOKEN_TTL_SECONDS}"
            )
        return v

    @field_validator("FETCH_TIMEOUT_SECONDS")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("FETCH_TIMEOUT_SECONDS must be positive")
        return v

    @field_validator("MAX_RESPONSE_BYTES")
    @classmethod
    def validate_max_response(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MAX_RESPONSE_BYTES must be positive")
        return v

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls) -> "VerifierConfig":
        """
        Load configuration from IID_VERIFIER_* environment variables.

        All values are parsed once at startup and must remain immutable.
        """

        def env(name: str, default: str) -> str:
            return os.getenv(f"{ENV_PREFIX}{name}", default)

        def env_bool(name: str, default: bool) -> bool:
            raw = os.getenv(f"{ENV_PREFIX}{name}")
            if raw is None:
                return default
            return raw.lower() in {"1", "true", "yes", "on"}

        algorithms_env = os.getenv(f"{ENV_PREFIX}RAW_SIGNATURE_ALGORITHMS")

        return cls(
            ENABLE_RAW_VERIFICATION=env_bool("ENABLE_RAW_VERIFICATION", True),
            ENABLE_ENVELOPE_VERIFICATION=env_bool(
                "ENABLE_ENVELOPE_VERIFICATION", True
            ),
            RAW_SIGNATURE_ALGORITHMS=(
                tuple(
                    name.strip()
                    for name in algorithms_env.split(",")
                    if name.strip()
                )
                if algorithms_env is not None
                else DEFAULT_CANDIDATE_ALGORITHMS
            ),
            METADATA_BASE_URL=env(
                "METADATA_BASE_URL", "http://169.254.169.254"
            ),
            DOCUMENT_PATH=env(
                "DOCUMENT_PATH", "/latest/dynamic/instance-identity/document"
            ),
            SIGNATURE_PATH=env(
                "SIGNATURE_PATH", "/latest/dynamic/instance-identity/signature"
            ),
            ENVELOPE_PATH=env(
                "ENVELOPE_PATH", "/latest/dynamic/instance-identity/pkcs7"
            ),
            USE_IMDSV2=env_bool("USE_IMDSV2", True),
            IMDS_TOKEN_TTL_SECONDS=int(env("IMDS_TOKEN_TTL_SECONDS", "60")),
            FETCH_TIMEOUT_SECONDS=float(env("FETCH_TIMEOUT_SECONDS", "2.0")),
            MAX_RESPONSE_BYTES=int(env("MAX_RESPONSE_BYTES", "65536")),
        )

    model_config = {
        "frozen": True,
    }
