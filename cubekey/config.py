"""Configuration for the cube-backed authenticator."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthenticatorSettings(BaseSettings):
    """Runtime settings for the authenticator."""

    model_config = SettingsConfigDict(env_prefix="CUBEKEY_")

    keyring_service: str = Field(
        default="cubekey-authenticator",
        description="Service name used for keyring entries",
    )
    credential_index_path: str = Field(
        default=str(
            (Path(__file__).resolve().parent / "data" / "credential_index.json").resolve()
        ),
        description="Path to the credential index file used for lookups",
    )
    use_entropy_secret: bool = Field(
        default=True,
        description="Mix the stored entropy secret into key derivation",
    )
    auto_create_secret: bool = Field(
        default=True,
        description="Generate the entropy secret on first use when none is stored",
    )
    default_iterations: int = Field(
        default=100_000,
        ge=1,
        description="PBKDF2 iteration count persisted when no calibration has run",
    )
    kdf_target_ms: float = Field(
        default=50.0,
        gt=0,
        description="Target duration of one key derivation when calibrating",
    )
    expected_state_length: Optional[int] = Field(
        default=None,
        ge=1,
        description="Exact length of the device state hex string, if known",
    )
    verify_fixed_state: bool = Field(
        default=False,
        description="Check the physical state against the stored scramble hash",
    )
    aaguid: str = Field(
        default="00" * 16,
        description="Hex AAGUID placed in attested credential data",
    )
    state_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Seconds the browser bridge waits for a cube state",
    )

    @field_validator("aaguid")
    @classmethod
    def check_aaguid(cls, value: str) -> str:
        if len(bytes.fromhex(value)) != 16:
            raise ValueError("aaguid must be 16 bytes of hex")
        return value.lower()

    @property
    def aaguid_bytes(self) -> bytes:
        return bytes.fromhex(self.aaguid)
