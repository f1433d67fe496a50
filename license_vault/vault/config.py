"""
Vault Configuration — Key derivation costs and validated store settings.

Nothing here is read from the environment: the password source and the
store location are decided by the caller and passed in explicitly.

Note:
    Memory cost is expressed in KiB, as Argon2 reference implementations do.
"""
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

from ..records import DEFAULT_KINDS

DEFAULT_STORE_PATH = "licenses.dat"

# Argon2i (memory-hard) defaults
DEFAULT_TIME_COST = 10
DEFAULT_MEMORY_COST = 65536  # KiB, 64 MiB
# PBKDF2 iterations for the degraded fallback backend
DEFAULT_FALLBACK_ITERATIONS = 1000


class KdfParams(BaseModel):
    """Cost parameters for password-based key derivation."""

    time_cost: int = Field(default=DEFAULT_TIME_COST, ge=3)
    memory_cost: int = Field(default=DEFAULT_MEMORY_COST, ge=8)
    iterations: int = Field(default=DEFAULT_FALLBACK_ITERATIONS, ge=1)

    model_config = {"frozen": True}

    @property
    def memory_bytes(self) -> int:
        """Argon2 memory cost expressed in bytes."""
        return self.memory_cost * 1024


class StoreConfig(BaseModel):
    """Validated record store configuration."""

    path: Path = Field(default=Path(DEFAULT_STORE_PATH))
    kdf: KdfParams = Field(default_factory=KdfParams)
    kinds: frozenset[str] = Field(default=DEFAULT_KINDS)
    allow_fallback: bool = True
    expiry_horizon_days: int = Field(default=30, ge=0)

    @field_validator("kinds", mode="before")
    @classmethod
    def normalize_kinds(cls, v):
        """Lower-case record kinds and drop surrounding whitespace."""
        if isinstance(v, str):
            v = [v]
        return frozenset(str(kind).strip().lower() for kind in v)

    @model_validator(mode="after")
    def validate_kinds(self) -> "StoreConfig":
        """Ensure at least one non-empty record kind is known."""
        if not self.kinds or "" in self.kinds:
            raise ValueError(
                f"kinds must be a non-empty set of non-empty names, got {sorted(self.kinds)}"
            )
        return self
