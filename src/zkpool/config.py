"""Client configuration.

Values come from constructor arguments, ``ZKPOOL_*`` environment variables or
a ``.env`` file, in that order of precedence. Each Controller takes its own
``PoolSettings`` instance; there is no process-wide configuration object.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PoolSettings(BaseSettings):
    """Settings for one pool client instance."""

    model_config = SettingsConfigDict(
        env_prefix="ZKPOOL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    merkle_tree_height: int = Field(20, ge=1, le=32, description="Height of the account tree")
    proving_timeout: Optional[float] = Field(
        120.0, description="Seconds to wait for one proof; None waits forever"
    )
    prover_workers: int = Field(1, ge=1, description="Prover worker threads")
    rate_tolerance_bps: int = Field(
        0, ge=0, lt=10_000, description="Allowed shortfall of a supplied rate below the oracle"
    )
    rate_scale: int = Field(10 ** 18, gt=0, description="Fixed-point scale of unit_per_underlying")
    proving_keys_dir: Optional[Path] = Field(None, description="Directory of circuit artifacts")
    circuit_suffix: str = Field("", description="Circuit size variant, e.g. 'Mini'")
    database_url: Optional[str] = Field(
        None, description="SQLAlchemy URL of the leaf cache; None runs without one"
    )

    @field_validator("proving_timeout")
    @classmethod
    def _positive_timeout(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("proving_timeout must be positive")
        return value


def get_settings(**overrides) -> PoolSettings:
    """Build a fresh settings instance from the environment plus overrides."""
    return PoolSettings(**overrides)
