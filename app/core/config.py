"""Application configuration loaded from environment variables."""

import logging
import math
from functools import lru_cache
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Chains a workspace always carries a ChainState for (module-level so validators can use it).
DEFAULT_SUPPORTED_CHAINS = (
    "ethereum",
    "bnb",
    "polygon",
    "arbitrum",
    "optimism",
    "avalanche",
)

# Trust weight per analysis source; "ai" is the reasoning source and outranks any single static tool.
DEFAULT_TOOL_WEIGHTS: dict[str, float] = {
    "slither": 0.40,
    "mythril": 0.30,
    "echidna": 0.20,
    "medusa": 0.10,
    "ai": 0.50,
}

# Singleton scores are weight * 50, so a weight above this would leave the 0-100 range.
MAX_TOOL_WEIGHT = 2.0


class Settings(BaseSettings):
    """Validated application settings from env and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    APP_ENV: Literal["dev", "prod"] = "dev"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    API_V1_PREFIX: str = "/api/v1"

    # Workspace store: one directory per workspace id under this root
    WORKSPACE_DIR: str = "./workspaces"
    DEFAULT_CHAIN: str = "ethereum"
    SUPPORTED_CHAINS: list[str] = list(DEFAULT_SUPPORTED_CHAINS)

    # Consensus engine: JSON object in env, e.g. TOOL_WEIGHTS='{"slither": 0.4, "ai": 0.5}'
    TOOL_WEIGHTS: dict[str, float] = dict(DEFAULT_TOOL_WEIGHTS)

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = (v or "").strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(
                "LOG_LEVEL must be a logging level name (e.g. DEBUG, INFO, WARNING)"
            )
        return level

    @field_validator("WORKSPACE_DIR")
    @classmethod
    def validate_workspace_dir(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("WORKSPACE_DIR must be set and non-empty")
        return v.strip()

    @field_validator("DEFAULT_CHAIN")
    @classmethod
    def validate_default_chain(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("DEFAULT_CHAIN must be set and non-empty")
        return v.strip().lower()

    @field_validator("SUPPORTED_CHAINS")
    @classmethod
    def validate_supported_chains(cls, v: list[str]) -> list[str]:
        chains: list[str] = []
        for chain in v:
            name = (chain or "").strip().lower()
            if not name:
                raise ValueError("SUPPORTED_CHAINS must not contain empty names")
            if name not in chains:
                chains.append(name)
        if not chains:
            raise ValueError("SUPPORTED_CHAINS must list at least one chain")
        return chains

    @field_validator("TOOL_WEIGHTS")
    @classmethod
    def validate_tool_weights(cls, v: dict[str, float]) -> dict[str, float]:
        weights: dict[str, float] = {}
        for source, weight in v.items():
            name = (source or "").strip().lower()
            if not name:
                raise ValueError("TOOL_WEIGHTS keys must be non-empty source names")
            if math.isnan(weight) or weight < 0 or weight > MAX_TOOL_WEIGHT:
                raise ValueError(
                    f"TOOL_WEIGHTS[{source!r}] must be between 0 and {MAX_TOOL_WEIGHT}"
                )
            weights[name] = float(weight)
        return weights

    @model_validator(mode="after")
    def validate_default_chain_supported(self) -> "Settings":
        if self.DEFAULT_CHAIN not in self.SUPPORTED_CHAINS:
            raise ValueError(
                f"DEFAULT_CHAIN {self.DEFAULT_CHAIN!r} must be one of SUPPORTED_CHAINS"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance (safe to call from dependencies)."""
    return Settings()


settings = get_settings()
