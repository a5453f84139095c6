"""
Configuration: environment (optionally from .env) overlaid by CLI flags,
validated with pydantic.
"""

import json
import os
from pathlib import Path
from typing import Any, Optional

import dotenv
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

from .builder import DEFAULT_GAS_LIMIT
from .errors import SetupError
from .pool.endpoint_pool import DEFAULT_RPC_URLS

# Env var -> config field
ENV_FIELDS = {
    "PRIVATE_KEY_HEX": "private_key",
    "NUM_WORKERS": "workers",
    "TRANSACTIONS_NUMBER": "count",
    "JSON_DATA": "data",
    "TO_ADDRESS": "to_address",
    "PACE_DELAY": "pace_delay",
    "GAS_LIMIT": "gas_limit",
    "GAS_PRICE_MULTIPLIER": "gas_price_multiplier",
    "REQUEST_TIMEOUT": "request_timeout",
    "MAX_SETUP_ATTEMPTS": "max_setup_attempts",
    "DRAIN_TIMEOUT": "drain_timeout",
    "LOG_LEVEL": "log_level",
}


class BroadcastConfig(BaseModel):
    private_key: SecretStr = Field(description="Hex-encoded signing key")
    workers: int = Field(default=1, ge=1)
    count: int = Field(ge=1, description="Number of transactions to send")
    data: str = Field(default="", description="Payload sent as transaction input data")
    to_address: Optional[str] = Field(default=None, description="Destination, defaults to the sender")
    rpc_urls: list[str] = Field(default_factory=lambda: list(DEFAULT_RPC_URLS), min_length=1)

    pace_delay: float = Field(default=0.5, ge=0, description="Seconds between queued tasks")
    gas_limit: int = Field(default=DEFAULT_GAS_LIMIT, ge=21_000)
    gas_price_multiplier: float = Field(default=1.0, gt=0)
    request_timeout: float = Field(default=15.0, gt=0)
    max_setup_attempts: Optional[int] = Field(default=None, ge=1)
    drain_timeout: Optional[float] = Field(default=None, gt=0)
    stats_interval: float = Field(default=10.0, gt=0)
    log_level: str = "INFO"

    @field_validator("private_key")
    @classmethod
    def _key_present(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("private key is empty")
        return v

    @field_validator("rpc_urls")
    @classmethod
    def _valid_urls(cls, v: list[str]) -> list[str]:
        urls = [u.strip() for u in v if u and u.strip()]
        for url in urls:
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"unsupported RPC URL {url!r}, expected http(s)")
        if not urls:
            raise ValueError("no RPC endpoints configured")
        return urls

    @field_validator("to_address")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @property
    def payload(self) -> bytes:
        return self.data.encode("utf-8")


def _split_csv(raw: str) -> list[str]:
    return [p.strip() for p in raw.split(",") if p.strip()]


def load_rpc_file(path: Path) -> list[str]:
    """Read {"rpcs": ["https://...", {"url": "https://..."}]} from a JSON file."""
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SetupError(f"Cannot read RPC config {path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("rpcs", []), list):
        raise SetupError(f"RPC config {path} must be an object with an \"rpcs\" list")

    urls = []
    for entry in data.get("rpcs", []):
        url = entry.get("url") if isinstance(entry, dict) else entry
        if not isinstance(url, str) or not url.strip():
            raise SetupError(f"RPC config {path} has an entry without a url: {entry!r}")
        urls.append(url.strip())
    return urls


def load_config(overrides: Optional[dict[str, Any]] = None, env_file: Optional[Path] = None) -> BroadcastConfig:
    """
    Build the run configuration.

    Environment variables (after loading env_file or ./.env) provide the
    base values; any non-None entry in overrides wins.
    """
    dotenv.load_dotenv(env_file)

    values: dict[str, Any] = {}
    for env_name, field in ENV_FIELDS.items():
        raw = os.getenv(env_name)
        if raw is not None and raw.strip() != "":
            values[field] = raw.strip() if field != "data" else raw

    env_urls = _split_csv(os.getenv("RPC_URLS", "")) or _split_csv(os.getenv("RPC_URL", ""))
    if env_urls:
        values["rpc_urls"] = env_urls

    for field, value in (overrides or {}).items():
        if value is not None:
            values[field] = value

    try:
        return BroadcastConfig.model_validate(values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise SetupError(f"Invalid configuration: {problems}") from e
