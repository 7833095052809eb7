"""
ShieldLedger Configuration

Loads LedgerConfig from an optional YAML file, then applies SL_* environment
overrides, then validates.

Environment overrides:
    SL_TOKEN_DECIMALS, SL_YIELD_RATE_BPS, SL_YIELD_PERIOD_SECONDS,
    SL_MAX_RETRIES, SL_RETRY_BACKOFF_MS, SL_WAL_PATH, SL_FSYNC_POLICY,
    SL_LEDGER_ID
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .amounts import DEFAULT_TOKEN_DECIMALS, MAX_YIELD_RATE_BPS
from .exceptions import ConfigError

ENV_PREFIX = "SL_"


class LedgerConfig(BaseModel):
    """Runtime settings shared by the store, the engines and the service."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    token_decimals: int = Field(DEFAULT_TOKEN_DECIMALS, ge=0, le=36, description="Token decimal places")
    yield_rate_bps: int = Field(500, ge=0, le=MAX_YIELD_RATE_BPS, description="Initial yield rate per period")
    yield_period_seconds: int = Field(86_400, gt=0, description="Length of one yield accrual period")
    max_retries: int = Field(16, ge=0, description="Retries on optimistic conflict")
    retry_backoff_ms: int = Field(2, ge=0, description="Upper bound of the randomized backoff step")
    wal_path: Optional[str] = Field(None, description="Write-ahead log path; in-memory when unset")
    fsync_policy: Literal["per_record", "manual"] = Field("per_record", description="WAL fsync policy")
    ledger_id: str = Field("shieldly", min_length=1, max_length=32, description="Ledger identifier in the WAL header")


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for name in LedgerConfig.model_fields:
        value = environ.get(ENV_PREFIX + name.upper())
        if value is not None and value != "":
            overrides[name] = value
    return overrides


def load_config(
    path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> LedgerConfig:
    """
    Build the effective configuration.

    Args:
        path: Optional YAML file with LedgerConfig fields at the top level
        environ: Environment to read overrides from (defaults to os.environ)

    Raises:
        ConfigError: If the file cannot be read or any value is invalid
    """
    data: dict[str, Any] = {}

    if path is not None:
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(
                message=f"Failed to load config: {e}",
                details={"path": str(path), "error": str(e)},
            ) from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(
                message="Config file must contain a mapping",
                details={"path": str(path)},
            )
        data.update(loaded or {})

    data.update(_env_overrides(os.environ if environ is None else environ))

    try:
        return LedgerConfig(**data)
    except ValidationError as e:
        raise ConfigError(
            message=f"Config validation failed: {e.error_count()} errors",
            details={
                "errors": [
                    {"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()
                ],
                "path": str(path) if path is not None else None,
            },
        ) from e
