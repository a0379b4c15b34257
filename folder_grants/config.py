from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError


class SheetsConfig(BaseModel):
    credentials_file: Path = Field(
        Path("service.json"),
        validate_default=True,
        description="Path to the Google service account JSON credentials",
    )
    spreadsheet_id: str = Field(..., min_length=1, description="ID of the participant spreadsheet")
    sheet_name: str = Field(
        "participants_sample", min_length=1, description="Tab name holding participant rows"
    )

    @field_validator("credentials_file")
    @classmethod
    def _expand_credentials_path(cls, value: Path) -> Path:
        return value.expanduser().resolve()


class DriveConfig(BaseModel):
    parent_folder_id: Optional[str] = Field(
        None,
        description="Folder under which participant folders are searched; global search when empty",
    )
    search_depth: int = Field(
        3,
        ge=1,
        le=10,
        description="Maximum folder depth below the parent folder that is searched",
    )

    @field_validator("parent_folder_id")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class ShardConfig(BaseModel):
    """Selects the disjoint subset of participants handled by this worker."""

    index: int = Field(0, ge=0, description="Zero-based shard handled by this worker")
    total: int = Field(1, ge=1, description="Number of workers sharing the sheet")

    @model_validator(mode="after")
    def _validate_index(self) -> "ShardConfig":
        if self.index >= self.total:
            msg = f"Shard index {self.index} must be lower than shard total {self.total}"
            raise ValueError(msg)
        return self


class AppConfig(BaseModel):
    sheets: SheetsConfig
    drive: DriveConfig = Field(default_factory=DriveConfig)
    shard: Optional[ShardConfig] = None
    dry_run: bool = Field(False, description="Simulate grants without calling the Drive API")
    throttle_ms: int = Field(
        2500,
        ge=0,
        description="Minimum interval between Drive API calls in milliseconds",
    )
    max_per_run: int = Field(300, gt=0, description="Maximum number of records processed per pass")
    poll_interval: int = Field(
        30,
        ge=5,
        description="Seconds to wait between passes in polling mode",
    )
    timezone: str = Field(
        "Asia/Jakarta",
        description="Time zone used for timestamps written to the LastLog column",
    )

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown time zone: {value}") from exc
        return value


_ENV_OVERRIDES = {
    "GOOGLE_CREDENTIALS_FILE": ("sheets", "credentials_file"),
    "SHEET_ID": ("sheets", "spreadsheet_id"),
    "SHEET_NAME": ("sheets", "sheet_name"),
    "PARENT_FOLDER_ID": ("drive", "parent_folder_id"),
    "SHARD_INDEX": ("shard", "index"),
    "SHARD_TOTAL": ("shard", "total"),
    "DRY_RUN": (None, "dry_run"),
    "THROTTLE_MS": (None, "throttle_ms"),
    "MAX_PER_RUN": (None, "max_per_run"),
    "POLL_INTERVAL": (None, "poll_interval"),
}


def apply_env_overrides(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """Overlay supported environment variables on raw configuration data."""

    merged = {key: (dict(value) if isinstance(value, dict) else value) for key, value in data.items()}
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        if section is None:
            merged[key] = raw
            continue
        block = merged.get(section)
        if not isinstance(block, dict):
            block = {}
        block[key] = raw
        merged[section] = block

    shard = merged.get("shard")
    # SHARD_TOTAL=0 disables sharding
    if isinstance(shard, dict) and str(shard.get("total", "1")).strip() == "0":
        merged["shard"] = None
    return merged


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """Load configuration from an optional YAML file plus environment overrides."""

    data: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path).expanduser().resolve()
        if not config_path.exists():
            msg = f"Configuration file not found: {config_path}"
            raise ConfigurationError(msg)

        with config_path.open("r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh)

        if loaded is None:
            msg = f"Configuration file is empty: {config_path}"
            raise ConfigurationError(msg)
        if not isinstance(loaded, dict):
            msg = f"Configuration file must contain a mapping: {config_path}"
            raise ConfigurationError(msg)
        data = loaded

    data = apply_env_overrides(data, os.environ if environ is None else environ)
    if "sheets" not in data:
        raise ConfigurationError(
            "Spreadsheet is not configured; set 'sheets.spreadsheet_id' or SHEET_ID"
        )

    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
