"""calendar_etl.config

YAML import settings.

Example (config/import.yml):

    reference_timezone: America/New_York
    max_upload_bytes: 5242880
    allowed_content_types: [text/csv, application/csv]
    retry_transient: true

Every key is optional; unknown keys are rejected so typos surface early.
The legacy export's timestamps carry no offset, so reference_timezone
decides which instant a row like '2009-10-09 20:00:00' means.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import tzinfo
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from calendar_etl.ingest import ALLOWED_CONTENT_TYPES, DEFAULT_MAX_UPLOAD_BYTES

DEFAULT_REFERENCE_TIMEZONE = "UTC"

VALID_CONFIG_KEYS = frozenset({
    "reference_timezone",
    "max_upload_bytes",
    "allowed_content_types",
    "retry_transient",
})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigValidationError(ValueError):
    """Raised when an import config file fails validation."""


# ---------------------------------------------------------------------------
# ImportConfig dataclass
# ---------------------------------------------------------------------------

@dataclass
class ImportConfig:
    reference_timezone: str = DEFAULT_REFERENCE_TIMEZONE
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    allowed_content_types: list[str] = field(
        default_factory=lambda: sorted(ALLOWED_CONTENT_TYPES)
    )
    retry_transient: bool = True

    @property
    def tz(self) -> tzinfo:
        return resolve_timezone(self.reference_timezone)


def resolve_timezone(name: str) -> tzinfo:
    """Return the ZoneInfo for an IANA name, or raise ConfigValidationError."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigValidationError(f"Unknown reference_timezone '{name}'.") from exc


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_import_config(yaml_path: Path | None) -> ImportConfig:
    """Load and validate an ImportConfig; None returns the defaults.

    Raises:
        ConfigValidationError: If a key is unknown or a value is invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    if yaml_path is None:
        return ImportConfig()
    raw = yaml_path.read_text(encoding="utf-8")
    data: Any = yaml.safe_load(raw)
    if data is None:
        return ImportConfig()
    validate_import_config(data)
    config = ImportConfig()
    if "reference_timezone" in data:
        config.reference_timezone = str(data["reference_timezone"])
    if "max_upload_bytes" in data:
        config.max_upload_bytes = int(data["max_upload_bytes"])
    if "allowed_content_types" in data:
        config.allowed_content_types = [str(c) for c in data["allowed_content_types"]]
    if "retry_transient" in data:
        config.retry_transient = bool(data["retry_transient"])
    return config


def validate_import_config(data: Any) -> None:
    """Raise ConfigValidationError if data does not match the config schema."""
    if not isinstance(data, dict):
        raise ConfigValidationError("YAML root must be a mapping.")

    unknown = set(data.keys()) - VALID_CONFIG_KEYS
    if unknown:
        raise ConfigValidationError(f"Unknown config keys: {sorted(unknown)}")

    if "reference_timezone" in data:
        resolve_timezone(str(data["reference_timezone"]))

    if "max_upload_bytes" in data:
        value = data["max_upload_bytes"]
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ConfigValidationError(
                f"max_upload_bytes value '{value}' must be a positive integer."
            )

    if "allowed_content_types" in data:
        types = data["allowed_content_types"]
        if not isinstance(types, list) or not types:
            raise ConfigValidationError(
                "allowed_content_types must be a non-empty list."
            )
        for item in types:
            if not isinstance(item, str) or "/" not in item:
                raise ConfigValidationError(
                    f"allowed_content_types entry '{item}' is not a media type."
                )

    if "retry_transient" in data and not isinstance(data["retry_transient"], bool):
        raise ConfigValidationError("retry_transient must be true or false.")
