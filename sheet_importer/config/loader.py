from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    DatabaseConfig,
    GlobalSettings,
    ImportConfig,
    ImportSetting,
    StorageConfig,
)
from ..models.outcome import ResultType

"""Config loader.

Responsibilities:
- Load YAML ``config/import.yml``
- Validate against ``import_schema.json`` (shipped next to this module)
- Apply defaults (see GlobalSettings / ImportSetting / StorageConfig)
- Build the typed ImportConfig
"""

__all__ = [
    "SCHEMA_PATH",
    "ConfigError",
    "load_config",
    "parse_config",
]

SCHEMA_PATH = Path(__file__).with_name("import_schema.json")

_LIST_KEYS = (
    "execute_after_import",
    "execute_method_after_import",
    "execute_validation_after_import",
)


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or broken, or the data violates it
            (missing keys, wrong types, ``table_generate`` together with
            ``join`` ...).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path)
        suffix = f" (at {where})" if where else ""
        raise ConfigError(f"config validation failed: {e.message}{suffix}") from e


def _log_types(raw: Any) -> ResultType:
    if raw is None:
        return ResultType.ALL
    if isinstance(raw, str):
        return ResultType.from_names([raw])
    return ResultType.from_names(raw)


def _settings(raw: dict[str, Any]) -> GlobalSettings:
    values = {k: v for k, v in raw.items() if k not in ("log_types", "reference_types", "record_modules")}
    return GlobalSettings(
        **values,
        log_types=_log_types(raw.get("log_types")),
        reference_types=tuple(raw.get("reference_types", ())),
        record_modules=tuple(raw.get("record_modules", ())),
    )


def _import_setting(name: str, raw: dict[str, Any]) -> ImportSetting:
    values = {k: v for k, v in raw.items() if k not in _LIST_KEYS}
    lists = {k: tuple(raw.get(k, ())) for k in _LIST_KEYS}
    return ImportSetting(name=name, **values, **lists)


def parse_config(data: dict[str, Any], base_directory: str = ".") -> ImportConfig:
    """Validate an already parsed mapping and build ImportConfig."""
    _validate_config_schema(data)

    imports = {name: _import_setting(name, raw) for name, raw in data["imports"].items()}
    for s in imports.values():
        for target in s.execute_after_import:
            if target not in imports:
                raise ConfigError(f"config validation failed: {s.name}.execute_after_import refers to unknown import '{target}'")

    return ImportConfig(
        settings=_settings(data.get("settings") or {}),
        imports=imports,
        storage=StorageConfig(**(data.get("storage") or {})),
        database=DatabaseConfig(**(data.get("database") or {})),
        base_directory=base_directory,
    )


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config validation failed: top level must be a mapping")
    # csv_path / storage.root は実行ディレクトリ基準
    return parse_config(data, base_directory=str(Path.cwd()))
