from __future__ import annotations

from datetime import date, datetime, time
from pathlib import Path
from typing import Literal, TypeAlias
import tomllib

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CONFIG_NAME = "loadbench.toml"
CONFIG_SECTION = "loadbench"

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


class LoadSettings(BaseModel):
    """Tuning constants of a load run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    large_size_threshold: int = Field(60_000, ge=0)
    batch_size: int = Field(30_000, gt=0)
    context_code_quote_length: int = Field(35, gt=0)
    parse_extensions: tuple[str, ...] = (".py", ".pyi")
    exclude_dirs: tuple[str, ...] = (".git", "__pycache__", ".venv", "node_modules")
    request_syntactic_diagnostics_each_step: bool = False
    request_semantic_diagnostics_each_step: bool = False
    report_interval_ms: int = Field(200, ge=0)
    slow_file_ms: int = Field(600, ge=0)
    service: Literal["cst", "lsp"] = "cst"
    server_command: tuple[str, ...] = ()
    lsp_timeout_ms: int = Field(60_000, gt=0)


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError:
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def load_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get(CONFIG_SECTION, {})
    return section if isinstance(section, dict) else {}


def load_settings(
    root: Path | None = None, config_path: Path | None = None
) -> LoadSettings:
    """Settings from ``[loadbench]`` of the config file, defaults for the rest.

    Raises pydantic's ``ValidationError`` for unknown keys or bad values.
    """
    return LoadSettings.model_validate(load_defaults(root=root, config_path=config_path))
