"""Project configuration.

The configuration file (asset-sync.toml) is read once at startup,
validated against schemas/config.schema.json and turned into frozen
dataclasses. The engine treats the result as immutable for the whole run.
"""

import glob
import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

from .core.errors import ConfigurationError
from .core.validator import CONFIG_SCHEMA, validate_with_error_details

FILE_NAME = "asset-sync.toml"

DEFAULT_UPLOAD_WORKERS = 8
DEFAULT_PROCESS_WORKERS = 16
DEFAULT_MAX_ATTEMPTS = 5


@dataclass(frozen=True)
class Creator:
    """User or group that owns uploaded assets."""

    type: str  # "user" or "group"
    id: int


@dataclass(frozen=True)
class CodegenOptions:
    style: str = "flat"  # "flat" or "nested"
    strip_extensions: bool = False
    typescript: bool = False
    luau: bool = True


@dataclass(frozen=True)
class SyncOptions:
    workers: int = DEFAULT_UPLOAD_WORKERS
    process_workers: int = DEFAULT_PROCESS_WORKERS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS


@dataclass(frozen=True)
class AssetInput:
    """A named source of assets.

    Attributes:
        name: Input name (also the name of the generated binding)
        pattern: Glob selecting files, relative to the project directory
        output_path: Directory that receives generated bindings
        web: Pre-declared assets, relative path -> numeric remote id
        bleed: Whether alpha bleeding is applied to images
        warn_each_duplicate: Log every duplicate file, not just a summary
    """

    name: str
    pattern: str
    output_path: Path
    web: dict[str, int] = field(default_factory=dict)
    bleed: bool = True
    warn_each_duplicate: bool = True

    @property
    def prefix(self) -> PurePosixPath:
        """Leading path components of the pattern that contain no glob syntax."""
        parts = []
        for part in PurePosixPath(self.pattern).parts:
            if glob.has_magic(part):
                break
            parts.append(part)
        return PurePosixPath(*parts) if parts else PurePosixPath(".")


@dataclass(frozen=True)
class Config:
    creator: Creator
    inputs: dict[str, AssetInput]
    codegen: CodegenOptions = CodegenOptions()
    sync: SyncOptions = SyncOptions()
    project_dir: Path = Path(".")


def parse_config(document: dict[str, Any], project_dir: Path) -> Config:
    """Build a Config from a decoded TOML document.

    Args:
        document: Decoded configuration document
        project_dir: Directory the relative paths in the document refer to

    Returns:
        Immutable Config

    Raises:
        ConfigurationError: If the document doesn't conform to the schema
            or declares an invalid glob
    """
    is_valid, error_msg = validate_with_error_details(document, CONFIG_SCHEMA)
    if not is_valid:
        raise ConfigurationError(f"Invalid configuration: {error_msg}")

    creator = Creator(type=document["creator"]["type"], id=document["creator"]["id"])
    codegen = CodegenOptions(**document.get("codegen", {}))
    sync = SyncOptions(**document.get("sync", {}))

    inputs: dict[str, AssetInput] = {}
    for name, raw in document["inputs"].items():
        pattern = raw["path"].replace("\\", "/")
        if PurePosixPath(pattern).is_absolute() or ".." in PurePosixPath(pattern).parts:
            raise ConfigurationError(
                f"Input '{name}': path must stay inside the project directory: {pattern}"
            )

        web = {
            path.replace("\\", "/"): entry["id"] for path, entry in raw.get("web", {}).items()
        }

        inputs[name] = AssetInput(
            name=name,
            pattern=pattern,
            output_path=project_dir / raw["output_path"],
            web=web,
            bleed=raw.get("bleed", True),
            warn_each_duplicate=raw.get("warn_each_duplicate", True),
        )

    return Config(
        creator=creator,
        inputs=inputs,
        codegen=codegen,
        sync=sync,
        project_dir=project_dir,
    )


def load_config(project_dir: Path, file_name: str = FILE_NAME) -> Config:
    """Read and validate the configuration file of a project.

    Raises:
        ConfigurationError: If the file is missing, is not valid TOML, or
            doesn't conform to the schema
    """
    config_path = project_dir / file_name
    try:
        with config_path.open("rb") as f:
            document = tomllib.load(f)
    except FileNotFoundError:
        raise ConfigurationError(
            f"Configuration file not found: {config_path}. Did you create it?"
        ) from None
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Failed to parse {config_path}: {e}") from e

    return parse_config(document, project_dir)


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    # JSON string escapes are valid in TOML basic strings
    return json.dumps(str(value))


def render_config(document: dict[str, Any]) -> str:
    """Render a configuration document as TOML.

    Covers the tables written by `asset-sync init`: creator, codegen, sync
    and inputs (without declared web assets).
    """
    lines: list[str] = []
    for table in ("creator", "codegen", "sync"):
        if table not in document:
            continue
        lines.append(f"[{table}]")
        lines.extend(f"{name} = {_toml_value(value)}" for name, value in document[table].items())
        lines.append("")

    for input_name, raw in document["inputs"].items():
        lines.append(f"[inputs.{input_name}]")
        lines.extend(f"{name} = {_toml_value(value)}" for name, value in raw.items())
        lines.append("")

    return "\n".join(lines)


def write_config(document: dict[str, Any], project_dir: Path, file_name: str = FILE_NAME) -> Path:
    """Validate a configuration document and write it to the project.

    The rendered text is parsed back and validated before anything is
    written, so a file that load_config would reject is never created.

    Returns:
        Path of the written file

    Raises:
        ConfigurationError: If the document doesn't conform to the schema
    """
    text = render_config(document)
    try:
        rendered = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
    parse_config(rendered, project_dir)

    config_path = project_dir / file_name
    config_path.write_text(text, encoding="utf-8")
    return config_path
