"""Asset discovery.

This module expands each input's glob into DiscoveredAssets with
security features like path validation. File contents are not read here;
reading happens in the processing tasks so I/O runs in parallel.
"""

import glob
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from .config import AssetInput, Config
from .core.errors import ConfigurationError
from .core.types import AssetKey, DiscoveredAsset

logger = logging.getLogger(__name__)

# Dangerous characters to remove from filenames
DANGEROUS_FILENAME_CHARS = r'[<>:"|?*\x00-\x1f]'


def sanitize_filename(filename: str) -> str:
    """Sanitize filename by removing dangerous characters.

    Args:
        filename: Original filename

    Returns:
        Sanitized filename safe for storage
    """
    sanitized = re.sub(DANGEROUS_FILENAME_CHARS, "", filename)
    sanitized = sanitized.replace("/", "").replace("\\", "")
    return sanitized


def validate_path_safety(path: Path, base_dir: Path) -> None:
    """Validate that a path stays within the base directory.

    This prevents symlinks in an input from pulling in files from
    elsewhere on disk.

    Args:
        path: Path to validate
        base_dir: Base directory that path must be within

    Raises:
        ValueError: If path escapes the base directory
    """
    resolved_path = path.resolve()
    resolved_base = base_dir.resolve()

    if not resolved_path.is_relative_to(resolved_base):
        raise ValueError(f"Path {path} escapes base directory {base_dir}")


@dataclass
class DiscoveryResult:
    """Everything found for the configured inputs.

    Attributes:
        assets: Files to classify, hash and sync
        declared: Pre-declared web assets, key -> remote identifier
    """

    assets: list[DiscoveredAsset] = field(default_factory=list)
    declared: dict[AssetKey, str] = field(default_factory=dict)


def declared_identifier(asset_id: int) -> str:
    return f"rbxassetid://{asset_id}"


def discover_input(asset_input: AssetInput, project_dir: Path) -> list[DiscoveredAsset]:
    """Expand one input's glob into discovered assets.

    Args:
        asset_input: The input to expand
        project_dir: Directory the glob is relative to

    Returns:
        Discovered assets sorted by logical key

    Raises:
        ConfigurationError: If the input's root directory is missing or a
            matched file escapes the project directory
    """
    prefix = asset_input.prefix
    root = project_dir / prefix
    if not root.is_dir():
        raise ConfigurationError(
            f"Input '{asset_input.name}': directory does not exist: {root}"
        )

    matches = glob.glob(asset_input.pattern, root_dir=project_dir, recursive=True)
    assets: list[DiscoveredAsset] = []

    for match in sorted(matches):
        file_path = project_dir / match
        if not file_path.is_file():
            continue

        try:
            validate_path_safety(file_path, project_dir)
        except ValueError as e:
            raise ConfigurationError(f"Input '{asset_input.name}': {e}") from e

        match_path = PurePosixPath(match.replace(os.sep, "/"))
        rel_path = match_path if prefix == PurePosixPath(".") else match_path.relative_to(prefix)

        assets.append(
            DiscoveredAsset(
                key=AssetKey(asset_input.name, rel_path.as_posix()),
                source_path=file_path.resolve(),
                extension=file_path.suffix.lstrip(".").lower(),
            )
        )

    if not assets:
        logger.warning("Input '%s' matched no files (%s)", asset_input.name, asset_input.pattern)

    return assets


def discover(config: Config) -> DiscoveryResult:
    """Discover every configured input.

    Raises:
        ConfigurationError: If a logical key occurs twice in the run, for
            example a declared web asset that is also a file on disk
    """
    result = DiscoveryResult()
    seen: set[AssetKey] = set()

    for asset_input in config.inputs.values():
        for path, asset_id in asset_input.web.items():
            key = AssetKey(asset_input.name, path)
            seen.add(key)
            result.declared[key] = declared_identifier(asset_id)

        for asset in discover_input(asset_input, config.project_dir):
            if asset.key in seen:
                raise ConfigurationError(
                    f"Duplicate asset path {asset.key}: it is both declared as a web "
                    f"asset and present on disk"
                )
            seen.add(asset.key)
            result.assets.append(asset)

        logger.debug(
            "Input '%s': %d files, %d declared",
            asset_input.name,
            sum(1 for a in result.assets if a.key.input_name == asset_input.name),
            len(asset_input.web),
        )

    return result
