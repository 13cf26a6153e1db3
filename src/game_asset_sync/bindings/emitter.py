"""Binding emitter.

Turns the final {logical key -> identifier} mapping into one binding tree
per input. A tree is a dict whose values are identifiers (leaves) or
nested dicts (tables):

    flat     {"icons/a.png": "rbxassetid://1"}
    nested   {"icons": {"a.png": "rbxassetid://1"}}

Two keys that would produce the same binding entry are a configuration
error. All trees are built before anything is written, so a collision
never leaves half-written bindings behind.
"""

from collections.abc import Mapping
from pathlib import PurePosixPath
from typing import Union

from ..config import CodegenOptions
from ..core.errors import ConfigurationError
from ..core.types import AssetKey

BindingTree = dict[str, Union[str, "BindingTree"]]


def normalize_components(path: str, strip_extensions: bool) -> list[str]:
    """Split a key path into binding components, optionally dropping the extension."""
    parts = list(PurePosixPath(path).parts)
    if strip_extensions and parts:
        stem = PurePosixPath(parts[-1]).stem
        if stem:
            parts[-1] = stem
    return parts


def _insert_flat(tree: BindingTree, owners: dict[str, str], path: str, identifier: str, strip: bool) -> None:
    entry = "/".join(normalize_components(path, strip))
    if entry in owners:
        raise ConfigurationError(
            f"Binding collision: '{owners[entry]}' and '{path}' both generate '{entry}'"
        )
    owners[entry] = path
    tree[entry] = identifier


def _insert_nested(tree: BindingTree, owners: dict[str, str], path: str, identifier: str, strip: bool) -> None:
    components = normalize_components(path, strip)
    node = tree
    for depth, component in enumerate(components):
        entry = "/".join(components[: depth + 1])
        is_leaf = depth == len(components) - 1
        existing = node.get(component)

        if is_leaf:
            if existing is not None:
                other = f"'{owners[entry]}'" if entry in owners else "a directory"
                raise ConfigurationError(
                    f"Binding collision: '{path}' and {other} both generate '{entry}'"
                )
            owners[entry] = path
            node[component] = identifier
        else:
            if existing is None:
                existing = node[component] = {}
            elif not isinstance(existing, dict):
                raise ConfigurationError(
                    f"Binding collision: '{owners[entry]}' is a file but '{path}' "
                    f"needs '{entry}' to be a table"
                )
            node = existing


def build_tree(mapping: Mapping[str, str], options: CodegenOptions) -> BindingTree:
    """Build the binding tree of one input.

    Args:
        mapping: Path relative to the input -> identifier
        options: Codegen style and extension stripping

    Raises:
        ConfigurationError: If two paths generate the same binding entry
    """
    tree: BindingTree = {}
    owners: dict[str, str] = {}
    insert = _insert_nested if options.style == "nested" else _insert_flat

    for path in sorted(mapping):
        insert(tree, owners, path, mapping[path], options.strip_extensions)

    return tree


def emit(resolved: Mapping[AssetKey, str], options: CodegenOptions) -> dict[str, BindingTree]:
    """Build the binding trees of every input.

    Args:
        resolved: Logical key -> resolved identifier, including declared
            assets and duplicates
        options: Codegen options

    Returns:
        Input name -> binding tree

    Raises:
        ConfigurationError: If any input has a binding collision
    """
    per_input: dict[str, dict[str, str]] = {}
    for key, identifier in resolved.items():
        per_input.setdefault(key.input_name, {})[key.path] = identifier

    return {name: build_tree(mapping, options) for name, mapping in sorted(per_input.items())}
