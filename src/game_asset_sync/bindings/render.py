"""Binding renderers.

Renderers turn a binding tree into source text. Identifier-safe keys are
emitted bare, everything else is quoted.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from ..config import CodegenOptions
from .emitter import BindingTree

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

INDENT = "\t"


def is_identifier(value: str) -> bool:
    return bool(IDENTIFIER_PATTERN.match(value))


def quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


class BindingRenderer(ABC):
    """Abstract base class for binding renderers.

    Attributes:
        extension: File extension of the generated module
    """

    extension: str

    @abstractmethod
    def render(self, name: str, tree: BindingTree) -> str:
        """Render a binding tree as a module exporting `name`."""
        pass

    def file_name(self, name: str) -> str:
        return f"{name}.{self.extension}"


class LuauRenderer(BindingRenderer):
    extension = "luau"

    def render(self, name: str, tree: BindingTree) -> str:
        return f"local {name} = {self._node(tree, 0)}\n\nreturn {name}\n"

    def _node(self, node: BindingTree | str, depth: int) -> str:
        if isinstance(node, str):
            return quote(node)

        lines = ["{"]
        for key, value in node.items():
            field = key if is_identifier(key) else f"[{quote(key)}]"
            lines.append(f"{INDENT * (depth + 1)}{field} = {self._node(value, depth + 1)},")
        lines.append(f"{INDENT * depth}}}")
        return "\n".join(lines)


class TypeScriptRenderer(BindingRenderer):
    extension = "d.ts"

    def render(self, name: str, tree: BindingTree) -> str:
        return f"declare const {name}: {self._node(tree, 0)}\n\nexport = {name}\n"

    def _node(self, node: BindingTree | str, depth: int) -> str:
        if isinstance(node, str):
            return "string"

        lines = ["{"]
        for key, value in node.items():
            field = key if is_identifier(key) else quote(key)
            lines.append(f"{INDENT * (depth + 1)}{field}: {self._node(value, depth + 1)}")
        lines.append(f"{INDENT * depth}}}")
        return "\n".join(lines)


def renderers_for(options: CodegenOptions) -> list[BindingRenderer]:
    renderers: list[BindingRenderer] = []
    if options.luau:
        renderers.append(LuauRenderer())
    if options.typescript:
        renderers.append(TypeScriptRenderer())
    return renderers


def write_bindings(
    trees: dict[str, BindingTree],
    output_paths: dict[str, Path],
    options: CodegenOptions,
) -> list[Path]:
    """Write every input's bindings into its output directory.

    Args:
        trees: Input name -> binding tree
        output_paths: Input name -> output directory
        options: Selects the languages to generate

    Returns:
        Paths of the written files
    """
    written = []
    for name, tree in trees.items():
        output_dir = output_paths[name]
        output_dir.mkdir(parents=True, exist_ok=True)
        for renderer in renderers_for(options):
            path = output_dir / renderer.file_name(name)
            path.write_text(renderer.render(name, tree), encoding="utf-8")
            logger.debug("Wrote %s", path)
            written.append(path)
    return written
