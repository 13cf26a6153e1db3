"""Source-code bindings from logical asset names to identifiers.

The emitter builds an in-memory tree per input; renderers turn trees into
Luau modules and TypeScript declarations.
"""

from .emitter import BindingTree, build_tree, emit
from .render import BindingRenderer, LuauRenderer, TypeScriptRenderer, write_bindings

__all__ = [
    "BindingTree",
    "BindingRenderer",
    "LuauRenderer",
    "TypeScriptRenderer",
    "build_tree",
    "emit",
    "write_bindings",
]
