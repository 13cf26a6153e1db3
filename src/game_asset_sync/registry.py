"""Backend registry for factory-based backend creation.

This module provides a central registry for backend factories,
enabling target selection by name and automatic backend discovery.
"""

import importlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .backends.base import Backend, BackendParams

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Central registry for backend factories.

    Backend packages register themselves when imported, and the registry
    can automatically discover all available backends.

    This design keeps the sync engine backend-agnostic while allowing the
    target to be chosen at startup.
    """

    _factories: dict[str, Callable[["BackendParams"], "Backend"]] = {}

    @classmethod
    def register_factory(cls, name: str, factory: Callable[["BackendParams"], "Backend"]) -> None:
        """Register a factory function for creating backends.

        Args:
            name: Name of the target (e.g., 'cloud', 'debug')
            factory: Callable that creates a Backend from BackendParams

        Example:
            >>> def create_debug_backend(params: BackendParams) -> DebugBackend:
            ...     return DebugBackend(params.project_dir / DEBUG_DIR)
            >>> BackendRegistry.register_factory('debug', create_debug_backend)
        """
        cls._factories[name] = factory

    @classmethod
    def create_backend(cls, name: str, params: "BackendParams") -> "Backend":
        """Create a backend from a registered factory.

        Args:
            name: Name of the registered target
            params: Parameters passed to the factory

        Returns:
            Backend instance ready for uploads

        Raises:
            ValueError: If name is not registered
        """
        if name not in cls._factories:
            available = ", ".join(sorted(cls._factories)) or "none"
            raise ValueError(f"Unknown target: '{name}'. Available targets: {available}")

        return cls._factories[name](params)

    @classmethod
    def list_backends(cls) -> list[str]:
        """List all registered target names.

        Example:
            >>> BackendRegistry.list_backends()
            ['cloud', 'debug', 'studio']
        """
        return sorted(cls._factories)

    @classmethod
    def discover_backends(cls) -> None:
        """Auto-discover and import all backends.

        This method iterates through the backends/ directory and imports
        each backend package. Backends register themselves via their
        __init__.py files.
        """
        backends_dir = Path(__file__).parent / "backends"

        for backend_path in sorted(backends_dir.iterdir()):
            if not backend_path.is_dir():
                continue

            if not (backend_path / "__init__.py").exists():
                continue

            importlib.import_module(f".backends.{backend_path.name}", package=__package__)
            logger.debug("Loaded backend package %s", backend_path.name)
