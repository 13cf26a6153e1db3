"""Authentication credentials for the cloud backend.

Credentials come from command-line arguments first, then from the
environment (a .env file in the project directory is honoured by the CLI
through python-dotenv).
"""

import os
from collections.abc import Iterable
from dataclasses import dataclass

from .core.errors import ConfigurationError
from .core.types import AssetKind

API_KEY_ENV = "ASSET_SYNC_API_KEY"
COOKIE_ENV = "ASSET_SYNC_COOKIE"

# Kinds whose uploads must carry a session cookie
COOKIE_KINDS = frozenset({AssetKind.ANIMATION, AssetKind.VIDEO})


@dataclass(frozen=True)
class Credentials:
    api_key: str | None = None
    cookie: str | None = None

    def __repr__(self) -> str:
        # Never leak secrets into logs or tracebacks
        return (
            f"Credentials(api_key={'<set>' if self.api_key else None}, "
            f"cookie={'<set>' if self.cookie else None})"
        )

    def require(self, kinds: Iterable[AssetKind], api_key_required: bool = True) -> None:
        """Fail fast if a credential needed for the given upload kinds is absent.

        Args:
            kinds: Kinds of the assets that will be uploaded
            api_key_required: Whether backend calls will be made at all

        Raises:
            ConfigurationError: If a required credential is missing
        """
        if api_key_required and not self.api_key:
            raise ConfigurationError(
                f"An API key is required to sync to the cloud. "
                f"Pass --api-key or set {API_KEY_ENV}."
            )

        needs_cookie = sorted(kind.value for kind in set(kinds) & COOKIE_KINDS)
        if needs_cookie and not self.cookie:
            raise ConfigurationError(
                f"A session cookie is required to upload {', '.join(needs_cookie)} assets. "
                f"Pass --cookie or set {COOKIE_ENV}."
            )


def load_credentials(api_key: str | None = None, cookie: str | None = None) -> Credentials:
    """Resolve credentials from explicit values, falling back to the environment."""
    return Credentials(
        api_key=api_key or os.environ.get(API_KEY_ENV) or None,
        cookie=cookie or os.environ.get(COOKIE_ENV) or None,
    )
