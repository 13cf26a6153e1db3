"""Cloud backend.

Uploads assets to the cloud asset service. Identifiers are persistent, so
this is the only backend whose results are recorded in the manifest.
"""

from ...core.errors import ConfigurationError
from ...registry import BackendRegistry
from ..base import BackendParams
from .backend import CloudBackend
from .client import CloudClient


def _create_cloud_backend(params: BackendParams) -> CloudBackend:
    """Factory function for creating the cloud backend.

    Raises:
        ConfigurationError: If no API key is available
    """
    if not params.credentials.api_key:
        raise ConfigurationError("An API key is required to use the cloud target")

    client = CloudClient(
        api_key=params.credentials.api_key,
        creator=params.creator,
        cookie=params.credentials.cookie,
    )
    return CloudBackend(client, expected_price=params.expected_price)


# Auto-register at module import
BackendRegistry.register_factory("cloud", _create_cloud_backend)

__all__ = ["CloudBackend", "CloudClient"]
