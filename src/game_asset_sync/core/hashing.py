"""Content hashing.

The ContentHash is computed over post-preprocessing bytes, so two sources
that rasterize or bleed to identical output share a hash.
"""

import hashlib

HASH_ALGORITHM = "sha256"

# Length of a hex digest, used by the manifest schema
HASH_HEX_LENGTH = 64


def content_hash(data: bytes) -> str:
    """Return the hex ContentHash of processed asset bytes."""
    return hashlib.new(HASH_ALGORITHM, data).hexdigest()
