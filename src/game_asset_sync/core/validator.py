"""JSON Schema validation for the configuration and manifest documents.

Schemas ship inside the package (game_asset_sync/schemas/) and are loaded
lazily by name.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

import jsonschema
from jsonschema import ValidationError

# game_asset_sync/core/validator.py -> game_asset_sync/schemas/
SCHEMA_DIR = Path(__file__).parent.parent / "schemas"

CONFIG_SCHEMA = "config.schema.json"
LOCKFILE_SCHEMA = "lockfile.schema.json"


@lru_cache(maxsize=None)
def load_schema(name: str) -> dict[str, Any]:
    """Load a bundled JSON schema from disk.

    Args:
        name: File name of the schema inside the schemas directory

    Returns:
        Dictionary containing the JSON Schema.

    Raises:
        FileNotFoundError: If schema file doesn't exist
        json.JSONDecodeError: If schema is invalid JSON
    """
    schema_path = SCHEMA_DIR / name
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema file not found: {schema_path}")

    with schema_path.open("r", encoding="utf-8") as f:
        return json.load(f)  # type: ignore[no-any-return]


def validate_document(document: Any, schema_name: str) -> None:
    """Validate a document against a bundled schema.

    Raises:
        ValidationError: If the document doesn't conform to the schema
    """
    jsonschema.validate(instance=document, schema=load_schema(schema_name))


def validate_with_error_details(document: Any, schema_name: str) -> tuple[bool, str | None]:
    """Validate a document and return detailed error information.

    This is a convenience wrapper that catches validation errors and
    returns user-friendly error messages.

    Args:
        document: The decoded document to validate
        schema_name: File name of the schema to validate against

    Returns:
        Tuple of (is_valid, error_message). error_message is None if valid.
    """
    try:
        validate_document(document, schema_name)
        return True, None
    except ValidationError as e:
        error_path = " -> ".join(str(p) for p in e.path) if e.path else "root"
        error_msg = f"Validation error at {error_path}: {e.message}"

        if e.instance:
            error_msg += f"\nInvalid value: {e.instance}"

        return False, error_msg
    except (FileNotFoundError, json.JSONDecodeError) as e:
        return False, f"Schema error: {e}"
