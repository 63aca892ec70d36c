"""
Check a serialized document annotation set (camelCase JSON) against the bundled schema.

The schema file ships as package data next to this module, so installed and editable
copies resolve it the same way.
"""
from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

import jsonschema

SCHEMA_FILE = Path(__file__).resolve().parent / "schemas" / "document-annotations.schema.json"


@lru_cache(maxsize=1)
def _annotation_validator() -> jsonschema.Draft202012Validator:
    with SCHEMA_FILE.open("r", encoding="utf-8") as f:
        schema = json.load(f)
    jsonschema.Draft202012Validator.check_schema(schema)
    return jsonschema.Draft202012Validator(schema)


def _pointer(error: jsonschema.ValidationError) -> str:
    return "/" + "/".join(str(p) for p in error.absolute_path)


def validate_output(data: dict[str, Any]) -> tuple[bool, list[str]]:
    """Returns ``(is_valid, messages)``; each message is ``<json-pointer>: <reason>``."""
    errors = sorted(
        _annotation_validator().iter_errors(data),
        key=lambda e: (_pointer(e), e.message),
    )
    messages = [f"{_pointer(e)}: {e.message}" for e in errors]
    return (not messages, messages)
