from __future__ import annotations

from functools import lru_cache
from importlib import resources
import json
from typing import Any

from jsonschema import Draft202012Validator

SCHEMA_FILE = "schemas/status-message.schema.json"


def load_schema() -> dict[str, Any]:
    schema_path = resources.files("status_tap").joinpath(SCHEMA_FILE)
    return json.loads(schema_path.read_text(encoding="utf-8"))


@lru_cache(maxsize=1)
def get_validator() -> Draft202012Validator:
    schema = load_schema()
    return Draft202012Validator(schema=schema)


def validate_message(message: dict[str, Any]) -> list[str]:
    validator = get_validator()
    errors = sorted(validator.iter_errors(message), key=lambda e: [str(part) for part in e.path])
    return [error.message for error in errors]
