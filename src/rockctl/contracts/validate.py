from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from ..errors import PreconditionError, ScriptError
from ..exit_codes import ERR_VALIDATION
from .catalog import schema_path_for


@lru_cache(maxsize=None)
def load_schema(schema_name: str) -> dict[str, Any]:
    return json.loads(schema_path_for(schema_name).read_text(encoding="utf-8"))


def schema_errors(schema_name: str, payload: Any) -> list[str]:
    import jsonschema

    validator_cls = jsonschema.validators.validator_for(load_schema(schema_name))
    validator = validator_cls(load_schema(schema_name))
    errors: list[str] = []
    for err in sorted(validator.iter_errors(payload), key=lambda e: [str(p) for p in e.absolute_path]):
        pointer = "/".join(str(p) for p in err.absolute_path) or "<root>"
        errors.append(f"{pointer}: {err.message}")
    return errors


def validate(schema_name: str, payload: Any) -> None:
    import jsonschema

    try:
        jsonschema.validate(payload, load_schema(schema_name))
    except jsonschema.ValidationError as exc:
        pointer = "/".join(str(p) for p in exc.absolute_path)
        loc = pointer or "<root>"
        message = f"schema validation failed for {schema_name} at {loc}: {exc.message}"
        raise ScriptError(message, ERR_VALIDATION, "schema_validation") from exc


def validate_file(schema_name: str, file_path: str | Path) -> None:
    path = Path(file_path)
    if not path.is_file():
        raise PreconditionError(f"payload file not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ScriptError(f"{path} is not valid JSON: {exc}", ERR_VALIDATION, "schema_validation") from exc
    validate(schema_name, payload)
