from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path

from ..errors import ScriptError
from ..exit_codes import ERR_VALIDATION
from .schemas import schemas_root

_SCHEMA_ID_RE = re.compile(r"^rockctl\.[a-z0-9][a-z0-9._-]*\.v[1-9][0-9]*$")


@dataclass(frozen=True)
class CatalogEntry:
    name: str
    version: int
    file: str


def catalog_path() -> Path:
    return schemas_root() / "catalog.json"


def load_catalog() -> dict[str, CatalogEntry]:
    payload = json.loads(catalog_path().read_text(encoding="utf-8"))
    entries: dict[str, CatalogEntry] = {}
    for row in payload.get("schemas", []):
        entry = CatalogEntry(name=str(row["name"]), version=int(row["version"]), file=str(row["file"]))
        entries[entry.name] = entry
    return entries


def schema_path_for(schema_name: str) -> Path:
    if not _SCHEMA_ID_RE.match(schema_name):
        raise ScriptError(f"invalid schema name: {schema_name}", ERR_VALIDATION)
    entry = load_catalog().get(schema_name)
    if entry is None:
        raise ScriptError(f"unknown schema: {schema_name}", ERR_VALIDATION)
    return schemas_root() / entry.file
