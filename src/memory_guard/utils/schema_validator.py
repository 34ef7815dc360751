from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from jsonschema import Draft202012Validator

from .json_canonical import to_jsonable

DEFAULT_SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "config" / "schemas"


class SchemaRegistry:
    """Event-type -> JSON schema lookup backed by ``registry.json``."""

    def __init__(self, schemas_dir: Path = DEFAULT_SCHEMAS_DIR):
        reg = json.loads((schemas_dir / "registry.json").read_text(encoding="utf-8"))
        self._map = {s["event_type"]: (schemas_dir / s["path"]) for s in reg["schemas"]}
        self._validators: Dict[str, Draft202012Validator] = {}

    def __contains__(self, event_type: str) -> bool:
        return event_type in self._map

    def load_schema(self, event_type: str) -> Dict[str, Any]:
        return json.loads(self._map[event_type].read_text(encoding="utf-8"))

    def validator(self, event_type: str) -> Optional[Draft202012Validator]:
        if event_type not in self._map:
            return None
        if event_type not in self._validators:
            self._validators[event_type] = Draft202012Validator(self.load_schema(event_type))
        return self._validators[event_type]


def validate_payload(payload: Mapping[str, Any], event_type: str, registry: SchemaRegistry) -> None:
    """Raises jsonschema.ValidationError; event types without a schema pass."""
    v = registry.validator(event_type)
    if v is None:
        return
    v.validate(to_jsonable(payload))
