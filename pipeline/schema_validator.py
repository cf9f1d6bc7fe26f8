#!/usr/bin/env python3
"""JSON Schema validation of LLM payloads using the jsonschema library."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from jsonschema import Draft202012Validator, ValidationError


SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"


class SchemaValidator:
    """Validates payloads against JSON schemas with caching for performance."""

    def __init__(self, base_dir: Optional[Path] = None):
        """
        Initialize validator with schema directory.

        Args:
            base_dir: Directory containing JSON schema files (defaults to pipeline/schemas)
        """
        self.base_dir = base_dir or SCHEMA_DIR
        self._schema_cache: Dict[str, Dict[str, Any]] = {}

    def _load_schema(self, schema_name: str) -> Dict[str, Any]:
        if schema_name not in self._schema_cache:
            schema_path = self.base_dir / schema_name
            with schema_path.open("r", encoding="utf-8") as handle:
                self._schema_cache[schema_name] = json.load(handle)
        return self._schema_cache[schema_name]

    def validate(self, payload: Any, schema_name: str) -> None:
        """
        Validate a payload against a named schema.

        Raises:
            ValueError: If validation fails, naming the offending path
        """
        try:
            schema = self._load_schema(schema_name)
            Draft202012Validator(schema).validate(payload)
        except ValidationError as e:
            error_path = ".".join(str(p) for p in e.path) if e.path else "root"
            raise ValueError(
                f"Schema validation failed ({schema_name}): at '{error_path}': {e.message}"
            ) from e
        except FileNotFoundError as e:
            raise ValueError(f"Schema file not found: {schema_name}") from e
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in schema {schema_name}: {e}") from e
