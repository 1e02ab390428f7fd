"""Schema validation helpers for the pyramid descriptor and build options."""

from __future__ import annotations

import json
from importlib import resources
from typing import Any, Mapping

import jsonschema

SCHEMA_VERSION = "1"


def _load_schema(name: str) -> dict[str, Any]:
    """Load a JSON schema bundled in the package."""
    with resources.files("tmspyramid.schemas").joinpath(name).open("r", encoding="utf-8") as handle:
        return json.load(handle)


def validate_metadata(payload: Mapping[str, Any]) -> None:
    """Validate a pyramid metadata descriptor against the schema."""
    schema = _load_schema("metadata.schema.json")
    jsonschema.validate(payload, schema)


def validate_build_options(payload: Mapping[str, Any]) -> None:
    """Validate build options against the schema."""
    schema = _load_schema("build_options.schema.json")
    jsonschema.validate(payload, schema)
