"""Parsing helpers for settings that arrive as environment variables."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic_settings import EnvSettingsSource

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo


def parse_string_list(value: str | list[str], *, allow_empty: bool = False) -> list[str]:
    """Parse a list of strings given as a list, a JSON array or a CSV string.

    Empty input is rejected unless ``allow_empty`` is set.
    """
    if isinstance(value, list):
        if not allow_empty and not value:
            raise ValueError("String list value must not be empty")
        return value

    stripped = value.strip()
    if not stripped:
        if allow_empty:
            return []
        raise ValueError("String list value must not be empty")

    if stripped.startswith("["):
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON array: {e}") from e
        if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
            raise ValueError("JSON value must be an array of strings")
        result = parsed
    else:
        result = [item.strip() for item in stripped.split(",") if item.strip()]

    if not allow_empty and not result:
        raise ValueError("String list value must not be empty")
    return result


_STRING_LIST_FIELDS = {"cors_origins", "host_names"}


class StringListEnvSettingsSource(EnvSettingsSource):
    """Pass string-list env values through untouched so validators can parse CSV.

    pydantic-settings would otherwise try to JSON-decode list fields and fail on
    ``a,b`` before any field validator runs.
    """

    def prepare_field_value(
        self,
        field_name: str,
        field: FieldInfo,
        value: Any,  # noqa: ANN401
        value_is_complex: bool,  # noqa: FBT001
    ) -> Any:  # noqa: ANN401
        if field_name in _STRING_LIST_FIELDS and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)
