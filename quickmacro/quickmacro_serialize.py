from __future__ import annotations

import enum
import json
import tomllib
from pathlib import Path
from typing import Any, Optional
import collections.abc

import yaml


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        enc = encoding or 'utf-8'
        try:
            return data.decode(enc, errors='replace')
        except LookupError:
            return data.decode('utf-8', errors='replace')
    if isinstance(data, str):
        return data
    return str(data)


def _to_builtin(obj: Any) -> Any:
    # Enums stored on the data model serialize as their stored label
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, (list, tuple)):
        return [_to_builtin(x) for x in obj]
    if isinstance(obj, collections.abc.Mapping):
        return {str(k): _to_builtin(v) for k, v in obj.items()}
    return obj


def detect_format(path: Optional[str] = None, data_hint: Optional[str] = None) -> Optional[str]:
    """
    Returns a canonical format name among: 'json', 'yaml', 'toml'.
    Uses the file extension first; falls back to simple data sniffing if provided.
    """
    ext = Path(path).suffix.lower() if path else ""
    if ext == ".json":
        return 'json'
    if ext in (".yaml", ".yml"):
        return 'yaml'
    if ext == ".toml":
        return 'toml'

    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith('{') or s.startswith('['):
            return 'json'
        # YAML is a superset of JSON, so it is the safest guess for the rest
        return 'yaml'
    return None


# --------------------------
# Public API
# --------------------------

def deserialize(data: bytes | bytearray | str,
                *,
                fmt: Optional[str] = None,
                path: Optional[str] = None) -> Any:
    """
    Convert document text (bytes/string) to plain Python structures.
    Supported fmt: 'json', 'yaml', 'toml'.
    If fmt is None, uses the path extension, then sniffing.
    Raises ValueError when the text cannot be parsed in the chosen format.
    """
    text = _norm_text(data)
    f = (fmt or detect_format(path, text))
    if f == 'json':
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            # Declared JSON but actually YAML-like content is still accepted
            try:
                return yaml.safe_load(text)
            except yaml.YAMLError:
                raise ValueError(f"Invalid JSON document: {e}") from e
    if f == 'yaml':
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML document: {e}") from e
    if f == 'toml':
        try:
            return tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML document: {e}") from e
    raise ValueError(f"Unsupported document format: {f!r}")


def serialize(value: Any,
              *,
              fmt: str,
              pretty: bool = True) -> str:
    """
    Convert a plain Python value into a textual representation.
    - fmt: 'json' | 'yaml'
    """
    f = (fmt or '').lower()
    built = _to_builtin(value)
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False, allow_unicode=True)
    if f == 'toml':
        raise ValueError("TOML serialization is not supported (tomllib is read-only)")
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "deserialize",
    "serialize",
    "detect_format",
]
