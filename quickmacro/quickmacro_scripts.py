"""
Loading of Python user scripts and the helpers around their exports.

A user script is a plain Python file. Its export value is chosen the way a
CommonJS module's would be: the module attribute `exports` when the script
defines one, else `default`, else an object made of the module's public
members.
"""
from __future__ import annotations

import importlib.util
import inspect
import itertools
import logging
import os
import types
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Tuple

logger = logging.getLogger(__name__)

_module_counter = itertools.count()


def _resolve_path(path: str, base_dir: Optional[str]) -> str:
    if path.startswith("~"):
        return os.path.expanduser(path)
    if os.path.isabs(path):
        return path
    return os.path.normpath(os.path.join(base_dir or os.getcwd(), path))


def module_exports(module: types.ModuleType) -> Any:
    """Pick the export value of an already executed script module."""
    if hasattr(module, "exports"):
        return module.exports
    if hasattr(module, "default"):
        return module.default
    out: Dict[str, Any] = {}
    for name, member in vars(module).items():
        if name.startswith("_") or inspect.ismodule(member):
            continue
        # Skip names the script merely imported (classes/functions from elsewhere)
        owner = getattr(member, "__module__", module.__name__)
        if (inspect.isfunction(member) or inspect.isclass(member)) and owner != module.__name__:
            continue
        out[name] = member
    return out


def load_user_script(path: str, base_dir: Optional[str] = None) -> Any:
    """
    Execute the script at `path` and return its export value.

    Returns None (after logging) when the file does not exist. Errors raised
    while the script body runs are not caught.
    """
    full = _resolve_path(path, base_dir)
    if not os.path.isfile(full):
        logger.error("failed to load file %s.", path)
        return None
    stem = os.path.splitext(os.path.basename(full))[0]
    # A fresh module name per load so edited scripts are picked up on every run
    mod_name = f"quickmacro_user_script_{stem}_{next(_module_counter)}"
    spec = importlib.util.spec_from_file_location(mod_name, full)
    if spec is None or spec.loader is None:
        logger.error("failed to load user script %s.", path)
        return None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module_exports(module)


def split_member_access(full_member_path: str) -> Tuple[Optional[str], List[str]]:
    """Split `name::a::b` into the base name and the member path (trimmed, empties dropped)."""
    parts = [p.strip() for p in full_member_path.split("::")]
    parts = [p for p in parts if p]
    if not parts:
        return None, []
    return parts[0], parts[1:]


def get_settings_spec(exports: Any) -> Optional[Mapping[str, Any]]:
    """The `settings` declaration a script exports next to its entry point, if any."""
    if isinstance(exports, Mapping):
        spec = exports.get("settings")
    else:
        spec = getattr(exports, "settings", None)
    return spec if isinstance(spec, Mapping) else None


def initialize_user_script_settings(command_settings: MutableMapping[str, Any],
                                    script_settings: Mapping[str, Any]) -> None:
    """
    Populate unset command settings with the defaults the script declares
    under `options.<name>.defaultValue`.
    """
    options = script_settings.get("options")
    if not isinstance(options, Mapping):
        return
    for name, option in options.items():
        if command_settings.get(name) is not None:
            continue
        if isinstance(option, Mapping) and option.get("defaultValue") is not None:
            command_settings[name] = option["defaultValue"]
