"""
Dispatch into user-script exports whose shape is only known at load time.

`classify_export` inspects a value once and returns a closed `ExportShape`;
`UserScriptDispatcher.dispatch` acts on that shape:

  FUNCTION           -> fn(params[, settings])
  MODULE_WITH_ENTRY  -> entry(params[, settings])    (only when settings are declared)
  OBJECT             -> ask the user for a member, then dispatch on it
  PRIMITIVE          -> str(value)
  INVALID            -> logged, output unchanged
"""
from __future__ import annotations

import enum
import inspect
import logging
import types
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence

from quickmacro.quickmacro_datatypes import MacroAbortError, MemberAccessError, UserScriptError

logger = logging.getLogger(__name__)

Suggest = Callable[[Sequence[str], Sequence[Any]], Awaitable[Optional[Any]]]


class _NoOutput:
    def __repr__(self):
        return "NO_OUTPUT"

    def __bool__(self):
        return False


NO_OUTPUT = _NoOutput()


class ExportShape(enum.Enum):
    FUNCTION = "function"
    MODULE_WITH_ENTRY = "module-with-entry"
    OBJECT = "object"
    PRIMITIVE = "primitive"
    INVALID = "invalid"


_PRIMITIVES = (str, int, float, bool)


# ===================================================================
# Capability checks
# ===================================================================

def _is_object(value: Any) -> bool:
    if value is None or isinstance(value, _PRIMITIVES) or callable(value):
        return False
    return isinstance(value, (Mapping, list, tuple, types.ModuleType, types.SimpleNamespace)) \
        or hasattr(value, "__dict__")


def export_keys(value: Any) -> List[str]:
    """The member names an object export offers, in definition order."""
    if isinstance(value, Mapping):
        return [str(k) for k in value.keys()]
    if isinstance(value, (list, tuple)):
        return [str(i) for i in range(len(value))]
    return [k for k in vars(value) if not k.startswith("_")]


def has_member(value: Any, key: str) -> bool:
    if isinstance(value, Mapping):
        return key in value
    if isinstance(value, (list, tuple)):
        return key.isdigit() and int(key) < len(value)
    if value is None or isinstance(value, _PRIMITIVES):
        return False
    return hasattr(value, key)


def get_member(value: Any, key: str) -> Any:
    if isinstance(value, Mapping):
        return value[key]
    if isinstance(value, (list, tuple)):
        return value[int(key)]
    return getattr(value, key)


def classify_export(value: Any) -> ExportShape:
    if isinstance(value, _PRIMITIVES):
        return ExportShape.PRIMITIVE
    if callable(value) and not isinstance(value, types.ModuleType):
        return ExportShape.FUNCTION
    if _is_object(value):
        if has_member(value, "entry") and callable(get_member(value, "entry")):
            return ExportShape.MODULE_WITH_ENTRY
        return ExportShape.OBJECT
    return ExportShape.INVALID


def stringify_primitive(value: Any) -> str:
    # Booleans lowercase, integral floats without a trailing .0
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def resolve_member_access(exports: Any, member_access: Sequence[str], macro_name: str) -> Any:
    """Plain indexing along `member_access`; no prompts are shown."""
    current = exports
    for key in member_access:
        if not has_member(current, key):
            logger.error("macro '%s' does not export member '%s'.", macro_name, key)
            raise MemberAccessError(macro_name, key)
        current = get_member(current, key)
    if current is None and member_access:
        logger.error("macro '%s' does not export member '%s'.", macro_name, member_access[-1])
        raise MemberAccessError(macro_name, member_access[-1])
    return current


async def call_export(fn: Callable[..., Any], *args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def accepts_settings(fn: Callable[..., Any]) -> bool:
    """True when `fn` can take a second positional argument (or `*args`)."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        # Builtins without introspectable signatures get both arguments
        return True
    positional = 0
    for p in sig.parameters.values():
        if p.kind is p.VAR_POSITIONAL:
            return True
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= 2


async def call_with_settings(fn: Callable[..., Any], params: Any, settings: Optional[Mapping[str, Any]]) -> Any:
    """fn(params, settings), or fn(params) for single-argument scripts."""
    if settings is not None and accepts_settings(fn):
        return await call_export(fn, params, settings)
    return await call_export(fn, params)


# ===================================================================
# Dispatcher
# ===================================================================

class UserScriptDispatcher:
    """Calls into one loaded export on behalf of a macro."""

    def __init__(self, params: Any, suggest: Suggest, choice_name: str):
        self.params = params
        self.suggest = suggest
        self.choice_name = choice_name

    async def dispatch(self, value: Any, settings: Optional[Mapping[str, Any]] = None) -> Any:
        """Returns the script's result, or NO_OUTPUT when the export was invalid."""
        shape = classify_export(value)
        logger.debug("dispatching user script export of shape %s", shape.value)
        match shape:
            case ExportShape.FUNCTION:
                return await call_with_settings(value, self.params, settings)
            case ExportShape.MODULE_WITH_ENTRY if settings is not None:
                return await call_with_settings(get_member(value, "entry"), self.params, settings)
            case ExportShape.MODULE_WITH_ENTRY | ExportShape.OBJECT:
                return await self._dispatch_object(value, settings)
            case ExportShape.PRIMITIVE:
                return stringify_primitive(value)
            case _:
                logger.error("user script in macro for '%s' is invalid", self.choice_name)
                return NO_OUTPUT

    async def _dispatch_object(self, obj: Any, settings: Optional[Mapping[str, Any]]) -> Any:
        keys = export_keys(obj)
        if not keys:
            raise UserScriptError(f"user script in macro for '{self.choice_name}' is an empty object")
        selected = await self.suggest(keys, keys)
        if selected is None:
            raise MacroAbortError("Input cancelled by user")
        return await self.dispatch(get_member(obj, selected), settings)
