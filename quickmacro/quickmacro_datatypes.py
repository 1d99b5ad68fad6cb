"""
Defines the core data types for the quickmacro runtime.

This module provides the choice and command records the engine walks at
run time, the exception taxonomy, and the abort token used to carry a
cancellation out-of-band from nested invocations.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

# =================================================================
# Errors
# =================================================================

class QuickMacroError(Exception):
    """Base class for errors raised by the engine."""


class MacroAbortError(QuickMacroError):
    """A user-initiated abort. Carries a human readable reason."""
    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Macro execution aborted")

    @property
    def reason(self) -> str:
        return str(self)


class ChoiceLookupError(QuickMacroError):
    pass


class MemberAccessError(QuickMacroError):
    def __init__(self, macro_name: str, member: str):
        super().__init__(f"macro '{macro_name}' does not export member '{member}'.")
        self.macro_name = macro_name
        self.member = member


class UserScriptError(QuickMacroError):
    pass


class ChoiceRecursionError(QuickMacroError):
    pass


class UnsupportedCapabilityError(QuickMacroError, NotImplementedError):
    """The host does not offer one of the optional ChoiceHost capabilities."""


def is_user_cancellation(error: BaseException) -> bool:
    return isinstance(error, MacroAbortError) and "cancelled by user" in str(error).lower()


# =================================================================
# Abort token
# =================================================================

class AbortSignal:
    """
    A one-slot cancellation token shared by every frame of one execution
    session.

    Components that detect a cancellation call `signal`; the nearest macro
    frame that can observe it calls `consume` right after the call that may
    have triggered it and re-raises the returned error. The slot is cleared
    on read so one cancellation is raised exactly once.
    """
    __slots__ = ("_error",)

    def __init__(self):
        self._error: Optional[MacroAbortError] = None

    def signal(self, error: Union[MacroAbortError, str, None] = None) -> None:
        if not isinstance(error, MacroAbortError):
            error = MacroAbortError(error)
        self._error = error

    def consume(self) -> Optional[MacroAbortError]:
        error, self._error = self._error, None
        return error

    @property
    def is_set(self) -> bool:
        return self._error is not None

    def __repr__(self):
        return f"AbortSignal({self._error!r})"


# =================================================================
# Enumerations
# =================================================================

class ChoiceType(str, enum.Enum):
    TEMPLATE = "Template"
    CAPTURE = "Capture"
    MACRO = "Macro"
    MULTI = "Multi"


class CommandType(str, enum.Enum):
    OBSIDIAN = "Obsidian"
    USER_SCRIPT = "UserScript"
    CHOICE = "Choice"
    WAIT = "Wait"
    NESTED_CHOICE = "NestedChoice"
    EDITOR_COMMAND = "EditorCommand"
    AI_ASSISTANT = "AIAssistant"
    OPEN_FILE = "OpenFile"
    CONDITIONAL = "Conditional"


class EditorCommandType(str, enum.Enum):
    CUT = "Cut"
    COPY = "Copy"
    PASTE = "Paste"
    PASTE_WITH_FORMAT = "Paste with format"
    SELECT_ACTIVE_LINE = "Select active line"
    SELECT_LINK_ON_ACTIVE_LINE = "Select link on active line"
    MOVE_CURSOR_TO_FILE_START = "Move cursor to file start"
    MOVE_CURSOR_TO_FILE_END = "Move cursor to file end"
    MOVE_CURSOR_TO_LINE_START = "Move cursor to line start"
    MOVE_CURSOR_TO_LINE_END = "Move cursor to line end"

    @classmethod
    def parse(cls, raw: str) -> "EditorCommandType":
        """Accepts either the stored label ("Paste with format") or the member
        spelling ("PasteWithFormat")."""
        for member in cls:
            if raw == member.value or raw.replace(" ", "").lower() == member.name.replace("_", "").lower():
                return member
        raise ValueError(f"Unknown editor command type: {raw!r}")


CONDITION_OPERATORS = (
    "equals", "notEquals",
    "lessThan", "lessThanOrEqual", "greaterThan", "greaterThanOrEqual",
    "contains", "notContains",
    "isTruthy", "isFalsy",
)

CONDITION_VALUE_TYPES = ("string", "number", "boolean")


def new_id() -> str:
    return str(uuid.uuid4())


# =================================================================
# Conditions
# =================================================================

@dataclass
class VariableCondition:
    variable_name: str = ""
    operator: str = "isTruthy"
    value_type: str = "string"
    expected_value: Optional[str] = None
    mode: str = field(default="variable", init=False)


@dataclass
class ScriptCondition:
    script_path: str
    export_name: Optional[str] = None
    mode: str = field(default="script", init=False)


Condition = Union[VariableCondition, ScriptCondition]


# =================================================================
# Commands
# =================================================================

@dataclass
class Command:
    name: str = ""
    id: str = field(default_factory=new_id)
    type: CommandType = field(default=None, init=False)  # type: ignore[assignment]


@dataclass
class ObsidianCommand(Command):
    command_id: str = ""

    def __post_init__(self):
        self.type = CommandType.OBSIDIAN


@dataclass
class UserScriptCommand(Command):
    path: str = ""
    settings: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.type = CommandType.USER_SCRIPT


@dataclass
class ChoiceCommand(Command):
    choice_id: str = ""

    def __post_init__(self):
        self.type = CommandType.CHOICE


@dataclass
class NestedChoiceCommand(Command):
    choice: Optional["Choice"] = None

    def __post_init__(self):
        self.type = CommandType.NESTED_CHOICE


@dataclass
class WaitCommand(Command):
    time: float = 0  # milliseconds

    def __post_init__(self):
        self.type = CommandType.WAIT


@dataclass
class EditorCommand(Command):
    editor_command_type: EditorCommandType = EditorCommandType.COPY

    def __post_init__(self):
        self.type = CommandType.EDITOR_COMMAND


@dataclass
class ConditionalCommand(Command):
    condition: Condition = field(default_factory=VariableCondition)
    then_commands: List[Command] = field(default_factory=list)
    else_commands: List[Command] = field(default_factory=list)

    def __post_init__(self):
        self.type = CommandType.CONDITIONAL
        if not self.name:
            self.name = "If condition"


@dataclass
class AIAssistantCommand(Command):
    payload: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.type = CommandType.AI_ASSISTANT


@dataclass
class OpenFileCommand(Command):
    file_path: str = ""
    open_in_new_tab: bool = False
    direction: Optional[str] = None

    def __post_init__(self):
        self.type = CommandType.OPEN_FILE


# =================================================================
# Macros & Choices
# =================================================================

@dataclass
class Macro:
    name: str = ""
    commands: List[Command] = field(default_factory=list)
    run_on_startup: bool = False
    id: str = field(default_factory=new_id)


@dataclass
class Choice:
    name: str = ""
    id: str = field(default_factory=new_id)
    command: bool = False
    type: ChoiceType = field(default=None, init=False)  # type: ignore[assignment]


@dataclass
class TemplateChoice(Choice):
    payload: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.type = ChoiceType.TEMPLATE


@dataclass
class CaptureChoice(Choice):
    payload: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.type = ChoiceType.CAPTURE


@dataclass
class MacroChoice(Choice):
    macro: Optional[Macro] = None

    def __post_init__(self):
        self.type = ChoiceType.MACRO


@dataclass
class MultiChoice(Choice):
    choices: List[Choice] = field(default_factory=list)
    collapsed: bool = False

    def __post_init__(self):
        self.type = ChoiceType.MULTI

    def add_choice(self, choice: Choice) -> "MultiChoice":
        self.choices.append(choice)
        return self

    def add_choices(self, choices: List[Choice]) -> "MultiChoice":
        self.choices.extend(choices)
        return self


__all__ = [
    "QuickMacroError", "MacroAbortError", "ChoiceLookupError", "MemberAccessError",
    "UserScriptError", "ChoiceRecursionError", "UnsupportedCapabilityError", "is_user_cancellation",
    "AbortSignal",
    "ChoiceType", "CommandType", "EditorCommandType",
    "CONDITION_OPERATORS", "CONDITION_VALUE_TYPES", "new_id",
    "VariableCondition", "ScriptCondition", "Condition",
    "Command", "ObsidianCommand", "UserScriptCommand", "ChoiceCommand",
    "NestedChoiceCommand", "WaitCommand", "EditorCommand", "ConditionalCommand",
    "AIAssistantCommand", "OpenFileCommand",
    "Macro", "Choice", "TemplateChoice", "CaptureChoice", "MacroChoice", "MultiChoice",
]
