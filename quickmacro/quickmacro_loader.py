"""
Reads a choices document into the typed data model.

A document is a mapping with an optional `choices` list, an optional legacy
`macros` list and an optional `settings` mapping. Field names follow the
stored form used by the note-taking host (`runOnStartup`, `commandId`,
`thenCommands`, ...); snake_case spellings are accepted as well.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from quickmacro.quickmacro_datatypes import (
    AIAssistantCommand, CaptureChoice, Choice, ChoiceCommand, ChoiceType,
    Command, CommandType, ConditionalCommand, Condition, EditorCommand,
    EditorCommandType, Macro, MacroChoice, MultiChoice, NestedChoiceCommand,
    ObsidianCommand, OpenFileCommand, ScriptCondition, TemplateChoice,
    UserScriptCommand, VariableCondition, WaitCommand, new_id,
)
from quickmacro.quickmacro_serialize import deserialize, serialize

logger = logging.getLogger(__name__)

_CHOICE_BASE_KEYS = {"id", "name", "type", "command"}


@dataclass
class ChoicesDocument:
    choices: List[Choice] = field(default_factory=list)
    macros: List[Macro] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)

    def all_macros(self) -> List[Macro]:
        """
        Legacy macros followed by the macros owned by macro choices, one per
        macro id. A dumped document carries a legacy macro both inline and in
        `macros`; the first occurrence wins.
        """
        out: List[Macro] = []
        seen = set()
        owned = [c.macro for c in flatten_choices(self.choices)
                 if isinstance(c, MacroChoice) and c.macro is not None]
        for macro in [*self.macros, *owned]:
            if macro.id in seen:
                continue
            seen.add(macro.id)
            out.append(macro)
        return out


def _get(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in data:
            return data[k]
    return default


# ===================================================================
# Conditions & commands
# ===================================================================

def condition_from_dict(data: Mapping[str, Any]) -> Condition:
    mode = data.get("mode", "variable")
    if mode == "script":
        return ScriptCondition(
            script_path=str(_get(data, "scriptPath", "script_path", default="")),
            export_name=_get(data, "exportName", "export_name"),
        )
    if mode != "variable":
        raise ValueError(f"Unknown condition mode: {mode!r}")
    expected = _get(data, "expectedValue", "expected_value")
    return VariableCondition(
        variable_name=str(_get(data, "variableName", "variable_name", default="")),
        operator=data.get("operator", "isTruthy"),
        value_type=_get(data, "valueType", "value_type", default="string"),
        expected_value=None if expected is None else str(expected),
    )


def command_from_dict(data: Mapping[str, Any], macros: Optional[Mapping[str, Macro]] = None) -> Command:
    raw_type = data.get("type")
    try:
        ctype = CommandType(raw_type)
    except ValueError:
        raise ValueError(f"Unknown command type: {raw_type!r}") from None
    name = data.get("name", "")
    cid = data.get("id") or new_id()

    match ctype:
        case CommandType.OBSIDIAN:
            return ObsidianCommand(name=name, id=cid, command_id=str(_get(data, "commandId", "command_id", default="")))
        case CommandType.USER_SCRIPT:
            return UserScriptCommand(name=name, id=cid, path=str(data.get("path", "")),
                                     settings=dict(data.get("settings") or {}))
        case CommandType.CHOICE:
            return ChoiceCommand(name=name, id=cid, choice_id=str(_get(data, "choiceId", "choice_id", default="")))
        case CommandType.NESTED_CHOICE:
            inner = data.get("choice")
            return NestedChoiceCommand(name=name, id=cid,
                                       choice=choice_from_dict(inner, macros) if inner else None)
        case CommandType.WAIT:
            return WaitCommand(name=name, id=cid, time=float(data.get("time", 0)))
        case CommandType.EDITOR_COMMAND:
            kind = EditorCommandType.parse(str(_get(data, "editorCommandType", "editor_command_type")))
            return EditorCommand(name=name, id=cid, editor_command_type=kind)
        case CommandType.CONDITIONAL:
            return ConditionalCommand(
                name=name, id=cid,
                condition=condition_from_dict(data.get("condition") or {}),
                then_commands=commands_from_list(_get(data, "thenCommands", "then_commands", default=[]), macros),
                else_commands=commands_from_list(_get(data, "elseCommands", "else_commands", default=[]), macros),
            )
        case CommandType.AI_ASSISTANT:
            payload = {k: v for k, v in data.items() if k not in ("id", "name", "type")}
            return AIAssistantCommand(name=name, id=cid, payload=payload)
        case CommandType.OPEN_FILE:
            return OpenFileCommand(name=name, id=cid,
                                   file_path=str(_get(data, "filePath", "file_path", default="")),
                                   open_in_new_tab=bool(_get(data, "openInNewTab", "open_in_new_tab", default=False)),
                                   direction=data.get("direction"))


def commands_from_list(items: Optional[Iterable[Mapping[str, Any]]],
                       macros: Optional[Mapping[str, Macro]] = None) -> List[Command]:
    return [command_from_dict(item, macros) for item in (items or [])]


def macro_from_dict(data: Mapping[str, Any], macros: Optional[Mapping[str, Macro]] = None) -> Macro:
    return Macro(
        id=data.get("id") or new_id(),
        name=data.get("name", ""),
        commands=commands_from_list(data.get("commands"), macros),
        run_on_startup=bool(_get(data, "runOnStartup", "run_on_startup", default=False)),
    )


# ===================================================================
# Choices
# ===================================================================

def choice_from_dict(data: Mapping[str, Any], macros: Optional[Mapping[str, Macro]] = None) -> Choice:
    raw_type = data.get("type")
    try:
        ctype = ChoiceType(raw_type)
    except ValueError:
        raise ValueError(f"Unknown choice type: {raw_type!r}") from None
    base = dict(name=data.get("name", ""), id=data.get("id") or new_id(), command=bool(data.get("command", False)))

    if ctype is ChoiceType.MACRO:
        macro_data = data.get("macro")
        if macro_data:
            macro = macro_from_dict(macro_data, macros)
        else:
            macro_id = _get(data, "macroId", "macro_id")
            macro = (macros or {}).get(macro_id) if macro_id else None
            if macro_id and macro is None:
                logger.warning("Macro choice '%s' references unknown macro id '%s'", base["name"], macro_id)
        return MacroChoice(macro=macro, **base)
    if ctype is ChoiceType.MULTI:
        return MultiChoice(choices=[choice_from_dict(c, macros) for c in data.get("choices") or []],
                           collapsed=bool(data.get("collapsed", False)), **base)
    payload = {k: v for k, v in data.items() if k not in _CHOICE_BASE_KEYS}
    if ctype is ChoiceType.TEMPLATE:
        return TemplateChoice(payload=payload, **base)
    return CaptureChoice(payload=payload, **base)


def flatten_choices(choices: Iterable[Choice]) -> List[Choice]:
    """Recursively flattens the choice hierarchy into a single list (depth first)."""
    result: List[Choice] = []

    def walk(choice: Choice):
        result.append(choice)
        if isinstance(choice, MultiChoice):
            for child in choice.choices:
                walk(child)

    for c in choices:
        walk(c)
    return result


def parse_document(data: Any) -> ChoicesDocument:
    if data is None:
        return ChoicesDocument()
    if isinstance(data, list):
        data = {"choices": data}
    if not isinstance(data, Mapping):
        raise ValueError("A choices document must be a mapping or a list of choices")
    legacy = [macro_from_dict(m) for m in data.get("macros") or []]
    by_id = {m.id: m for m in legacy}
    choices = [choice_from_dict(c, by_id) for c in data.get("choices") or []]
    settings = dict(data.get("settings") or {})
    return ChoicesDocument(choices=choices, macros=legacy, settings=settings)


def load_document(path: str | Path) -> ChoicesDocument:
    p = Path(path)
    text = p.read_bytes()
    doc = parse_document(deserialize(text, path=str(p)))
    logger.debug("Loaded %d choices and %d legacy macros from %s", len(doc.choices), len(doc.macros), p)
    return doc


# ===================================================================
# Back to plain structures
# ===================================================================

def condition_to_dict(condition: Condition) -> Dict[str, Any]:
    if isinstance(condition, ScriptCondition):
        out: Dict[str, Any] = {"mode": "script", "scriptPath": condition.script_path}
        if condition.export_name:
            out["exportName"] = condition.export_name
        return out
    out = {"mode": "variable", "variableName": condition.variable_name,
           "operator": condition.operator, "valueType": condition.value_type}
    if condition.expected_value is not None:
        out["expectedValue"] = condition.expected_value
    return out


def command_to_dict(command: Command) -> Dict[str, Any]:
    out: Dict[str, Any] = {"id": command.id, "name": command.name, "type": command.type.value}
    match command:
        case ObsidianCommand():
            out["commandId"] = command.command_id
        case UserScriptCommand():
            out["path"] = command.path
            out["settings"] = dict(command.settings)
        case ChoiceCommand():
            out["choiceId"] = command.choice_id
        case NestedChoiceCommand():
            out["choice"] = choice_to_dict(command.choice) if command.choice else None
        case WaitCommand():
            out["time"] = command.time
        case EditorCommand():
            out["editorCommandType"] = command.editor_command_type.value
        case ConditionalCommand():
            out["condition"] = condition_to_dict(command.condition)
            out["thenCommands"] = [command_to_dict(c) for c in command.then_commands]
            out["elseCommands"] = [command_to_dict(c) for c in command.else_commands]
        case AIAssistantCommand():
            out.update(command.payload)
        case OpenFileCommand():
            out["filePath"] = command.file_path
            out["openInNewTab"] = command.open_in_new_tab
            if command.direction:
                out["direction"] = command.direction
    return out


def macro_to_dict(macro: Macro) -> Dict[str, Any]:
    return {"id": macro.id, "name": macro.name, "runOnStartup": macro.run_on_startup,
            "commands": [command_to_dict(c) for c in macro.commands]}


def choice_to_dict(choice: Choice) -> Dict[str, Any]:
    out: Dict[str, Any] = {"id": choice.id, "name": choice.name, "type": choice.type.value,
                           "command": choice.command}
    match choice:
        case MacroChoice():
            out["macro"] = macro_to_dict(choice.macro) if choice.macro else None
        case MultiChoice():
            out["collapsed"] = choice.collapsed
            out["choices"] = [choice_to_dict(c) for c in choice.choices]
        case TemplateChoice() | CaptureChoice():
            out.update(choice.payload)
    return out


def dump_document(doc: ChoicesDocument, fmt: str = "yaml") -> str:
    data: Dict[str, Any] = {"choices": [choice_to_dict(c) for c in doc.choices]}
    if doc.macros:
        data["macros"] = [macro_to_dict(m) for m in doc.macros]
    if doc.settings:
        data["settings"] = doc.settings
    return serialize(data, fmt=fmt)
