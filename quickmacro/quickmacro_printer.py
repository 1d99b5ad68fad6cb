"""
A tree printer for choices, macros and commands.
"""
import collections.abc

from quickmacro.quickmacro_conditions import describe_condition
from quickmacro.quickmacro_datatypes import (
    AIAssistantCommand, CaptureChoice, ChoiceCommand, ConditionalCommand, EditorCommand,
    Macro, MacroChoice, MultiChoice, NestedChoiceCommand, ObsidianCommand, OpenFileCommand,
    TemplateChoice, UserScriptCommand, WaitCommand,
)
from quickmacro.quickmacro_loader import ChoicesDocument


class Printer:
    """Formats choice trees into an indented, human readable listing."""

    def __init__(self, indent_width=2):
        self._indent_char = " " * indent_width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, collections.abc.Mapping): return self._pformat_dict
        if isinstance(obj, (list, tuple)): return self._pformat_sequence
        return lambda o, l: self._indent(l) + repr(o)

    def _create_handlers(self):
        return {
            ChoicesDocument: self._pformat_document,
            TemplateChoice: self._pformat_leaf_choice,
            CaptureChoice: self._pformat_leaf_choice,
            MacroChoice: self._pformat_macro_choice,
            MultiChoice: self._pformat_multi_choice,
            Macro: self._pformat_macro,
            ObsidianCommand: self._pformat_obsidian,
            UserScriptCommand: self._pformat_user_script,
            ChoiceCommand: self._pformat_choice_command,
            NestedChoiceCommand: self._pformat_nested_choice,
            WaitCommand: self._pformat_wait,
            EditorCommand: self._pformat_editor,
            ConditionalCommand: self._pformat_conditional,
            AIAssistantCommand: self._pformat_simple_command,
            OpenFileCommand: self._pformat_open_file,
        }

    def _indent(self, level):
        return self._indent_char * level

    def _lines(self, items, level):
        return [self.pformat(item, level) for item in items]

    # --- Containers ---

    def _pformat_document(self, obj, level):
        parts = self._lines(obj.choices, level)
        if obj.macros:
            parts.append(f"{self._indent(level)}Macros:")
            parts.extend(self._lines(obj.macros, level + 1))
        return "\n".join(parts)

    def _pformat_sequence(self, obj, level):
        return "\n".join(self._lines(obj, level))

    def _pformat_dict(self, obj, level):
        pad = self._indent(level)
        return "\n".join(f"{pad}{k}: {v!r}" for k, v in obj.items())

    # --- Choices ---

    def _choice_header(self, obj, level):
        flag = " [command]" if obj.command else ""
        return f"{self._indent(level)}{obj.type.value}: {obj.name}{flag}"

    def _pformat_leaf_choice(self, obj, level):
        return self._choice_header(obj, level)

    def _pformat_macro_choice(self, obj, level):
        header = self._choice_header(obj, level)
        if obj.macro is None:
            return f"{header}\n{self._indent(level + 1)}(no macro)"
        commands = self._lines(obj.macro.commands, level + 1)
        return "\n".join([header] + commands)

    def _pformat_multi_choice(self, obj, level):
        header = self._choice_header(obj, level)
        if obj.collapsed:
            header += f" ({len(obj.choices)} hidden)"
            return header
        return "\n".join([header] + self._lines(obj.choices, level + 1))

    def _pformat_macro(self, obj, level):
        flag = " [startup]" if obj.run_on_startup else ""
        header = f"{self._indent(level)}{obj.name}{flag}"
        return "\n".join([header] + self._lines(obj.commands, level + 1))

    # --- Commands ---

    def _command_line(self, obj, level, detail=""):
        label = obj.name or obj.type.value
        text = f"{self._indent(level)}- {obj.type.value}: {label}"
        return f"{text} ({detail})" if detail else text

    def _pformat_simple_command(self, obj, level):
        return self._command_line(obj, level)

    def _pformat_obsidian(self, obj, level):
        return self._command_line(obj, level, obj.command_id)

    def _pformat_user_script(self, obj, level):
        return self._command_line(obj, level, obj.path)

    def _pformat_choice_command(self, obj, level):
        return self._command_line(obj, level, f"choice {obj.choice_id}")

    def _pformat_nested_choice(self, obj, level):
        line = self._command_line(obj, level)
        if obj.choice is None:
            return line
        return f"{line}\n{self.pformat(obj.choice, level + 1)}"

    def _pformat_wait(self, obj, level):
        return self._command_line(obj, level, f"{obj.time:g} ms")

    def _pformat_editor(self, obj, level):
        return self._command_line(obj, level, obj.editor_command_type.value)

    def _pformat_open_file(self, obj, level):
        detail = obj.file_path + (" in new tab" if obj.open_in_new_tab else "")
        return self._command_line(obj, level, detail)

    def _pformat_conditional(self, obj, level):
        pad = self._indent(level + 1)
        parts = [f"{self._indent(level)}- If {describe_condition(obj.condition)}"]
        parts.append(f"{pad}then:")
        parts.extend(self._lines(obj.then_commands, level + 2) or [f"{pad}{self._indent_char}(nothing)"])
        if obj.else_commands:
            parts.append(f"{pad}else:")
            parts.extend(self._lines(obj.else_commands, level + 2))
        return "\n".join(parts)
