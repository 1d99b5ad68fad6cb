import json
import textwrap

import pytest

from quickmacro.quickmacro_datatypes import (
    CaptureChoice, ChoiceCommand, CommandType, ConditionalCommand, EditorCommand,
    EditorCommandType, MacroChoice, MultiChoice, NestedChoiceCommand, OpenFileCommand,
    ScriptCondition, TemplateChoice, UserScriptCommand, VariableCondition, WaitCommand,
)
from quickmacro.quickmacro_loader import (
    command_from_dict, dump_document, flatten_choices, load_document, parse_document,
)
from quickmacro.quickmacro_serialize import deserialize, detect_format, serialize

DOCUMENT = textwrap.dedent("""
    settings:
      showInputCancellationNotification: false
    macros:
      - id: legacy-1
        name: Legacy
        runOnStartup: true
        commands:
          - {type: Obsidian, name: Reload, commandId: "app:reload"}
    choices:
      - id: c-legacy
        name: Uses legacy
        type: Macro
        macroId: legacy-1
      - id: c-multi
        name: Group
        type: Multi
        collapsed: true
        choices:
          - {id: c-template, name: New note, type: Template, templatePath: tpl/note.md}
          - {id: c-capture, name: Log, type: Capture, captureTo: log.md}
      - id: c-macro
        name: Work
        type: Macro
        command: true
        macro:
          name: Work
          commands:
            - {type: UserScript, path: scripts/a.py, settings: {mode: fast}}
            - {type: Wait, time: 250}
            - {type: EditorCommand, editorCommandType: Paste with format}
            - type: Conditional
              condition: {mode: variable, variableName: x, operator: equals, valueType: string, expectedValue: 1}
              thenCommands:
                - {type: Choice, choiceId: c-template}
              elseCommands:
                - type: NestedChoice
                  choice: {id: c-inline, name: Inline, type: Capture, captureTo: inbox.md}
            - type: Conditional
              condition: {mode: script, scriptPath: check.py, exportName: ok}
            - {type: OpenFile, filePath: today.md, openInNewTab: true}
""")


def test_parse_document_builds_typed_tree():
    doc = parse_document(deserialize(DOCUMENT, fmt="yaml"))
    assert doc.settings == {"showInputCancellationNotification": False}
    legacy_choice, group, work = doc.choices

    assert isinstance(legacy_choice, MacroChoice)
    assert legacy_choice.macro is doc.macros[0]
    assert doc.macros[0].run_on_startup is True

    assert isinstance(group, MultiChoice) and group.collapsed
    template, capture = group.choices
    assert isinstance(template, TemplateChoice)
    assert template.payload == {"templatePath": "tpl/note.md"}
    assert isinstance(capture, CaptureChoice)

    assert work.command is True
    script, wait, editor, cond, script_cond, open_file = work.macro.commands
    assert isinstance(script, UserScriptCommand) and script.settings == {"mode": "fast"}
    assert isinstance(wait, WaitCommand) and wait.time == 250
    assert isinstance(editor, EditorCommand)
    assert editor.editor_command_type is EditorCommandType.PASTE_WITH_FORMAT
    assert isinstance(cond, ConditionalCommand)
    assert cond.condition == VariableCondition("x", "equals", "string", "1")
    assert isinstance(cond.then_commands[0], ChoiceCommand)
    assert cond.then_commands[0].choice_id == "c-template"
    nested = cond.else_commands[0]
    assert isinstance(nested, NestedChoiceCommand) and nested.choice.name == "Inline"
    assert script_cond.condition == ScriptCondition("check.py", "ok")
    assert script_cond.then_commands == [] and script_cond.else_commands == []
    assert isinstance(open_file, OpenFileCommand) and open_file.open_in_new_tab


def test_flatten_and_all_macros():
    doc = parse_document(deserialize(DOCUMENT, fmt="yaml"))
    names = [c.name for c in flatten_choices(doc.choices)]
    assert names == ["Uses legacy", "Group", "New note", "Log", "Work"]
    assert [m.name for m in doc.all_macros()] == ["Legacy", "Work"]


def test_list_document_and_empty_document():
    doc = parse_document([{"name": "T", "type": "Template"}])
    assert [c.name for c in doc.choices] == ["T"]
    assert doc.choices[0].id
    assert parse_document(None).choices == []
    with pytest.raises(ValueError):
        parse_document("not a document")


def test_unknown_types_are_rejected():
    with pytest.raises(ValueError, match="Unknown command type"):
        command_from_dict({"type": "Teleport"})
    with pytest.raises(ValueError, match="Unknown choice type"):
        parse_document({"choices": [{"type": "Nope"}]})
    with pytest.raises(ValueError, match="Unknown condition mode"):
        command_from_dict({"type": "Conditional", "condition": {"mode": "magic"}})


def test_snake_case_fields_are_accepted():
    cmd = command_from_dict({"type": "Obsidian", "command_id": "x"})
    assert cmd.type is CommandType.OBSIDIAN and cmd.command_id == "x"


def test_unknown_macro_id_leaves_macro_empty(caplog):
    doc = parse_document({"choices": [{"name": "M", "type": "Macro", "macroId": "ghost"}]})
    assert doc.choices[0].macro is None
    assert "unknown macro id 'ghost'" in caplog.text


def test_dump_document_keeps_stored_field_names():
    doc = parse_document(deserialize(DOCUMENT, fmt="yaml"))
    again = parse_document(deserialize(dump_document(doc), fmt="yaml"))
    work = again.choices[2]
    assert work.macro.commands[2].editor_command_type is EditorCommandType.PASTE_WITH_FORMAT
    assert again.choices[0].macro.name == "Legacy"

    data = json.loads(dump_document(doc, fmt="json"))
    cond = data["choices"][2]["macro"]["commands"][3]
    assert set(cond) >= {"condition", "thenCommands", "elseCommands"}
    assert cond["condition"]["variableName"] == "x"


def test_dumped_legacy_macro_is_listed_once():
    source = {"macros": [{"id": "m1", "name": "Boot", "runOnStartup": True}],
              "choices": [{"name": "Boot", "type": "Macro", "macroId": "m1"}]}
    again = parse_document(deserialize(dump_document(parse_document(source)), fmt="yaml"))
    startup = [m for m in again.all_macros() if m.run_on_startup]
    assert [m.id for m in startup] == ["m1"]


def test_load_document_from_json_and_toml(tmp_path):
    json_path = tmp_path / "choices.json"
    json_path.write_text(json.dumps({"choices": [{"name": "J", "type": "Capture"}]}), encoding="utf-8")
    assert load_document(json_path).choices[0].name == "J"

    toml_path = tmp_path / "choices.toml"
    toml_path.write_text(textwrap.dedent("""
        [[choices]]
        name = "T"
        type = "Macro"

        [choices.macro]
        name = "T"

        [[choices.macro.commands]]
        type = "Obsidian"
        commandId = "x"
    """), encoding="utf-8")
    doc = load_document(toml_path)
    assert doc.choices[0].macro.commands[0].command_id == "x"


def test_detect_format_and_errors():
    assert detect_format("a.yml") == "yaml"
    assert detect_format("a.toml") == "toml"
    assert detect_format(None, ' {"a": 1}') == "json"
    assert detect_format(None, "a: 1") == "yaml"
    assert detect_format(None) is None
    with pytest.raises(ValueError):
        deserialize("a = = 1", fmt="toml")
    with pytest.raises(ValueError):
        serialize({"a": 1}, fmt="toml")
