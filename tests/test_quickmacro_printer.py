from quickmacro.quickmacro_datatypes import (
    ChoiceCommand, ConditionalCommand, EditorCommand, EditorCommandType, Macro, MacroChoice,
    MultiChoice, ObsidianCommand, TemplateChoice, UserScriptCommand, VariableCondition, WaitCommand,
)
from quickmacro.quickmacro_loader import ChoicesDocument
from quickmacro.quickmacro_printer import Printer


def test_pformat_choice_tree():
    cond = ConditionalCommand(
        condition=VariableCondition("x", "equals", "string", "a"),
        then_commands=[ObsidianCommand(name="Reload", command_id="app:reload")],
    )
    macro = MacroChoice(name="Work", command=True, macro=Macro(commands=[
        UserScriptCommand(name="Script", path="a.py"),
        WaitCommand(time=250),
        EditorCommand(editor_command_type=EditorCommandType.COPY),
        cond,
    ]))
    root = MultiChoice(name="Root", choices=[TemplateChoice(name="Note"), macro])

    expected = "\n".join([
        "Multi: Root",
        "  Template: Note",
        "  Macro: Work [command]",
        "    - UserScript: Script (a.py)",
        "    - Wait: Wait (250 ms)",
        "    - EditorCommand: EditorCommand (Copy)",
        '    - If $x equals "a"',
        "      then:",
        "        - Obsidian: Reload (app:reload)",
    ])
    assert Printer().pformat(root) == expected


def test_pformat_collapsed_multi_and_empty_macro():
    collapsed = MultiChoice(name="Hidden", collapsed=True, choices=[TemplateChoice(name="T")])
    assert Printer().pformat(collapsed) == "Multi: Hidden (1 hidden)"
    assert Printer(indent_width=4).pformat(MacroChoice(name="Empty"), 1) == "    Macro: Empty\n        (no macro)"


def test_pformat_document_lists_legacy_macros():
    legacy = Macro(name="Boot", run_on_startup=True, commands=[ChoiceCommand(name="Go", choice_id="abc")])
    doc = ChoicesDocument(choices=[TemplateChoice(name="T")], macros=[legacy])
    assert Printer().pformat(doc) == "\n".join([
        "Template: T",
        "Macros:",
        "  Boot [startup]",
        "    - Choice: Go (choice abc)",
    ])


def test_pformat_empty_then_branch_and_fallbacks():
    cond = ConditionalCommand(condition=VariableCondition("flag", "isTruthy"))
    assert Printer().pformat(cond) == "- If $flag is truthy\n  then:\n    (nothing)"
    assert Printer().pformat({"x": 1}) == "x: 1"
    assert Printer().pformat(42) == "42"
