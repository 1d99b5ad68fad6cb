import logging

import pytest

from quickmacro.quickmacro_datatypes import (
    ChoiceLookupError, Macro, MacroChoice, MemberAccessError, MultiChoice, ObsidianCommand,
    UserScriptCommand, UserScriptError,
)
from quickmacro.quickmacro_engines import SingleMacroEngine, StartupMacroEngine, format_result
from quickmacro.quickmacro_runtime import ChoiceExecutor, ChoiceHost, EngineConfig


class MyHost(ChoiceHost):
    def __init__(self, choices=None, scripts=None):
        self.choices = list(choices or [])
        self.scripts = dict(scripts or {})
        self.ran = []

    def get_choices(self):
        return self.choices

    async def execute_command(self, command_id):
        if command_id == "boom":
            raise RuntimeError("command exploded")
        self.ran.append(command_id)

    async def suggest(self, display_items, items, placeholder=None):
        return None

    async def run_editor_command(self, kind):
        pass

    async def run_template_choice(self, choice, executor):
        pass

    async def run_capture_choice(self, choice, executor):
        pass

    async def load_user_script(self, path):
        return self.scripts.get(path)


def script_macro(name, path="m.py", extra=()):
    return MacroChoice(name=name, macro=Macro(name=name, commands=[*extra, UserScriptCommand(path=path)]))


def f(params, settings):
    params.variables["x"] = "y"
    return "r"


def single_engine(host, variables=None):
    return SingleMacroEngine(host, host.choices, ChoiceExecutor(host), variables)


# ===================================================================
# SingleMacroEngine
# ===================================================================

@pytest.mark.asyncio
async def test_member_access_runs_export_and_returns_variables():
    host = MyHost([script_macro("M")], {"m.py": {"f": f}})
    variables = {}
    engine = single_engine(host, variables)
    assert await engine.run_and_get_output("M::f") == "r"
    assert variables["x"] == "y"
    assert engine.get_variables() is variables


@pytest.mark.asyncio
async def test_member_access_sees_caller_variables():
    def greet(params, settings):
        return f"hello {params.variables['who']}"

    host = MyHost([script_macro("M")], {"m.py": {"greet": greet}})
    engine = single_engine(host, {"who": "world"})
    assert await engine.run_and_get_output("M::greet") == "hello world"


@pytest.mark.asyncio
async def test_member_access_calls_single_argument_export():
    def one_arg(params):
        params.variables["x"] = "y"
        return "r"

    host = MyHost([script_macro("M")], {"m.py": {"one_arg": one_arg}})
    variables = {}
    assert await single_engine(host, variables).run_and_get_output("M::one_arg") == "r"
    assert variables["x"] == "y"


@pytest.mark.asyncio
async def test_member_access_missing_member():
    host = MyHost([script_macro("M")], {"m.py": {"f": f}})
    with pytest.raises(MemberAccessError, match="does not export member 'missing'"):
        await single_engine(host).run_and_get_output("M::missing")


@pytest.mark.asyncio
async def test_member_access_nested_path_and_spacing():
    host = MyHost([script_macro("M")], {"m.py": {"tools": {"f": f}}})
    assert await single_engine(host).run_and_get_output(" M :: tools :: f ") == "r"


@pytest.mark.asyncio
async def test_member_access_does_not_run_other_commands():
    host = MyHost([script_macro("M", extra=[ObsidianCommand(command_id="side-effect")])], {"m.py": {"f": f}})
    await single_engine(host).run_and_get_output("M::f")
    assert host.ran == []


@pytest.mark.asyncio
async def test_member_access_fills_setting_defaults():
    def entry(params, settings):
        return settings["greeting"]

    exports = {"entry": entry, "settings": {"options": {"greeting": {"defaultValue": "hi"}}}}
    choice = script_macro("M")
    host = MyHost([choice], {"m.py": exports})
    assert await single_engine(host).run_and_get_output("M::entry") == "hi"
    assert choice.macro.commands[-1].settings == {"greeting": "hi"}


@pytest.mark.asyncio
async def test_member_access_requires_user_script():
    choice = MacroChoice(name="M", macro=Macro(commands=[ObsidianCommand(command_id="a")]))
    host = MyHost([choice])
    with pytest.raises(UserScriptError, match="does not include a user script command"):
        await single_engine(host).run_and_get_output("M::f")


@pytest.mark.asyncio
async def test_member_access_failed_load():
    host = MyHost([script_macro("M")])
    with pytest.raises(UserScriptError, match="failed to load user script"):
        await single_engine(host).run_and_get_output("M::f")


@pytest.mark.asyncio
async def test_whole_macro_output_is_formatted():
    host = MyHost([script_macro("M")], {"m.py": lambda params: {"a": 1}})
    assert await single_engine(host).run_and_get_output("M") == '{"a": 1}'


@pytest.mark.asyncio
async def test_callable_output_is_called():
    host = MyHost([script_macro("M")], {"m.py": lambda params: (lambda: "late")})
    assert await single_engine(host).run_and_get_output("M") == "late"


@pytest.mark.asyncio
async def test_macro_lookup_is_case_insensitive_and_searches_multis():
    nested = MultiChoice(name="Group", choices=[script_macro("Deep Macro")])
    host = MyHost([nested], {"m.py": lambda params: "found"})
    assert await single_engine(host).run_and_get_output("deep macro") == "found"


@pytest.mark.asyncio
async def test_exact_name_wins_over_case_insensitive_matches():
    host = MyHost([script_macro("Foo", "a.py"), script_macro("FOO", "b.py")],
                  {"a.py": lambda params: "a", "b.py": lambda params: "b"})
    assert await single_engine(host).run_and_get_output("FOO") == "b"


@pytest.mark.asyncio
async def test_ambiguous_macro_name(caplog):
    host = MyHost([script_macro("Foo"), script_macro("FOO")])
    with caplog.at_level(logging.ERROR):
        with pytest.raises(ChoiceLookupError, match="Ambiguous macro reference 'foo'"):
            await single_engine(host).run_and_get_output("foo")


@pytest.mark.asyncio
async def test_unknown_macro():
    host = MyHost([script_macro("M")])
    with pytest.raises(ChoiceLookupError, match="macro 'Nope::f' does not exist."):
        await single_engine(host).run_and_get_output("Nope::f")


def test_format_result():
    assert format_result(None) == ""
    assert format_result([1, "a"]) == '[1, "a"]'
    assert format_result(True) == "true"
    assert format_result(3) == "3"


# ===================================================================
# StartupMacroEngine
# ===================================================================

def startup_macros():
    return [
        Macro(name="A", run_on_startup=True, commands=[ObsidianCommand(command_id="a")]),
        Macro(name="B", commands=[ObsidianCommand(command_id="b")]),
        Macro(name="C", run_on_startup=True, commands=[ObsidianCommand(command_id="c")]),
    ]


@pytest.mark.asyncio
async def test_startup_runs_only_flagged_macros_in_order():
    host = MyHost()
    executor = ChoiceExecutor(host)
    await StartupMacroEngine(host, startup_macros(), executor).run()
    assert host.ran == ["a", "c"]


@pytest.mark.asyncio
async def test_startup_failure_stops_remaining_macros_by_default():
    host = MyHost()
    macros = startup_macros()
    macros[0].commands.insert(0, ObsidianCommand(command_id="boom"))
    with pytest.raises(RuntimeError):
        await StartupMacroEngine(host, macros, ChoiceExecutor(host)).run()
    assert host.ran == []


@pytest.mark.asyncio
async def test_startup_failure_isolated_when_configured(caplog):
    host = MyHost()
    macros = startup_macros()
    macros[0].commands.insert(0, ObsidianCommand(command_id="boom"))
    config = EngineConfig(isolate_startup_failures=True)
    with caplog.at_level(logging.ERROR):
        await StartupMacroEngine(host, macros, ChoiceExecutor(host, config), config).run()
    assert host.ran == ["c"]
    assert "startup macro 'A' failed" in caplog.text


@pytest.mark.asyncio
async def test_startup_variables_are_shared_with_session():
    host = MyHost(scripts={"s.py": lambda params: params.variables.update(seeded=True)})
    macro = Macro(name="Seed", run_on_startup=True, commands=[UserScriptCommand(path="s.py")])
    executor = ChoiceExecutor(host)
    await StartupMacroEngine(host, [macro], executor).run()
    assert executor.variables == {"seeded": True}
