"""
Specialized entry points built on the macro interpreter.

`SingleMacroEngine` runs one macro by name for API callers and can pick a
specific script export with a `Macro::member::path` reference.
`StartupMacroEngine` runs the macros flagged to run when the host loads.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from quickmacro.quickmacro_datatypes import (
    ChoiceLookupError, Choice, Macro, MacroChoice, UserScriptCommand, UserScriptError,
)
from quickmacro.quickmacro_dispatch import call_export, call_with_settings, resolve_member_access
from quickmacro.quickmacro_interpreter import MacroChoiceEngine
from quickmacro.quickmacro_loader import flatten_choices
from quickmacro.quickmacro_runtime import ChoiceExecutor, ChoiceHost, EngineConfig
from quickmacro.quickmacro_scripts import get_settings_spec, initialize_user_script_settings, split_member_access

logger = logging.getLogger(__name__)


def format_result(result: Any) -> str:
    if isinstance(result, (dict, list)):
        try:
            return json.dumps(result, ensure_ascii=False)
        except (TypeError, ValueError):
            return str(result)
    if result is None:
        return ""
    if isinstance(result, bool):
        return "true" if result else "false"
    return str(result)


class SingleMacroEngine:
    def __init__(self, host: ChoiceHost, choices: Sequence[Choice], executor: ChoiceExecutor,
                 variables: Optional[Dict[str, Any]] = None):
        self.host = host
        self.choices = list(choices)
        self.executor = executor
        # A caller-supplied map is shared with the executor; otherwise reuse the executor's
        if variables is not None:
            self.executor.variables = variables
        self.variables = self.executor.variables

    def get_variables(self) -> Dict[str, Any]:
        return self.variables

    def find_macro_choice(self, name: str, full_reference: Optional[str] = None) -> MacroChoice:
        reference = full_reference or name
        macro_choices = [c for c in flatten_choices(self.choices) if isinstance(c, MacroChoice)]
        wanted = (name or "").strip()
        # Exact (case-sensitive) match first, so macros differing only by case stay distinct
        for choice in macro_choices:
            if (choice.name or "").strip() == wanted:
                return choice
        matches = [c for c in macro_choices if (c.name or "").strip().lower() == wanted.lower()]
        if len(matches) > 1:
            logger.error("Ambiguous macro reference '%s'. Multiple choices match when ignoring case.", reference)
            raise ChoiceLookupError(f"Ambiguous macro reference '{reference}'. Please disambiguate by renaming macros.")
        if not matches:
            logger.error("macro '%s' does not exist.", reference)
            raise ChoiceLookupError(f"macro '{reference}' does not exist.")
        return matches[0]

    async def run_and_get_output(self, macro_name: str) -> str:
        basename, member_access = split_member_access(macro_name)
        macro_choice = self.find_macro_choice(basename or "", macro_name)
        engine = MacroChoiceEngine(self.host, macro_choice, self.executor, self.variables)

        if member_access:
            return await self._run_member_access(engine, macro_choice, member_access)

        await engine.run()
        result = engine.get_output()
        if callable(result):
            result = await call_export(result)
        return format_result(result)

    async def _run_member_access(self, engine: MacroChoiceEngine, macro_choice: MacroChoice,
                                 member_access: List[str]) -> str:
        commands = macro_choice.macro.commands if macro_choice.macro else []
        if not commands:
            message = f"macro '{macro_choice.name}' does not have any commands to execute."
            logger.error(message)
            raise UserScriptError(message)

        command = next((c for c in commands if isinstance(c, UserScriptCommand)), None)
        if command is None:
            message = f"macro '{macro_choice.name}' does not include a user script command."
            logger.error(message)
            raise UserScriptError(message)

        exports = await self.host.load_user_script(command.path)
        if exports is None:
            message = f"failed to load user script for macro '{macro_choice.name}'."
            logger.error(message)
            raise UserScriptError(message)

        settings_spec = get_settings_spec(exports)
        if settings_spec is not None:
            initialize_user_script_settings(command.settings, settings_spec)

        member = resolve_member_access(exports, member_access, macro_choice.name)

        # params must reflect the latest shared variables before the member runs
        engine.params.variables.update(self.executor.variables)
        result = member
        if callable(member):
            result = await call_with_settings(member, engine.params, command.settings)

        for key, value in engine.params.variables.items():
            self.executor.variables[key] = value
        return format_result(result)


class StartupMacroEngine:
    """Runs every macro flagged `run_on_startup`, one after another."""

    def __init__(self, host: ChoiceHost, macros: Sequence[Macro], executor: ChoiceExecutor,
                 config: Optional[EngineConfig] = None):
        self.host = host
        self.macros = list(macros)
        self.executor = executor
        self.config = config or executor.config

    async def run(self) -> None:
        for macro in self.macros:
            if not macro.run_on_startup:
                continue
            logger.info("running startup macro '%s'", macro.name)
            engine = MacroChoiceEngine(self.host, MacroChoice(name=macro.name, macro=macro),
                                       self.executor, self.executor.variables, self.config)
            if not self.config.isolate_startup_failures:
                await engine.execute_commands(macro.commands)
                continue
            try:
                await engine.execute_commands(macro.commands)
            except Exception as e:
                logger.error("startup macro '%s' failed: %s", macro.name, e, exc_info=True)
