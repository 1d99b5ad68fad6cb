"""
The macro interpreter: runs one macro's command list in order.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Union

from quickmacro.quickmacro_conditions import evaluate_condition
from quickmacro.quickmacro_datatypes import (
    AIAssistantCommand, ChoiceCommand, ChoiceLookupError, Command, CommandType,
    ConditionalCommand, EditorCommand, MacroAbortError, MacroChoice,
    NestedChoiceCommand, ObsidianCommand, OpenFileCommand, ScriptCondition,
    UserScriptCommand, WaitCommand,
)
from quickmacro.quickmacro_dispatch import NO_OUTPUT, UserScriptDispatcher

if TYPE_CHECKING:
    from quickmacro.quickmacro_runtime import ChoiceExecutor, ChoiceHost, EngineConfig

logger = logging.getLogger(__name__)


# ===================================================================
# What scripts see
# ===================================================================

class ScriptApi:
    """The `quickadd_api` handle passed to user scripts."""

    def __init__(self, host: "ChoiceHost", executor: "ChoiceExecutor"):
        self._host = host
        self._executor = executor

    async def execute_choice(self, choice_name: str, variables: Optional[Dict[str, Any]] = None) -> None:
        """
        Run another choice by name with extra variables, then clear the
        shared variable map. A cancellation inside that choice is raised
        here as MacroAbortError.
        """
        choice = self._host.get_choice_by_name(choice_name)
        if choice is None:
            logger.error("API executeChoice error: Choice named '%s' not found", choice_name)
            raise ChoiceLookupError(f"Choice named '{choice_name}' not found")
        if variables:
            self._executor.variables.update(variables)
        await self._executor.execute(choice)
        aborted = self._executor.consume_abort_signal()
        self._executor.variables.clear()
        if aborted is not None:
            raise aborted

    async def suggester(self, display_items: Union[Sequence[str], Callable[[Any, int], str]],
                        actual_items: Sequence[Any], placeholder: Optional[str] = None) -> Any:
        if callable(display_items):
            display = [display_items(item, i) for i, item in enumerate(actual_items)]
        else:
            display = [str(d) for d in display_items]
        selected = await self._host.suggest(display, list(actual_items), placeholder)
        if selected is None:
            raise MacroAbortError("Input cancelled by user")
        return selected

    async def input_prompt(self, header: str, default: Optional[str] = None) -> str:
        answer = await self._host.prompt(header, default)
        if answer is None:
            raise MacroAbortError("Input cancelled by user")
        return answer


@dataclass
class MacroParams:
    """The `params` object a user script receives."""
    app: Any
    quickadd_api: ScriptApi
    variables: Dict[str, Any] = field(default_factory=dict)

    def abort(self, message: Optional[str] = None):
        raise MacroAbortError(message)

    def __getitem__(self, key: str) -> Any:
        # Scripts written for mapping-style params keep working
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None


# ===================================================================
# Interpreter
# ===================================================================

class MacroChoiceEngine:
    """Executes the commands of one macro choice against a shared session."""

    def __init__(self, host: "ChoiceHost", choice: Optional[MacroChoice], executor: "ChoiceExecutor",
                 variables: Optional[Mapping] = None, config: Optional["EngineConfig"] = None):
        self.host = host
        self.choice = choice
        self.executor = executor
        self.config = config or executor.config
        self.params = MacroParams(app=host, quickadd_api=ScriptApi(host, executor))
        if variables:
            self.params.variables.update(variables)
        self.output: Any = None

    @property
    def choice_name(self) -> str:
        return self.choice.name if self.choice is not None else ""

    def get_output(self) -> Any:
        return self.output

    async def run(self) -> None:
        macro = self.choice.macro if self.choice is not None else None
        if macro is None or not macro.commands:
            logger.error("No commands in the selected macro. Did you select a macro for '%s'?", self.choice_name)
            return
        await self.execute_commands(macro.commands)

    async def execute_commands(self, commands: List[Command]) -> None:
        for command in commands:
            await self.execute_command(command)
            self._push_variables()

    async def execute_command(self, command: Command) -> None:
        logger.debug("macro '%s': %s command '%s'", self.choice_name,
                     getattr(command.type, "value", command.type), command.name)
        match command.type:
            case CommandType.OBSIDIAN:
                await self.execute_obsidian_command(command)
            case CommandType.USER_SCRIPT:
                await self.execute_user_script(command)
            case CommandType.CHOICE:
                await self.execute_choice(command)
            case CommandType.NESTED_CHOICE:
                await self.execute_nested_choice(command)
            case CommandType.WAIT:
                await self.execute_wait(command)
            case CommandType.EDITOR_COMMAND:
                await self.execute_editor_command(command)
            case CommandType.CONDITIONAL:
                await self.execute_conditional(command)
            case CommandType.AI_ASSISTANT:
                await self.execute_ai_assistant(command)
            case CommandType.OPEN_FILE:
                await self.execute_open_file(command)
            case _:
                logger.warning("macro '%s': skipping command of unknown type %r", self.choice_name, command.type)

    # -- variable plumbing ---------------------------------------------

    def _push_variables(self) -> None:
        """Local -> shared, after every command."""
        for key, value in self.params.variables.items():
            self.executor.variables[key] = value

    def _pull_variables(self) -> None:
        """Shared -> local, for values written by nested choices or API helpers."""
        self.params.variables.update(self.executor.variables)

    def _checkpoint_abort(self) -> None:
        aborted = self.executor.consume_abort_signal()
        if aborted is not None:
            raise aborted

    # -- command bodies ------------------------------------------------

    async def execute_obsidian_command(self, command: ObsidianCommand) -> None:
        await self.host.execute_command(command.command_id)

    async def execute_editor_command(self, command: EditorCommand) -> None:
        await self.host.run_editor_command(command.editor_command_type)

    async def execute_wait(self, command: WaitCommand) -> None:
        await asyncio.sleep(max(float(command.time or 0), 0) / 1000)

    async def execute_user_script(self, command: UserScriptCommand) -> None:
        user_script = await self.host.load_user_script(command.path)
        if user_script is None:
            logger.error("failed to load user script %s.", command.path)
            return
        settings = command.settings if command.settings else None
        dispatcher = UserScriptDispatcher(self.params, self.host.suggest, self.choice_name)
        result = await dispatcher.dispatch(user_script, settings)
        if result is not NO_OUTPUT:
            self.output = result

    async def execute_choice(self, command: ChoiceCommand) -> None:
        target = self.host.get_choice_by_id(command.choice_id)
        if target is None:
            logger.error("choice could not be found.")
            return
        await self.executor.execute(target)
        self._checkpoint_abort()
        self._pull_variables()

    async def execute_nested_choice(self, command: NestedChoiceCommand) -> None:
        if command.choice is None:
            logger.error("choice in %s is invalid", command.name)
            return
        await self.executor.execute(command.choice)
        self._checkpoint_abort()
        self._pull_variables()

    async def execute_conditional(self, command: ConditionalCommand) -> None:
        self._pull_variables()
        result = await evaluate_condition(command.condition, self.params.variables, self._evaluate_script_condition)
        logger.debug("macro '%s': condition '%s' -> %s", self.choice_name, command.name, result)
        await self.execute_commands(command.then_commands if result else command.else_commands)

    async def _evaluate_script_condition(self, condition: ScriptCondition) -> bool:
        return await self.host.evaluate_script_predicate(condition.script_path, condition.export_name, self.params)

    async def execute_ai_assistant(self, command: AIAssistantCommand) -> None:
        assigned = await self.host.run_ai_assistant(command, self.params.variables)
        if isinstance(assigned, Mapping):
            self.params.variables.update(assigned)

    async def execute_open_file(self, command: OpenFileCommand) -> None:
        await self.host.open_file(command)
