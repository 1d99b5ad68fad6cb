# quickmacro_runtime.py

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence

from quickmacro.quickmacro_datatypes import (
    AbortSignal, CaptureChoice, Choice, ChoiceRecursionError, ChoiceType, EditorCommandType,
    MacroAbortError, MacroChoice, MultiChoice, OpenFileCommand, AIAssistantCommand,
    TemplateChoice, UnsupportedCapabilityError, is_user_cancellation,
)
from quickmacro.quickmacro_dispatch import call_export, get_member, has_member
from quickmacro.quickmacro_loader import flatten_choices
from quickmacro.quickmacro_scripts import load_user_script

logger = logging.getLogger(__name__)

BACK_LABEL = "← Back"

# ===================================================================
# 1. Configuration
# ===================================================================

@dataclass
class EngineConfig:
    """Engine settings threaded through the executor and the macro engines."""
    show_input_cancellation_notification: bool = True
    # Nested choice executions allowed before the chain is treated as a cycle
    max_choice_depth: int = 64
    # Keep running the remaining startup macros when one of them fails
    isolate_startup_failures: bool = False

    _ALIASES = {
        "showInputCancellationNotification": "show_input_cancellation_notification",
        "maxChoiceDepth": "max_choice_depth",
        "isolateStartupFailures": "isolate_startup_failures",
    }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "EngineConfig":
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            name = cls._ALIASES.get(key, key)
            if name in known:
                kwargs[name] = value
        cfg = cls(**kwargs)
        if int(cfg.max_choice_depth) < 1:
            raise ValueError("max_choice_depth must be at least 1")
        cfg.max_choice_depth = int(cfg.max_choice_depth)
        return cfg


def handle_macro_abort(error: BaseException, *, log_prefix: str, default_reason: str,
                       config: EngineConfig, notify=None, notice_prefix: Optional[str] = None) -> bool:
    """
    Log an abort and tell the user about it.

    Returns False (and does nothing) when `error` is not a MacroAbortError.
    User cancellations are only announced when the config asks for it.
    """
    if not isinstance(error, MacroAbortError):
        return False
    message = str(error).strip() or default_reason
    logger.info("%s: %s", log_prefix, message)
    if notify is not None and (not is_user_cancellation(error) or config.show_input_cancellation_notification):
        notify(f"{notice_prefix or log_prefix}: {message}")
    return True


# ===================================================================
# 2. Host interface
# ===================================================================

class ChoiceHost(ABC):
    """
    The application the engine runs inside.

    Subclasses must provide the abstract methods: the choice registry, the
    command registry, the suggester and the editor. The defaults below
    cover the pieces the engine can do on its own (script loading, script
    predicates, lookups).

    `prompt`, `run_ai_assistant` and `open_file` are optional capabilities.
    A host that does not override them raises UnsupportedCapabilityError,
    which the runner reports as an ordinary error result.
    """
    script_dir: Optional[str] = None

    @abstractmethod
    def get_choices(self) -> List[Choice]: raise NotImplementedError
    @abstractmethod
    async def execute_command(self, command_id: str) -> None: raise NotImplementedError
    @abstractmethod
    async def suggest(self, display_items: Sequence[str], items: Sequence[Any],
                      placeholder: Optional[str] = None) -> Optional[Any]: raise NotImplementedError
    @abstractmethod
    async def run_editor_command(self, kind: EditorCommandType) -> None: raise NotImplementedError
    @abstractmethod
    async def run_template_choice(self, choice: TemplateChoice, executor: "ChoiceExecutor") -> None: raise NotImplementedError
    @abstractmethod
    async def run_capture_choice(self, choice: CaptureChoice, executor: "ChoiceExecutor") -> None: raise NotImplementedError

    def get_choice_by_id(self, choice_id: str) -> Optional[Choice]:
        for choice in flatten_choices(self.get_choices()):
            if choice.id == choice_id:
                return choice
        return None

    def get_choice_by_name(self, name: str) -> Optional[Choice]:
        for choice in flatten_choices(self.get_choices()):
            if choice.name == name:
                return choice
        return None

    async def load_user_script(self, path: str) -> Any:
        return load_user_script(path, self.script_dir)

    async def prompt(self, header: str, default: Optional[str] = None) -> Optional[str]:
        raise UnsupportedCapabilityError(f"{type(self).__name__} cannot prompt for input")

    async def run_ai_assistant(self, command: AIAssistantCommand, variables: Dict[str, Any]) -> Optional[Mapping[str, Any]]:
        raise UnsupportedCapabilityError(f"{type(self).__name__} has no AI assistant")

    async def open_file(self, command: OpenFileCommand) -> None:
        raise UnsupportedCapabilityError(f"{type(self).__name__} cannot open files")

    async def evaluate_script_predicate(self, script_path: str, export_name: Optional[str], params: Any) -> bool:
        exports = await self.load_user_script(script_path)
        if exports is None:
            logger.warning("Conditional command: script '%s' could not be loaded.", script_path)
            return False
        target = exports
        if export_name:
            if not has_member(exports, export_name):
                logger.warning("Conditional command: script '%s' has no export '%s'.", script_path, export_name)
                return False
            target = get_member(exports, export_name)
        if callable(target):
            target = await call_export(target, params)
        return bool(target)

    def notify(self, message: str) -> None:
        logger.info("notice: %s", message)


# ===================================================================
# 3. Choice dispatch
# ===================================================================

class _Back:
    def __repr__(self):
        return BACK_LABEL


_BACK = _Back()


def _find_parent_list(choices: List[Choice], target: Choice) -> Optional[List[Choice]]:
    for c in choices:
        if c is target:
            return choices
        if isinstance(c, MultiChoice):
            found = _find_parent_list(c.choices, target)
            if found is not None:
                return found
    return None


class ChoiceExecutor:
    """
    Top-level dispatcher for one execution session.

    Owns the shared variable map and the abort signal. `execute` never
    raises a cancellation itself: aborts are recorded on the signal, and the
    enclosing macro frame (or the top-level caller) consumes it.
    """

    def __init__(self, host: ChoiceHost, config: Optional[EngineConfig] = None,
                 variables: Optional[Dict[str, Any]] = None):
        self.host = host
        self.config = config or EngineConfig()
        self.variables: Dict[str, Any] = variables if variables is not None else {}
        self.abort_signal = AbortSignal()
        self._depth = 0

    # -- abort side channel --------------------------------------------

    def signal_abort(self, error) -> None:
        self.abort_signal.signal(error)

    def consume_abort_signal(self) -> Optional[MacroAbortError]:
        return self.abort_signal.consume()

    def _record_abort(self, error: MacroAbortError, choice: Choice, default_reason: str) -> None:
        self.signal_abort(error)
        # Only the outermost frame announces the abort; inner frames just pass it up
        if self._depth > 1:
            logger.debug("abort in '%s' passed to enclosing frame: %s", choice.name, error)
            return
        handle_macro_abort(error, log_prefix=f"{choice.type.value} '{choice.name}'",
                           default_reason=default_reason, config=self.config, notify=self.host.notify)

    # -- dispatch ------------------------------------------------------

    async def execute(self, choice: Choice) -> None:
        if self._depth >= self.config.max_choice_depth:
            raise ChoiceRecursionError(
                f"choice '{choice.name}' exceeded the nesting limit of {self.config.max_choice_depth}; "
                "choices probably reference each other in a cycle"
            )
        self._depth += 1
        try:
            logger.debug("executing %s choice '%s' (depth %d)", choice.type.value, choice.name, self._depth)
            match choice.type:
                case ChoiceType.TEMPLATE:
                    await self._on_choose_delegate(choice, self.host.run_template_choice)
                case ChoiceType.CAPTURE:
                    await self._on_choose_delegate(choice, self.host.run_capture_choice)
                case ChoiceType.MACRO:
                    await self._on_choose_macro(choice)
                case ChoiceType.MULTI:
                    await self._on_choose_multi(choice)
                case _:
                    logger.error("choice '%s' has unknown type %r", choice.name, choice.type)
        finally:
            self._depth -= 1

    async def _on_choose_delegate(self, choice: Choice, delegate) -> None:
        try:
            await delegate(choice, self)
        except MacroAbortError as e:
            self._record_abort(e, choice, f"{choice.type.value} execution aborted")

    async def _on_choose_macro(self, choice: MacroChoice) -> None:
        from quickmacro.quickmacro_interpreter import MacroChoiceEngine
        engine = MacroChoiceEngine(self.host, choice, self, self.variables, self.config)
        try:
            await engine.run()
        except MacroAbortError as e:
            self._record_abort(e, choice, "Macro execution aborted")
            return
        self.variables.update(engine.params.variables)

    async def _on_choose_multi(self, multi: MultiChoice) -> None:
        if not multi.choices:
            logger.warning("multi choice '%s' has no choices", multi.name)
            return
        parent = _find_parent_list(self.host.get_choices(), multi)
        stack: List[List[Choice]] = [parent] if parent is not None else []
        choices = multi.choices
        placeholder = multi.name
        while True:
            items: List[Any] = list(choices)
            display = [c.name for c in choices]
            if stack:
                items.append(_BACK)
                display.append(BACK_LABEL)
            selected = await self.host.suggest(display, items, placeholder)
            if selected is None:
                self._record_abort(MacroAbortError("Choice selection cancelled by user"), multi,
                                   "Choice selection aborted")
                return
            if selected is _BACK:
                choices = stack.pop()
                placeholder = None
                continue
            if isinstance(selected, MultiChoice):
                stack.append(choices)
                choices = selected.choices
                placeholder = selected.name
                continue
            await self.execute(selected)
            return


# ===================================================================
# 4. Host-facing entry point
# ===================================================================

@dataclass
class RunResult:
    """The structured result of one top-level choice run."""
    status: Literal['success', 'aborted', 'error']
    choice_name: Optional[str] = None
    error_message: Optional[str] = None
    error: Optional[BaseException] = None
    duration_ms: int = 0
    variables: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == 'success'

    def format_error(self) -> str:
        if self.status == 'aborted':
            return f"Aborted: {self.error_message or 'Choice execution aborted'}"
        if self.status == 'error':
            return str(self.error_message or "Unknown error")
        return ""


class ChoiceRunner:
    """Runs one choice on a fresh session and reports the outcome."""

    def __init__(self, host: ChoiceHost, config: Optional[EngineConfig] = None):
        self.host = host
        self.config = config or EngineConfig()
        self.executor = ChoiceExecutor(host, self.config)

    async def run(self, choice: Choice, variables: Optional[Mapping[str, Any]] = None) -> RunResult:
        started = time.monotonic()
        self.executor.variables.clear()
        self.executor.consume_abort_signal()
        if variables:
            self.executor.variables.update(variables)

        def elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            await self.executor.execute(choice)
        except MacroAbortError as e:
            return RunResult('aborted', choice.name, str(e), e, elapsed(), dict(self.executor.variables))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("choice '%s' failed: %s", choice.name, e, exc_info=True)
            return RunResult('error', choice.name, str(e), e, elapsed(), dict(self.executor.variables))

        aborted = self.executor.consume_abort_signal()
        if aborted is not None:
            return RunResult('aborted', choice.name, str(aborted), aborted, elapsed(), dict(self.executor.variables))
        return RunResult('success', choice.name, duration_ms=elapsed(), variables=dict(self.executor.variables))
