from quickmacro.quickmacro_datatypes import *  # noqa: F401,F403
from quickmacro.quickmacro_runtime import (  # noqa: F401
    ChoiceExecutor, ChoiceHost, ChoiceRunner, EngineConfig, RunResult, handle_macro_abort,
)
from quickmacro.quickmacro_interpreter import MacroChoiceEngine, MacroParams, ScriptApi  # noqa: F401
from quickmacro.quickmacro_engines import SingleMacroEngine, StartupMacroEngine  # noqa: F401
from quickmacro.quickmacro_loader import ChoicesDocument, load_document, parse_document  # noqa: F401
