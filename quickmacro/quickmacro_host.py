"""
A terminal host: prompts on stdin, an in-memory editor, files on disk.

`ConsoleHost` is what the `quickmacro.py` command line drives. Host
commands are plain Python callables registered by id; Template and Capture
choices are rendered with pystache against the session variables.
"""
from __future__ import annotations

import asyncio
import datetime
import logging
import re
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TextIO

import pystache

from quickmacro.quickmacro_datatypes import (
    CaptureChoice, Choice, EditorCommandType, MacroAbortError, OpenFileCommand, TemplateChoice,
)
from quickmacro.quickmacro_dispatch import call_export
from quickmacro.quickmacro_runtime import ChoiceExecutor, ChoiceHost

logger = logging.getLogger(__name__)

Reader = Callable[[str], Awaitable[Optional[str]]]

_LINK_RE = re.compile(r"\[\[[^\]]+\]\]|\[[^\]]*\]\([^)]*\)|https?://\S+")


async def ainput(prompt: str) -> Optional[str]:
    """Awaitable input; None on end of input."""
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    line = await loop.run_in_executor(None, sys.stdin.readline)
    if line == "":
        return None
    return line.rstrip("\n")


# ===================================================================
# Editor
# ===================================================================

class EditorBuffer:
    """A single text buffer with a cursor, a selection and a clipboard."""

    def __init__(self, text: str = "", cursor: int = 0):
        self.text = text
        self.cursor = max(0, min(cursor, len(text)))
        self.selection: Optional[tuple] = None
        self.clipboard = ""

    def _line_bounds(self):
        start = self.text.rfind("\n", 0, self.cursor) + 1
        end = self.text.find("\n", self.cursor)
        return start, len(self.text) if end == -1 else end

    def selected_text(self) -> str:
        if self.selection is None:
            return ""
        start, end = self.selection
        return self.text[start:end]

    def _replace_selection(self, replacement: str) -> None:
        start, end = self.selection if self.selection else (self.cursor, self.cursor)
        self.text = self.text[:start] + replacement + self.text[end:]
        self.cursor = start + len(replacement)
        self.selection = None

    def apply(self, kind: EditorCommandType) -> None:
        match kind:
            case EditorCommandType.COPY:
                self.clipboard = self.selected_text()
            case EditorCommandType.CUT:
                self.clipboard = self.selected_text()
                self._replace_selection("")
            case EditorCommandType.PASTE | EditorCommandType.PASTE_WITH_FORMAT:
                self._replace_selection(self.clipboard)
            case EditorCommandType.SELECT_ACTIVE_LINE:
                self.selection = self._line_bounds()
            case EditorCommandType.SELECT_LINK_ON_ACTIVE_LINE:
                start, end = self._line_bounds()
                match = _LINK_RE.search(self.text, start, end)
                if match is None:
                    logger.warning("no link on the active line")
                    return
                self.selection = match.span()
            case EditorCommandType.MOVE_CURSOR_TO_FILE_START:
                self.cursor, self.selection = 0, None
            case EditorCommandType.MOVE_CURSOR_TO_FILE_END:
                self.cursor, self.selection = len(self.text), None
            case EditorCommandType.MOVE_CURSOR_TO_LINE_START:
                self.cursor, self.selection = self._line_bounds()[0], None
            case EditorCommandType.MOVE_CURSOR_TO_LINE_END:
                self.cursor, self.selection = self._line_bounds()[1], None


# ===================================================================
# Host
# ===================================================================

class ConsoleHost(ChoiceHost):
    def __init__(self, choices: Optional[List[Choice]] = None, *, root_dir: Optional[str] = None,
                 script_dir: Optional[str] = None, reader: Optional[Reader] = None,
                 out: Optional[TextIO] = None, err: Optional[TextIO] = None,
                 editor: Optional[EditorBuffer] = None):
        self.choices: List[Choice] = list(choices or [])
        self.root_dir = Path(root_dir or ".")
        self.script_dir = script_dir or str(self.root_dir)
        self.reader = reader or ainput
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self.editor = editor or EditorBuffer()
        self.commands: Dict[str, Callable[..., Any]] = {}
        self.opened: List[str] = []
        self._renderer = pystache.Renderer(escape=lambda u: u)

    def get_choices(self) -> List[Choice]:
        return self.choices

    # -- commands ------------------------------------------------------

    def register_command(self, command_id: str, fn: Callable[..., Any]) -> None:
        self.commands[command_id] = fn

    async def execute_command(self, command_id: str) -> None:
        fn = self.commands.get(command_id)
        if fn is None:
            raise LookupError(f"Unknown command: {command_id}")
        await call_export(fn)

    async def run_editor_command(self, kind: EditorCommandType) -> None:
        self.editor.apply(kind)

    # -- input ---------------------------------------------------------

    async def suggest(self, display_items: Sequence[str], items: Sequence[Any],
                      placeholder: Optional[str] = None) -> Optional[Any]:
        if placeholder:
            print(placeholder, file=self.out)
        for i, label in enumerate(display_items, 1):
            print(f"  {i}. {label}", file=self.out)
        while True:
            answer = await self.reader("> ")
            if answer is None or answer.strip() in ("", "q"):
                return None
            answer = answer.strip()
            if answer.isdigit() and 1 <= int(answer) <= len(items):
                return items[int(answer) - 1]
            if answer in display_items:
                return items[list(display_items).index(answer)]
            print(f"Invalid selection: {answer}", file=self.out)

    async def prompt(self, header: str, default: Optional[str] = None) -> Optional[str]:
        suffix = f" [{default}]" if default else ""
        answer = await self.reader(f"{header}{suffix}: ")
        if answer is None:
            return None
        return answer if answer else (default or "")

    async def _require_input(self, header: str, default: Optional[str] = None) -> str:
        answer = await self.prompt(header, default)
        if answer is None:
            raise MacroAbortError("Input cancelled by user")
        return answer

    # -- templates & captures ------------------------------------------

    def render(self, template: str, variables: Dict[str, Any], **extra: Any) -> str:
        context = {"date": datetime.date.today().isoformat()}
        context.update(variables)
        context.update(extra)
        return self._renderer.render(template, context)

    def _resolve(self, path: str) -> Path:
        p = Path(path).expanduser()
        return p if p.is_absolute() else self.root_dir / p

    @staticmethod
    def _format_setting(payload: Dict[str, Any], key: str) -> Optional[str]:
        setting = payload.get(key)
        if isinstance(setting, str):
            return setting
        if isinstance(setting, dict) and setting.get("enabled"):
            return setting.get("format") or None
        return None

    async def run_template_choice(self, choice: TemplateChoice, executor: ChoiceExecutor) -> None:
        payload = choice.payload
        template_path = payload.get("templatePath")
        if not template_path:
            logger.error("template choice '%s' has no template path", choice.name)
            return
        source = self._resolve(template_path)
        if not source.is_file():
            logger.error("template '%s' for choice '%s' does not exist", template_path, choice.name)
            return

        name_format = self._format_setting(payload, "fileNameFormat")
        if name_format:
            file_name = self.render(name_format, executor.variables)
        else:
            file_name = await self._require_input("File name")
        if not file_name.endswith(".md"):
            file_name += ".md"

        folder = payload.get("folder")
        if isinstance(folder, dict):
            folders = folder.get("folders") or []
            folder = folders[0] if folder.get("enabled") and folders else None
        target = self._resolve(str(Path(folder) / file_name) if folder else file_name)

        if target.exists() and payload.get("fileExistsMode") != "Overwrite the file":
            logger.warning("file '%s' already exists; template choice '%s' left it alone", target, choice.name)
            return

        body = self.render(source.read_text(encoding="utf-8"), executor.variables, title=target.stem)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(body, encoding="utf-8")
        logger.info("created %s from template '%s'", target, template_path)
        if payload.get("openFile"):
            self._open(str(target))

    async def run_capture_choice(self, choice: CaptureChoice, executor: ChoiceExecutor) -> None:
        payload = choice.payload
        capture_to = payload.get("captureTo")
        if not capture_to:
            logger.error("capture choice '%s' has no capture target", choice.name)
            return
        target = self._resolve(self.render(str(capture_to), executor.variables))

        fmt = self._format_setting(payload, "format")
        if fmt and "{{value}}" not in fmt.replace(" ", ""):
            text = self.render(fmt, executor.variables)
        else:
            value = await self._require_input(choice.name or "Capture")
            text = self.render(fmt, executor.variables, value=value) if fmt else value

        target.parent.mkdir(parents=True, exist_ok=True)
        existing = target.read_text(encoding="utf-8") if target.exists() else ""
        if payload.get("prepend"):
            new = text + ("\n" if existing and not text.endswith("\n") else "") + existing
        else:
            sep = "\n" if existing and not existing.endswith("\n") else ""
            new = existing + sep + text
        target.write_text(new, encoding="utf-8")
        logger.info("captured %d characters to %s", len(text), target)

    # -- misc ----------------------------------------------------------

    def _open(self, path: str) -> None:
        self.opened.append(path)
        print(f"open {path}", file=self.out)

    async def open_file(self, command: OpenFileCommand) -> None:
        self._open(command.file_path)

    def notify(self, message: str) -> None:
        print(message, file=self.err)
