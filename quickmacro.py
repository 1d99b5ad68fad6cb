import argparse
import asyncio
import logging
import sys
from pathlib import Path

from quickmacro.quickmacro_datatypes import MacroAbortError
from quickmacro.quickmacro_engines import SingleMacroEngine, StartupMacroEngine
from quickmacro.quickmacro_host import ConsoleHost
from quickmacro.quickmacro_loader import dump_document, load_document
from quickmacro.quickmacro_printer import Printer
from quickmacro.quickmacro_runtime import ChoiceRunner, EngineConfig


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="quickmacro", description="Run choices and macros from a choices document.")
    parser.add_argument("document", help="choices document (.json, .yaml or .toml)")
    parser.add_argument("choice", nargs="?", help="name of the choice to run; prompts when omitted")
    parser.add_argument("--macro", metavar="NAME", help="run a macro by name (NAME::member selects a script export) and print its output")
    parser.add_argument("--list", action="store_true", help="print the choice tree and exit")
    parser.add_argument("--dump", action="store_true", help="print the parsed document as YAML and exit")
    parser.add_argument("--var", action="append", default=[], metavar="KEY=VALUE", help="preset a variable")
    parser.add_argument("--no-startup", action="store_true", help="skip macros flagged to run on startup")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def parse_vars(pairs):
    out = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise SystemExit(f"Error: --var expects KEY=VALUE, got {pair!r}")
        out[key.strip()] = value
    return out


def register_builtins(host: ConsoleHost):
    """Host commands available to Obsidian commands in every document."""
    host.register_command("editor:print-buffer", lambda: print(host.editor.text, file=host.out))
    host.register_command("editor:print-clipboard", lambda: print(host.editor.clipboard, file=host.out))
    host.register_command("editor:clear-buffer", lambda: setattr(host.editor, "text", ""))


async def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    p = Path(args.document)
    try:
        doc = load_document(p)
    except FileNotFoundError:
        print(f"Error: file not found: {args.document}", file=sys.stderr)
        raise SystemExit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)

    if args.list:
        print(Printer().pformat(doc))
        return
    if args.dump:
        print(dump_document(doc, fmt="yaml"), end="")
        return

    config = EngineConfig.from_dict(doc.settings)
    root = str(p.parent.resolve())
    host = ConsoleHost(doc.choices, root_dir=root, script_dir=root)
    register_builtins(host)
    runner = ChoiceRunner(host, config)
    runner.executor.variables.update(parse_vars(args.var))

    if not args.no_startup:
        try:
            await StartupMacroEngine(host, doc.all_macros(), runner.executor, config).run()
        except Exception as e:
            print(f"Error: startup macro failed: {e}", file=sys.stderr)
            raise SystemExit(1)

    if args.macro:
        engine = SingleMacroEngine(host, doc.choices, runner.executor)
        try:
            output = await engine.run_and_get_output(args.macro)
        except MacroAbortError as e:
            print(f"Aborted: {e}", file=sys.stderr)
            raise SystemExit(2)
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            raise SystemExit(1)
        if output:
            print(output)
        return

    if args.choice:
        choice = host.get_choice_by_name(args.choice)
        if choice is None:
            print(f"Error: no choice named '{args.choice}'", file=sys.stderr)
            raise SystemExit(1)
    else:
        if not doc.choices:
            print("No choices defined.", file=sys.stderr)
            return
        choice = await host.suggest([c.name for c in doc.choices], doc.choices, "Choose")
        if choice is None:
            return

    result = await runner.run(choice, dict(runner.executor.variables))
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)
    if result.status == 'aborted':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(2)
    if args.verbose and result.variables:
        print(Printer().pformat(result.variables))


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")
