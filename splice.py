import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import yaml

from splice.splice_runtime import ScriptRunner


# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)


def parse_assignments(assignments) -> dict:
    """``["x=5", "name=Ada"]`` -> ``{"x": 5, "name": "Ada"}``; values are read as YAML."""
    augmentation = {}
    for item in assignments or []:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise ValueError(f"expected key=value, got {item!r}")
        augmentation[key] = yaml.safe_load(raw) if raw else ""
    return augmentation


async def run_template_file(file_path: str, augmentation: dict):
    """Render a template file non-interactively and exit with appropriate status."""
    runner = ScriptRunner()
    p = Path(file_path)
    try:
        template = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    result = await runner.handle_template(template, augmentation)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)
    sys.stdout.write(result.value)


async def repl(augmentation: dict):
    print("splice REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")

    runner = ScriptRunner()
    while True:
        try:
            raw = await ainput(">> ")
            if raw == "":
                raise EOFError
            line = raw.rstrip("\n")

            if not line.strip():
                continue
            if line.strip() == "exit":
                break

            result = await runner.handle_template(line, augmentation)
            if result.status == 'error':
                print(result.format_error(), file=sys.stderr)
                continue
            print(result.value)

        except EOFError:
            print("\nExiting.")
            break
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)


async def main(argv=None):
    """Render a template file when provided, otherwise start the interactive REPL."""
    parser = argparse.ArgumentParser(prog="splice", description="Render ${...} templates.")
    parser.add_argument("template", nargs="?", help="template file to render")
    parser.add_argument("--set", dest="assignments", action="append", metavar="KEY=VALUE",
                        help="bind a name for the template (repeatable)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=os.environ.get("SPLICE_LOG_LEVEL", "WARNING").upper(),
                        format="%(levelname)s %(name)s: %(message)s")
    try:
        augmentation = parse_assignments(args.assignments)
    except (ValueError, yaml.YAMLError) as e:
        parser.error(str(e))

    if args.template:
        await run_template_file(args.template, augmentation)
    else:
        await repl(augmentation)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")
