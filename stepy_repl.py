import argparse
import asyncio
import sys
from dataclasses import replace
from pathlib import Path

from stepy.stepy_config import RunnerConfig
from stepy.stepy_runtime import ScriptRunner
from stepy.stepy_scene import GridSceneHost

# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)


def print_effect(effect):
    """Live sink: stdout effects go to stdout, everything else to stderr."""
    topics = effect.get('topics')
    message = effect.get('message', '')
    if topics == ['stdout']:
        print(message)
    else:
        print(message, file=sys.stderr)


def build_runner(args) -> ScriptRunner:
    config = RunnerConfig.from_yaml(args.config) if args.config else RunnerConfig()
    config = config.with_env()
    if args.delay is not None:
        config = replace(config, step_delay=max(0.0, args.delay))
    host = GridSceneHost() if args.scene == "grid" else None
    return ScriptRunner(host=host, config=config, log_sink=print_effect)


async def run_script_file(file_path: str, runner: ScriptRunner):
    """Run a Stepy script file non-interactively and exit with appropriate status."""
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    runner.config = replace(runner.config, error_prefix=p.name)
    result = await runner.handle_script(source)
    if result.status != 'success':
        raise SystemExit(1)


async def read_entry() -> str:
    """Read one statement; a line ending in ':' continues until a blank line."""
    raw = await ainput(">> ")
    if raw == "":
        raise EOFError
    lines = [raw.rstrip("\n")]
    if lines[0].rstrip().endswith(":"):
        while True:
            more = await ainput(".. ")
            if more == "" or not more.strip():
                break
            lines.append(more.rstrip("\n"))
    return "\n".join(lines) + "\n"


async def main(argv=None):
    """Run a script file when provided, otherwise start the interactive REPL."""
    parser = argparse.ArgumentParser(prog="stepy", description="Run Stepy scripts.")
    parser.add_argument("file", nargs="?", help="script to run; omit for a REPL")
    parser.add_argument("--delay", type=float, default=None, help="seconds between steps")
    parser.add_argument("--config", default=None, help="YAML runner configuration")
    parser.add_argument("--scene", choices=["none", "grid"], default="none",
                        help="scene controller exposed to scripts")
    args = parser.parse_args(argv)

    runner = build_runner(args)
    if args.file:
        await run_script_file(args.file, runner)
        return

    print("Stepy REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")
    print("Commands: " + ", ".join(runner.command_names()))

    # REPL Loop
    while True:
        try:
            entry = await read_entry()
            if not entry.strip():
                continue
            if entry.strip() == "exit":
                break
            # Errors were already reported through the sink
            await runner.handle_script(entry)
        except EOFError:
            print("\nExiting.")
            break


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")


if __name__ == "__main__":
    cli()
