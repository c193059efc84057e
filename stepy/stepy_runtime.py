# stepy_runtime.py

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional

from stepy.stepy_config import RunnerConfig
from stepy.stepy_datatypes import ArgumentError, LexError, Wait
from stepy.stepy_interpreter import Evaluator, to_number, to_index, type_name
from stepy.stepy_lexer import tokenize
from stepy.stepy_parser import Parser
from stepy.stepy_printer import Printer
from stepy.stepy_tracker import ExecutionTracker

BUILTIN_NAMES = ("print", "len", "range", "sleep")

# Step delays at or below this only yield one loop iteration
MIN_STEP_DELAY = 1 / 100


def _is_suspendable(x) -> bool:
    return inspect.isgenerator(x) or inspect.isawaitable(x)


# ===================================================================
# 1. Host commands
# ===================================================================


def action_command(func=None, *, name: Optional[str] = None):
    """Mark a host method as an action command (runs, returns nothing to the script)."""
    def mark(f):
        f._stepy_command = ("action", name or f.__name__)
        return f
    return mark(func) if func is not None else mark


def predicate_command(func=None, *, name: Optional[str] = None):
    """Mark a host method as a predicate command (runs, returns a bool to the script)."""
    def mark(f):
        f._stepy_command = ("predicate", name or f.__name__)
        return f
    return mark(func) if func is not None else mark


class StepyHost(ABC):
    """The base class for scene controllers exposed to Stepy scripts.

    Commands are either decorated methods (`@action_command`,
    `@predicate_command`) or registered explicitly with `register_action`
    and `register_predicate`. A command may be a plain function, a generator
    function (pumped by the step driver, so it can animate over several
    frames) or an `async def` coroutine function.
    """
    def __init__(self):
        self.action_commands: Dict[str, Callable] = {}
        self.predicate_commands: Dict[str, Callable] = {}
        self.register_commands()

    def register_commands(self):
        """Bind decorated methods. Override to register commands by hand."""
        for _, member in inspect.getmembers(self, callable):
            marker = getattr(member, "_stepy_command", None)
            if marker is None:
                func = getattr(member, "__func__", None)
                marker = getattr(func, "_stepy_command", None) if func is not None else None
            if marker is None:
                continue
            kind, command_name = marker
            if kind == "action":
                self.register_action(command_name, member)
            else:
                self.register_predicate(command_name, member)

    def register_action(self, name: str, fn: Callable):
        self.action_commands[name] = fn

    def register_predicate(self, name: str, fn: Callable):
        self.predicate_commands[name] = fn

    def has_command(self, name: str) -> bool:
        return name in self.action_commands or name in self.predicate_commands

    def command_names(self) -> List[str]:
        return list(self.action_commands) + list(self.predicate_commands)

    @abstractmethod
    def scene_reset(self):
        """Restore the scene before a run. May be a generator or coroutine."""
        raise NotImplementedError


class HostBridge:
    """Routes script calls to the registered scene controller."""

    def __init__(self, controller: Optional[StepyHost] = None):
        self._controller = controller

    @property
    def controller(self) -> Optional[StepyHost]:
        return self._controller

    def register_controller(self, controller: StepyHost):
        self._controller = controller

    def unregister_controller(self):
        self._controller = None

    def has_command(self, name: str) -> bool:
        return self._controller is not None and self._controller.has_command(name)

    def all_command_names(self) -> List[str]:
        """Built-ins plus every command the current controller exposes."""
        names = list(BUILTIN_NAMES)
        if self._controller is not None:
            names.extend(n for n in self._controller.command_names() if n not in names)
        return names

    @staticmethod
    def _check_arity(name: str, fn: Callable, args: list):
        try:
            sig = inspect.signature(fn)
        except (TypeError, ValueError):
            return
        try:
            sig.bind(*args)
        except TypeError as e:
            raise ArgumentError(f"{name}(): {e}") from None

    def invoke(self, name: str, args: list):
        """Run a command as a suspendable operation and produce its script value."""
        controller = self._controller
        if controller is None:
            raise NameError(f"Unknown function '{name}'")
        if name in controller.action_commands:
            fn = controller.action_commands[name]
            self._check_arity(name, fn, args)
            result = fn(*args)
            if _is_suspendable(result):
                yield result
            return None
        if name in controller.predicate_commands:
            fn = controller.predicate_commands[name]
            self._check_arity(name, fn, args)
            result = fn(*args)
            if _is_suspendable(result):
                result = yield result
            return bool(result)
        raise NameError(f"Unknown function '{name}'")

    def reset_scene(self):
        if self._controller is not None:
            result = self._controller.scene_reset()
            if _is_suspendable(result):
                yield result


# ===================================================================
# 2. The Standard Library
# ===================================================================


class StdLib:
    """Python implementations of the fixed Stepy built-ins."""

    def __init__(self, evaluator: Evaluator):
        self.evaluator = evaluator
        for name, member in inspect.getmembers(self):
            if name.startswith('_') and not name.startswith('__') and name[1:] in BUILTIN_NAMES:
                evaluator.builtins[name[1:]] = member

    def _print(self, *args):
        printer = self.evaluator.printer
        self.evaluator.emit('stdout', " ".join(printer.pformat(a) for a in args))
        return None

    def _len(self, *args):
        if len(args) != 1:
            raise ArgumentError(f"len() takes exactly one argument ({len(args)} given)")
        obj = args[0]
        if isinstance(obj, (list, str)):
            return float(len(obj))
        raise TypeError(f"object of type '{type_name(obj)}' has no len()")

    def _range(self, *args):
        if not 1 <= len(args) <= 3:
            raise ArgumentError(f"range expected 1 to 3 arguments, got {len(args)}")
        bounds = [to_index(to_number(a, "range"), "range() arguments") for a in args]
        if len(bounds) == 1:
            start, stop, step = 0, bounds[0], 1
        elif len(bounds) == 2:
            start, stop, step = bounds[0], bounds[1], 1
        else:
            start, stop, step = bounds
        if step == 0:
            raise ValueError("range() arg 3 must not be zero")
        return [float(i) for i in range(start, stop, step)]

    def _sleep(self, *args):
        if len(args) != 1:
            raise ArgumentError(f"sleep() takes exactly one argument ({len(args)} given)")
        seconds = to_number(args[0], "sleep")
        yield Wait(max(0.0, seconds))
        return None


# ===================================================================
# 3. The step driver
# ===================================================================


class StepCancelled(Exception):
    """Internal signal: the driver was cancelled between steps."""


class StepDriver:
    """Pumps a suspendable operation to completion on the asyncio loop.

    Yielded values are handled as follows: ``None`` pauses for
    `step_delay`, ``Wait`` pauses for its own duration, a generator is
    pumped recursively and its return value sent back, and an awaitable is
    awaited and its result sent back. A failure raised while pumping a
    nested operation is thrown into the parent so its cleanup runs.

    Exactly one of `on_error` / `on_complete` fires per run, unless the run
    is cancelled, in which case neither does.
    """

    def __init__(self, step_delay: float = 0.1,
                 on_error: Optional[Callable[[str], None]] = None,
                 on_complete: Optional[Callable[[], None]] = None,
                 describe: Optional[Callable[[BaseException], str]] = None):
        self.step_delay = step_delay
        self.on_error = on_error
        self.on_complete = on_complete
        self.describe = describe or (lambda e: f"{type(e).__name__}: {e}")
        self.error: Optional[BaseException] = None
        self.steps = 0
        self._cancelled = False
        self._finished = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        self._cancelled = True

    async def run(self, operation) -> bool:
        """Drive `operation`; returns True only on natural completion."""
        if self._finished:
            raise RuntimeError("StepDriver instances are single-use")
        try:
            await self._drive(operation)
        except StepCancelled:
            return self._finish(None)
        except asyncio.CancelledError:
            if not self._cancelled:
                raise
            # The cancellation was ours; the surrounding task carries on
            task = asyncio.current_task()
            if task is not None and hasattr(task, "uncancel"):
                task.uncancel()
            return self._finish(None)
        except Exception as e:
            self.error = e
            return self._finish(e)
        if self._cancelled:
            return self._finish(None)
        self._finished = True
        if self.on_complete is not None:
            self.on_complete()
        return True

    def _finish(self, error: Optional[BaseException]) -> bool:
        self._finished = True
        if error is not None and self.on_error is not None:
            self.on_error(self.describe(error))
        return False

    async def _pause(self, seconds: float):
        if seconds > MIN_STEP_DELAY:
            await asyncio.sleep(seconds)
        else:
            await asyncio.sleep(0)

    async def _drive(self, gen):
        value = None
        error: Optional[BaseException] = None
        try:
            while True:
                if self._cancelled:
                    raise StepCancelled()
                try:
                    if error is not None:
                        current = gen.throw(error)
                        error = None
                    else:
                        current = gen.send(value)
                except StopIteration as stop:
                    return stop.value
                value = None
                self.steps += 1
                try:
                    if current is None:
                        await self._pause(self.step_delay)
                    elif isinstance(current, Wait):
                        await self._pause(current.seconds)
                    elif inspect.isgenerator(current):
                        value = await self._drive(current)
                    elif inspect.isawaitable(current):
                        value = await current
                    else:
                        raise TypeError(f"cannot drive yielded value {current!r}")
                except (StepCancelled, asyncio.CancelledError):
                    raise
                except Exception as e:
                    error = e
        finally:
            gen.close()


# ===================================================================
# 4. Script Execution
# ===================================================================


@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error', 'stopped']
    globals: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    error_line: Optional[int] = None
    side_effects: List[Dict] = field(default_factory=list)

    @property
    def stdout(self) -> List[str]:
        return [e['message'] for e in self.side_effects if e.get('topics') == ['stdout']]

    def format_error(self) -> str:
        """Formats an error message with its line if available."""
        if self.status == 'success':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_line is not None and not msg.startswith("Error on line "):
            return f"Error on line {self.error_line}: {msg}"
        return msg


class RunnerState(Enum):
    RESET = "reset"      # idle: run allowed, source editable
    RUNNING = "running"  # executing: run disabled, source read-only


class ScriptRunner:
    """Lexes, parses and executes Stepy scripts under a step driver."""

    def __init__(self, host: Optional[StepyHost] = None,
                 config: Optional[RunnerConfig] = None,
                 tracker: Optional[ExecutionTracker] = None,
                 bridge: Optional[HostBridge] = None,
                 log_sink: Optional[Callable[[Dict], None]] = None):
        self.config = config or RunnerConfig()
        self.tracker = tracker or ExecutionTracker()
        self.bridge = bridge or HostBridge()
        if host is not None:
            self.bridge.register_controller(host)
        self.printer = Printer()
        self.log_sink = log_sink
        self.registry: Optional['RunnerRegistry'] = None

        self.state = RunnerState.RESET
        self.current_line = -1
        self.error_log = ""
        self.evaluator: Optional[Evaluator] = None
        self.last_result: Optional[ExecutionResult] = None
        self._source = ""
        self._driver: Optional[StepDriver] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_requested = False
        # Set whenever no run is in flight
        self._idle = asyncio.Event()
        self._idle.set()

        self.tracker.on_line_executed.append(self._on_line_executed)

    # --- State ---

    @property
    def is_executing(self) -> bool:
        return self.state is RunnerState.RUNNING

    def set_state(self, state: RunnerState):
        self.state = state
        if state is RunnerState.RESET:
            self.current_line = -1

    def command_names(self) -> List[str]:
        return self.bridge.all_command_names()

    def _on_line_executed(self, line: int):
        if self.is_executing:
            self.current_line = line

    def _log(self, topic: str, message: str):
        effect = {'topics': [topic], 'message': message}
        if self.evaluator is not None:
            self.evaluator.side_effects.append(effect)
        if self.log_sink is not None:
            self.log_sink(effect)

    # --- Error formatting ---

    def _source_context(self, line: Optional[int], radius: int = 1) -> str:
        lines = self._source.replace("\r\n", "\n").split("\n")
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            out.append(f"{prefix} {str(i).rjust(width)} | {lines[i - 1]}")
        return "\n".join(out)

    def _error_line(self, e: BaseException) -> Optional[int]:
        line = getattr(e, 'stepy_line', None)
        if line is None and isinstance(e, (LexError,)):
            line = e.line
        if line is None and isinstance(e, SyntaxError):
            line = e.lineno
        if line is None and self.evaluator is not None and self.evaluator.current_node is not None:
            line = self.evaluator.current_node.line
        return line

    def _format_stacktrace(self, e: BaseException) -> str:
        frames = getattr(e, 'stepy_stack', None) or []
        if not frames:
            return ""
        rendered = []
        for frame in frames:
            args = " ".join(self.printer.repr_value(a) for a in frame.get('args') or [])
            rendered.append(f"({frame['name']}{' ' + args if args else ''})")
        return "Stepy stacktrace: " + " ".join(rendered)

    def format_error(self, e: BaseException) -> str:
        kind = type(e).__name__
        if isinstance(e, SyntaxError):
            base = e.msg
        elif isinstance(e, LexError):
            base = e.args[0]
        else:
            base = str(e)
        msg = f"{kind}: {base}"
        line = self._error_line(e)
        if line is not None and not isinstance(e, LexError):
            msg = f"{msg} (line {line})"
        context = self._source_context(line)
        if context:
            msg = f"{msg}\n{context}"
        stack = self._format_stacktrace(e)
        if stack:
            msg = f"{msg}\n{stack}"
        return f"@{self.config.error_prefix}: {msg}"

    # --- Running ---

    def _begin(self):
        if self.is_executing:
            raise RuntimeError("Script is already running!")
        self._stop_requested = False
        self.error_log = ""
        self._idle.clear()
        self.set_state(RunnerState.RUNNING)

    def start(self, source: str) -> asyncio.Task:
        """Run `source` in the background and return the task."""
        self._begin()
        self._task = asyncio.ensure_future(self._run(source))
        return self._task

    async def handle_script(self, source: str) -> ExecutionResult:
        """The main entry point to execute a script."""
        self._begin()
        return await self._run(source)

    def _program(self, evaluator: Evaluator, statements):
        if self.config.reset_scene:
            yield self.bridge.reset_scene()
        yield from evaluator.execute(statements)

    async def _run(self, source: str) -> ExecutionResult:
        started = False
        result: Optional[ExecutionResult] = None
        error_line = None
        try:
            # Covers both start() and a directly awaited handle_script()
            self._task = asyncio.current_task()
            self._source = source
            evaluator = Evaluator(self.bridge, self.tracker, self.printer, self.config.max_call_depth)
            StdLib(evaluator)
            evaluator.log_sink = self.log_sink
            self.evaluator = evaluator

            self.tracker.notify_execution_started()
            started = True

            # 1. Lex and parse
            try:
                statements = Parser(tokenize(source)).parse()
            except (LexError, SyntaxError) as e:
                msg = self.format_error(e)
                self._report_error(msg)
                result = ExecutionResult('error', evaluator.globals, msg, self._error_line(e), evaluator.side_effects)
                return result

            # 2. Execute
            outcome: Dict[str, Any] = {}
            driver = StepDriver(
                self.config.step_delay,
                on_error=lambda m: outcome.setdefault('error', m),
                on_complete=lambda: outcome.setdefault('complete', True),
                describe=self.format_error,
            )
            self._driver = driver
            if self._stop_requested:
                driver.cancel()
            await driver.run(self._program(evaluator, statements))

            if 'error' in outcome:
                self._report_error(outcome['error'])
                error_line = self._error_line(driver.error) if driver.error is not None else None
                result = ExecutionResult('error', evaluator.globals, outcome['error'], error_line, evaluator.side_effects)
            elif driver.cancelled:
                result = self._stopped_result()
            else:
                result = ExecutionResult('success', evaluator.globals, side_effects=evaluator.side_effects)
            return result
        except asyncio.CancelledError:
            if not self._stop_requested:
                raise
            result = self._stopped_result()
            return result
        finally:
            self._driver = None
            self._task = None
            self._idle.set()
            self.set_state(RunnerState.RESET)
            self.last_result = result
            if started:
                self.tracker.notify_execution_stopped()
            if self.registry is not None and result is not None:
                if result.status == 'success':
                    self.registry.on_script_complete(self)
                else:
                    self.registry.on_script_error(self)

    def _report_error(self, message: str):
        self.error_log += message + "\n"
        self._log('stderr', message)

    def _stopped_result(self) -> ExecutionResult:
        msg = f"@{self.config.error_prefix}: Execution stopped by user"
        self._report_error(msg)
        ev = self.evaluator
        return ExecutionResult(
            'stopped',
            ev.globals if ev is not None else {},
            msg,
            side_effects=ev.side_effects if ev is not None else [],
        )

    def stop(self) -> bool:
        """Cancel the active run at its next suspension point."""
        if not self.is_executing:
            return False
        self._stop_requested = True
        if self._driver is not None:
            self._driver.cancel()
            # Interrupt a pending sleep or host await right away
            task = self._task
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
        return True

    async def wait_stopped(self):
        """Wait until the current run, started either way, has finished."""
        await self._idle.wait()

    async def reset(self):
        """Stop any run, reset the scene and return every runner to idle."""
        if self.is_executing:
            self.stop()
            await self.wait_stopped()
        driver = StepDriver(self.config.step_delay)
        await driver.run(self.bridge.reset_scene())
        if driver.error is not None:
            raise driver.error
        self._log('info', "Script reset has been made")
        if self.registry is not None:
            self.registry.reset_all()
        else:
            self.set_state(RunnerState.RESET)


# ===================================================================
# 5. Runner coordination
# ===================================================================


class RunnerRegistry:
    """Keeps at most one registered runner executing at a time."""

    def __init__(self):
        self.runners: List[ScriptRunner] = []
        self.current_runner: Optional[ScriptRunner] = None

    def register(self, runner: ScriptRunner):
        if runner not in self.runners:
            self.runners.append(runner)
        runner.registry = self

    def unregister(self, runner: ScriptRunner):
        if runner in self.runners:
            self.runners.remove(runner)
        if runner.registry is self:
            runner.registry = None
        if self.current_runner is runner:
            self.current_runner = None

    def stop_all(self):
        for runner in list(self.runners):
            runner.stop()

    async def start_runner(self, runner: ScriptRunner, source: str) -> asyncio.Task:
        """Force-stop every running script, then start `runner` on `source`."""
        self.register(runner)
        self.stop_all()
        for r in list(self.runners):
            await r.wait_stopped()
        self.current_runner = runner
        for r in self.runners:
            if r is not runner:
                r.set_state(RunnerState.RESET)
        return runner.start(source)

    def reset_all(self):
        self.stop_all()
        self.current_runner = None
        for runner in self.runners:
            if not runner.is_executing:
                runner.set_state(RunnerState.RESET)

    def on_script_error(self, runner: ScriptRunner):
        if self.current_runner is runner:
            self.current_runner = None

    def on_script_complete(self, runner: ScriptRunner):
        if self.current_runner is runner:
            self.current_runner = None

    def is_any_running(self) -> bool:
        return self.current_runner is not None and self.current_runner.is_executing
