import asyncio

import pytest

from stepy.stepy_config import RunnerConfig
from stepy.stepy_datatypes import ArgumentError
from stepy.stepy_runtime import (
    HostBridge, ScriptRunner, StepyHost, action_command, predicate_command,
)


def assert_ok(res):
    assert res.status == "success", f"expected success, got {res.error_message}"


def assert_error(res, needle=None):
    assert res.status == "error", f"expected error, got {res}"
    if needle is not None:
        assert needle in (res.error_message or ""), res.error_message


class MyHost(StepyHost):
    def __init__(self):
        self.log = []
        self.reset_calls = 0
        self.ready = True
        super().__init__()

    @action_command
    def wave(self, times):
        self.log.append(("wave", times))
        return "ignored"

    @action_command(name="walk")
    def walk_animated(self, steps):
        for i in range(int(steps)):
            self.log.append(("walk", i))
            yield None

    @predicate_command
    def is_ready(self):
        return self.ready

    @predicate_command
    async def has_signal(self):
        await asyncio.sleep(0)
        return 1

    # Collides with the built-in and must never be reached from scripts
    @action_command
    def print(self, *args):
        self.log.append(("print", args))

    @action_command
    def explode(self):
        raise ValueError("kaboom")

    def scene_reset(self):
        self.reset_calls += 1


def make_runner(host, **config):
    return ScriptRunner(host=host, config=RunnerConfig(step_delay=0, **config))


def test_decorated_methods_are_registered():
    host = MyHost()
    assert set(host.action_commands) == {"wave", "walk", "print", "explode"}
    assert set(host.predicate_commands) == {"is_ready", "has_signal"}
    assert host.has_command("walk")
    assert not host.has_command("walk_animated")


def test_manual_registration():
    host = MyHost()
    host.register_predicate("always", lambda: True)
    assert host.has_command("always")
    assert "always" in HostBridge(host).all_command_names()


def test_command_names_lists_builtins_then_host_commands_once():
    bridge = HostBridge(MyHost())
    names = bridge.all_command_names()
    assert names[:4] == ["print", "len", "range", "sleep"]
    assert names.count("print") == 1
    assert {"wave", "walk", "is_ready", "has_signal"} <= set(names)
    assert HostBridge().all_command_names() == ["print", "len", "range", "sleep"]


def test_unregistered_bridge_has_no_commands():
    bridge = HostBridge(MyHost())
    bridge.unregister_controller()
    assert not bridge.has_command("wave")
    assert bridge.controller is None


@pytest.mark.asyncio
async def test_action_returns_none_to_script():
    host = MyHost()
    res = await make_runner(host).handle_script("r = wave(2)\nprint(r)\n")
    assert_ok(res)
    assert host.log == [("wave", 2.0)]
    assert res.stdout == ["None"]


@pytest.mark.asyncio
async def test_generator_action_runs_over_several_steps():
    host = MyHost()
    res = await make_runner(host).handle_script("walk(3)\nprint(\"done\")\n")
    assert_ok(res)
    assert host.log == [("walk", 0), ("walk", 1), ("walk", 2)]
    assert res.stdout == ["done"]


@pytest.mark.asyncio
async def test_predicates_return_bools():
    host = MyHost()
    runner = make_runner(host)
    res = await runner.handle_script("a = is_ready()\nb = has_signal()\n")
    assert_ok(res)
    assert res.globals == {"a": True, "b": True}
    host.ready = False
    res = await runner.handle_script("if not is_ready():\n    print(\"waiting\")\n")
    assert res.stdout == ["waiting"]


@pytest.mark.asyncio
async def test_builtin_wins_over_host_command():
    host = MyHost()
    res = await make_runner(host).handle_script("print(\"hi\")")
    assert_ok(res)
    assert res.stdout == ["hi"]
    assert host.log == []


@pytest.mark.asyncio
async def test_host_command_wins_over_user_function():
    host = MyHost()
    src = "def wave(x):\n    print(\"user\")\nwave(1)\n"
    res = await make_runner(host).handle_script(src)
    assert_ok(res)
    assert res.stdout == []
    assert host.log == [("wave", 1.0)]


@pytest.mark.asyncio
async def test_command_arity_mismatch_is_argument_error():
    host = MyHost()
    res = await make_runner(host).handle_script("wave()")
    assert_error(res, "ArgumentError")
    assert host.log == []


def test_bridge_invoke_raises_argument_error_directly():
    bridge = HostBridge(MyHost())
    with pytest.raises(ArgumentError):
        next(bridge.invoke("is_ready", [1]))


@pytest.mark.asyncio
async def test_host_exception_surfaces_as_script_error_with_line():
    host = MyHost()
    res = await make_runner(host).handle_script("x = 1\nexplode()\n")
    assert_error(res, "ValueError: kaboom")
    assert res.error_line == 2


@pytest.mark.asyncio
async def test_host_failure_inside_function_unwinds_frames():
    host = MyHost()
    runner = make_runner(host)
    res = await runner.handle_script("def go():\n    explode()\ngo()\n")
    assert_error(res, "kaboom")
    assert runner.evaluator.locals_stack == []
    assert runner.evaluator.global_decls_stack == []


@pytest.mark.asyncio
async def test_unknown_function():
    res = await make_runner(MyHost()).handle_script("fly()")
    assert_error(res, "Unknown function 'fly'")


@pytest.mark.asyncio
async def test_scene_reset_runs_before_each_script_when_enabled():
    host = MyHost()
    runner = make_runner(host)
    await runner.handle_script("pass")
    await runner.handle_script("pass")
    assert host.reset_calls == 2

    host = MyHost()
    await make_runner(host, reset_scene=False).handle_script("pass")
    assert host.reset_calls == 0


class HaltingHost(StepyHost):
    def __init__(self):
        self.runner = None
        super().__init__()

    @action_command
    def halt(self):
        self.runner.stop()

    def scene_reset(self):
        pass


@pytest.mark.asyncio
async def test_command_can_stop_its_own_run():
    host = HaltingHost()
    runner = make_runner(host)
    host.runner = runner
    res = await runner.handle_script("halt()\nprint(\"after\")\n")
    assert res.status == "stopped"
    assert res.stdout == []
    # The awaiting task was not cancelled along the way
    await asyncio.sleep(0)
    assert_ok(await runner.handle_script("x = 1\n"))
