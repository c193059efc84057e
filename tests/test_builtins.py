import pytest

from stepy.stepy_datatypes import ArgumentError, Wait
from stepy.stepy_interpreter import Evaluator
from stepy.stepy_lexer import tokenize
from stepy.stepy_parser import parse
from stepy.stepy_runtime import StdLib


def run(src):
    ev = Evaluator()
    StdLib(ev)
    signals = list(ev.execute(parse(tokenize(src))))
    return ev, signals


def output(src):
    ev, _ = run(src)
    return [e['message'] for e in ev.side_effects if e['topics'] == ['stdout']]


def test_stdlib_binds_exactly_the_builtins():
    ev = Evaluator()
    StdLib(ev)
    assert sorted(ev.builtins) == ["len", "print", "range", "sleep"]


def test_print_joins_with_spaces():
    assert output("print(1, \"two\", [3])\nprint()\n") == ["1 two [3]", ""]


def test_print_records_stdout_side_effect_and_forwards_to_sink():
    ev = Evaluator()
    StdLib(ev)
    seen = []
    ev.log_sink = seen.append
    list(ev.execute(parse(tokenize("print(\"hi\")"))))
    assert ev.side_effects == [{'topics': ['stdout'], 'message': 'hi'}]
    assert seen == ev.side_effects


def test_len():
    assert output("print(len(\"abc\"), len([1, 2]), len([]))") == ["3 2 0"]
    ev, _ = run("n = len([1])")
    assert ev.globals["n"] == 1.0
    with pytest.raises(TypeError):
        run("len(5)")
    with pytest.raises(ArgumentError):
        run("len()")


@pytest.mark.parametrize("src, expected", [
    ("range(3)", "[0, 1, 2]"),
    ("range(0)", "[]"),
    ("range(-2)", "[]"),
    ("range(2, 5)", "[2, 3, 4]"),
    ("range(1, 7, 2)", "[1, 3, 5]"),
    ("range(5, 0, -2)", "[5, 3, 1]"),
    ("range(2.9)", "[0, 1]"),
    ("range(1.5, 4.9)", "[1, 2, 3]"),
])
def test_range(src, expected):
    assert output(f"print({src})") == [expected]


def test_range_errors():
    with pytest.raises(ValueError):
        run("range(1, 2, 0)")
    with pytest.raises(ArgumentError):
        run("range()")
    with pytest.raises(ArgumentError):
        run("range(1, 2, 3, 4)")
    with pytest.raises(TypeError):
        run("range(\"a\")")


def test_range_result_is_a_fresh_list():
    assert output("r = range(2)\nr.append(9)\nprint(r, range(2))") == ["[0, 1, 9] [0, 1]"]


def test_sleep_yields_wait_instruction():
    _, signals = run("sleep(0.5)")
    assert signals == [Wait(0.5), None]


def test_sleep_clamps_negative_and_accepts_numeric_strings():
    _, signals = run("sleep(-1)\nsleep(\"0.25\")")
    assert signals == [Wait(0.0), None, Wait(0.25), None]


def test_sleep_arity():
    with pytest.raises(ArgumentError):
        run("sleep()")
    with pytest.raises(ArgumentError):
        run("sleep(1, 2)")


def test_sleep_inside_function_propagates_wait():
    _, signals = run("def pause():\n    sleep(2)\npause()\n")
    assert Wait(2.0) in signals


def test_print_of_self_containing_list():
    assert output("a = [1]\na.append(a)\nprint(a)\n") == ["[1, [...]]"]
