from stepy.stepy_config import RunnerConfig
from stepy.stepy_datatypes import ArgumentError, LexError, Token, TokenType, Wait
from stepy.stepy_interpreter import Evaluator
from stepy.stepy_lexer import Lexer, tokenize
from stepy.stepy_parser import Parser, parse
from stepy.stepy_printer import Printer
from stepy.stepy_runtime import (
    ExecutionResult, HostBridge, RunnerRegistry, RunnerState, ScriptRunner,
    StdLib, StepDriver, StepyHost, action_command, predicate_command,
)
from stepy.stepy_tracker import ExecutionTracker
