"""
Exploratory re-run loop.

Some costly setup has to run before you can experiment on its result (load
millions of rows, spin up a big object graph), and the experimenting is what
you keep changing. Put a call to `loop()` at the top of the script:

    import hotloop

    def setup(env):
        env.txs = load_all_transactions()   # runs once

    hotloop.loop(__file__, setup)

    total = sum(t.amount for t in txs if t.amount > 1000)
    total

The first run performs the setup, records what it writes into an
Environment, and then evaluates the whole file again with that Environment
as its globals. Evaluation reaches the `loop()` line again, sees that this
session is already set up, and returns at once, so the rest of the script
runs against the prepared values. After each run the loop waits for Enter,
re-reads the file and runs it again. Names bound by a run that completes
are kept in the Environment for the next one. Every failure, syntax errors
included, is reported and leaves the Environment as it was.

The second form hands over a prepared mapping instead of a callable,
typically the script's own globals:

    if not hotloop.is_setup(globals()):
        txs = load_all_transactions()
        hotloop.loop(__file__, globals())
"""
from __future__ import annotations

import asyncio
import inspect
import threading
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from hotloop.hotloop_config import HotloopConfig
from hotloop.hotloop_console import Console, format_ms, shorten
from hotloop.hotloop_runtime import RESULT_NAME, ExecutionResult, ScriptRunner

SETUP_DONE = "SETUP_DONE"

Setup = Union[Callable[['SetupRecorder'], Any], MutableMapping, None]


class Environment(dict):
    """Variables shared between the setup step and every iteration."""


def is_setup(mapping: Mapping) -> bool:
    """Whether setup already ran for this mapping (the SETUP_DONE marker is present)."""
    return SETUP_DONE in mapping


class SetupRecorder:
    """
    Records what a setup callable writes.

    `rec.name = value`, `rec.name(value)` and `rec["name"] = value` all become
    `environment["name"] = value`. A call with several arguments stores the
    tuple. Recorded values are read back with `rec["name"]`; attribute access
    always yields a recorder, so `rec.x(1); rec.x(2)` leaves 2.
    """
    # Mangled, so setup keys such as `_set` or `_environment` stay free
    __slots__ = ("__environment",)

    def __init__(self, environment: MutableMapping):
        object.__setattr__(self, "_SetupRecorder__environment", environment)

    def __record(self, name: str, value: Any) -> None:
        self.__environment[name] = value

    def __setattr__(self, name: str, value: Any) -> None:
        self.__record(name, value)

    def __setitem__(self, name: str, value: Any) -> None:
        self.__record(name, value)

    def __getitem__(self, name: str) -> Any:
        return self.__environment[name]

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)

        def record(*args: Any) -> None:
            self.__record(name, args[0] if len(args) == 1 else args)
        record.__name__ = name
        return record


@dataclass
class LoopSession:
    already_invoked: bool = False
    environment: Optional[Dict[str, Any]] = None
    iteration_count: int = 0
    last_duration_ms: Optional[float] = None
    last_result: Optional[ExecutionResult] = None


_local = threading.local()


def current_session() -> LoopSession:
    """The calling thread's default session; a new thread starts with a fresh one."""
    session = getattr(_local, "session", None)
    if session is None:
        session = _local.session = LoopSession()
    return session


def new_session() -> LoopSession:
    """Replace the calling thread's default session (an explicit restart)."""
    _local.session = LoopSession()
    return _local.session


def _already_set_up(session: LoopSession, setup: Setup) -> bool:
    if session.already_invoked:
        return True
    return isinstance(setup, Mapping) and is_setup(setup)


async def _settle(awaitable: Awaitable) -> Any:
    return await awaitable


def run_setup(session: LoopSession, setup: Setup) -> Dict[str, Any]:
    session.already_invoked = True
    if isinstance(setup, MutableMapping):
        environment = setup
    else:
        environment = Environment()
        if setup is not None:
            outcome = setup(SetupRecorder(environment))
            # Async setups get a loop of their own; plain ones run without one
            if inspect.isawaitable(outcome):
                asyncio.run(_settle(outcome))
    environment[SETUP_DONE] = SETUP_DONE
    session.environment = environment
    return environment


# Bindings an iteration gets from the loop rather than from the script
_PER_RUN_NAMES = frozenset(("__builtins__", "__file__", "__name__", RESULT_NAME, SETUP_DONE))


class ExploratoryLoop:
    """Evaluates one script file over and over against a persistent environment."""

    def __init__(self, script: str, environment: Dict[str, Any], *,
                 session: Optional[LoopSession] = None, runner: Optional[ScriptRunner] = None,
                 console: Optional[Console] = None, config: Optional[HotloopConfig] = None):
        self.script = str(script)
        self.environment = environment
        self.config = config or (console.config if console else HotloopConfig())
        self.session = session or current_session()
        self.runner = runner or ScriptRunner(self.config.encoding)
        self.console = console or Console(self.config)

    def namespace(self) -> Dict[str, Any]:
        # A copy, so a failed run leaves the environment exactly as it was
        ns = dict(self.environment)
        ns["__file__"] = self.script
        ns["__name__"] = "__main__"
        return ns

    def commit(self, ns: Dict[str, Any]) -> None:
        """Keep the names a successful run bound or rebound."""
        env = self.environment
        for name, value in ns.items():
            if name in _PER_RUN_NAMES:
                continue
            if name not in env or env[name] is not value:
                env[name] = value

    def report(self, result: ExecutionResult) -> None:
        console = self.console
        ms = format_ms(result.elapsed_ms)
        if result.ok:
            value = shorten(str(result.value), self.config.max_value_length)
            console.print(console.render(self.config.success_template, ms=ms, value=value))
        else:
            console.error(console.render(self.config.failure_template, ms=ms))
            console.error((result.traceback or result.format_error()).rstrip("\n"))
        console.print(console.render(self.config.footer_template))

    def run_once(self) -> ExecutionResult:
        console = self.console
        console.print(console.render(self.config.banner_template, path=self.script))
        ns = self.namespace()
        result = self.runner.run_file(self.script, ns)
        if result.ok:
            self.commit(ns)
        self.session.iteration_count += 1
        self.session.last_duration_ms = result.elapsed_ms
        self.session.last_result = result
        self.report(result)
        return result

    def run(self) -> int:
        """Loop until the user enters the exit sentinel; returns the number of iterations."""
        while True:
            self.run_once()
            if not self.console.confirm_continue():
                return self.session.iteration_count


def explore(script: str, setup: Setup = None, *, session: Optional[LoopSession] = None,
            console: Optional[Console] = None, config: Optional[HotloopConfig] = None) -> bool:
    """
    loop() without the process exit.

    Returns False straight away when the session is already set up, True once
    the user has ended the loop.
    """
    session = session or current_session()
    if _already_set_up(session, setup):
        return False
    # Re-evaluated scripts call loop() without a session; they must find this one
    _local.session = session
    environment = run_setup(session, setup)
    looper = ExploratoryLoop(script, environment, session=session, console=console, config=config)
    looper.run()
    return True


def loop(script: str, setup: Setup = None, *, session: Optional[LoopSession] = None,
         console: Optional[Console] = None, config: Optional[HotloopConfig] = None) -> None:
    """
    Run `script` repeatedly with the environment built by `setup`.

    `script` is the calling file (pass __file__). `setup` is a callable that
    receives a SetupRecorder, or a prepared mapping such as globals(). When
    the session is already set up, which is what happens every time the
    script re-evaluates this very call, it returns immediately. Otherwise it
    never returns: exiting the loop exits the process.
    """
    if explore(script, setup, session=session, console=console, config=config):
        raise SystemExit(0)
