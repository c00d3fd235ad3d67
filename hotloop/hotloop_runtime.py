# hotloop_runtime.py

import ast
import asyncio
import inspect
import linecache
import time
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from hotloop.hotloop_errors import EvaluationFailure

# Hidden binding that receives the value of a script's final expression
RESULT_NAME = "__hotloop_result__"


def register_source(filename: str, source: str) -> None:
    """Make `source` the text linecache serves for `filename`, so tracebacks show what actually ran."""
    linecache.cache[filename] = (len(source), None, source.splitlines(True), filename)


def source_context(source: str, line: Optional[int], col: Optional[int], radius: int = 2) -> str:
    lines = source.splitlines()
    if not line or line < 1 or line > len(lines):
        return ""
    start = max(1, line - radius)
    end = min(len(lines), line + radius)
    width = len(str(end))
    out = []
    for i in range(start, end + 1):
        prefix = ">" if i == line else " "
        ln = str(i).rjust(width)
        content = lines[i - 1]
        out.append(f"{prefix} {ln} | {content}")
        if i == line and col is not None:
            caret = " " * max(col - 1, 0)
            out.append(f"  {' ' * width} | {caret}^")
    return "\n".join(out)


@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_type: Optional[str] = None
    error_line: Optional[int] = None
    traceback: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == 'success'

    def format_error(self) -> str:
        """Formats an error message with the line number if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_type and not msg.startswith(self.error_type):
            msg = f"{self.error_type}: {msg}"
        if self.error_line is not None and not msg.startswith("Error on line "):
            return f"Error on line {self.error_line}: {msg}"
        return msg

    def raise_for_status(self) -> 'ExecutionResult':
        if self.status == 'error':
            raise EvaluationFailure(self)
        return self


class ScriptRunner:
    """Compiles and evaluates Python script text against a namespace."""

    compile_flags = ast.PyCF_ALLOW_TOP_LEVEL_AWAIT

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def _parse(self, source: str, filename: str):
        tree = compile(source, filename, "exec", flags=ast.PyCF_ONLY_AST | self.compile_flags, dont_inherit=True)
        # Capture the value of a trailing expression, REPL style
        if tree.body and isinstance(tree.body[-1], ast.Expr):
            last = tree.body[-1]
            assign = ast.Assign(targets=[ast.Name(id=RESULT_NAME, ctx=ast.Store())], value=last.value)
            tree.body[-1] = ast.copy_location(assign, last)
            ast.fix_missing_locations(tree)
        return compile(tree, filename, "exec", flags=self.compile_flags, dont_inherit=True)

    def _error_result(self, e: BaseException, source: Optional[str], filename: str, started: float) -> ExecutionResult:
        elapsed = (time.perf_counter() - started) * 1000.0
        line = None
        msg = str(e)
        if isinstance(e, SyntaxError):
            line = e.lineno
            msg = e.msg or msg
            if source is not None:
                ctx = source_context(source, e.lineno, e.offset)
                if ctx:
                    msg = f"{msg}\n{ctx}"
        else:
            tb = e.__traceback__
            # Innermost frame that belongs to the script itself
            for frame in traceback.extract_tb(tb) if tb is not None else []:
                if frame.filename == filename:
                    line = frame.lineno
        return ExecutionResult(
            status='error',
            error_message=msg,
            error_type=type(e).__name__,
            error_line=line,
            traceback="".join(traceback.format_exception(type(e), e, e.__traceback__)),
            elapsed_ms=elapsed,
        )

    def handle_script(self, source: str, namespace: Dict[str, Any], filename: str = "<script>") -> ExecutionResult:
        """The main entry point to execute a script."""
        started = time.perf_counter()
        try:
            register_source(filename, source)
            code = self._parse(source, filename)
            if code.co_flags & inspect.CO_COROUTINE:
                # Only scripts with top-level await get an event loop of their own
                asyncio.run(eval(code, namespace))
            else:
                exec(code, namespace)
            value = namespace.pop(RESULT_NAME, None)
        except (Exception, SystemExit) as e:
            return self._error_result(e, source, filename, started)
        return ExecutionResult(
            status='success',
            value=value,
            elapsed_ms=(time.perf_counter() - started) * 1000.0,
        )

    def run_file(self, path: str, namespace: Dict[str, Any]) -> ExecutionResult:
        """Read `path` afresh and evaluate it; reading is inside the failure boundary."""
        started = time.perf_counter()
        try:
            source = Path(path).read_text(encoding=self.encoding)
        except (OSError, UnicodeDecodeError) as e:
            return self._error_result(e, None, str(path), started)
        result = self.handle_script(source, namespace, filename=str(path))
        # Count the read in the elapsed time as well
        result.elapsed_ms = (time.perf_counter() - started) * 1000.0
        return result
