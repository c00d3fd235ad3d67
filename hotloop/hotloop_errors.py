from __future__ import annotations
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from hotloop.hotloop_runtime import ExecutionResult


class HotloopError(Exception):
    """Base class for everything hotloop raises on purpose."""


class ConfigError(HotloopError):
    pass


class ResourceNotFoundError(HotloopError, LookupError):
    """The named resource could not be located."""
    def __init__(self, resource_id: str, detail: Optional[str] = None):
        self.resource_id = resource_id
        msg = f"No resource of name '{resource_id}' found."
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class CompilationError(HotloopError):
    """New source text failed to compile or to load as a module."""
    def __init__(self, resource_id: str, message: str):
        self.resource_id = resource_id
        super().__init__(f"{resource_id}: {message}")


class InstantiationError(HotloopError):
    """The compiled unit could not produce an instance."""
    def __init__(self, resource_id: str, message: str):
        self.resource_id = resource_id
        super().__init__(f"{resource_id}: {message}")


class EvaluationFailure(HotloopError):
    """A script evaluation ended in an error result."""
    def __init__(self, result: 'ExecutionResult'):
        self.result = result
        super().__init__(result.format_error())
