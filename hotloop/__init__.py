from hotloop.hotloop_errors import (
    HotloopError, ConfigError, ResourceNotFoundError, CompilationError,
    InstantiationError, EvaluationFailure,
)
from hotloop.hotloop_config import HotloopConfig, load_config
from hotloop.hotloop_runtime import ExecutionResult, ScriptRunner
from hotloop.hotloop_cache import CodeUnit, DynamicCode, watch
from hotloop.hotloop_loop import (
    SETUP_DONE, Environment, SetupRecorder, LoopSession, ExploratoryLoop,
    current_session, new_session, is_setup, explore, loop,
)

__all__ = [
    "HotloopError", "ConfigError", "ResourceNotFoundError", "CompilationError",
    "InstantiationError", "EvaluationFailure",
    "HotloopConfig", "load_config",
    "ExecutionResult", "ScriptRunner",
    "CodeUnit", "DynamicCode", "watch",
    "SETUP_DONE", "Environment", "SetupRecorder", "LoopSession", "ExploratoryLoop",
    "current_session", "new_session", "is_setup", "explore", "loop",
]
