from splice.splice_datatypes import (
    SpliceError, ParseError, SpliceRuntimeError, ConfigurationError, ErrorKind,
    Env, Frame, CancelToken, Table
)
from splice.splice_runtime import (
    ScriptRunner, ExecutionResult, create_scope, evaluate_expression, interpolate,
    build_global_env, get_global_env
)

__all__ = [
    "SpliceError", "ParseError", "SpliceRuntimeError", "ConfigurationError", "ErrorKind",
    "Env", "Frame", "CancelToken", "Table",
    "ScriptRunner", "ExecutionResult", "create_scope", "evaluate_expression", "interpolate",
    "build_global_env", "get_global_env",
]
