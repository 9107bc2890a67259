"""
The splice runtime: scopes, the expression evaluation bridge, the document
splicer, the script libraries and the template runner.
"""

import os
import re
import math
import inspect
import logging
import collections.abc
from dataclasses import dataclass
from typing import Any, Dict, Literal, Mapping, Optional

import httpx

from splice.splice_datatypes import (
    AUGMENTATION_NAME, Env, Frame, Table, MultiResult, Builtin, CancelToken, Node,
    SpliceError, SpliceRuntimeError
)
from splice.splice_interpreter import (
    Evaluator, single_result, to_host_value, to_number, type_name, is_truthy, is_number
)
from splice.splice_parser import parse_document, parse_expression
from splice.splice_printer import to_display_string
from splice.splice_tree import (
    ParseTree, Replace, find_node_of_type, render_to_text, replace_nodes_matching_async
)

logger = logging.getLogger(__name__)


# ===================================================================
# 1. Environment Manager
# ===================================================================

def create_scope(frame: Frame, augmentation: Optional[Mapping] = None) -> Env:
    """A fresh scope whose parent is the frame's global environment.

    The augmentation (if any) is bound whole under ``_`` and each of its
    string keys is bound directly as a local name.
    """
    env = Env(parent=frame.require_global_env())
    if augmentation is None:
        return env
    if not isinstance(augmentation, collections.abc.Mapping):
        raise SpliceRuntimeError(f"augmentation must be a table, not {type_name(augmentation)}", frame)
    env.set_local(AUGMENTATION_NAME, augmentation)
    for key, value in augmentation.items():
        if isinstance(key, str):
            env.set_local(key, value)
    return env


# ===================================================================
# 2. Expression Evaluation Bridge
# ===================================================================

async def eval_expression(frame: Frame, node: Node, augmentation: Optional[Mapping] = None) -> Any:
    """Evaluates a parsed expression in a fresh scope and returns a host value."""
    if not isinstance(node, Node):
        raise SpliceRuntimeError(f"expected a parsed expression, got {type_name(node)}", frame)
    env = create_scope(frame, augmentation)
    value = await Evaluator(frame).eval(node, env)
    return to_host_value(single_result(value))


def _evaluation_failure(expression: str, frame: Frame, cause: Exception) -> SpliceRuntimeError:
    detail = getattr(cause, 'message', None) or str(cause)
    kind = getattr(cause, 'kind', None)
    error = SpliceRuntimeError(f'Error evaluating "{expression}": {detail}', frame, expression=expression)
    if kind is not None:
        error.kind = kind
    return error


async def evaluate_expression(frame: Frame, expression: str,
                              augmentation: Optional[Mapping] = None) -> ParseTree:
    """Parses, evaluates and renders one expression, returning the result as a document tree.

    A frame without a global environment raises ConfigurationError up front;
    every other failure is reported as SpliceRuntimeError naming the expression.
    """
    frame.require_global_env()
    request = frame.child(expression)
    try:
        node = parse_expression(expression)
        value = await eval_expression(request, node, augmentation)
        rendered = to_display_string(value)
        logger.debug("Evaluated %r -> %r", expression, rendered)
        return parse_document(rendered)
    except Exception as e:
        logger.debug("Evaluation of %r failed: %s", expression, e)
        raise _evaluation_failure(expression, request, e) from e


# ===================================================================
# 3. Document Splicer
# ===================================================================

def _located(error: SpliceRuntimeError, node: ParseTree) -> SpliceRuntimeError:
    if error.loc is None and node.line is not None:
        error.loc = {'line': node.line, 'col': node.col, 'tag': node.type, 'text': render_to_text(node)}
    return error


async def interpolate(frame: Frame, template: str, augmentation: Optional[Mapping] = None, *,
                      concurrent: bool = False) -> str:
    """Replaces every directive, ``\\$`` escape and directive-bearing wiki link page in ``template``.

    Substitutions land in document order whether or not ``concurrent`` is set.
    The first failing expression fails the whole call.
    """
    frame.require_global_env()
    tree = parse_document(template)
    logger.debug("Interpolating %d character template (concurrent=%s)", len(template), concurrent)

    async def splice_node(node: ParseTree):
        frame.check_cancelled()
        expression_node = None
        if node.type == 'Directive':
            expression_node = find_node_of_type(node, 'DirectiveExpression')
        elif node.type == 'Escape' and render_to_text(node) == '\\$':
            return Replace(parse_document('$'))
        elif node.type == 'WikiLinkPage':
            expression_node = find_node_of_type(parse_document(render_to_text(node)), 'DirectiveExpression')
        if expression_node is None:
            return None
        try:
            return Replace(await evaluate_expression(frame, render_to_text(expression_node), augmentation))
        except SpliceRuntimeError as e:
            raise _located(e, node)

    tree = await replace_nodes_matching_async(tree, splice_node, concurrent=concurrent)
    return render_to_text(tree)


# ===================================================================
# 4. Libraries
# ===================================================================

def _script_name(method_name: str) -> str:
    """``_base_url`` -> ``baseUrl``"""
    head, *rest = method_name.lstrip('_').split('_')
    return head + "".join(part.capitalize() for part in rest)


def _library_members(lib):
    for name, member in inspect.getmembers(lib):
        if name.startswith('_') and not name.startswith('__') and callable(member):
            yield _script_name(name), member


def _library_table(lib, *, with_frame: bool = False) -> Table:
    table = Table()
    for name, member in _library_members(lib):
        table[name] = Builtin(name, member) if with_frame else member
    return table


def _check_string(fn_name: str, position: int, value: Any) -> str:
    if isinstance(value, str):
        return value
    if is_number(value):
        return to_display_string(value)
    raise TypeError(f"bad argument #{position} to '{fn_name}' (string expected, got {type_name(value)})")


def _check_number(fn_name: str, position: int, value: Any):
    number = to_number(value)
    if number is None:
        raise TypeError(f"bad argument #{position} to '{fn_name}' (number expected, got {type_name(value)})")
    return number


def _check_integer(fn_name: str, position: int, value: Any) -> int:
    number = _check_number(fn_name, position, value)
    if isinstance(number, float):
        if not number.is_integer():
            raise ValueError(f"bad argument #{position} to '{fn_name}' (number has no integer representation)")
        number = int(number)
    return number


class CoreLib:
    """Global functions: tostring, tonumber, type, select, error, assert."""

    def _tostring(self, value=None):
        return to_display_string(value)

    def _tonumber(self, value=None, base=None):
        if base is None:
            return to_number(value)
        base = _check_integer('tonumber', 2, base)
        try:
            return int(_check_string('tonumber', 1, value).strip(), base)
        except ValueError:
            return None

    def _type(self, value=None):
        return type_name(value)

    def _select(self, n, *args):
        if n == '#':
            return len(args)
        n = _check_integer('select', 1, n)
        if n < 0:
            n = len(args) + n
            if n < 0:
                raise ValueError("bad argument #1 to 'select' (index out of range)")
            return MultiResult(args[n:])
        if n == 0:
            raise ValueError("bad argument #1 to 'select' (index out of range)")
        return MultiResult(args[n - 1:])

    def _error(self, message=None, level=1):
        raise SpliceRuntimeError(to_display_string(message))

    def _assert(self, value=None, message="assertion failed!", *rest):
        if not is_truthy(value):
            raise SpliceRuntimeError(to_display_string(message))
        return MultiResult((value, message) + rest)


_FORMAT_SPEC = re.compile(r'%([-+ #0]*\d*(?:\.\d+)?)([diouxXeEfgGqsc%])')


class StringLib:
    """The ``string`` table; also backs method calls on string values."""

    def _upper(self, s):
        return _check_string('upper', 1, s).upper()

    def _lower(self, s):
        return _check_string('lower', 1, s).lower()

    def _len(self, s):
        return len(_check_string('len', 1, s).encode('utf-8'))

    def _rep(self, s, n, sep=""):
        s = _check_string('rep', 1, s)
        n = _check_integer('rep', 2, n)
        if n <= 0:
            return ""
        return _check_string('rep', 3, sep).join([s] * n)

    def _sub(self, s, i=1, j=-1):
        s = _check_string('sub', 1, s)
        i = _check_integer('sub', 2, i)
        j = _check_integer('sub', 3, j)
        n = len(s)
        if i < 0:
            i = max(n + i + 1, 1)
        elif i == 0:
            i = 1
        if j < 0:
            j = n + j + 1
        elif j > n:
            j = n
        return s[i - 1:j] if i <= j else ""

    def _format(self, fmt, *args):
        values = iter(args)
        position = 1

        def convert(m):
            nonlocal position
            flags, conv = m.groups()
            if conv == '%':
                return '%'
            position += 1
            try:
                value = next(values)
            except StopIteration:
                raise ValueError(f"bad argument #{position} to 'format' (no value)") from None
            match conv:
                case 's':
                    return f"%{flags}s" % to_display_string(value)
                case 'q':
                    text = to_display_string(value)
                    return '"' + text.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n') + '"'
                case 'c':
                    return chr(_check_integer('format', position, value))
                case 'd' | 'i' | 'u':
                    return f"%{flags}d" % _check_integer('format', position, value)
                case 'o' | 'x' | 'X':
                    return f"%{flags}{conv}" % _check_integer('format', position, value)
            return f"%{flags}{conv}" % float(_check_number('format', position, value))

        return _FORMAT_SPEC.sub(convert, _check_string('format', 1, fmt))


class MathLib:
    """The ``math`` table (``huge`` and ``pi`` are added as constants)."""

    def _floor(self, x):
        x = _check_number('floor', 1, x)
        if isinstance(x, float) and (math.isinf(x) or math.isnan(x)):
            return x
        return math.floor(x)

    def _ceil(self, x):
        x = _check_number('ceil', 1, x)
        if isinstance(x, float) and (math.isinf(x) or math.isnan(x)):
            return x
        return math.ceil(x)

    def _abs(self, x):
        return abs(_check_number('abs', 1, x))

    def _sqrt(self, x):
        x = _check_number('sqrt', 1, x)
        if x < 0:
            return math.nan
        return math.sqrt(x)

    def _max(self, *args):
        if not args:
            raise ValueError("bad argument #1 to 'max' (number expected, got no value)")
        return max(_check_number('max', i, v) for i, v in enumerate(args, start=1))

    def _min(self, *args):
        if not args:
            raise ValueError("bad argument #1 to 'min' (number expected, got no value)")
        return min(_check_number('min', i, v) for i, v in enumerate(args, start=1))


class TableLib:
    """The ``table`` table."""

    def _concat(self, t, sep="", i=1, j=None):
        sep = _check_string('concat', 2, sep)
        i = _check_integer('concat', 3, i)
        if isinstance(t, Table):
            j = t.length() if j is None else _check_integer('concat', 4, j)
            items = [(k, t.raw_get(k)) for k in range(i, j + 1)]
        elif isinstance(t, (list, tuple)):
            j = len(t) if j is None else _check_integer('concat', 4, j)
            items = [(k, t[k - 1] if 1 <= k <= len(t) else None) for k in range(i, j + 1)]
        else:
            raise TypeError(f"bad argument #1 to 'concat' (table expected, got {type_name(t)})")
        parts = []
        for k, value in items:
            if not (isinstance(value, str) or is_number(value)):
                raise ValueError(f"invalid value (at index {k}) in table for 'concat'")
            parts.append(to_display_string(value))
        return sep.join(parts)


class SpliceLib:
    """The ``splice`` table. Every entry receives the calling frame."""

    def _parse_expression(self, frame: Frame, text):
        frame.require_global_env()
        return parse_expression(text)

    async def _eval_expression(self, frame: Frame, parsed, augmentation=None):
        frame.require_global_env()
        return await eval_expression(frame, parsed, augmentation)

    async def _interpolate(self, frame: Frame, template, augmentation=None):
        return await interpolate(frame, template, augmentation)

    def _base_url(self, frame: Frame):
        frame.require_global_env()
        return origin_of(frame.location)


def origin_of(location: Optional[str]) -> Optional[str]:
    """``scheme://host[:port]`` of an addressable location, or None."""
    if not location:
        return None
    try:
        url = httpx.URL(location)
    except httpx.InvalidURL:
        return None
    if not url.scheme or not url.host:
        return None
    host = f"[{url.host}]" if ':' in url.host else url.host
    port = f":{url.port}" if url.port is not None else ""
    return f"{url.scheme}://{host}{port}"


def build_global_env() -> Env:
    """A new global environment holding the core functions and library tables."""
    env = Env()
    for name, member in _library_members(CoreLib()):
        env.set_local(name, member)
    env.set_local('string', _library_table(StringLib()))
    math_table = _library_table(MathLib())
    math_table['huge'] = math.inf
    math_table['pi'] = math.pi
    env.set_local('math', math_table)
    env.set_local('table', _library_table(TableLib()))
    env.set_local('splice', _library_table(SpliceLib(), with_frame=True))
    return env


_global_env: Optional[Env] = None


def get_global_env() -> Env:
    """The process-wide global environment, created on first use."""
    global _global_env
    if _global_env is None:
        _global_env = build_global_env()
    return _global_env


# ===================================================================
# 5. Template Execution
# ===================================================================

Token = Dict[str, Any]


@dataclass
class ExecutionResult:
    """The structured result of rendering a template."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[Token] = None
    cancelled: bool = False

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and self.error_token.get('line') is not None:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")


class ScriptRunner:
    """Renders templates and evaluates expressions against one global environment."""

    def __init__(self, global_env: Optional[Env] = None, location: Optional[str] = None,
                 concurrent: Optional[bool] = None):
        self.global_env = global_env if global_env is not None else get_global_env()
        self.location = location if location is not None else (os.environ.get("SPLICE_LOCATION") or None)
        self.concurrent = concurrent if concurrent is not None else _env_flag("SPLICE_CONCURRENT")

    def new_frame(self, source: Optional[str] = None, cancel_token: Optional[CancelToken] = None) -> Frame:
        return Frame(self.global_env, source=source, location=self.location, cancel_token=cancel_token)

    async def interpolate(self, template: str, augmentation: Optional[Mapping] = None, *,
                          cancel_token: Optional[CancelToken] = None) -> str:
        frame = self.new_frame(cancel_token=cancel_token)
        return await interpolate(frame, template, augmentation, concurrent=self.concurrent)

    async def evaluate(self, expression: str, augmentation: Optional[Mapping] = None, *,
                       cancel_token: Optional[CancelToken] = None) -> Any:
        """Evaluates one expression and returns its host value."""
        frame = self.new_frame(expression, cancel_token)
        try:
            return await eval_expression(frame, parse_expression(expression), augmentation)
        except Exception as e:
            raise _evaluation_failure(expression, frame, e) from e

    async def handle_template(self, template: str, augmentation: Optional[Mapping] = None, *,
                              cancel_token: Optional[CancelToken] = None) -> ExecutionResult:
        """The main entry point to render a template."""
        try:
            value = await self.interpolate(template, augmentation, cancel_token=cancel_token)
            return ExecutionResult(status='success', value=value)
        except SpliceRuntimeError as e:
            return ExecutionResult(status='error', error_message=e.message, error_token=e.loc,
                                   cancelled=e.cancelled)
        except SpliceError as e:
            return ExecutionResult(status='error', error_message=f"{type(e).__name__}: {e}")
