"""
The splice expression evaluator.

``Evaluator`` walks the expression AST asynchronously against an ``Env``
chain. Host callables may be sync or async; builtins receive the frame.
"""
import collections.abc
import inspect
import logging
import math
from typing import Any, List

from splice.splice_datatypes import (
    Env, Frame, Table, MultiResult, Builtin, SpliceError, SpliceRuntimeError,
    Node, Literal, Variable, Index, Call, MethodCall, BinOp, LogicalOp, UnaryOp,
    Paren, TableConstructor
)
from splice.splice_printer import function_name, to_display_string

logger = logging.getLogger(__name__)


# ===================================================================
# Value helpers
# ===================================================================

def single_result(value: Any) -> Any:
    """Reduces a MultiResult to its first value (nil when empty)."""
    if isinstance(value, MultiResult):
        return value.first()
    return value


def to_host_value(value: Any) -> Any:
    """Converts tables into plain lists/dicts, recursively."""
    if isinstance(value, Table):
        n = value.length()
        if n == len(value):
            return [to_host_value(value[i]) for i in range(1, n + 1)]
        return {k: to_host_value(v) for k, v in value.items()}
    return value


def is_truthy(value: Any) -> bool:
    return value is not None and value is not False


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def type_name(value: Any) -> str:
    match value:
        case None:
            return 'nil'
        case bool():
            return 'boolean'
        case int() | float():
            return 'number'
        case str():
            return 'string'
    if isinstance(value, (Table, collections.abc.Mapping, list, tuple)):
        return 'table'
    if isinstance(value, Builtin) or callable(value):
        return 'function'
    return 'userdata'


def to_number(value: Any):
    """Numeric coercion used by arithmetic and ``tonumber``; None if impossible."""
    if is_number(value):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip().lower()
    try:
        if text.lstrip('+-').startswith('0x'):
            return int(text, 16)
        if '.' in text or 'e' in text:
            return float(text)
        return int(text)
    except ValueError:
        return None


def values_equal(a: Any, b: Any) -> bool:
    if is_number(a) and is_number(b):
        return a == b
    if type(a) is not type(b):
        return False
    if isinstance(a, Table):
        return a is b
    return a == b


def describe(node: Node) -> str:
    """Names the value an expression refers to, for error messages."""
    match node:
        case Variable(name=name):
            return f" (global '{name}')"
        case Index(key=Literal(value=str() as key)):
            return f" (field '{key}')"
        case MethodCall(name=name):
            return f" (method '{name}')"
        case Literal(value=str()):
            return " (constant string)"
    return ""


# ===================================================================
# Evaluator
# ===================================================================

_ARITHMETIC_OPS = ('+', '-', '*', '/', '//', '%', '^')
_COMPARISON_OPS = ('<', '<=', '>', '>=')


class Evaluator:
    """Evaluates expression nodes in one frame."""

    def __init__(self, frame: Frame):
        self.frame = frame

    def error(self, message: str, node: Node = None) -> SpliceRuntimeError:
        return SpliceRuntimeError(message, self.frame, loc=getattr(node, 'loc', None))

    async def eval(self, node: Node, env: Env) -> Any:
        """Evaluates ``node``; calls may yield a MultiResult."""
        self.frame.check_cancelled()
        match node:
            case Literal(value=value):
                return value
            case Variable(name=name):
                return env.get(name)
            case Paren(expr=expr):
                return single_result(await self.eval(expr, env))
            case Index(obj=obj_node, key=key_node):
                obj = single_result(await self.eval(obj_node, env))
                key = single_result(await self.eval(key_node, env))
                return self.index(obj, key, node, obj_node)
            case Call(fn=fn_node, args=arg_nodes):
                fn = single_result(await self.eval(fn_node, env))
                args = await self.eval_args(arg_nodes, env)
                return await self.call(fn, args, node, fn_node)
            case MethodCall(obj=obj_node, name=name, args=arg_nodes):
                obj = single_result(await self.eval(obj_node, env))
                fn = self.index(obj, name, node, obj_node)
                args = await self.eval_args(arg_nodes, env)
                return await self.call(fn, [obj] + args, node, node)
            case LogicalOp(op=op, left=left_node, right=right_node):
                left = single_result(await self.eval(left_node, env))
                if op == 'and':
                    return single_result(await self.eval(right_node, env)) if is_truthy(left) else left
                return left if is_truthy(left) else single_result(await self.eval(right_node, env))
            case BinOp(op=op, left=left_node, right=right_node):
                left = single_result(await self.eval(left_node, env))
                right = single_result(await self.eval(right_node, env))
                return self.binary(op, left, right, node)
            case UnaryOp(op=op, operand=operand_node):
                operand = single_result(await self.eval(operand_node, env))
                return self.unary(op, operand, node, operand_node)
            case TableConstructor(fields=fields):
                return await self.build_table(fields, env)
        raise self.error(f"cannot evaluate {type(node).__name__}", node)

    async def eval_args(self, arg_nodes: List[Node], env: Env) -> list:
        args = []
        last = len(arg_nodes) - 1
        for i, arg_node in enumerate(arg_nodes):
            value = await self.eval(arg_node, env)
            if i == last and isinstance(value, MultiResult):
                args.extend(value)
            else:
                args.append(single_result(value))
        return args

    async def build_table(self, fields: list, env: Env) -> Table:
        table = Table()
        position = 1
        last = len(fields) - 1
        for i, (key_node, value_node) in enumerate(fields):
            value = await self.eval(value_node, env)
            if key_node is None:
                if i == last and isinstance(value, MultiResult):
                    for item in value:
                        table[position] = item
                        position += 1
                else:
                    table[position] = single_result(value)
                    position += 1
                continue
            key = single_result(await self.eval(key_node, env))
            if key is None:
                raise self.error("table index is nil", key_node)
            if isinstance(key, float) and math.isnan(key):
                raise self.error("table index is NaN", key_node)
            table[key] = single_result(value)
        return table

    # --- Indexing ---

    def index(self, obj: Any, key: Any, node: Node, obj_node: Node) -> Any:
        if isinstance(obj, Table):
            return obj.raw_get(key)
        if isinstance(obj, str):
            string_lib = self.frame.require_global_env().get('string')
            if isinstance(string_lib, Table):
                return string_lib.raw_get(key)
            return None
        if isinstance(obj, collections.abc.Mapping):
            try:
                return obj.get(key)
            except TypeError:
                return None
        if isinstance(obj, (list, tuple)):
            if is_number(key) and float(key).is_integer() and 1 <= key <= len(obj):
                return obj[int(key) - 1]
            return None
        raise self.error(f"attempt to index a {type_name(obj)} value{describe(obj_node)}", node)

    # --- Calls ---

    async def call(self, fn: Any, args: list, node: Node, fn_node: Node) -> Any:
        if not (isinstance(fn, Builtin) or callable(fn)):
            raise self.error(f"attempt to call a {type_name(fn)} value{describe(fn_node)}", node)
        try:
            if isinstance(fn, Builtin):
                return await fn.call(self.frame, *args)
            result = fn(*args)
            if inspect.isawaitable(result):
                result = await result
            return result
        except SpliceError:
            raise
        except Exception as e:
            name = function_name(fn)
            logger.debug("Host function %s raised %r", name, e)
            raise self.error(f"{name}: {e}", node) from e

    # --- Operators ---

    def arith_operand(self, value: Any, node: Node) -> Any:
        number = to_number(value)
        if number is None:
            raise self.error(f"attempt to perform arithmetic on a {type_name(value)} value", node)
        return number

    def binary(self, op: str, left: Any, right: Any, node: Node) -> Any:
        if op in _ARITHMETIC_OPS:
            return self.arith(op, self.arith_operand(left, node), self.arith_operand(right, node), node)
        if op == '..':
            for value in (left, right):
                if not (isinstance(value, str) or is_number(value)):
                    raise self.error(f"attempt to concatenate a {type_name(value)} value", node)
            return to_display_string(left) + to_display_string(right)
        if op == '==':
            return values_equal(left, right)
        if op == '~=':
            return not values_equal(left, right)
        if op in _COMPARISON_OPS:
            comparable = (is_number(left) and is_number(right)) or \
                (isinstance(left, str) and isinstance(right, str))
            if not comparable:
                raise self.error(f"attempt to compare {type_name(left)} with {type_name(right)}", node)
            match op:
                case '<': return left < right
                case '<=': return left <= right
                case '>': return left > right
                case '>=': return left >= right
        raise self.error(f"unknown operator {op!r}", node)

    def arith(self, op: str, a, b, node: Node):
        match op:
            case '+': return a + b
            case '-': return a - b
            case '*': return a * b
            case '/':
                if b == 0:
                    return _divide_by_zero(a)
                return a / b
            case '^':
                try:
                    return math.pow(a, b)
                except OverflowError:
                    return math.inf
                except ValueError:
                    return math.nan
            case '//':
                if b == 0:
                    if isinstance(a, int) and isinstance(b, int):
                        raise self.error("attempt to perform 'n//0'", node)
                    return _divide_by_zero(a)
                if isinstance(a, int) and isinstance(b, int):
                    return a // b
                q = a / b
                if math.isinf(q) or math.isnan(q):
                    return q
                return float(math.floor(q))
            case '%':
                if b == 0:
                    if isinstance(a, int) and isinstance(b, int):
                        raise self.error("attempt to perform 'n%%0'", node)
                    return math.nan
                return a % b
        raise self.error(f"unknown operator {op!r}", node)

    def unary(self, op: str, operand: Any, node: Node, operand_node: Node) -> Any:
        match op:
            case 'not':
                return not is_truthy(operand)
            case '-':
                return -self.arith_operand(operand, node)
            case '#':
                if isinstance(operand, str):
                    return len(operand.encode('utf-8'))
                if isinstance(operand, Table):
                    return operand.length()
                if isinstance(operand, (list, tuple, collections.abc.Mapping)):
                    return len(operand)
                raise self.error(f"attempt to get length of a {type_name(operand)} value{describe(operand_node)}", node)
        raise self.error(f"unknown operator {op!r}", node)


def _divide_by_zero(a) -> float:
    if a == 0 or (isinstance(a, float) and math.isnan(a)):
        return math.nan
    return math.inf if a > 0 else -math.inf
