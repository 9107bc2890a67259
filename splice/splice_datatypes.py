"""
Defines the core data types for the splice runtime.

This module provides the error hierarchy, environments and frames, the
script-level table type, builtin wrappers and the expression AST node
classes produced by the transformer.
"""

import collections.abc
import inspect
from collections import UserDict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

# Reserved binding that holds a whole augmentation inside a fresh scope.
AUGMENTATION_NAME = "_"


# =================================================================
# Errors
# =================================================================

class SpliceError(Exception):
    """Base class for every error raised by splice."""
    pass


class ParseError(SpliceError):
    """Malformed expression or template syntax."""
    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.source = source


class ConfigurationError(SpliceError):
    """A caller handed over a frame that cannot be used (e.g. no global env)."""
    pass


class ErrorKind(Enum):
    ERROR = "error"
    CANCELLED = "cancelled"


class SpliceRuntimeError(SpliceError, RuntimeError):
    """An evaluation-time failure, attributed to an expression and a frame."""
    def __init__(self, message: str, frame: Optional['Frame'] = None, *,
                 expression: Optional[str] = None, kind: ErrorKind = ErrorKind.ERROR,
                 loc: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.frame = frame
        self.kind = kind
        self.loc = loc
        if expression is None and frame is not None:
            expression = frame.source
        self.expression = expression

    @property
    def cancelled(self) -> bool:
        return self.kind is ErrorKind.CANCELLED


# =================================================================
# Environments
# =================================================================

class Env:
    """A lexical scope: name -> value bindings with an optional parent.

    Lookups walk outward through the parents. ``set`` writes to the nearest
    scope that already defines the name and defines it locally otherwise;
    ``set_local`` always binds in this scope.
    """
    def __init__(self, parent: Optional['Env'] = None):
        self.bindings: Dict[str, Any] = {}
        self.parent = parent

    def find_owner(self, name: str) -> Optional['Env']:
        env = self
        while env is not None:
            if name in env.bindings:
                return env
            env = env.parent
        return None

    def has(self, name: str) -> bool:
        return self.find_owner(name) is not None

    def get(self, name: str, default: Any = None) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            return default
        return owner.bindings[name]

    def set(self, name: str, value: Any):
        owner = self.find_owner(name)
        if owner is None:
            owner = self
        owner.bindings[name] = value

    def set_local(self, name: str, value: Any):
        self.bindings[name] = value

    def keys(self) -> collections.abc.KeysView:
        """Returns the names bound in this scope only."""
        return self.bindings.keys()

    def __getitem__(self, name: str) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            raise KeyError(name)
        return owner.bindings[name]

    def __setitem__(self, name: str, value: Any):
        self.set(name, value)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)

    def __repr__(self) -> str:
        depth = 0
        env = self.parent
        while env is not None:
            depth += 1
            env = env.parent
        return f"<Env names={sorted(self.bindings)!r} depth={depth}>"


# =================================================================
# Frames and cancellation
# =================================================================

class CancelToken:
    """An external cancellation flag checked while an evaluation is pending."""
    def __init__(self):
        self._reason: Optional[str] = None
        self._cancelled = False

    def cancel(self, reason: str = "evaluation cancelled"):
        self._cancelled = True
        self._reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def check(self, frame: Optional['Frame'] = None):
        if self._cancelled:
            raise SpliceRuntimeError(self._reason or "evaluation cancelled", frame,
                                     kind=ErrorKind.CANCELLED)


class Frame:
    """Per-evaluation execution context.

    Holds the handle to the global environment, the expression text being
    evaluated (for error attribution), the ambient location of the
    execution context and an optional cancellation token.
    """
    def __init__(self, global_env: Optional[Env] = None, *, source: Optional[str] = None,
                 location: Optional[str] = None, cancel_token: Optional[CancelToken] = None):
        self.global_env = global_env
        self.source = source
        self.location = location
        self.cancel_token = cancel_token

    def child(self, source: Optional[str]) -> 'Frame':
        """A fresh frame for one evaluation request that shares this frame's context."""
        return Frame(self.global_env, source=source, location=self.location,
                     cancel_token=self.cancel_token)

    def require_global_env(self) -> Env:
        if self.global_env is None:
            raise ConfigurationError("Frame carries no global environment")
        return self.global_env

    def check_cancelled(self):
        if self.cancel_token is not None:
            self.cancel_token.check(self)

    def __repr__(self) -> str:
        return f"<Frame source={self.source!r}>"


# =================================================================
# Script values
# =================================================================

def _normalize_key(key: Any) -> Any:
    # 2.0 and 2 address the same slot
    if isinstance(key, float) and key.is_integer():
        return int(key)
    return key


class Table(UserDict):
    """The script-level table: an insertion-ordered mapping with identity equality."""

    def __hash__(self):
        return id(self)

    def __eq__(self, other):
        if isinstance(other, Table):
            return self is other
        return super().__eq__(other)

    def __getitem__(self, key):
        return self.data[_normalize_key(key)]

    def __setitem__(self, key, value):
        key = _normalize_key(key)
        if key is None:
            raise SpliceRuntimeError("table index is nil")
        if value is None:
            # Assigning nil removes the slot
            self.data.pop(key, None)
            return
        self.data[key] = value

    def __contains__(self, key):
        return _normalize_key(key) in self.data

    def raw_get(self, key, default=None):
        return self.data.get(_normalize_key(key), default)

    def length(self) -> int:
        """The sequence border: the largest n such that 1..n are all present."""
        n = 0
        while (n + 1) in self.data:
            n += 1
        return n

    @classmethod
    def from_list(cls, values) -> 'Table':
        t = cls()
        for i, v in enumerate(values, start=1):
            t[i] = v
        return t

    @classmethod
    def from_python(cls, value: Any) -> Any:
        """Recursively converts plain dicts and lists into tables."""
        if isinstance(value, Table):
            return value
        if isinstance(value, collections.abc.Mapping):
            t = cls()
            for k, v in value.items():
                t[k] = cls.from_python(v)
            return t
        if isinstance(value, (list, tuple)) and not isinstance(value, MultiResult):
            return cls.from_list(cls.from_python(v) for v in value)
        return value

    def __repr__(self):
        from splice.splice_printer import Printer
        return Printer().pformat(self)


class MultiResult(tuple):
    """Several values returned from a single call."""

    def first(self) -> Any:
        return self[0] if self else None

    def __repr__(self):
        return f"MultiResult{tuple.__repr__(self)}"


class Builtin:
    """A host function callable from scripts as ``fn(frame, *args)``.

    The function may return a value or an awaitable; ``call`` always awaits.
    """
    def __init__(self, name: str, fn: Callable[..., Any]):
        self.name = name
        self.fn = fn

    async def call(self, frame: Frame, *args: Any) -> Any:
        result = self.fn(frame, *args)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self):
        return f"<Builtin {self.name}>"


# =================================================================
# Expression AST
# =================================================================

class Node:
    """Base class for expression AST nodes. ``loc`` is attached by the transformer."""
    loc: Optional[dict] = None

    def __eq__(self, other):
        return type(self) is type(other) and self._fields() == other._fields()

    def __hash__(self):
        return hash((type(self).__name__,) + tuple(map(repr, self._fields())))

    def _fields(self) -> tuple:
        return tuple(v for k, v in vars(self).items() if k != 'loc')

    def __repr__(self):
        args = ", ".join(repr(v) for v in self._fields())
        return f"{type(self).__name__}({args})"


class Literal(Node):
    def __init__(self, value: Any):
        self.value = value


class Variable(Node):
    def __init__(self, name: str):
        self.name = name


class Index(Node):
    """``obj[key]``; ``obj.name`` is an Index with a string Literal key."""
    def __init__(self, obj: Node, key: Node):
        self.obj = obj
        self.key = key


class Call(Node):
    def __init__(self, fn: Node, args: List[Node]):
        self.fn = fn
        self.args = list(args)


class MethodCall(Node):
    """``obj:name(args)`` -> ``obj.name(obj, args)`` evaluating obj once."""
    def __init__(self, obj: Node, name: str, args: List[Node]):
        self.obj = obj
        self.name = name
        self.args = list(args)


class BinOp(Node):
    def __init__(self, op: str, left: Node, right: Node):
        self.op = op
        self.left = left
        self.right = right


class LogicalOp(Node):
    """``and`` / ``or``: short-circuiting, operands are returned as-is."""
    def __init__(self, op: str, left: Node, right: Node):
        self.op = op
        self.left = left
        self.right = right


class UnaryOp(Node):
    def __init__(self, op: str, operand: Node):
        self.op = op
        self.operand = operand


class Paren(Node):
    """A parenthesized expression; truncates multiple results to one."""
    def __init__(self, expr: Node):
        self.expr = expr


class TableConstructor(Node):
    """``{...}``; fields are (key node or None for positional, value node)."""
    def __init__(self, fields: List[tuple]):
        self.fields = list(fields)
