"""
Display strings for splice values (the ``tostring`` conversion).
"""
import collections.abc
import math

from splice.splice_datatypes import Builtin, MultiResult, Node, Table


class Printer:
    """Formats script and host values as display strings.

    Top-level strings are returned unchanged; strings nested inside tables
    and lists are quoted.
    """

    def __init__(self):
        self._handlers = self._create_handlers()

    def pformat(self, obj, nested=False):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, nested)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, str):
            return self._pformat_str
        if isinstance(obj, Builtin) or callable(obj):
            return self._pformat_function
        if isinstance(obj, collections.abc.Mapping):
            return self._pformat_mapping
        if isinstance(obj, (list, tuple)):
            return self._pformat_sequence
        return lambda o, nested: str(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            bool: self._pformat_bool,
            int: self._pformat_int,
            float: self._pformat_float,
            type(None): self._pformat_none,
            Table: self._pformat_table,
            MultiResult: self._pformat_multi,
            list: self._pformat_sequence,
            tuple: self._pformat_sequence,
            dict: self._pformat_mapping,
        }

    def _pformat_str(self, obj, nested):
        if not nested:
            return str(obj)
        escaped = str(obj).replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')
        return f'"{escaped}"'

    def _pformat_bool(self, obj, nested):
        return 'true' if obj else 'false'

    def _pformat_none(self, obj, nested):
        return 'nil'

    def _pformat_int(self, obj, nested):
        return str(obj)

    def _pformat_float(self, obj, nested):
        if math.isnan(obj):
            return 'nan' if math.copysign(1.0, obj) > 0 else '-nan'
        if math.isinf(obj):
            return 'inf' if obj > 0 else '-inf'
        text = '%.14g' % obj
        # Integral floats stay recognisably floats
        if obj.is_integer() and not any(c in text for c in '.en'):
            text += '.0'
        return text

    def _pformat_function(self, obj, nested):
        return f"function: {function_name(obj)}"

    def _pformat_multi(self, obj, nested):
        return ", ".join(self.pformat(v, nested) for v in obj)

    def _pformat_sequence(self, obj, nested):
        return "{" + ", ".join(self.pformat(v, True) for v in obj) + "}"

    def _pformat_mapping(self, obj, nested):
        parts = [f"{self._pformat_key(k)} = {self.pformat(v, True)}" for k, v in obj.items()]
        return "{" + ", ".join(parts) + "}"

    def _pformat_table(self, obj, nested):
        n = obj.length()
        if n == len(obj):
            return self._pformat_sequence([obj[i] for i in range(1, n + 1)], nested)
        return self._pformat_mapping(obj, nested)

    def _pformat_key(self, key):
        if isinstance(key, str) and key.isidentifier():
            return key
        return f"[{self.pformat(key, True)}]"


def function_name(fn) -> str:
    """Script-facing name of a builtin or host callable."""
    if isinstance(fn, Builtin):
        return fn.name
    name = getattr(fn, '__name__', None)
    if isinstance(name, str) and name:
        # Library methods are registered from their '_'-prefixed names
        return name.lstrip('_') or name
    return "anonymous"


_printer = Printer()


def to_display_string(value) -> str:
    if isinstance(value, Node):
        return f"expression: {value!r}"
    return _printer.pformat(value)
