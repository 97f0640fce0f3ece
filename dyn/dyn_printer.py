"""
A pretty-printer for Dyn containers and the values they hold.
"""
import datetime
import collections.abc
from decimal import Decimal

from dyn.dyn_datatypes import tag_name
from dyn.dyn_value import Dyn


class Printer:
    """Formats values and container state into short, readable strings."""

    def __init__(self, indent_width=2, width=80):
        self._indent_char = " " * indent_width
        self._width = width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format a value."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def describe(self, dyn: Dyn) -> str:
        """Formats the internal state of a container (primary tag, representations, flags)."""
        primary = tag_name(dyn.primary_tag) if dyn.primary_tag is not None else "null"
        values = ", ".join(
            f"{tag_name(tag)}={self.pformat(value, 1)}" for tag, value in dyn.representations.items()
        )
        return (
            f"Dyn{{primary={primary}, values={{{values}}}, "
            f"null_safe={self._pformat_bool(dyn.null_safe, 0)}, "
            f"immutable={self._pformat_bool(dyn.immutable, 0)}}}"
        )

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        # Subclasses and ABCs
        if isinstance(obj, Dyn): return self._pformat_dyn
        if isinstance(obj, bool): return self._pformat_bool
        if isinstance(obj, str): return self._pformat_str
        if isinstance(obj, datetime.date): return self._pformat_date
        if isinstance(obj, collections.abc.Mapping): return self._pformat_dict
        if isinstance(obj, list): return self._pformat_list
        # Default to Python's repr for unknown types
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_primitive,
            float: self._pformat_primitive,
            Decimal: self._pformat_primitive,
            bool: self._pformat_bool,
            type(None): self._pformat_none,
            list: self._pformat_list,
            tuple: self._pformat_tuple,
            set: self._pformat_set,
            frozenset: self._pformat_set,
            dict: self._pformat_dict,
            datetime.date: self._pformat_date,
            datetime.datetime: self._pformat_date,
            Dyn: self._pformat_dyn,
        }

    def _pformat_primitive(self, obj, level):
        return str(obj)

    def _pformat_str(self, obj, level):
        # Basic string formatting, does not handle complex escapes
        return f"'{obj}'"

    def _pformat_bool(self, obj, level):
        return 'true' if obj else 'false'

    def _pformat_none(self, obj, level):
        return 'null'

    def _pformat_date(self, obj, level):
        return obj.isoformat()

    def _pformat_dyn(self, obj, level):
        return f"Dyn({self.pformat(obj.primary_value, level)})"

    def _pformat_items(self, items, level, open_char, close_char):
        if not items:
            return f"{open_char}{close_char}"
        flat = f"{open_char}{', '.join(items)}{close_char}"
        if len(flat) + len(self._indent_char) * level <= self._width and '\n' not in flat:
            return flat

        outer_indent = self._indent_char * level
        inner_indent = self._indent_char * (level + 1)
        lines = [inner_indent + item for item in items]
        return f"{open_char}\n" + ",\n".join(lines) + f"\n{outer_indent}{close_char}"

    def _pformat_list(self, obj, level):
        return self._pformat_items([self.pformat(x, level + 1) for x in obj], level, '[', ']')

    def _pformat_tuple(self, obj, level):
        return self._pformat_items([self.pformat(x, level + 1) for x in obj], level, '(', ')')

    def _pformat_set(self, obj, level):
        items = sorted(self.pformat(x, level + 1) for x in obj)
        return self._pformat_items(items, level, '{', '}')

    def _pformat_dict(self, obj, level):
        items = [f"{self.pformat(k, level + 1)}: {self.pformat(v, level + 1)}" for k, v in obj.items()]
        return self._pformat_items(items, level, '{', '}')
