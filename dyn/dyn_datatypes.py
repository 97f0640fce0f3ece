"""
Defines the shared data types for the dyn value container.

This module provides the error taxonomy, the Outcome result type, type-tag
helpers and the catalog of capability predicates that gate operations.
"""

import os
import sys
import numbers
import datetime
import collections.abc
from typing import Any, Dict, Callable, Optional, Tuple

# =================================================================
# Errors
# =================================================================

class DynError(Exception):
    """Base class for all failures raised by dyn containers."""
    pass


class NotFound(DynError, LookupError):
    def __init__(self, tag: Any, available: Tuple[Any, ...] = ()):
        names = ", ".join(tag_name(t) for t in available)
        msg = f"No value found for type {tag_name(tag)}"
        if names:
            msg += f". Available types: {names}"
        super().__init__(msg)
        self.tag = tag
        self.available = tuple(available)


class ConversionError(DynError, TypeError):
    def __init__(self, source_tag: Any, target_tag: Any, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Cannot convert {tag_name(source_tag)} to {tag_name(target_tag)}{detail}")
        self.source_tag = source_tag
        self.target_tag = target_tag
        self.cause = cause


class UnsupportedOperation(DynError, TypeError):
    def __init__(self, operation: str, capability: str):
        super().__init__(f"{operation} requires {capability}")
        self.operation = operation
        self.capability = capability


class DivisionByZero(DynError, ZeroDivisionError):
    def __init__(self, message: str = "Division by zero"):
        super().__init__(message)


class OutOfRange(DynError, IndexError):
    def __init__(self, begin: int, end: int, length: int):
        super().__init__(f"Range [{begin}, {end}) out of bounds for length {length}")
        self.begin = begin
        self.end = end
        self.length = length


class ImmutableViolation(DynError):
    def __init__(self, operation: str = "set"):
        super().__init__(f"Cannot modify immutable Dyn ({operation})")
        self.operation = operation


class NoMatchingMethod(DynError, LookupError):
    def __init__(self, host_type: type, name: str, signature: Tuple[Any, ...]):
        sig = ", ".join(tag_name(t) for t in signature)
        super().__init__(f"No matching method {name}({sig}) in {tag_name(host_type)}")
        self.host_type = host_type
        self.name = name
        self.signature = tuple(signature)


class InvocationError(DynError):
    def __init__(self, name: str, cause: BaseException):
        super().__init__(f"Failed to invoke method {name}: {cause}")
        self.name = name
        self.cause = cause


class ValidationError(DynError, ValueError):
    def __init__(self, tag: Any):
        super().__init__(f"Dyn does not contain a value of type {tag_name(tag)}")
        self.tag = tag


class MalformedInput(DynError, ValueError):
    pass


# =================================================================
# Outcome
# =================================================================

class Outcome:
    """A structured ok/err result, used where a failure is data rather than control flow."""
    def __init__(self, status: str, value: Any = None, error: Optional[DynError] = None):
        self.status = status
        self.value = value
        self.error = error

    @classmethod
    def ok(cls, value: Any = None) -> 'Outcome':
        return cls('ok', value)

    @classmethod
    def err(cls, error: DynError) -> 'Outcome':
        return cls('err', None, error)

    @property
    def is_ok(self) -> bool:
        return self.status == 'ok'

    @property
    def kind(self) -> Optional[str]:
        """Name of the carried error class, e.g. 'UnsupportedOperation'."""
        return type(self.error).__name__ if self.error is not None else None

    def unwrap(self) -> Any:
        """Returns the value, or raises the carried error."""
        if self.error is not None:
            raise self.error
        return self.value

    def __repr__(self) -> str:
        if self.is_ok:
            return f"Outcome(ok, {self.value!r})"
        return f"Outcome(err, {self.kind}: {self.error})"

    def __eq__(self, other):
        if not isinstance(other, Outcome):
            return NotImplemented
        return self.status == other.status and self.value == other.value and self.error is other.error


# =================================================================
# Type tags
# =================================================================

# Tag used for an absent value.
EMPTY_TAG = object

_NUMERIC_TAGS = (int, float, numbers.Number, numbers.Real, numbers.Rational, numbers.Integral, numbers.Complex)


def tag_of(value: Any) -> type:
    """Runtime tag of a raw value."""
    if value is None:
        return EMPTY_TAG
    return type(value)


def tag_name(tag: Any) -> str:
    if isinstance(tag, type):
        return tag.__name__
    return str(tag)


def instance_of(value: Any, tag: Any) -> bool:
    """isinstance() that never counts a bool as a number."""
    if value is None:
        return False
    if isinstance(value, bool) and tag in _NUMERIC_TAGS:
        return False
    try:
        return isinstance(value, tag)
    except TypeError:
        return False


def accepts(param: Any, arg_tag: Any) -> bool:
    """Whether a declared parameter type accepts an argument of the given tag."""
    if param is object or param is Any:
        return True
    if arg_tag is bool and param in _NUMERIC_TAGS:
        return False
    try:
        return issubclass(arg_tag, param)
    except TypeError:
        return False


# =================================================================
# Capability predicates
# =================================================================

def _is_number(v):
    return isinstance(v, numbers.Number) and not isinstance(v, (bool, complex))

def _is_local_date(v):
    return isinstance(v, datetime.date) and not isinstance(v, datetime.datetime)


CAPABILITIES: Dict[str, Callable[[Any], bool]] = {
    'string': lambda v: isinstance(v, str),
    'number': _is_number,
    'boolean': lambda v: isinstance(v, bool),
    'list': lambda v: isinstance(v, list),
    'map': lambda v: isinstance(v, collections.abc.Mapping),
    'array': lambda v: isinstance(v, tuple),
    'set': lambda v: isinstance(v, (set, frozenset)),
    'local-date': _is_local_date,
    'local-datetime': lambda v: isinstance(v, datetime.datetime),
}


def _dbg(*parts):
    if os.environ.get("DYN_DEBUG"):
        try:
            print("[DBG]", *parts, file=sys.stderr)
        except Exception:
            pass


__all__ = [
    "DynError", "NotFound", "ConversionError", "UnsupportedOperation",
    "DivisionByZero", "OutOfRange", "ImmutableViolation", "NoMatchingMethod",
    "InvocationError", "ValidationError", "MalformedInput",
    "Outcome", "EMPTY_TAG", "tag_of", "tag_name", "instance_of", "accepts",
    "CAPABILITIES",
]
