"""
The Dyn value container.

A Dyn holds several type-tagged representations of one logical value, keyed
by Python type in insertion order, with the most recently written tag as the
primary one. Operations are gated on capability predicates over all stored
representations; gates produce an Outcome which the public methods unwrap.

A Dyn is not synchronized. Concurrent mutation of the same container must be
serialized by the caller.
"""
import re
import sys
import numbers
import datetime
import functools
import collections.abc
from decimal import Decimal, Context, MAX_PREC, MAX_EMAX, MIN_EMIN
from fractions import Fraction
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Optional

from dyn.dyn_datatypes import (
    NotFound, ConversionError, UnsupportedOperation, DivisionByZero, OutOfRange,
    ImmutableViolation, ValidationError, MalformedInput, DynError, Outcome,
    EMPTY_TAG, CAPABILITIES, tag_of, tag_name, instance_of, _dbg
)
from dyn.dyn_serialize import parse, stringify, convert_structurally
from dyn.dyn_dispatch import invoke, OperationRegistry, ResolutionCache

DIVIDE_SCALE = 10

# add/subtract/multiply never round under this context
_EXACT = Context(prec=MAX_PREC, Emax=MAX_EMAX, Emin=MIN_EMIN)

_PARSE_TARGETS = (str, int, float, bool, Decimal)


def _unwrap(value: Any) -> Any:
    return value.primary_value if isinstance(value, Dyn) else value


def _wrap(value: Any) -> 'Dyn':
    return value if isinstance(value, Dyn) else Dyn().set(value)


def _copy_collection(value: Any) -> Any:
    if isinstance(value, (list, set, dict)):
        return value.copy()
    if isinstance(value, collections.abc.MutableMapping):
        return dict(value)
    return value


def _to_decimal(n: Any) -> Decimal:
    if isinstance(n, Decimal):
        return n
    if isinstance(n, int):
        return Decimal(n)
    if isinstance(n, float):
        # Shortest repr, not the binary expansion
        return Decimal(repr(n))
    if isinstance(n, numbers.Rational):
        return Decimal(n.numerator) / Decimal(n.denominator)
    return Decimal(str(n))


def _divide(a: Decimal, b: Decimal, scale: int = DIVIDE_SCALE) -> Decimal:
    """a / b rounded half-up (ties away from zero) to `scale` fractional digits, computed exactly."""
    scaled = Fraction(a) / Fraction(b) * (10 ** scale)
    q = int(abs(scaled) + Fraction(1, 2))
    return _EXACT.scaleb(Decimal(q if scaled >= 0 else -q), -scale)


def _parse_primitive(text: str, target: type) -> Any:
    if target is str:
        return text
    if target is bool:
        return text.strip().lower() == 'true'
    if target is int:
        return int(text.strip())
    if target is float:
        return float(text.strip())
    return Decimal(text.strip())


def _outcome_op(func):
    """Publish an Outcome-returning operation as a method that raises on err."""
    @functools.wraps(func)
    def public(self, *args, **kwargs):
        return func(self, *args, **kwargs).unwrap()
    public._outcome = func
    return public


class Dyn:
    """A container for several simultaneous type-tagged representations of one value."""

    def __init__(self):
        self._values: Dict[type, Any] = {}
        self._primary: Optional[type] = None
        self._null_safe = False
        self._immutable = False

    # =================================================================
    # State
    # =================================================================

    @property
    def representations(self) -> MappingProxyType:
        """Read-only view of tag -> value, in insertion order."""
        return MappingProxyType(self._values)

    @property
    def primary_tag(self) -> Optional[type]:
        return self._primary

    @property
    def primary_value(self) -> Any:
        """The primary representation, without null-safety checks."""
        if self._primary is None:
            return None
        return self._values.get(self._primary)

    @property
    def null_safe(self) -> bool:
        return self._null_safe

    @property
    def immutable(self) -> bool:
        return self._immutable

    # =================================================================
    # Representation store
    # =================================================================

    @_outcome_op
    def set(self, value: Any, tag: Optional[type] = None) -> Outcome:
        """Store value under tag (default: its runtime type), or merge another Dyn."""
        if self._immutable:
            return Outcome.err(ImmutableViolation('set'))
        if isinstance(value, Dyn):
            # Collections are copied; merged containers never share mutable state
            self._values.update((t, _copy_collection(v)) for t, v in value._values.items())
            self._primary = value._primary
            # null-safety is never switched off once on
            self._null_safe = self._null_safe or value._null_safe
            _dbg("MERGE", [tag_name(t) for t in value._values], "primary:", tag_name(self._primary))
        else:
            t = tag if tag is not None else tag_of(value)
            self._values[t] = value
            self._primary = t
        return Outcome.ok(self)

    def get(self, tag: Optional[type] = None) -> Any:
        """
        Untyped: the primary representation.
        Typed: exact tag first, then the first representation (in insertion
        order) that is an instance of tag.
        Raises NotFound when nothing matches, unless the container is null-safe.
        """
        if tag is None:
            value = self.primary_value
            if value is None and not self._null_safe:
                raise NotFound(self._primary or EMPTY_TAG, tuple(self._values))
            return value
        value = self._values.get(tag)
        if value is not None:
            return value
        for v in self._values.values():
            if instance_of(v, tag):
                return v
        if not self._null_safe:
            raise NotFound(tag, tuple(self._values))
        return None

    def has_value(self, tag: type) -> bool:
        return any(instance_of(v, tag) for v in self._values.values())

    def _first(self, capability: str) -> Any:
        pred = CAPABILITIES[capability]
        for v in self._values.values():
            if v is not None and pred(v):
                return v
        return None

    def _has(self, capability: str) -> bool:
        pred = CAPABILITIES[capability]
        return any(v is not None and pred(v) for v in self._values.values())

    def _number(self) -> Any:
        n = self._first('number')
        if n is None and not self._null_safe:
            raise NotFound(numbers.Number, tuple(self._values))
        return n

    # --- Typed getters ---

    def as_str(self) -> Optional[str]:
        return self.get(str)

    def as_int(self) -> int:
        n = self._number()
        return int(n) if n is not None else 0

    def as_float(self) -> float:
        n = self._number()
        return float(n) if n is not None else 0.0

    def as_decimal(self) -> Decimal:
        n = self._number()
        return _to_decimal(n) if n is not None else Decimal(0)

    def as_bool(self) -> bool:
        b = self.get(bool)
        return b if b is not None else False

    def as_list(self, element_type: type = object) -> List[Any]:
        raw = self.get(list)
        if raw is None:
            return []
        out = []
        for e in raw:
            if element_type is not object and not instance_of(e, element_type):
                raise ConversionError(tag_of(e), element_type)
            out.append(e)
        return out

    def as_map(self, key_type: type = object, value_type: type = object) -> Dict[Any, Any]:
        raw = self.get(collections.abc.Mapping)
        if raw is None:
            return {}
        out = {}
        for k, v in raw.items():
            if key_type is not object and not instance_of(k, key_type):
                raise ConversionError(tag_of(k), key_type)
            if isinstance(v, Dyn):
                v = v.get(value_type)
            elif value_type is not object and v is not None and not instance_of(v, value_type):
                raise ConversionError(tag_of(v), value_type)
            out[k] = v
        return out

    # --- Capability predicates ---

    def is_string(self) -> bool: return self._has('string')
    def is_number(self) -> bool: return self._has('number')
    def is_boolean(self) -> bool: return self._has('boolean')
    def is_list(self) -> bool: return self._has('list')
    def is_map(self) -> bool: return self._has('map')
    def is_array(self) -> bool: return self._has('array')
    def is_set(self) -> bool: return self._has('set')
    def is_local_date(self) -> bool: return self._has('local-date')
    def is_local_datetime(self) -> bool: return self._has('local-datetime')

    # =================================================================
    # Coercion
    # =================================================================

    def to(self, target: type) -> Any:
        """Convert the primary value: identity, then primitive parse, then structural conversion."""
        value = self.primary_value
        if value is None:
            return None
        if instance_of(value, target):
            return value
        source = tag_of(value)
        try:
            if target in _PARSE_TARGETS:
                return _parse_primitive(str(value), target)
            return convert_structurally(parse(stringify(value, 'json'), 'json'), target)
        except ConversionError as e:
            raise ConversionError(source, target, e.cause or e) from e
        except (ValueError, TypeError, ArithmeticError) as e:
            # MalformedInput is a ValueError; decimal.InvalidOperation an ArithmeticError
            _dbg("TO-FAIL", tag_name(source), "->", tag_name(target), e)
            raise ConversionError(source, target, e) from e

    def from_json(self, target: type) -> Any:
        """Reshape the primary value into target through its JSON form."""
        return convert_structurally(parse(self.as_json_string(), 'json'), target)

    def as_json_string(self) -> str:
        return stringify(self.primary_value, 'json')

    def as_text(self, fmt: str = 'json', pretty: bool = False) -> str:
        return stringify(self.primary_value, fmt, pretty=pretty)

    # =================================================================
    # Arithmetic
    # =================================================================

    def _numeric_operands(self, operation: str, other: 'Dyn'):
        if not (self._has('number') and other._has('number')):
            return Outcome.err(UnsupportedOperation(operation, 'numbers'))
        a = _to_decimal(self._first('number'))
        b = _to_decimal(other._first('number'))
        # inf and nan have no exact decimal value
        if not (a.is_finite() and b.is_finite()):
            return Outcome.err(UnsupportedOperation(operation, 'finite numbers'))
        return Outcome.ok((a, b))

    @_outcome_op
    def add(self, other: Any) -> Outcome:
        """Adds two numbers or concatenates two strings."""
        other = _wrap(other)
        if self._has('number') and other._has('number'):
            res = self._numeric_operands('add', other)
            if not res.is_ok:
                return res
            a, b = res.value
            return Outcome.ok(Dyn().set(_EXACT.add(a, b)))
        if self._has('string') and other._has('string'):
            return Outcome.ok(Dyn().set(self._first('string') + other._first('string')))
        return Outcome.err(UnsupportedOperation('add', 'numbers or strings'))

    @_outcome_op
    def subtract(self, other: Any) -> Outcome:
        res = self._numeric_operands('subtract', _wrap(other))
        if not res.is_ok:
            return res
        a, b = res.value
        return Outcome.ok(Dyn().set(_EXACT.subtract(a, b)))

    @_outcome_op
    def multiply(self, other: Any) -> Outcome:
        res = self._numeric_operands('multiply', _wrap(other))
        if not res.is_ok:
            return res
        a, b = res.value
        return Outcome.ok(Dyn().set(_EXACT.multiply(a, b)))

    @_outcome_op
    def divide(self, other: Any) -> Outcome:
        """Divides, rounding half-up to DIVIDE_SCALE fractional digits."""
        res = self._numeric_operands('divide', _wrap(other))
        if not res.is_ok:
            return res
        a, b = res.value
        if b == 0:
            return Outcome.err(DivisionByZero())
        return Outcome.ok(Dyn().set(_divide(a, b)))

    @_outcome_op
    def bitwise_and(self, other: Any) -> Outcome:
        res = self._numeric_operands('bitwise_and', _wrap(other))
        if not res.is_ok:
            return res
        a, b = res.value
        return Outcome.ok(Dyn().set(int(a) & int(b)))

    @_outcome_op
    def bitwise_or(self, other: Any) -> Outcome:
        res = self._numeric_operands('bitwise_or', _wrap(other))
        if not res.is_ok:
            return res
        a, b = res.value
        return Outcome.ok(Dyn().set(int(a) | int(b)))

    # =================================================================
    # Strings
    # =================================================================

    @_outcome_op
    def concat(self, other: Any) -> Outcome:
        other = _wrap(other)
        if not (self._has('string') and other._has('string')):
            return Outcome.err(UnsupportedOperation('concat', 'strings'))
        return Outcome.ok(Dyn().set(self._first('string') + other._first('string')))

    @_outcome_op
    def substring(self, begin: int, end: Optional[int] = None) -> Outcome:
        s = self._first('string')
        if s is None:
            return Outcome.err(UnsupportedOperation('substring', 'a string'))
        if end is None:
            end = len(s)
        if begin < 0 or end > len(s) or begin > end:
            return Outcome.err(OutOfRange(begin, end, len(s)))
        return Outcome.ok(Dyn().set(s[begin:end]))

    @_outcome_op
    def to_upper_case(self) -> Outcome:
        s = self._first('string')
        if s is None:
            return Outcome.err(UnsupportedOperation('to_upper_case', 'a string'))
        return Outcome.ok(Dyn().set(s.upper()))

    @_outcome_op
    def to_lower_case(self) -> Outcome:
        s = self._first('string')
        if s is None:
            return Outcome.err(UnsupportedOperation('to_lower_case', 'a string'))
        return Outcome.ok(Dyn().set(s.lower()))

    @_outcome_op
    def matches(self, pattern: str) -> Outcome:
        """Whether the whole string matches the regular expression."""
        s = self._first('string')
        if s is None:
            return Outcome.err(UnsupportedOperation('matches', 'a string'))
        try:
            return Outcome.ok(re.fullmatch(pattern, s) is not None)
        except re.error as e:
            return Outcome.err(MalformedInput(f"Invalid pattern {pattern!r}: {e}"))

    @_outcome_op
    def replace_all(self, pattern: str, replacement: str) -> Outcome:
        s = self._first('string')
        if s is None:
            return Outcome.err(UnsupportedOperation('replace_all', 'a string'))
        try:
            return Outcome.ok(Dyn().set(re.sub(pattern, replacement, s)))
        except re.error as e:
            return Outcome.err(MalformedInput(f"Invalid pattern {pattern!r}: {e}"))

    # =================================================================
    # Collections
    # =================================================================

    @_outcome_op
    def add_element(self, element: Any) -> Outcome:
        if self._immutable:
            return Outcome.err(ImmutableViolation('add_element'))
        target = self._first('list')
        if target is None:
            return Outcome.err(UnsupportedOperation('add_element', 'a list'))
        target.append(_unwrap(element))
        return Outcome.ok(self)

    @_outcome_op
    def remove_element(self, element: Any) -> Outcome:
        if self._immutable:
            return Outcome.err(ImmutableViolation('remove_element'))
        target = self._first('list')
        if target is None:
            return Outcome.err(UnsupportedOperation('remove_element', 'a list'))
        raw = _unwrap(element)
        if raw in target:
            target.remove(raw)
        return Outcome.ok(self)

    @_outcome_op
    def put_key_value(self, key: Any, value: Any) -> Outcome:
        if self._immutable:
            return Outcome.err(ImmutableViolation('put_key_value'))
        target = self._first('map')
        if target is None:
            return Outcome.err(UnsupportedOperation('put_key_value', 'a map'))
        target[_unwrap(key)] = _unwrap(value)
        return Outcome.ok(self)

    @_outcome_op
    def clear(self) -> Outcome:
        if self._immutable:
            return Outcome.err(ImmutableViolation('clear'))
        target = self._first('list')
        if target is None:
            target = self._first('map')
        if target is None:
            return Outcome.err(UnsupportedOperation('clear', 'a list or map'))
        target.clear()
        return Outcome.ok(self)

    @_outcome_op
    def size(self) -> Outcome:
        for capability in ('list', 'map', 'set', 'array', 'string'):
            target = self._first(capability)
            if target is not None:
                return Outcome.ok(len(target))
        return Outcome.err(UnsupportedOperation('size', 'a list, map, set, array or string'))

    @_outcome_op
    def is_empty(self) -> Outcome:
        for capability in ('list', 'map', 'set'):
            target = self._first(capability)
            if target is not None:
                return Outcome.ok(len(target) == 0)
        return Outcome.err(UnsupportedOperation('is_empty', 'a list, map or set'))

    @_outcome_op
    def get_json(self, key: Any) -> Outcome:
        """Looks up key in the map representation; the result is wrapped."""
        m = self._first('map')
        if m is None:
            return Outcome.err(UnsupportedOperation('get_json', 'a map'))
        return Outcome.ok(Dyn().set(m.get(key)))

    def stream(self) -> Iterator['Dyn']:
        for capability in ('list', 'array', 'set'):
            target = self._first(capability)
            if target is not None:
                return (Dyn().set(e) for e in list(target))
        raise UnsupportedOperation('stream', 'a list, array or set')

    def __iter__(self) -> Iterator['Dyn']:
        return self.stream()

    # =================================================================
    # Comparison
    # =================================================================

    def is_equal_to(self, other: Any) -> bool:
        return self.primary_value == _unwrap(other)

    @_outcome_op
    def is_greater_than(self, other: Any) -> Outcome:
        res = self._numeric_operands('is_greater_than', _wrap(other))
        if not res.is_ok:
            return res
        a, b = res.value
        return Outcome.ok(a > b)

    @_outcome_op
    def is_less_than(self, other: Any) -> Outcome:
        res = self._numeric_operands('is_less_than', _wrap(other))
        if not res.is_ok:
            return res
        a, b = res.value
        return Outcome.ok(a < b)

    # =================================================================
    # Dispatch
    # =================================================================

    def call(self, name: str, *args: Any,
             registry: Optional[OperationRegistry] = None,
             cache: Optional[ResolutionCache] = None) -> 'Dyn':
        """Invokes a registered operation on the primary value; the result is wrapped."""
        target = self.primary_value
        if target is None:
            raise NotFound(self._primary or EMPTY_TAG, tuple(self._values))
        tags = tuple((a._primary or EMPTY_TAG) if isinstance(a, Dyn) else tag_of(a) for a in args)
        raw = [_unwrap(a) for a in args]
        return Dyn().set(invoke(target, name, raw, tags, registry=registry, cache=cache))

    # =================================================================
    # Policy
    # =================================================================

    @_outcome_op
    def validate(self, tag: type) -> Outcome:
        if not self.has_value(tag):
            return Outcome.err(ValidationError(tag))
        return Outcome.ok(self)

    def attempt(self, operation: str, *args: Any, **kwargs: Any) -> Outcome:
        """Runs a named operation and returns its Outcome instead of raising."""
        method = getattr(type(self), operation, None)
        gated = getattr(method, '_outcome', None)
        if gated is not None:
            return gated(self, *args, **kwargs)
        if operation.startswith('_') or not callable(method):
            return Outcome.err(UnsupportedOperation(operation, 'a known operation'))
        try:
            return Outcome.ok(method(self, *args, **kwargs))
        except DynError as e:
            return Outcome.err(e)

    def try_catch(self, action: Callable[['Dyn'], Any], recover: Callable[['Dyn', Exception], Any]) -> 'Dyn':
        """Runs action(self); a raised exception goes to recover(self, exc) instead of the caller."""
        try:
            action(self)
        except Exception as e:
            recover(self, e)
        return self

    # =================================================================
    # Plumbing
    # =================================================================

    def debug(self, file=None) -> 'Dyn':
        from dyn.dyn_printer import Printer
        print(Printer().describe(self), file=file or sys.stdout)
        return self

    def __str__(self) -> str:
        value = self.primary_value
        return str(value) if value is not None else "null"

    def __repr__(self) -> str:
        from dyn.dyn_printer import Printer
        return Printer().describe(self)

    def __eq__(self, other):
        if self is other:
            return True
        if not isinstance(other, Dyn):
            return NotImplemented
        return self._values == other._values and self._primary is other._primary

    __hash__ = None


# =================================================================
# Factories
# =================================================================

def of(value: Any = None, tag: Optional[type] = None) -> Dyn:
    """Creates a new Dyn with the given value."""
    return Dyn().set(value, tag)


def immutable(value: Any) -> Dyn:
    """Creates a Dyn that rejects every mutation."""
    d = Dyn().set(value)
    d._immutable = True
    return d


def optional(value: Any) -> Dyn:
    """Creates a null-safe Dyn."""
    d = Dyn().set(value)
    d._null_safe = True
    return d


def list_of(*elements: Any) -> Dyn:
    return Dyn().set([_unwrap(e) for e in elements], list)


def set_of(*elements: Any) -> Dyn:
    return Dyn().set({_unwrap(e) for e in elements}, set)


def array_of(*elements: Any) -> Dyn:
    return Dyn().set(tuple(_unwrap(e) for e in elements), tuple)


def map_of(*key_value_pairs: Any) -> Dyn:
    """Creates a map Dyn from alternating keys and values; keys become strings."""
    if len(key_value_pairs) % 2 != 0:
        raise MalformedInput("map_of() requires even key-value pairs.")
    m: Dict[str, Any] = {}
    for i in range(0, len(key_value_pairs), 2):
        m[str(_unwrap(key_value_pairs[i]))] = _unwrap(key_value_pairs[i + 1])
    return Dyn().set(m, dict)


def local_date(year: int, month: int, day: int) -> Dyn:
    return Dyn().set(datetime.date(year, month, day))


def local_datetime(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> Dyn:
    return Dyn().set(datetime.datetime(year, month, day, hour, minute, second))


def from_json(text: str) -> Dyn:
    """Creates a Dyn from JSON text; raises MalformedInput if it does not parse."""
    return Dyn().set(parse(text, 'json'))


def from_text(text: str, fmt: Optional[str] = None, content_type: Optional[str] = None) -> Dyn:
    """Creates a Dyn from JSON, YAML, TOML or XML text (sniffed when fmt is omitted)."""
    return Dyn().set(parse(text, fmt, content_type=content_type))


__all__ = [
    "Dyn",
    "of", "immutable", "optional", "list_of", "set_of", "array_of", "map_of",
    "local_date", "local_datetime", "from_json", "from_text",
    "DIVIDE_SCALE",
]
