"""
Operation lookup and invocation for Dyn.call.

Host values only expose what has been registered for their type: builtins get
a small table installed here, and any class can opt methods in with the
@dyn_operation decorator. Resolved handles are memoized process-wide in the
ResolutionCache, keyed by (host type, operation name, argument tags).
"""
import datetime
import inspect
import operator
import threading
import typing
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from dyn.dyn_datatypes import (
    NoMatchingMethod, InvocationError, accepts, tag_name, _dbg
)

Signature = Tuple[type, ...]
CacheKey = Tuple[type, str, Signature]


def dyn_operation(func=None, *, name: Optional[str] = None, params: Optional[Signature] = None):
    """A decorator to explicitly mark host-class methods as callable via Dyn.call."""
    def mark(f):
        f._dyn_operation = {'name': name or f.__name__, 'params': params}
        return f
    if func is not None:
        return mark(func)
    return mark


def _declared_params(func: Callable, skip_self: bool = True) -> Signature:
    sig = inspect.signature(func)
    try:
        hints = typing.get_type_hints(func)
    except Exception:
        hints = {}
    out = []
    params = list(sig.parameters.values())
    if skip_self and params:
        params = params[1:]
    for p in params:
        if p.kind not in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            continue
        ann = hints.get(p.name, object)
        out.append(ann if isinstance(ann, type) else object)
    return tuple(out)


class Operation:
    """A resolved, directly invokable operation; func takes the host as its first argument."""
    def __init__(self, name: str, params: Signature, func: Callable):
        self.name = name
        self.params = tuple(params)
        self.func = func

    def invoke(self, host: Any, args: List[Any]) -> Any:
        return self.func(host, *args)

    def __repr__(self) -> str:
        sig = ", ".join(tag_name(p) for p in self.params)
        return f"<Operation {self.name}({sig})>"


class OperationRegistry:
    """Per-type catalog of operations, in declaration order."""

    def __init__(self):
        self._table: Dict[type, List[Operation]] = {}
        self._collected: set = set()
        self._lock = threading.RLock()

    def register(self, host_type: type, name: Optional[str] = None,
                 params: Optional[Signature] = None, func: Optional[Callable] = None):
        """Register func for host_type. Without func, returns a decorator."""
        def add(f):
            op_name = name or f.__name__
            op_params = params if params is not None else _declared_params(f)
            with self._lock:
                self._table.setdefault(host_type, []).append(Operation(op_name, op_params, f))
            _dbg("REGISTER", tag_name(host_type), op_name, op_params)
            return f
        if func is not None:
            return add(func)
        return add

    def _collect_marked(self, cls: type):
        # Caller holds the lock
        self._collected.add(cls)
        for attr, member in vars(cls).items():
            static = isinstance(member, staticmethod)
            func = member.__func__ if static else member
            info = getattr(func, '_dyn_operation', None)
            if not info or not callable(func):
                continue
            params = info['params']
            if params is None:
                params = _declared_params(func, skip_self=not static)
            if static:
                # Static operations do not receive the host
                op_func = (lambda f: lambda host, *a: f(*a))(func)
            else:
                op_func = func
            self._table.setdefault(cls, []).append(Operation(info['name'], params, op_func))

    def catalog(self, host_type: type) -> List[Operation]:
        """All operations visible on host_type, most derived class first."""
        ops: List[Operation] = []
        with self._lock:
            for cls in host_type.__mro__:
                if cls not in self._collected:
                    self._collect_marked(cls)
                ops.extend(self._table.get(cls, ()))
        return ops

    def resolve(self, host_type: type, name: str, arg_tags: Signature) -> Operation:
        candidates = [op for op in self.catalog(host_type) if op.name == name]
        for op in candidates:
            if op.params == tuple(arg_tags):
                return op
        for op in candidates:
            if len(op.params) != len(arg_tags):
                continue
            if all(accepts(p, a) for p, a in zip(op.params, arg_tags)):
                return op
        raise NoMatchingMethod(host_type, name, arg_tags)


class ResolutionCache:
    """
    Process-wide memo of (host type, name, argument tags) -> Operation.

    Entries are kept apart per registry, so one cache can serve several
    registries without handing out another registry's operations.

    Only the dict is locked. Resolution runs outside the lock and is pure, so
    two threads missing on the same key both resolve and the first stored
    handle is kept.
    """
    def __init__(self):
        self._entries: Dict[Tuple[Any, CacheKey], Operation] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.resolutions = 0

    def get_or_resolve(self, key: CacheKey, resolver: Callable[[], Operation], registry: Any = None) -> Operation:
        entry = (registry, key)
        with self._lock:
            handle = self._entries.get(entry)
            if handle is not None:
                self.hits += 1
                return handle
            self.misses += 1
        _dbg("CACHE-MISS", tag_name(key[0]), key[1], key[2])
        handle = resolver()
        with self._lock:
            self.resolutions += 1
            return self._entries.setdefault(entry, handle)

    def clear(self):
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0
            self.resolutions = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key) -> bool:
        """Whether key is cached for any registry."""
        with self._lock:
            return any(k == key for _, k in self._entries)


def invoke(host: Any, name: str, args: List[Any], arg_tags: Signature,
           registry: Optional[OperationRegistry] = None,
           cache: Optional[ResolutionCache] = None) -> Any:
    """Resolve name against host (through the cache) and call it with raw args."""
    registry = registry if registry is not None else default_registry
    cache = cache if cache is not None else resolution_cache
    host_type = type(host)
    key: CacheKey = (host_type, name, tuple(arg_tags))
    op = cache.get_or_resolve(key, lambda: registry.resolve(host_type, name, key[2]), registry)
    try:
        return op.invoke(host, list(args))
    except Exception as e:
        raise InvocationError(name, e) from e


# =================================================================
# Builtin operation table
# =================================================================

def _install_builtins(registry: OperationRegistry):
    reg = registry.register

    reg(str, 'length', (), len)
    reg(str, 'upper', (), str.upper)
    reg(str, 'lower', (), str.lower)
    reg(str, 'strip', (), str.strip)
    reg(str, 'startswith', (str,), str.startswith)
    reg(str, 'endswith', (str,), str.endswith)
    reg(str, 'find', (str,), str.find)
    reg(str, 'contains', (str,), operator.contains)
    reg(str, 'split', (), str.split)
    reg(str, 'split', (str,), str.split)
    reg(str, 'replace', (str, str), str.replace)
    reg(str, 'char_at', (int,), operator.getitem)
    reg(str, 'repeat', (int,), operator.mul)

    for seq in (list, tuple):
        reg(seq, 'length', (), len)
        reg(seq, 'get', (int,), operator.getitem)
        reg(seq, 'index', (object,), seq.index)
        reg(seq, 'contains', (object,), operator.contains)
        reg(seq, 'count', (object,), seq.count)
    reg(list, 'reversed', (), lambda xs: list(reversed(xs)))
    reg(list, 'sorted', (), sorted)

    reg(dict, 'length', (), len)
    reg(dict, 'keys', (), lambda d: list(d.keys()))
    reg(dict, 'values', (), lambda d: list(d.values()))
    reg(dict, 'get', (object,), dict.get)
    reg(dict, 'contains_key', (object,), operator.contains)

    reg(int, 'abs', (), abs)
    reg(int, 'bit_length', (), int.bit_length)
    reg(float, 'abs', (), abs)
    reg(float, 'is_integer', (), float.is_integer)
    reg(float, 'round', (int,), round)
    reg(Decimal, 'abs', (), abs)
    reg(Decimal, 'to_integral', (), Decimal.to_integral_value)
    reg(Decimal, 'round', (int,), round)

    reg(datetime.date, 'isoformat', (), lambda d: d.isoformat())
    reg(datetime.date, 'weekday', (), lambda d: d.weekday())
    reg(datetime.date, 'plus_days', (int,), lambda d, n: d + datetime.timedelta(days=n))
    reg(datetime.datetime, 'date', (), datetime.datetime.date)


default_registry = OperationRegistry()
_install_builtins(default_registry)

resolution_cache = ResolutionCache()


__all__ = [
    "dyn_operation",
    "Operation",
    "OperationRegistry",
    "ResolutionCache",
    "invoke",
    "default_registry",
    "resolution_cache",
]
