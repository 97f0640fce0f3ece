from __future__ import annotations

import json
import re
import dataclasses
import datetime
import typing
from decimal import Decimal
from typing import Any, Optional
import collections.abc
from xml.parsers.expat import ExpatError

import yaml

from dyn.dyn_datatypes import ConversionError, MalformedInput, instance_of, tag_of, _dbg

# TOML: prefer stdlib tomllib (3.11+) for reading; writing always needs the 'toml' package
try:
    import tomllib as _toml_loader  # type: ignore[attr-defined]
    _HAS_TOMLLIB = True
except ImportError:
    _HAS_TOMLLIB = False
import toml as _toml

import xmltodict

DEFAULT_FORMAT = 'json'
FORMATS = ('json', 'yaml', 'toml', 'xml')


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        enc = encoding or 'utf-8'
        try:
            return data.decode(enc, errors='replace')
        except LookupError:
            return data.decode('utf-8', errors='replace')
    if isinstance(data, str):
        return data
    return str(data)


def _encoding_from_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    m = re.search(r'charset\s*=\s*([^\s;]+)', content_type, re.IGNORECASE)
    if m:
        return m.group(1).strip('"').strip("'")
    return None


def _to_builtin(obj: Any) -> Any:
    # Reduce container values to plain JSON/YAML-friendly structures
    from dyn.dyn_value import Dyn
    if isinstance(obj, Dyn):
        return _to_builtin(obj.primary_value)
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [_to_builtin(x) for x in obj]
    # xmltodict returns OrderedDict (Mapping)
    if isinstance(obj, collections.abc.Mapping):
        return {str(k): _to_builtin(v) for k, v in obj.items()}
    if isinstance(obj, Decimal):
        return int(obj) if obj == obj.to_integral_value() else float(obj)
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return _to_builtin(dataclasses.asdict(obj))
    return obj


def detect_format(content_type: Optional[str] = None, data_hint: Optional[str] = None) -> Optional[str]:
    """
    Returns a canonical format name among: 'json', 'yaml', 'toml', 'xml'.
    Uses Content-Type first; falls back to simple data sniffing if provided.
    """
    ct = (content_type or "").lower()
    if 'json' in ct:
        return 'json'
    if 'yaml' in ct or 'x-yaml' in ct:
        return 'yaml'
    if 'toml' in ct:
        return 'toml'
    if 'xml' in ct or 'html' in ct or 'xhtml' in ct:
        return 'xml'

    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith('<'):
            return 'xml'
        # Bare scalars and '{'/'[' documents are valid JSON; YAML covers the rest
        return 'json'
    return None


# --------------------------
# Public API
# --------------------------

def parse(data: bytes | bytearray | str,
          fmt: Optional[str] = None,
          *,
          content_type: Optional[str] = None) -> Any:
    """
    Convert serialized text into plain Python structures.
    Supported fmt: 'json', 'yaml', 'toml', 'xml'.
    If fmt is None, uses content_type, then sniffing.
    Raises MalformedInput when the text does not parse.
    """
    enc = _encoding_from_content_type(content_type)
    text = _norm_text(data, encoding=enc)
    declared = fmt or detect_format(content_type)
    f = (declared or detect_format(None, text) or DEFAULT_FORMAT).lower()
    try:
        if f == 'json':
            try:
                return json.loads(text)
            except ValueError:
                if declared:
                    raise
                # Sniffed only: YAML is a superset, try it before giving up
                f = 'yaml'
        if f == 'yaml':
            return yaml.safe_load(text)
        if f == 'toml':
            if _HAS_TOMLLIB:
                return _toml_loader.loads(text)  # type: ignore[name-defined]
            return _toml.loads(text)
        if f == 'xml':
            return _to_builtin(xmltodict.parse(text))
    except (ValueError, yaml.YAMLError, ExpatError) as e:
        # JSONDecodeError and both TOML decode errors are ValueErrors
        raise MalformedInput(f"Invalid {f.upper()}: {e}") from e
    raise MalformedInput(f"Unsupported serialization format: {fmt!r}")


def stringify(value: Any,
              fmt: str = DEFAULT_FORMAT,
              *,
              pretty: bool = False,
              xml_root: str = "root") -> str:
    """
    Convert a value into a textual representation.
    - fmt: 'json' | 'yaml' | 'toml' | 'xml'
    - For XML, if value is not a dict, it will be wrapped under {xml_root: value}
    """
    f = (fmt or '').lower()
    built = _to_builtin(value)
    if f == 'json':
        if pretty:
            return json.dumps(built, ensure_ascii=False, indent=2)
        return json.dumps(built, ensure_ascii=False, separators=(',', ':'))
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False)
    if f == 'toml':
        if not isinstance(built, dict):
            raise MalformedInput("TOML documents must be tables")
        return _toml.dumps(built)
    if f == 'xml':
        root: dict
        if isinstance(built, dict) and len(built) == 1:
            root = built
        else:
            root = {xml_root: built}
        return xmltodict.unparse(root, pretty=pretty)
    raise MalformedInput(f"Unsupported serialization format: {fmt!r}")


# --------------------------
# Structural conversion
# --------------------------

_SEQUENCE_TARGETS = (list, tuple, set, frozenset)


def _field_types(target: type) -> dict:
    try:
        return typing.get_type_hints(target)
    except Exception:
        return {}


def _convert_field(value: Any, hint: Any) -> Any:
    # Only plain classes are followed; generics and unions are passed through as-is
    if isinstance(hint, type) and hint is not object:
        return convert_structurally(value, hint)
    return value


def _convert_scalar(value: Any, target: type) -> Any:
    if target is bool:
        if isinstance(value, bool):
            return value
        raise TypeError(f"expected a boolean, got {type(value).__name__}")
    if isinstance(value, (collections.abc.Mapping, list, tuple)):
        raise TypeError(f"cannot build {target.__name__} from {type(value).__name__}")
    if target is int and isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{value!r} is not integral")
        return int(value)
    if target is Decimal:
        return Decimal(str(value))
    if target is datetime.datetime and isinstance(value, str):
        return datetime.datetime.fromisoformat(value)
    if target is datetime.date and isinstance(value, str):
        return datetime.date.fromisoformat(value)
    return target(value)


def _convert_object(value: Any, target: type) -> Any:
    if not isinstance(value, collections.abc.Mapping):
        raise TypeError(f"cannot build {target.__name__} from {type(value).__name__}")
    hints = _field_types(target)
    if dataclasses.is_dataclass(target):
        names = {f.name for f in dataclasses.fields(target) if f.init}
        kwargs = {k: _convert_field(v, hints.get(k)) for k, v in value.items() if k in names}
        return target(**kwargs)
    kwargs = {str(k): _convert_field(v, hints.get(k)) for k, v in value.items()}
    try:
        return target(**kwargs)
    except TypeError:
        # Field-population style: build empty, then assign known attributes
        obj = target()
        for k, v in kwargs.items():
            setattr(obj, k, v)
        return obj


def convert_structurally(value: Any, target: Any) -> Any:
    """
    Reshape a plain parsed value (dict/list/scalar) into an instance of target.
    Raises ConversionError when the shapes are incompatible.
    """
    if target is None or target is object or target is Any:
        return value
    if value is None:
        return None
    if instance_of(value, target) and not isinstance(value, collections.abc.Mapping):
        return value
    try:
        if target in _SEQUENCE_TARGETS:
            if not isinstance(value, (list, tuple, set, frozenset)):
                raise TypeError(f"expected a sequence, got {type(value).__name__}")
            return target(value)
        if target is dict:
            if not isinstance(value, collections.abc.Mapping):
                raise TypeError(f"expected a mapping, got {type(value).__name__}")
            return dict(value)
        if target in (str, int, float, bool, Decimal, datetime.date, datetime.datetime):
            return _convert_scalar(value, target)
        if isinstance(value, collections.abc.Mapping) and isinstance(target, type):
            if issubclass(target, collections.abc.Mapping):
                return target(value)
            return _convert_object(value, target)
        if isinstance(value, (list, tuple, set, frozenset)) or dataclasses.is_dataclass(target):
            raise TypeError(f"cannot build {getattr(target, '__name__', target)} from {type(value).__name__}")
        return target(value)
    except ConversionError:
        raise
    except Exception as e:
        _dbg("CONVERT-FAIL", type(value).__name__, "->", getattr(target, '__name__', target), e)
        raise ConversionError(tag_of(value), target, e) from e


__all__ = [
    "parse",
    "stringify",
    "convert_structurally",
    "detect_format",
    "DEFAULT_FORMAT",
    "FORMATS",
]
