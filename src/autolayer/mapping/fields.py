"""
Field enumeration and type assignability for the entity mapper.

`declared_fields(cls)` is the mapper's only reflective step. It understands:

  - pydantic models          -> `model_fields` (already-resolved annotations)
  - dataclasses              -> init fields, annotations resolved per field
  - SQLAlchemy mapped classes -> column and relationship attributes, `Mapped[X]` unwrapped
  - plain annotated classes  -> class annotations (ClassVar excluded)

Annotations that cannot be resolved (unknown forward references) are treated as Any.
"""

import dataclasses
import inspect
import sys
import types
from functools import lru_cache
from typing import Any, ClassVar, Union, get_args, get_origin, get_type_hints

from pydantic import BaseModel
from sqlalchemy.orm import Mapped

from autolayer.validators.model_validators import get_mapper

NoneType = type(None)

# source -> targets it may widen into
NUMERIC_PROMOTIONS = {
    int: (float, complex),
    float: (complex,),
}


# =================================================================================================================
# Annotation resolution
# =================================================================================================================

def _resolve(annotation: Any, globalns: dict[str, Any], localns: dict[str, Any]) -> Any:
    if not isinstance(annotation, str):
        return annotation

    def probe():
        pass

    probe.__annotations__ = {"value": annotation}
    try:
        return get_type_hints(probe, globalns, localns)["value"]
    except Exception:
        # NameError / TypeError / SyntaxError from an unresolvable forward reference
        return Any


def _unwrap(annotation: Any) -> Any:
    if get_origin(annotation) is Mapped:
        args = get_args(annotation)
        return args[0] if args else Any
    return annotation


def class_annotations(cls: type) -> dict[str, Any]:
    """
    Resolved annotations of `cls` and its bases, base-first, ClassVar entries dropped.
    """
    hints: dict[str, Any] = {}
    for klass in reversed(cls.__mro__):
        if klass is object:
            continue
        module = sys.modules.get(klass.__module__)
        globalns = dict(vars(module)) if module is not None else {}
        localns = dict(vars(klass))
        localns.setdefault(klass.__name__, klass)
        for name, annotation in inspect.get_annotations(klass).items():
            resolved = _unwrap(_resolve(annotation, globalns, localns))
            if resolved is ClassVar or get_origin(resolved) is ClassVar:
                hints.pop(name, None)
                continue
            hints[name] = resolved
    return hints


# =================================================================================================================
# Field enumeration
# =================================================================================================================

def _optional(annotation: Any) -> Any:
    return annotation | None if isinstance(annotation, type) else Union[annotation, None]


def _sqlalchemy_fields(cls: type, mapper) -> dict[str, Any]:
    hints = class_annotations(cls)
    fields: dict[str, Any] = {}
    for attr in mapper.column_attrs:
        if attr.key in hints:
            fields[attr.key] = hints[attr.key]
            continue
        # imperative / untyped mapping: fall back to the column's Python type
        column = attr.columns[0]
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            fields[attr.key] = Any
            continue
        fields[attr.key] = _optional(python_type) if column.nullable else python_type
    for rel in mapper.relationships:
        fields[rel.key] = hints.get(rel.key, Any)
    return fields


@lru_cache(maxsize=None)
def _declared_fields(cls: type) -> tuple[tuple[str, Any], ...]:
    if isinstance(cls, type) and issubclass(cls, BaseModel):
        return tuple((name, info.annotation if info.annotation is not None else Any)
                     for name, info in cls.model_fields.items())

    if dataclasses.is_dataclass(cls):
        hints = class_annotations(cls)
        return tuple((f.name, hints.get(f.name, Any)) for f in dataclasses.fields(cls) if f.init)

    mapper = get_mapper(cls)
    if mapper is not None:
        return tuple(_sqlalchemy_fields(cls, mapper).items())

    return tuple(class_annotations(cls).items())


def declared_fields(cls: type) -> dict[str, Any]:
    """
    Return `{field name: declared type}` for a record class, in declaration order.
    """
    return dict(_declared_fields(cls))


# =================================================================================================================
# Assignability
# =================================================================================================================

def _is_union(annotation: Any) -> bool:
    return get_origin(annotation) in (Union, types.UnionType)


def _is_open(annotation: Any) -> bool:
    return annotation is Any or annotation is object


def is_assignable(source: Any, target: Any) -> bool:
    """
    True if a value declared as `source` may be stored in a field declared as `target`.

    Rules, in order:
      - Any / object targets accept everything; an Any source is accepted too
      - a union source fits only if every member fits the target
      - None fits only a target that admits None
      - a union target accepts the source if any member does
      - parameterised generics compare by origin (`list[int]` -> `list`)
      - int -> float -> complex promotion is allowed
      - otherwise `issubclass`
    """
    if _is_open(target) or source is Any:
        return True

    if _is_union(source):
        return all(is_assignable(member, target) for member in get_args(source))

    if source is None or source is NoneType:
        if _is_union(target):
            return any(m is NoneType or _is_open(m) for m in get_args(target))
        return target is None or target is NoneType

    if _is_union(target):
        return any(is_assignable(source, member) for member in get_args(target))

    source_origin = get_origin(source) or source
    target_origin = get_origin(target) or target
    if not isinstance(source_origin, type) or not isinstance(target_origin, type):
        # TypeVars, Literal and similar special forms: only identical declarations match
        return source_origin == target_origin

    for narrow, wider in NUMERIC_PROMOTIONS.items():
        if issubclass(source_origin, narrow) and target_origin in wider:
            return True

    return issubclass(source_origin, target_origin)


def type_name(annotation: Any) -> str:
    if isinstance(annotation, type) and get_origin(annotation) is None:
        return annotation.__name__
    return repr(annotation).replace("typing.", "")
