"""
Mapper metadata helpers.

This is the only place the repositories look at model metadata: primary-key
discovery, column enumeration for `update` and attribute-name resolution for
string selectors. Everything else in the repositories works on the statements
and instances it is given.
"""

from functools import lru_cache
from typing import Any

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import Mapper

from autolayer.exceptions.base import InvalidArgumentError, NullPrimaryKeyError


def model_name(model) -> str:
    return getattr(model, "__name__", type(model).__name__)


def get_mapper(model) -> Mapper | None:
    """Return the SQLAlchemy mapper for a model class, or None if the class is not mapped."""
    try:
        return sa_inspect(model)
    except NoInspectionAvailable:
        return None


@lru_cache(maxsize=None)
def _primary_key_names(model) -> tuple[str, ...]:
    mapper = get_mapper(model)
    if mapper is None:
        return ()
    # mapper.primary_key holds Column objects; callers work with attribute names
    return tuple(mapper.get_property_by_column(column).key for column in mapper.primary_key)


def get_primary_key_attributes(model) -> list[str]:
    """
    Return the attribute names of the model's declared primary-key column(s), in mapper order.

    Raises:
        NullPrimaryKeyError: If the class is not mapped or declares no primary key.
    """
    names = _primary_key_names(model)
    if not names:
        raise NullPrimaryKeyError(
            model_name(model),
            message=f"{model_name(model)} declares no primary key",
        )
    return list(names)


def get_primary_key_values(model, entity) -> tuple[Any, ...]:
    """
    Read the primary-key value(s) off a record.

    Raises:
        NullPrimaryKeyError: If the model has no primary key or any key value is None.
    """
    names = get_primary_key_attributes(model)
    values = tuple(getattr(entity, name, None) for name in names)
    missing = [name for name, value in zip(names, values) if value is None]
    if missing:
        raise NullPrimaryKeyError(model_name(model), fields=missing)
    return values


def identity_argument(values: tuple[Any, ...]) -> Any:
    """Shape key values the way `Session.get()` expects: a scalar for single keys, a tuple for composite ones."""
    return values[0] if len(values) == 1 else values


@lru_cache(maxsize=None)
def get_column_attribute_names(model) -> tuple[str, ...]:
    """Names of all column-mapped attributes (relationships excluded)."""
    mapper = get_mapper(model)
    if mapper is None:
        return ()
    return tuple(attr.key for attr in mapper.column_attrs)


def copy_column_values(model, target, source) -> None:
    """
    Overwrite every column attribute of `target` with the value from `source`.

    `target` is normally the persistent instance loaded by primary key, so the
    session records each assignment as a pending change.
    """
    for name in get_column_attribute_names(model):
        setattr(target, name, getattr(source, name))


def resolve_column_attribute(model, name: str):
    """
    Resolve an attribute name (e.g. "temperature_c") to the column attribute on the model class.

    Raises:
        InvalidArgumentError: If the model has no column attribute with that name.
    """
    if name not in get_column_attribute_names(model):
        raise InvalidArgumentError(
            f"{model_name(model)} has no column attribute '{name}'", fields=[name]
        )
    return getattr(model, name)


def resolve_relationship_attribute(model, name: str):
    mapper = get_mapper(model)
    if mapper is None or name not in mapper.relationships:
        raise InvalidArgumentError(
            f"{model_name(model)} has no relationship '{name}'", fields=[name]
        )
    return getattr(model, name)
