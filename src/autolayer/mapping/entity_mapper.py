"""
Name-matching object-to-object mapper.

    from autolayer.mapping import map_to, map_to_list

    dto = map_to(forecast_row, ForecastDTO)
    rows = map_to_list(dtos, WeatherForecast)

For every field declared on the target type the source must expose a field of
the same name whose declared type is assignable to the target's. The mapper is
direction-agnostic: ORM rows, pydantic models, dataclasses and plain annotated
classes can all be sources and targets.
"""

import logging
from typing import Any, Iterable, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from autolayer.exceptions.base import MappingError, NullInputError
from autolayer.mapping.fields import declared_fields, is_assignable, type_name

logger = logging.getLogger(__name__)

TargetType = TypeVar("TargetType")

_MISSING = object()


def _read_field(source: Any, name: str, target_name: str, *default: Any) -> Any:
    """
    Read one source attribute.

    A detached ORM row raises DetachedInstanceError for an unloaded relationship
    (MissingGreenlet under asyncio); both surface as MappingError for that field.
    """
    source_name = type(source).__name__
    try:
        return getattr(source, name, *default)
    except SQLAlchemyError as exc:
        logger.info(
            "mapper.map_to.unloaded_field",
            extra={"source_type": source_name, "target_type": target_name, "field": name},
        )
        raise MappingError(
            f"Cannot map field '{name}' from {source_name} to {target_name}: the value is not loaded",
            source_type=source_name,
            target_type=target_name,
            field=name,
        ) from exc


class EntityMapper:
    """
    Converts an instance of one record shape into a new instance of another.

    Stateless; one instance can be shared freely.
    """

    def map_to(self, source: Any, target_type: Type[TargetType]) -> TargetType:
        """
        Build a `target_type` from the same-named fields of `source`.

        Raises:
            NullInputError: If source (or target_type) is None.
            MappingError: If a target field has no counterpart on the source, the
                declared types are incompatible, or the target rejects the values.
        """
        if source is None:
            logger.info("mapper.map_to.null_input")
            raise NullInputError()
        if target_type is None:
            raise NullInputError("Mapping target type must not be None")

        source_name = type(source).__name__
        target_name = type_name(target_type)
        source_fields = declared_fields(type(source))

        values: dict[str, Any] = {}
        for name, target_annotation in declared_fields(target_type).items():
            if name in source_fields:
                source_annotation = source_fields[name]
                value = _read_field(source, name, target_name)
            else:
                # attribute set on the instance but not declared on its class
                value = _read_field(source, name, target_name, _MISSING)
                if value is _MISSING:
                    logger.info(
                        "mapper.map_to.missing_field",
                        extra={"source_type": source_name, "target_type": target_name, "field": name},
                    )
                    raise MappingError(
                        f"Cannot map {source_name} to {target_name}: {source_name} has no field '{name}'",
                        source_type=source_name,
                        target_type=target_name,
                        field=name,
                    )
                source_annotation = type(value)

            if not is_assignable(source_annotation, target_annotation):
                logger.info(
                    "mapper.map_to.incompatible_type",
                    extra={"source_type": source_name, "target_type": target_name, "field": name},
                )
                raise MappingError(
                    f"Cannot map field '{name}' from {source_name} to {target_name}: "
                    f"{type_name(source_annotation)} is not assignable to {type_name(target_annotation)}",
                    source_type=source_name,
                    target_type=target_name,
                    field=name,
                )
            values[name] = value

        try:
            return target_type(**values)
        except (TypeError, ValueError) as exc:
            # pydantic's ValidationError is a ValueError
            raise MappingError(
                f"Cannot construct {target_name} from {source_name}: {exc}",
                source_type=source_name,
                target_type=target_name,
            ) from exc

    def map_to_list(self, sources: Iterable[Any], target_type: Type[TargetType]) -> list[TargetType]:
        """
        Map every element of `sources`, preserving order.

        The first failure aborts the whole call; no partial list is returned.

        Raises:
            NullInputError: If sources is None or contains None.
            MappingError: As for `map_to`.
        """
        if sources is None:
            raise NullInputError("Mapping input collection must not be None")
        items = list(sources)
        null_positions = [index for index, item in enumerate(items) if item is None]
        if null_positions:
            raise NullInputError(
                f"Mapping input collection contains None at position(s): "
                f"{', '.join(str(p) for p in null_positions)}"
            )
        return [self.map_to(item, target_type) for item in items]


default_mapper = EntityMapper()


def map_to(source: Any, target_type: Type[TargetType]) -> TargetType:
    return default_mapper.map_to(source, target_type)


def map_to_list(sources: Iterable[Any], target_type: Type[TargetType]) -> list[TargetType]:
    return default_mapper.map_to_list(sources, target_type)
