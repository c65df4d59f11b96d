from .entity_mapper import EntityMapper, default_mapper, map_to, map_to_list
from .fields import declared_fields, is_assignable

__all__ = [
    "EntityMapper",
    "default_mapper",
    "map_to",
    "map_to_list",
    "declared_fields",
    "is_assignable",
]
