"""
Declarative base for models handled by the repositories.

Models are not required to derive from this Base; any SQLAlchemy-mapped class
with a primary key works. It is provided for applications that want the
constraint naming convention (so DuplicateError/ConstraintViolationError carry
predictable constraint names) and a readable repr in logs.
"""

from sqlalchemy import MetaData, inspect as sa_inspect
from sqlalchemy.orm import DeclarativeBase

# Naming convention for constraints and indexes
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    def __repr__(self) -> str:
        mapper = sa_inspect(type(self))
        names = [mapper.get_property_by_column(col).key for col in mapper.primary_key]
        # read the loaded state only; repr must never trigger a lazy load
        loaded = sa_inspect(self).dict
        keys = ", ".join(f"{name}={loaded.get(name)!r}" for name in names)
        return f"<{type(self).__name__}({keys})>"
