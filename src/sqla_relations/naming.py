from __future__ import annotations

import re
from functools import lru_cache
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from .model import BaseModel


_CAMEL_BOUNDARY = re.compile(r"((?<=[a-z0-9])[A-Z]|(?!^)[A-Z](?=[a-z]))")
_NON_WORD = re.compile(r"[^0-9a-zA-Z]+")


@lru_cache(maxsize=1024)
def snake_case(value: str) -> str:
    """Convert ``CamelCase`` / ``lowerCamel`` / ``kebab-case`` names to ``snake_case``.

    Already snake-cased names come back unchanged, so ``country_id`` and
    ``countryId`` both map to ``country_id``.
    """
    value = _NON_WORD.sub("_", value)
    return _CAMEL_BOUNDARY.sub(r"_\1", value).strip("_").lower()


@lru_cache(maxsize=1024)
def pluralize(word: str) -> str:
    """Naive English pluralization used for default table names."""
    if not word:
        return word
    if word.endswith("y") and len(word) > 1 and word[-2] not in "aeiou":
        return f"{word[:-1]}ies"
    if word.endswith(("s", "x", "z", "ch", "sh")):
        return f"{word}es"
    return f"{word}s"


class NamingStrategy:
    """Conventions used to derive table, column and key names.

    Subclass and pass an instance to ``Registry(naming=...)`` to change how
    defaults are computed. Explicit options on columns and relations always win.
    """

    def table_name(self, model: type[BaseModel]) -> str:
        return pluralize(snake_case(model.__name__))

    def column_name(self, attribute_name: str) -> str:
        return snake_case(attribute_name)

    def foreign_key(self, model: type[BaseModel]) -> str:
        """Attribute name holding a reference to *model*, e.g. ``Country`` -> ``country_id``."""
        return f"{snake_case(model.__name__)}_id"

    def pivot_table(self, model: type[BaseModel], related: type[BaseModel]) -> str:
        return "_".join(sorted((snake_case(model.__name__), snake_case(related.__name__))))

    def pivot_foreign_key(self, model: type[BaseModel]) -> str:
        return self.column_name(self.foreign_key(model))


default_naming = NamingStrategy()
