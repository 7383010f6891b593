from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..datastructures import frozendict
from ..exceptions import MissingAttributeError


if TYPE_CHECKING:
    from ..model import BaseModel


@dataclass(frozen=True, slots=True)
class KeySpec:
    """An attribute expected to exist on *model*."""

    model: type[BaseModel]
    attribute: str


@dataclass(frozen=True, slots=True)
class ResolvedKey:
    """A validated key: the attribute name and its storage column."""

    model: type[BaseModel]
    attribute_name: str
    column_name: str


def resolve_keys(
    model: type[BaseModel],
    relation_name: str,
    keys: Mapping[str, KeySpec],
) -> frozendict[str, ResolvedKey]:
    """Validate relation keys in order and resolve their column names.

    Args:
        model: Owner of the relation, used for the error message.
        relation_name: Relation being booted.
        keys: Logical key name to ``KeySpec``, in validation order.

    Raises:
        MissingAttributeError: For the first key whose attribute is not declared
            on its model, e.g. ``"Country.posts" expects "country_id" to exist
            on "User" model, but is missing``.
    """
    resolved: dict[str, ResolvedKey] = {}
    for name, spec in keys.items():
        column = spec.model.get_column(spec.attribute)
        if column is None:
            raise MissingAttributeError(
                f"{model.__name__}.{relation_name}",
                spec.model.__name__,
                spec.attribute,
            )
        resolved[name] = ResolvedKey(spec.model, spec.attribute, column.column_name)

    return frozendict(resolved)
