from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from ..model import BaseModel


def _key_of(instance: BaseModel, key: str, from_extras: bool) -> Any:
    if from_extras:
        return instance.extras.get(key)

    return instance.get_attribute(key)


def match(
    parents: Sequence[BaseModel],
    related: Sequence[BaseModel],
    *,
    relation_name: str,
    parent_key: str,
    related_key: str,
    many: bool,
    from_extras: bool = False,
) -> None:
    """Distribute *related* rows over *parents* by key equality.

    Every parent receives a value: a list for to-many relations (in the order
    rows arrived), otherwise one instance or ``None``. When several rows share
    a key on a to-one relation the last one wins.

    Args:
        parents: Instances to fill.
        related: Rows returned by the eager query.
        relation_name: Slot written on every parent.
        parent_key: Attribute read from each parent.
        related_key: Attribute (or extras key) read from each related row.
        many: Whether the relation is to-many.
        from_extras: Read *related_key* from ``extras`` (``through_*``,
            ``pivot_*`` aliases) instead of attributes.
    """
    if many:
        groups: defaultdict[Any, list[BaseModel]] = defaultdict(list)
        for row in related:
            groups[_key_of(row, related_key, from_extras)].append(row)

        for parent in parents:
            value = parent.get_attribute(parent_key)
            parent.set_related(relation_name, list(groups.get(value, ())) if value is not None else [])
        return

    # TODO: raise on duplicate keys for to-one relations once callers can opt in.
    lookup: dict[Any, BaseModel] = {}
    for row in related:
        lookup[_key_of(row, related_key, from_extras)] = row

    for parent in parents:
        value = parent.get_attribute(parent_key)
        parent.set_related(relation_name, lookup.get(value) if value is not None else None)
