from __future__ import annotations

import sys
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


K = TypeVar("K")
V = TypeVar("V")


class frozendict(Mapping[K, V]):  # noqa: N801
    """Read-only mapping, filled once at construction.

    Backs the schema maps of a model (``__columns__``, ``__relations__``) and
    the resolved keys of a relation. ``|`` returns a new mapping, and the
    content hash is computed on first use, so mappings holding unhashable
    values still work as long as nobody hashes them.

    Example:
        >>> frozendict(local_key="id") | {"foreign_key": "user_id"}
        frozendict({'local_key': 'id', 'foreign_key': 'user_id'})
    """

    __slots__ = ("_data", "_content_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._data: MappingProxyType[K, V] = MappingProxyType(dict(*args, **kwargs))
        self._content_hash: int | None = None

    def __getitem__(self, key: K) -> V:
        return self._data[key]

    def __iter__(self) -> Iterator[K]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __or__(self, other: Mapping[K, V]) -> Self:
        if not isinstance(other, Mapping):
            return NotImplemented

        return type(self)({**self._data, **other})

    def __hash__(self) -> int:
        if self._content_hash is None:
            self._content_hash = hash(frozenset(self._data.items()))
        return self._content_hash

    def __repr__(self) -> str:
        return f"{type(self).__name__}({dict(self._data)!r})"


@dataclass(slots=True)
class PreloadNode:
    """One relation in a preload tree.

    ``parent`` and ``children`` are indices into the owning ``PreloadTree``.
    """

    index: int
    name: str
    relation: Any
    parent: int | None = None
    callback: Callable[[Any], Any] | None = None
    children: list[int] = field(default_factory=list)


class PreloadTree:
    """Arena of ``PreloadNode`` objects describing requested relation paths.

    ``posts.comments`` and ``posts.author`` share the ``posts`` node; each path
    segment exists once per parent node, so traversal order follows the order
    in which paths were first requested.
    """

    __slots__ = ("_nodes", "_roots")

    def __init__(self) -> None:
        self._nodes: list[PreloadNode] = []
        self._roots: list[int] = []

    def add_path(
        self,
        segments: Sequence[tuple[str, Any]],
        callback: Callable[[Any], Any] | None = None,
    ) -> int:
        """Insert ``(name, relation)`` segments and return the index of the leaf.

        *callback* is attached to the leaf, replacing any earlier one.
        """
        if not segments:
            raise ValueError("Preload path must contain at least one relation")

        parent: int | None = None
        for name, relation in segments:
            index = self.find(name, parent)
            if index is None:
                index = len(self._nodes)
                self._nodes.append(PreloadNode(index=index, name=name, relation=relation, parent=parent))
                siblings = self._roots if parent is None else self._nodes[parent].children
                siblings.append(index)
            parent = index

        assert parent is not None
        if callback is not None:
            self._nodes[parent].callback = callback

        return parent

    def copy(self) -> PreloadTree:
        """Independent copy; nodes are copied, relations and callbacks are shared."""
        tree = PreloadTree()
        tree._roots = list(self._roots)
        tree._nodes = [
            PreloadNode(
                index=node.index,
                name=node.name,
                relation=node.relation,
                parent=node.parent,
                callback=node.callback,
                children=list(node.children),
            )
            for node in self._nodes
        ]
        return tree

    def find(self, name: str, parent: int | None = None) -> int | None:
        """Return the index of child *name* under *parent* (roots when ``None``)."""
        siblings = self._roots if parent is None else self._nodes[parent].children
        return next((i for i in siblings if self._nodes[i].name == name), None)

    @property
    def roots(self) -> tuple[int, ...]:
        return tuple(self._roots)

    def children(self, index: int) -> tuple[int, ...]:
        return tuple(self._nodes[index].children)

    def path(self, index: int) -> str:
        """Dotted path from the root down to node *index*."""
        names: list[str] = []
        current: int | None = index
        while current is not None:
            node = self._nodes[current]
            names.append(node.name)
            current = node.parent
        return ".".join(reversed(names))

    def __getitem__(self, index: int) -> PreloadNode:
        return self._nodes[index]

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[PreloadNode]:
        return iter(self._nodes)

    def __bool__(self) -> bool:
        return bool(self._nodes)
