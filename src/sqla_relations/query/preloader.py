from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from ..datastructures import PreloadTree


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from ..database import BaseClient
    from ..model import BaseModel

logger = logging.getLogger(__name__)


class Preloader:
    """Eager-loads relation paths for a list of parent instances.

    Every requested path is validated when it is added. At execution time one
    query is issued per relation node, whatever the number of parents:

    >>> Preloader(User).preload("posts.comments").preload("country")
    """

    __slots__ = ("model", "tree")

    def __init__(self, model: type[BaseModel], tree: PreloadTree | None = None) -> None:
        self.model = model
        self.tree = tree if tree is not None else PreloadTree()

    def preload(self, path: str, callback: Callable[[Any], Any] | None = None) -> Self:
        """Request the dotted relation *path*; *callback* receives the query of its last segment.

        Raises:
            UndefinedRelationError: If any segment is not a relation of the model it applies to.
        """
        segments = []
        model = self.model
        for name in path.split("."):
            relation = model.get_relation(name)
            segments.append((name, relation))
            model = relation.related_model

        self.tree.add_path(segments, callback)
        return self

    @property
    def has_preloads(self) -> bool:
        return bool(self.tree)

    def clone(self) -> Preloader:
        return Preloader(self.model, self.tree.copy())

    async def process_all_for_one(self, parent: BaseModel, client: BaseClient | None) -> None:
        await self.process_all_for_many([parent], client)

    async def process_all_for_many(self, parents: Sequence[BaseModel], client: BaseClient | None) -> None:
        await self._process(self.tree.roots, list(parents), client)

    async def _process(
        self,
        indices: Sequence[int],
        parents: list[BaseModel],
        client: BaseClient | None,
    ) -> None:
        # Siblings share one connection, so they run one after another.
        for index in indices:
            node = self.tree[index]
            if not parents:
                logger.debug("Skipping preload %r: no parent rows", self.tree.path(index))
                continue

            relation = node.relation
            relation.boot()

            query = relation.eager_query(parents, client)
            if node.callback is not None:
                node.callback(query)

            related = await query.exec()
            relation.set_related_for_many(parents, related)

            await self._process(node.children, related, client)
