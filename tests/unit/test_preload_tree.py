from __future__ import annotations

import pytest

from sqla_relations import PreloadTree, Preloader, UndefinedRelationError

from ..models import Country, Post, User


def _noop(query: object) -> None:
    return None


class TestPreloadTree:
    def test_shared_prefix(self) -> None:
        tree = PreloadTree()
        posts = object()
        tree.add_path([("posts", posts), ("comments", object())])
        tree.add_path([("posts", posts), ("author", object())])

        assert len(tree) == 3
        assert [tree[i].name for i in tree.roots] == ["posts"]
        assert [tree[i].name for i in tree.children(tree.roots[0])] == ["comments", "author"]

    def test_callback_on_leaf(self) -> None:
        tree = PreloadTree()
        leaf = tree.add_path([("posts", object()), ("comments", object())], _noop)

        assert tree[leaf].callback is _noop
        assert tree[tree.roots[0]].callback is None

    def test_path(self) -> None:
        tree = PreloadTree()
        leaf = tree.add_path([("posts", object()), ("comments", object())])

        assert tree.path(leaf) == "posts.comments"

    def test_empty_path(self) -> None:
        with pytest.raises(ValueError):
            PreloadTree().add_path([])

    def test_copy_is_independent(self) -> None:
        tree = PreloadTree()
        tree.add_path([("posts", object())])
        clone = tree.copy()
        clone.add_path([("posts", object()), ("comments", object())])

        assert len(tree) == 1
        assert len(clone) == 2
        assert tree.children(tree.roots[0]) == ()


class TestPreloader:
    def test_validates_every_segment(self) -> None:
        preloader = Preloader(User)

        with pytest.raises(UndefinedRelationError, match='"nope" is not defined as a relationship on "Post"'):
            preloader.preload("posts.nope")

        assert not preloader.has_preloads

    def test_resolves_segments_across_models(self) -> None:
        preloader = Preloader(Country).preload("posts.comments").preload("users")
        tree = preloader.tree

        assert [tree[i].relation for i in tree.roots] == [
            Country.get_relation("posts"),
            Country.get_relation("users"),
        ]
        assert tree[tree.children(tree.roots[0])[0]].relation is Post.get_relation("comments")

    def test_builder_validates_on_call(self) -> None:
        with pytest.raises(UndefinedRelationError):
            User.query().preload("followers")

    @pytest.mark.anyio
    async def test_no_parents_no_query(self) -> None:
        def boom(query: object) -> None:
            raise AssertionError("callback must not run without parents")

        await Preloader(User).preload("posts", boom).process_all_for_many([], None)
