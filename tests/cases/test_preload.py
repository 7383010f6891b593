from __future__ import annotations

from typing import Any

import pytest

from sqla_relations import (
    PaginationNotAllowedError,
    RelationNotLoadedError,
    TransactionClient,
    UndefinedRelationError,
    ValueUndefinedError,
)

from ..models import Base, Comment, Post, User

pytestmark = pytest.mark.anyio


class TestPreload:
    async def test_one_query_per_relation(
        self, trx: TransactionClient, seed_data: dict[str, Base], executed: list[str]
    ) -> None:
        executed.clear()
        users = await User.query(trx).preload("posts")

        assert len(executed) == 2
        assert " IN " in executed[1].upper()
        assert sum(len(user.posts) for user in users) == 4

    async def test_nested_paths(
        self, trx: TransactionClient, seed_data: dict[str, Base], executed: list[str]
    ) -> None:
        executed.clear()
        users = await User.query(trx).where("username", "virk").preload("posts.comments")

        assert len(executed) == 3
        (virk,) = users
        comments = {post.title: sorted(comment.body for comment in post.comments) for post in virk.posts}
        assert comments == {"Adonis 101": ["Great post", "Thanks"], "Lucid 101": []}

    async def test_nested_preload_inside_callback(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        users = await User.query(trx).where("username", "virk").preload(
            "posts", lambda query: query.where("is_published", True).preload("comments")
        )

        (adonis,) = users[0].posts
        assert len(adonis.comments) == 2

    async def test_siblings(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        virk = await User.query(trx).where("username", "virk").preload("profile").preload("country").first()

        assert virk is not None
        assert virk.profile.display_name == "Virk"
        assert virk.country.name == "India"

    async def test_empty_result_skips_children(
        self, trx: TransactionClient, seed_data: dict[str, Base], executed: list[str]
    ) -> None:
        calls: list[Any] = []
        executed.clear()

        users = await User.query(trx).where("username", "nikk").preload(
            "profile.user", lambda query: calls.append(query)
        )

        assert users[0].profile is None
        assert calls == []
        assert len(executed) == 2

    async def test_no_parents_skips_queries(
        self, trx: TransactionClient, seed_data: dict[str, Base], executed: list[str]
    ) -> None:
        executed.clear()

        assert await User.query(trx).where("username", "nobody").preload("posts") == []
        assert len(executed) == 1

    async def test_callback_with_scopes(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        users = await User.query(trx).where("username", "virk").preload(
            "posts", lambda query: query.apply(lambda scopes: scopes.titled("Lucid 101"))
        )

        assert [post.title for post in users[0].posts] == ["Lucid 101"]

    async def test_preload_with_on_query(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        virk = await User.query(trx).where("username", "virk").preload("published_posts").first()

        assert virk is not None
        assert [post.title for post in virk.published_posts] == ["Adonis 101"]

    async def test_paginate_inside_callback(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        query = User.query(trx).preload("posts", lambda query: query.paginate(1, 10))

        with pytest.raises(PaginationNotAllowedError, match='Cannot paginate relationship "posts" during preload'):
            await query

    async def test_missing_local_key(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        query = User.query(trx).select("username").preload("posts")

        with pytest.raises(ValueUndefinedError, match='Cannot preload "posts", value of "User.id" is undefined'):
            await query

    async def test_undefined_relation(self) -> None:
        with pytest.raises(UndefinedRelationError):
            User.query().preload("posts.likes")

    async def test_not_loaded(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        user = await User.find_or_fail(seed_data["virk"].id, client=trx)

        with pytest.raises(RelationNotLoadedError):
            user.posts  # noqa: B018

    async def test_serialize_nested(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        post = await Post.query(trx).where("title", "Adonis 101").preload("author").preload("comments.post").first()

        assert post is not None
        data = post.serialize()
        assert data["author"]["username"] == "virk"
        assert [sorted(comment) for comment in data["comments"]] == [["body", "id", "post_id"]] * 2


class TestLoad:
    async def test_load(self, seed_data: dict[str, Base]) -> None:
        virk = seed_data["virk"]

        await virk.load("posts")

        assert sorted(post.title for post in virk.posts) == ["Adonis 101", "Lucid 101"]

    async def test_load_with_callback(self, seed_data: dict[str, Base]) -> None:
        adonis = seed_data["adonis"]

        await adonis.load("comments", lambda query: query.where("body", "Thanks"))

        assert [comment.body for comment in adonis.comments] == ["Thanks"]

    async def test_load_belongs_to_with_null_key(self, seed_data: dict[str, Base]) -> None:
        loner = seed_data["loner"]

        await loner.load("country")

        assert loner.country is None

    async def test_load_related_models(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        comments = await Comment.query(trx).preload("post.author")

        assert {comment.post.author.username for comment in comments} == {"virk"}
