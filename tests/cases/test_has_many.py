from __future__ import annotations

import pytest

from sqla_relations import TransactionClient

from ..models import Base, Post, User


pytestmark = pytest.mark.anyio


class TestHasManyQuery:
    async def test_related_rows(self, seed_data: dict[str, Base]) -> None:
        posts = await seed_data["virk"].related("posts").query().order_by("id")

        assert [post.title for post in posts] == ["Adonis 101", "Lucid 101"]

    async def test_related_query_runs_on_parent_client(
        self, trx: TransactionClient, seed_data: dict[str, Base]
    ) -> None:
        virk = await User.find_by("username", "virk", client=trx)
        assert virk is not None

        query = virk.related("posts").query()

        assert query.client is trx
        assert len(await query) == 2

    async def test_filters_and_scopes(self, seed_data: dict[str, Base]) -> None:
        query = seed_data["virk"].related("posts").query().apply(lambda scopes: scopes.published())

        assert [post.title for post in await query] == ["Adonis 101"]

    async def test_on_query_hook(self, seed_data: dict[str, Base]) -> None:
        posts = await seed_data["virk"].related("published_posts").query()

        assert [post.title for post in posts] == ["Adonis 101"]

    async def test_first(self, seed_data: dict[str, Base]) -> None:
        post = await seed_data["virk"].related("posts").query().order_by("id", "desc").first()

        assert post is not None
        assert post.title == "Lucid 101"

    async def test_count(self, seed_data: dict[str, Base]) -> None:
        rows = await seed_data["virk"].related("posts").query().count("*", "total")

        assert rows == [{"total": 2}]

    async def test_update(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        updated = await seed_data["virk"].related("posts").query().update(is_published=True)

        assert updated == 2
        assert await Post.query(trx).where("is_published", False).count() == [{"total": 0}]

    async def test_delete(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        deleted = await seed_data["virk"].related("posts").query().delete()

        assert deleted == 2
        assert await Post.query(trx).where("user_id", seed_data["virk"].id).exec() == []


class TestHasManyPersistence:
    async def test_create_sets_foreign_key(self, seed_data: dict[str, Base]) -> None:
        nikk = seed_data["nikk"]
        post = await nikk.related("posts").create({"title": "Hello", "is_published": False})

        assert post.is_persisted
        assert post.user_id == nikk.id

    async def test_save_many(self, seed_data: dict[str, Base]) -> None:
        loner = seed_data["loner"]
        posts = await loner.related("posts").save_many([Post(title="One"), Post(title="Two")])

        assert [post.user_id for post in posts] == [loner.id, loner.id]
        assert len(await loner.related("posts").query()) == 2

    async def test_create_many(self, seed_data: dict[str, Base]) -> None:
        posts = await seed_data["nikk"].related("posts").create_many([{"title": "A"}, {"title": "B"}])

        assert all(post.is_persisted for post in posts)

    async def test_saves_new_parent_first(self, trx: TransactionClient) -> None:
        user = User(username="fresh", is_active=True).use_transaction(trx)

        post = await user.related("posts").create(title="First")

        assert user.is_persisted
        assert post.user_id == user.id

    async def test_pushes_onto_loaded_relation(self, seed_data: dict[str, Base]) -> None:
        virk = seed_data["virk"]
        await virk.load("posts")

        post = await virk.related("posts").create(title="Third")

        assert virk.posts[-1] is post
        assert len(virk.posts) == 3
