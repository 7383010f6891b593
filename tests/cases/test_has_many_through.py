from __future__ import annotations

import pytest

from sqla_relations import TransactionClient, UnsupportedOperationError

from ..models import Base, Country, Post

pytestmark = pytest.mark.anyio


class TestHasManyThrough:
    async def test_related_rows(self, seed_data: dict[str, Base]) -> None:
        posts = await seed_data["india"].related("posts").query()

        assert sorted(post.title for post in posts) == ["Adonis 101", "Lucid 101", "Romain's post"]
        assert {post.extras["through_country_id"] for post in posts} == {seed_data["india"].id}

    async def test_no_intermediate_rows(self, seed_data: dict[str, Base]) -> None:
        assert await seed_data["atlantis"].related("posts").query() == []

    async def test_preload(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        countries = await Country.query(trx).preload("posts").order_by("id")

        assert [sorted(post.title for post in country.posts) for country in countries] == [
            ["Adonis 101", "Lucid 101", "Romain's post"],
            ["Nikk's post"],
            [],
        ]

    async def test_preload_with_callback(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        country = await Country.query(trx).where("name", "India").preload(
            "posts", lambda query: query.where("is_published", True)
        ).first()

        assert country is not None
        assert sorted(post.title for post in country.posts) == ["Adonis 101", "Romain's post"]

    async def test_count_grouped_by_author(self, seed_data: dict[str, Base]) -> None:
        rows = await seed_data["india"].related("posts").query().count("*").group_by("user_id").order_by("user_id")

        assert rows == [
            {"total": 2},
            {"total": 1},
        ]

    async def test_delete_uses_subquery(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        deleted = await seed_data["india"].related("posts").query().delete()

        assert deleted == 3
        assert [post.title for post in await Post.query(trx)] == ["Nikk's post"]

    async def test_delete_after_debug_sql(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        query = seed_data["india"].related("posts").query()
        query.to_sql()

        deleted = await query.delete()

        assert deleted == 3
        assert [post.title for post in await Post.query(trx)] == ["Nikk's post"]

    async def test_create_is_unsupported(self, seed_data: dict[str, Base]) -> None:
        with pytest.raises(
            UnsupportedOperationError,
            match='Cannot call "create" on a "has_many_through" relationship',
        ):
            await seed_data["india"].related("posts").create(title="Nope")
