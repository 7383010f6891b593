from __future__ import annotations

import pytest
import sqlalchemy as sa

from sqla_relations import TransactionClient

from ..models import Base, Skill, User, skill_user

pytestmark = pytest.mark.anyio


async def pivot_rows(trx: TransactionClient, user: Base) -> dict[int, str | None]:
    result = await trx.execute(sa.select(skill_user).where(skill_user.c.user_id == user.id))
    return {row["skill_id"]: row["proficiency"] for row in result.rows}


class TestManyToManyQuery:
    async def test_related_rows_with_pivot_extras(self, seed_data: dict[str, Base]) -> None:
        skills = await seed_data["virk"].related("skills").query().order_by("name")

        assert [skill.name for skill in skills] == ["Dancing", "Programming"]
        assert [skill.extras["pivot_proficiency"] for skill in skills] == ["beginner", "expert"]
        assert {skill.extras["pivot_user_id"] for skill in skills} == {seed_data["virk"].id}

    async def test_where_pivot(self, seed_data: dict[str, Base]) -> None:
        skills = await seed_data["virk"].related("skills").query().where_pivot("proficiency", "expert")

        assert [skill.name for skill in skills] == ["Programming"]

    async def test_where_in_pivot(self, seed_data: dict[str, Base]) -> None:
        query = seed_data["virk"].related("skills").query().where_not_in_pivot("proficiency", ["expert"])

        assert [skill.name for skill in await query] == ["Dancing"]

    async def test_preload(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        users = await User.query(trx).preload("skills").order_by("id")
        by_name = {user.username: sorted(skill.name for skill in user.skills) for user in users}

        assert by_name == {
            "virk": ["Dancing", "Programming"],
            "romain": ["Programming"],
            "nikk": [],
            "loner": [],
        }

    async def test_preload_inverse(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        skills = await Skill.query(trx).preload("users").order_by("id")

        assert [sorted(user.username for user in skill.users) for skill in skills] == [
            ["romain", "virk"],
            ["virk"],
            [],
        ]

    async def test_delete_through_subquery(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        deleted = await seed_data["romain"].related("skills").query().delete()

        assert deleted == 1
        assert await Skill.find(seed_data["programming"].id, client=trx) is None

    async def test_delete_after_debug_sql(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        query = seed_data["romain"].related("skills").query()
        query.to_query()

        deleted = await query.delete()

        assert deleted == 1
        assert [skill.name for skill in await Skill.query(trx).order_by("id")] == ["Dancing", "Singing"]


class TestManyToManyPersistence:
    async def test_attach_and_detach(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        nikk = seed_data["nikk"]
        related = nikk.related("skills")

        await related.attach([seed_data["singing"].id, seed_data["dancing"].id])
        assert set(await pivot_rows(trx, nikk)) == {seed_data["singing"].id, seed_data["dancing"].id}

        assert await related.detach([seed_data["singing"].id]) == 1
        assert set(await pivot_rows(trx, nikk)) == {seed_data["dancing"].id}

        assert await related.detach() == 1
        assert await pivot_rows(trx, nikk) == {}

    async def test_attach_with_pivot_attributes(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        nikk = seed_data["nikk"]

        await nikk.related("skills").attach(
            {seed_data["singing"].id: {"proficiency": "expert"}, seed_data["dancing"].id: {}}
        )

        assert await pivot_rows(trx, nikk) == {seed_data["singing"].id: "expert", seed_data["dancing"].id: None}

    async def test_sync(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        virk = seed_data["virk"]

        await virk.related("skills").sync(
            {seed_data["programming"].id: {"proficiency": "master"}, seed_data["singing"].id: {}}
        )

        assert await pivot_rows(trx, virk) == {
            seed_data["programming"].id: "master",
            seed_data["singing"].id: None,
        }

    async def test_sync_without_detach(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        virk = seed_data["virk"]

        await virk.related("skills").sync([seed_data["singing"].id], detach=False)

        assert set(await pivot_rows(trx, virk)) == {
            seed_data["programming"].id,
            seed_data["dancing"].id,
            seed_data["singing"].id,
        }

    async def test_save_skips_existing_pivot_row(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        virk = seed_data["virk"]

        await virk.related("skills").save(seed_data["programming"])

        assert len(await pivot_rows(trx, virk)) == 2

    async def test_create_with_pivot_attributes(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        romain = seed_data["romain"]

        skill = await romain.related("skills").create({"name": "Cooking"}, pivot_attributes={"proficiency": "expert"})

        assert skill.is_persisted
        assert (await pivot_rows(trx, romain))[skill.id] == "expert"

    async def test_save_many_persists_new_parent(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        user = User(username="fresh", is_active=True).use_transaction(trx)

        skills = await user.related("skills").save_many([seed_data["singing"], Skill(name="Juggling")])

        assert user.is_persisted
        assert set(await pivot_rows(trx, user)) == {skill.id for skill in skills}
