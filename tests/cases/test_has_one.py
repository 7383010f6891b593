from __future__ import annotations

import pytest

from sqla_relations import TransactionClient

from ..models import Base, Profile, User

pytestmark = pytest.mark.anyio


class TestHasOne:
    async def test_related_query(self, seed_data: dict[str, Base]) -> None:
        profile = await seed_data["virk"].related("profile").query().first()

        assert profile is not None
        assert profile.display_name == "Virk"

    async def test_single_parent_query_is_limited(self, seed_data: dict[str, Base]) -> None:
        sql = seed_data["virk"].related("profile").query().to_sql().sql

        assert "LIMIT" in sql.upper()

    async def test_preload(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        users = await User.query(trx).preload("profile").order_by("id")
        by_name = {user.username: user for user in users}

        assert by_name["virk"].profile.display_name == "Virk"
        assert by_name["romain"].profile.display_name == "Romain"
        assert by_name["loner"].profile is None

    async def test_preload_serializes_none(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        loner = await User.query(trx).where("username", "loner").preload("profile").first()

        assert loner is not None
        assert loner.serialize()["profile"] is None

    async def test_create(self, trx: TransactionClient, seed_data: dict[str, Base]) -> None:
        loner = seed_data["loner"]
        profile = await loner.related("profile").create(display_name="Loner")

        assert profile.user_id == loner.id
        found = await Profile.find_by("user_id", loner.id, client=trx)
        assert found is not None
        assert found.display_name == "Loner"

    async def test_save_sets_loaded_value(self, seed_data: dict[str, Base]) -> None:
        nikk = seed_data["nikk"]
        nikk.set_related("profile", None)

        profile = await nikk.related("profile").save(Profile(display_name="Nikk"))

        assert nikk.profile is profile
        assert profile.is_persisted
