"""
Integration tests for LadderOperations.
"""

import pytest

from ladder.data_models.ladder import LadderStatus, LadderVisibility
from ladder.database.repositories import MemberRepository
from ladder.utils.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from tests.conftest import CAPSULE_ID, OWNER_ID, make_ladder, roster


class TestCreateLadder:
    """create_ladder defaults, slugs and publishing"""

    async def test_defaults(self, ladder_ops):
        detail = await ladder_ops.create_ladder(OWNER_ID, CAPSULE_ID, name="  Spring   Ladder ")

        ladder = detail.ladder
        assert ladder.name == "Spring Ladder"
        assert ladder.slug == "spring-ladder"
        assert ladder.status == LadderStatus.DRAFT
        assert ladder.visibility == LadderVisibility.CAPSULE
        assert ladder.published_at is None
        assert ladder.version == 1
        assert ladder.created_by_id == OWNER_ID
        assert detail.members == []

    async def test_blank_name_gets_placeholder(self, ladder_ops):
        detail = await ladder_ops.create_ladder(OWNER_ID, CAPSULE_ID, name="   ")
        assert detail.ladder.name == "Untitled Ladder"

    async def test_slugs_are_unique_per_capsule(self, ladder_ops):
        first = await ladder_ops.create_ladder(OWNER_ID, CAPSULE_ID, name="Spring Ladder")
        second = await ladder_ops.create_ladder(OWNER_ID, CAPSULE_ID, name="Spring Ladder")

        assert first.ladder.slug == "spring-ladder"
        assert second.ladder.slug.startswith("spring-ladder-")
        assert second.ladder.slug != first.ladder.slug

    async def test_explicit_slug_conflict(self, ladder_ops):
        await ladder_ops.create_ladder(OWNER_ID, CAPSULE_ID, name="One", slug="finals")
        with pytest.raises(InvalidInputError):
            await ladder_ops.create_ladder(OWNER_ID, CAPSULE_ID, name="Two", slug="Finals")

    async def test_publish_activates(self, ladder_ops):
        detail = await make_ladder(ladder_ops, names=("Alpha", "Bravo", "Charlie"))

        assert detail.ladder.status == LadderStatus.ACTIVE
        assert detail.ladder.published_at is not None
        assert detail.ladder.published_by_id == OWNER_ID
        assert [(member.display_name, member.rank) for member in detail.members] == [
            ("Alpha", 1), ("Bravo", 2), ("Charlie", 3)
        ]

    async def test_requires_manager(self, ladder_ops):
        with pytest.raises(ForbiddenError):
            await ladder_ops.create_ladder("user-alpha", CAPSULE_ID, name="Mine")

    async def test_invalid_visibility(self, ladder_ops):
        with pytest.raises(InvalidInputError):
            await ladder_ops.create_ladder(OWNER_ID, CAPSULE_ID, name="Bad", visibility="secret")


class TestUpdateLadder:
    """update_ladder patches, publish and archive"""

    async def test_publish_and_rename(self, ladder_ops):
        detail = await make_ladder(ladder_ops, publish=False)

        updated = await ladder_ops.update_ladder(
            OWNER_ID, detail.ladder.id, {"name": "Summer  Ladder"}, publish=True
        )

        assert updated.ladder.name == "Summer Ladder"
        assert updated.ladder.status == LadderStatus.ACTIVE
        assert updated.ladder.published_by_id == OWNER_ID
        assert updated.ladder.version == detail.ladder.version + 1
        assert updated.members is None

    async def test_archive(self, ladder_ops):
        detail = await make_ladder(ladder_ops)
        updated = await ladder_ops.update_ladder(OWNER_ID, detail.ladder.id, archive=True)
        assert updated.ladder.status == LadderStatus.ARCHIVED
        assert updated.ladder.published_at is not None

    async def test_blank_slug_clears_it(self, ladder_ops):
        detail = await make_ladder(ladder_ops)
        updated = await ladder_ops.update_ladder(OWNER_ID, detail.ladder.id, {"slug": "  "})
        assert updated.ladder.slug is None

    async def test_scoring_config_update(self, ladder_ops):
        detail = await make_ladder(ladder_ops)
        updated = await ladder_ops.update_ladder(
            OWNER_ID, detail.ladder.id, {"config": {"scoring": {"system": "simple"}}}
        )
        assert updated.ladder.scoring.system.value == "simple"

    async def test_members_replaced_when_given(self, ladder_ops):
        detail = await make_ladder(ladder_ops)
        updated = await ladder_ops.update_ladder(
            OWNER_ID, detail.ladder.id, members=roster("Delta", "Echo")
        )
        assert [member.display_name for member in updated.members] == ["Delta", "Echo"]

    async def test_unknown_fields_rejected(self, ladder_ops):
        detail = await make_ladder(ladder_ops)
        with pytest.raises(InvalidInputError):
            await ladder_ops.update_ladder(OWNER_ID, detail.ladder.id, {"version": 99})

    async def test_requires_manager(self, ladder_ops):
        detail = await make_ladder(ladder_ops)
        with pytest.raises(ForbiddenError):
            await ladder_ops.update_ladder("user-alpha", detail.ladder.id, {"name": "Hijacked"})

    async def test_missing_ladder(self, ladder_ops):
        with pytest.raises(NotFoundError):
            await ladder_ops.update_ladder(OWNER_ID, "nope", {"name": "X"})


class TestReadAndDelete:
    """get_ladder, list_ladders and delete_ladder"""

    async def test_get_with_members(self, ladder_ops):
        detail = await make_ladder(ladder_ops)

        fetched = await ladder_ops.get_ladder("user-alpha", detail.ladder.id, include_members=True)

        assert fetched.ladder.id == detail.ladder.id
        assert [member.display_name for member in fetched.members] == ["Alpha", "Bravo"]

    async def test_draft_hidden_from_members(self, ladder_ops):
        detail = await make_ladder(ladder_ops, publish=False)
        with pytest.raises(ForbiddenError):
            await ladder_ops.get_ladder("user-alpha", detail.ladder.id)

    async def test_list_filters_by_role(self, ladder_ops):
        active = await make_ladder(ladder_ops)
        draft = await make_ladder(ladder_ops, publish=False)
        archived = await make_ladder(ladder_ops)
        await ladder_ops.update_ladder(OWNER_ID, archived.ladder.id, archive=True)

        manager_view = {ladder.id for ladder in await ladder_ops.list_ladders(OWNER_ID, CAPSULE_ID)}
        member_view = {ladder.id for ladder in await ladder_ops.list_ladders("user-alpha", CAPSULE_ID)}
        with_archive = {
            ladder.id for ladder in
            await ladder_ops.list_ladders("user-alpha", CAPSULE_ID, include_archived=True)
        }

        assert manager_view == {active.ladder.id, draft.ladder.id, archived.ladder.id}
        assert member_view == {active.ladder.id}
        assert with_archive == {active.ladder.id, archived.ladder.id}

    async def test_outsider_sees_public_only(self, ladder_ops):
        public = await make_ladder(ladder_ops, visibility="public")
        await make_ladder(ladder_ops)

        visible = await ladder_ops.list_ladders(None, CAPSULE_ID)
        assert [ladder.id for ladder in visible] == [public.ladder.id]

    async def test_delete(self, ladder_ops, challenge_ops):
        detail = await make_ladder(ladder_ops)
        members = {member.display_name: member for member in detail.members}
        await challenge_ops.create_challenge(
            OWNER_ID, detail.ladder.id, members["Alpha"].id, members["Bravo"].id
        )

        with pytest.raises(ForbiddenError):
            await ladder_ops.delete_ladder("user-alpha", detail.ladder.id)

        assert await ladder_ops.delete_ladder(OWNER_ID, detail.ladder.id) is True
        with pytest.raises(NotFoundError):
            await ladder_ops.get_ladder(OWNER_ID, detail.ladder.id)


class TestRecentLadders:
    """list_recent_ladders merges rostered and capsule ladders"""

    async def test_merges_participation_and_capsule_ladders(self, oracle, ladder_ops):
        oracle.grant("capsule-2", OWNER_ID, "owner")
        home = await make_ladder(ladder_ops, names=("Alpha", "Bravo"))
        spectated = await make_ladder(ladder_ops, names=("Bravo", "Charlie"))
        away = await ladder_ops.create_ladder(
            OWNER_ID, "capsule-2", name="Away", visibility="public", publish=True, members=roster("Alpha")
        )
        # rostered but hidden, archived, unpublished or not a ladder
        await ladder_ops.create_ladder(
            OWNER_ID, "capsule-2", name="Closed", publish=True, members=roster("Alpha")
        )
        archived = await make_ladder(ladder_ops)
        await ladder_ops.update_ladder(OWNER_ID, archived.ladder.id, archive=True)
        await make_ladder(ladder_ops, publish=False)
        await make_ladder(ladder_ops, meta={"variant": "tournament"})

        recent = await ladder_ops.list_recent_ladders("user-alpha")

        assert sorted(ladder.id for ladder in recent) == sorted(
            [home.ladder.id, spectated.ladder.id, away.ladder.id]
        )
        stamps = [ladder.published_at or ladder.created_at for ladder in recent]
        assert stamps == sorted(stamps, reverse=True)

    async def test_limit_is_clamped(self, ladder_ops):
        for _ in range(3):
            await make_ladder(ladder_ops)

        assert len(await ladder_ops.list_recent_ladders("user-alpha", limit=0)) == 1
        assert len(await ladder_ops.list_recent_ladders("user-alpha", limit=2)) == 2
        assert len(await ladder_ops.list_recent_ladders("user-alpha", limit=1000)) == 3
        assert len(await ladder_ops.list_recent_ladders("user-alpha", limit="lots")) == 3

    async def test_anonymous_viewer_gets_nothing(self, ladder_ops):
        await make_ladder(ladder_ops, visibility="public")
        assert await ladder_ops.list_recent_ladders(None) == []
        assert await ladder_ops.list_recent_ladders("   ") == []

    async def test_participation_query_returns_membership_rows(self, db, ladder_ops):
        first = await make_ladder(ladder_ops)
        second = await make_ladder(ladder_ops)

        async with db.get_session() as session:
            rows = await MemberRepository().list_by_user(session, "user-bravo", limit=10)

        assert {ladder.id for _, ladder in rows} == {first.ladder.id, second.ladder.id}
        assert all(member.user_id == "user-bravo" and member.ladder_id == ladder.id for member, ladder in rows)
