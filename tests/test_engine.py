"""
End-to-end test of the LadderEngine facade with the database-backed oracle.
"""

from ladder import LadderEngine
from ladder.database.repositories import CapsuleMembershipRepository
from tests.conftest import CAPSULE_ID, OWNER_ID, RecordingSink, by_name, make_ladder


async def test_engine_runs_a_challenge_end_to_end(tmp_path):
    sink = RecordingSink()

    async with LadderEngine(f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}", sink=sink) as engine:
        async with engine.db.transaction() as session:
            await CapsuleMembershipRepository().upsert(session, CAPSULE_ID, OWNER_ID, "owner")

        detail = await make_ladder(engine.ladders)
        members = by_name(detail.members)
        challenge = await engine.challenges.create_challenge(
            OWNER_ID, detail.ladder.id, members["Bravo"].id, members["Alpha"].id
        )
        resolution = await engine.challenges.resolve_challenge(
            OWNER_ID, detail.ladder.id, challenge.id, "challenger"
        )
        await engine.dispatcher.drain()

    assert [member.display_name for member in resolution.members] == ["Bravo", "Alpha"]
    assert len(resolution.history) == 1
    assert sink.types() == ["challenge.created", "challenge.resolved"]
    assert {owner for owner, _ in sink.events} == {OWNER_ID}
