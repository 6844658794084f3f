"""
Pytest configuration and fixtures for the ladder engine tests.

Integration tests run against a throwaway file-backed SQLite database per
test. The permission oracle and the event sink are replaced with in-memory
fakes so tests control capsule roles and can inspect delivered events.
"""

from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from ladder.database.database import Database
from ladder.operations.challenge_operations import ChallengeOperations
from ladder.operations.ladder_operations import LadderOperations
from ladder.operations.roster_operations import RosterOperations
from ladder.services.access import PermissionOracle, ViewerContext
from ladder.services.events import EventDispatcher, EventSink, LadderEvent

CAPSULE_ID = "capsule-1"
OWNER_ID = "owner-1"


class FakePermissionOracle(PermissionOracle):
    """Capsule roles kept in a dict: (capsule_id, user_id) -> role."""

    def __init__(self):
        self.roles: Dict[Tuple[str, str], str] = {}

    def grant(self, capsule_id: str, user_id: str, role: str = "member"):
        self.roles[(capsule_id, user_id)] = role

    async def resolve_viewer(self, capsule_id, user_id):
        if not user_id:
            return ViewerContext(capsule_id=capsule_id)
        role = self.roles.get((capsule_id, user_id))
        return ViewerContext(
            capsule_id=capsule_id,
            viewer_id=user_id,
            role=role,
            is_owner=role == "owner",
            is_member=role is not None,
        )

    async def list_capsule_ids(self, user_id):
        return sorted({capsule for capsule, user in self.roles if user == user_id})


class RecordingSink(EventSink):
    """Keeps every published event; can be told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: List[Tuple[str, LadderEvent]] = []

    async def publish(self, owner_id, event):
        if self.fail:
            raise RuntimeError("event broker unavailable")
        self.events.append((owner_id, event))

    def types(self) -> List[str]:
        return [event.type for _, event in self.events]


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh database per test"""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'ladder.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def oracle():
    fake = FakePermissionOracle()
    fake.grant(CAPSULE_ID, OWNER_ID, "owner")
    fake.grant(CAPSULE_ID, "user-alpha")
    fake.grant(CAPSULE_ID, "user-bravo")
    fake.grant(CAPSULE_ID, "user-charlie")
    return fake


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def dispatcher(sink):
    return EventDispatcher(sink)


@pytest.fixture
def roster_ops(db, oracle, dispatcher):
    return RosterOperations(db, oracle, dispatcher)


@pytest.fixture
def ladder_ops(db, oracle, dispatcher, roster_ops):
    return LadderOperations(db, oracle, dispatcher, roster=roster_ops)


@pytest.fixture
def challenge_ops(db, oracle, dispatcher):
    return ChallengeOperations(db, oracle, dispatcher)


def roster(*names: str, capsules: bool = False) -> List[dict]:
    """Member payloads with user ids derived from the names."""
    members = []
    for name in names:
        member = {"display_name": name, "user_id": f"user-{name.lower()}"}
        if capsules:
            member["metadata"] = {"capsuleId": f"cap-{name.lower()}"}
        members.append(member)
    return members


async def make_ladder(ladder_ops: LadderOperations, system: str = "elo", names=("Alpha", "Bravo"),
                      publish: bool = True, scoring: Optional[dict] = None, **kwargs):
    config = {"scoring": {"system": system, **(scoring or {})}}
    return await ladder_ops.create_ladder(
        OWNER_ID, CAPSULE_ID, name=f"{system.title()} Ladder", config=config,
        publish=publish, members=roster(*names, capsules=kwargs.pop("capsules", False)), **kwargs
    )


def by_name(members) -> dict:
    return {member.display_name: member for member in members}
