from __future__ import annotations

from typing import Dict, List, Optional

import pytest

from pdsync.errors import NotFoundError
from pdsync.models import Channel, ChatUser, DesiredGroupMembership, ProviderUser, Schedule, UserGroup


class FakePagerDuty:
    def __init__(self) -> None:
        self.schedules: Dict[str, Schedule] = {}
        self.on_call: Dict[str, ProviderUser] = {}
        self.failing_schedules: Dict[str, Exception] = {}
        self.schedule_lookups: List[tuple] = []
        self.on_call_lookups: List[str] = []

    def add_schedule(self, schedule_id: str, name: str, on_call: Optional[ProviderUser] = None) -> None:
        self.schedules[schedule_id] = Schedule(id=schedule_id, name=name)
        if on_call is not None:
            self.on_call[schedule_id] = on_call

    def get_schedule(self, schedule_id: str = "", name: str = "") -> Optional[Schedule]:
        self.schedule_lookups.append((schedule_id, name))
        if schedule_id:
            found = self.schedules.get(schedule_id)
        else:
            found = next((s for s in self.schedules.values() if s.name == name), None)
        if found is None:
            return None
        return Schedule(id=found.id, name=found.name)

    def get_on_call_user(self, schedule: Schedule) -> ProviderUser:
        self.on_call_lookups.append(schedule.id)
        if schedule.id in self.failing_schedules:
            raise self.failing_schedules[schedule.id]
        if schedule.id not in self.on_call:
            raise NotFoundError(f"no on-call user found for schedule {schedule}")
        return self.on_call[schedule.id]


class FakeSlack:
    def __init__(self) -> None:
        self.users: List[ChatUser] = []
        self.groups: List[UserGroup] = []
        self.channels: List[Channel] = []
        self.join_error: Optional[Exception] = None
        self.membership_error: Optional[Exception] = None
        self.topic_error: Optional[Exception] = None
        self.joined: List[str] = []
        self.membership_calls: List[tuple] = []
        self.topic_calls: List[tuple] = []

    def list_users(self) -> List[ChatUser]:
        return list(self.users)

    def list_user_groups(self) -> List[UserGroup]:
        return list(self.groups)

    def list_channels(self) -> List[Channel]:
        return list(self.channels)

    def join_channel(self, channel_id: str) -> bool:
        if self.join_error is not None:
            raise self.join_error
        self.joined.append(channel_id)
        return True

    def update_group_membership(self, membership: DesiredGroupMembership, dry_run: bool) -> None:
        self.membership_calls.append((membership.as_dict(), dry_run))
        if self.membership_error is not None:
            raise self.membership_error

    def update_topic(self, channel_id: str, text: str, dry_run: bool) -> None:
        self.topic_calls.append((channel_id, text, dry_run))
        if self.topic_error is not None:
            raise self.topic_error

    @property
    def applied_memberships(self) -> List[dict]:
        return [m for m, dry_run in self.membership_calls if not dry_run]

    @property
    def published_topics(self) -> List[tuple]:
        return [(c, t) for c, t, dry_run in self.topic_calls if not dry_run]


ALICE_PD = ProviderUser(id="PA", name="Alice", email="alice@example.com")
BOB_PD = ProviderUser(id="PB", name="Bob", email="Bob@Example.com")
CAROL_PD = ProviderUser(id="PC", name="Carol", email="carol@example.com")


@pytest.fixture
def pagerduty() -> FakePagerDuty:
    pd = FakePagerDuty()
    pd.add_schedule("S1", "Primary", on_call=ALICE_PD)
    pd.add_schedule("S2", "Secondary On-Call", on_call=BOB_PD)
    pd.add_schedule("S3", "Platform", on_call=CAROL_PD)
    return pd


@pytest.fixture
def slack() -> FakeSlack:
    sl = FakeSlack()
    sl.users = [
        ChatUser(id="UALICE", name="Alice", email="alice@example.com"),
        ChatUser(id="UBOB", name="Bob", email="bob@example.com"),
        ChatUser(id="UCAROL", name="Carol", email="carol@example.com"),
    ]
    sl.groups = [
        UserGroup(id="G1", name="Team A On-Call", handle="team-a-oncall"),
        UserGroup(id="G2", name="Team B On-Call", handle="team-b-oncall"),
        UserGroup(id="G3", name="Everyone On-Call", handle="all-oncall"),
    ]
    sl.channels = [Channel(id="C1", name="team-a"), Channel(id="C2", name="team-b")]
    return sl

