from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple


@dataclass(frozen=True)
class JobState:
    PENDING: str = "pending"
    JOINING_CHANNEL: str = "joining channel"
    UPDATING_MEMBERSHIP: str = "updating membership"
    UPDATING_TOPIC: str = "updating topic"
    DONE: str = "done"
    FAILED: str = "failed"
    SKIPPED: str = "skipped"


@dataclass(frozen=True)
class GroupReference:
    """A configured user group, identified by exactly one of id, name or handle."""
    id: str = ""
    name: str = ""
    handle: str = ""

    def discriminants(self) -> List[str]:
        return [k for k in ("id", "name", "handle") if getattr(self, k)]

    def __str__(self) -> str:
        return f"{{ID:{self.id} Name:{self.name!r} Handle:{self.handle}}}"


@dataclass(frozen=True)
class ScheduleReference:
    """A configured schedule (id or name) plus the groups tracking its on-call user."""
    id: str = ""
    name: str = ""
    user_groups: Tuple[GroupReference, ...] = ()

    def __str__(self) -> str:
        return f"{{ID:{self.id} Name:{self.name!r}}}"


@dataclass(frozen=True)
class ChannelReference:
    id: str = ""
    name: str = ""

    def __str__(self) -> str:
        return f"{{ID:{self.id} Name:{self.name!r}}}"


@dataclass(frozen=True)
class UserGroup:
    id: str
    name: str
    handle: str

    def __str__(self) -> str:
        return f"{{ID:{self.id} Name:{self.name!r} Handle:{self.handle}}}"


@dataclass(frozen=True)
class Channel:
    id: str
    name: str


@dataclass(frozen=True)
class ChatUser:
    id: str
    name: str
    email: str


@dataclass(frozen=True)
class ProviderUser:
    id: str
    name: str
    email: str

    def __str__(self) -> str:
        return f"{{ID:{self.id} Name:{self.name!r} Email:{self.email}}}"


@dataclass
class Schedule:
    """A provider schedule with the resolved user groups that track it."""
    id: str
    name: str
    user_groups: List[UserGroup] = field(default_factory=list)

    def add_user_groups(self, groups: List[UserGroup]) -> None:
        known = {ug.id for ug in self.user_groups}
        for ug in groups:
            if ug.id not in known:
                self.user_groups.append(ug)
                known.add(ug.id)

    def __str__(self) -> str:
        return f"{{ID:{self.id} Name:{self.name!r}}}"


class ScheduleSet:
    """Schedules keyed by provider id, in order of first appearance.

    Adding a schedule that is already present unions its user groups into the
    existing entry instead of creating a duplicate.
    """

    def __init__(self) -> None:
        self._schedules: Dict[str, Schedule] = {}

    def ensure(self, schedule: Schedule) -> Schedule:
        existing = self._schedules.get(schedule.id)
        if existing is None:
            existing = Schedule(id=schedule.id, name=schedule.name)
            self._schedules[schedule.id] = existing
        existing.add_user_groups(schedule.user_groups)
        return existing

    def get(self, schedule_id: str) -> Optional[Schedule]:
        return self._schedules.get(schedule_id)

    def __iter__(self) -> Iterator[Schedule]:
        return iter(self._schedules.values())

    def __len__(self) -> int:
        return len(self._schedules)

    def __contains__(self, schedule_id: object) -> bool:
        return schedule_id in self._schedules


class DesiredGroupMembership:
    """Resolved user group -> set of chat user IDs that must be members."""

    def __init__(self) -> None:
        self._groups: Dict[str, UserGroup] = {}
        self._members: Dict[str, Set[str]] = {}

    def ensure_member(self, group: UserGroup, user_id: str) -> None:
        if group.id not in self._groups:
            self._groups[group.id] = group
            self._members[group.id] = set()
        self._members[group.id].add(user_id)

    def members(self, group_id: str) -> Set[str]:
        return set(self._members.get(group_id, set()))

    def items(self) -> Iterator[Tuple[UserGroup, Set[str]]]:
        for group_id, group in self._groups.items():
            yield group, set(self._members[group_id])

    def as_dict(self) -> Dict[str, Set[str]]:
        return {group_id: set(members) for group_id, members in self._members.items()}

    def __len__(self) -> int:
        return len(self._groups)
