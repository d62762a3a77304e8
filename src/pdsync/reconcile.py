"""Reconciliation engine.

For one prepared job: resolve the on-call user of every schedule, accumulate the
desired membership of each user group, hand the whole mapping to the chat platform
in a single call, then render and publish the channel topic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Dict, Optional, Protocol, Sequence

from .errors import ApiError, MutationError, NotFoundError, TemplateError
from .models import (
    Channel,
    ChatUser,
    DesiredGroupMembership,
    ProviderUser,
    Schedule,
    ScheduleSet,
)
from .resolver import resolve_user
from .topic import TopicTemplate, sanitize_schedule_name

logger = logging.getLogger(__name__)


class OnCallProvider(Protocol):
    def get_on_call_user(self, schedule: Schedule) -> ProviderUser: ...


class ChatPlatform(Protocol):
    def join_channel(self, channel_id: str) -> bool: ...

    def update_group_membership(self, membership: DesiredGroupMembership, dry_run: bool) -> None: ...

    def update_topic(self, channel_id: str, text: str, dry_run: bool) -> None: ...


@dataclass
class PreparedJob:
    """A validated job with its schedules, groups and channel resolved."""
    name: str
    schedules: ScheduleSet
    channel: Optional[Channel] = None
    template: Optional[TopicTemplate] = None
    dry_run: bool = False
    pretend_users: bool = False


@dataclass
class OnCallSnapshot:
    membership: DesiredGroupMembership = field(default_factory=DesiredGroupMembership)
    # sanitized schedule name -> Slack user ID as it should appear in the topic
    topic_values: Dict[str, str] = field(default_factory=dict)
    collisions: Dict[str, list] = field(default_factory=dict)


class Reconciler:
    def __init__(
        self,
        provider: OnCallProvider,
        chat: ChatPlatform,
        known_users: Sequence[ChatUser],
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.provider = provider
        self.chat = chat
        self.known_users = list(known_users)
        self.log = log or logger

    def collect_on_call(self, job: PreparedJob) -> OnCallSnapshot:
        snapshot = OnCallSnapshot()
        key_sources: Dict[str, str] = {}

        for schedule in job.schedules:
            self.log.info("Processing schedule %s", schedule)
            try:
                on_call_user = self.provider.get_on_call_user(schedule)
            except NotFoundError as e:
                raise NotFoundError(f"failed to get on call user for schedule {schedule.name!r}: {e}") from e
            except ApiError as e:
                raise ApiError(f"failed to get on call user for schedule {schedule.name!r}: {e}") from e

            sl_user = resolve_user(on_call_user, self.known_users)

            for user_group in schedule.user_groups:
                self.log.info("Ensuring member %s for user group %s", sl_user.id, user_group)
                snapshot.membership.ensure_member(user_group, sl_user.id)

            topic_value = sl_user.id
            if job.pretend_users:
                topic_value = "\\" + topic_value

            key = sanitize_schedule_name(schedule.name)
            if key in key_sources:
                # First schedule keeps the key.
                snapshot.collisions.setdefault(key, [key_sources[key]]).append(schedule.name)
                self.log.warning(
                    "Slack sync %s: schedule %r and %r both map to template key %r; keeping %r",
                    job.name, key_sources[key], schedule.name, key, key_sources[key],
                )
                continue
            key_sources[key] = schedule.name
            snapshot.topic_values[key] = topic_value

        return snapshot

    def update_membership(self, job: PreparedJob, membership: DesiredGroupMembership) -> None:
        if job.dry_run:
            self.log.info("Slack sync %s: dry run, not applying user group membership changes", job.name)
        try:
            self.chat.update_group_membership(membership, dry_run=job.dry_run)
        except (ApiError, MutationError) as e:
            raise MutationError(f"failed to update on-call user group members: {e}") from e

    def render_topic(self, job: PreparedJob, snapshot: OnCallSnapshot) -> Optional[str]:
        if job.template is None:
            return None

        if snapshot.collisions:
            names = "; ".join(
                f"{key}: {', '.join(repr(n) for n in sources)}" for key, sources in snapshot.collisions.items()
            )
            raise TemplateError(f"ambiguous template keys for schedules ({names})")

        self.log.info(
            "Executing template with Slack user IDs by schedule name: %s", snapshot.topic_values
        )
        return job.template.render(snapshot.topic_values)

    def update_topic(self, job: PreparedJob, snapshot: OnCallSnapshot) -> Optional[str]:
        if job.template is None or job.channel is None:
            self.log.info("Skipping topic update")
            return None

        try:
            topic = self.render_topic(job, snapshot)
        except TemplateError as e:
            raise TemplateError(f"failed to render template: {e}") from e

        try:
            self.chat.update_topic(job.channel.id, topic, dry_run=job.dry_run)
        except (ApiError, MutationError) as e:
            raise MutationError(f"failed to update topic: {e}") from e
        return topic
