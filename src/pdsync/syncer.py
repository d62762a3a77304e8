"""Sync orchestrator.

Jobs run strictly one after another in configuration order. Each job walks
``pending -> joining channel -> updating membership -> updating topic -> done`` and
lands in ``failed`` on the first job-fatal error. A failure either aborts the run
(fail-fast, or the run was cancelled) or is logged and the next job starts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
from typing import List, Optional, Protocol, Sequence, Tuple

from .aggregator import ScheduleAggregator, ScheduleProvider
from .config import SyncJobConfig
from .errors import (
    ApiError,
    ConfigurationError,
    JobError,
    MissingPermissionError,
    NotFoundError,
    SyncError,
)
from .models import Channel, ChatUser, JobState, UserGroup
from .reconcile import ChatPlatform, OnCallProvider, PreparedJob, Reconciler
from .resolver import resolve_channel

logger = logging.getLogger(__name__)


class SlackLike(ChatPlatform, Protocol):
    def list_users(self) -> List[ChatUser]: ...

    def list_user_groups(self) -> List[UserGroup]: ...

    def list_channels(self) -> List[Channel]: ...


@dataclass
class JobResult:
    name: str
    state: str = JobState.PENDING
    dry_run: bool = False
    error: Optional[str] = None
    groups_updated: int = 0
    topic: Optional[str] = None


@dataclass
class RunReport:
    results: List[JobResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failed(self) -> List[JobResult]:
        return [r for r in self.results if r.state == JobState.FAILED]

    @property
    def succeeded(self) -> List[JobResult]:
        return [r for r in self.results if r.state == JobState.DONE]


def prepare_jobs(
    jobs: Sequence[SyncJobConfig],
    provider: ScheduleProvider,
    chat: SlackLike,
    log: Optional[logging.Logger] = None,
) -> Tuple[List[PreparedJob], List[ChatUser]]:
    """Resolve channels, user groups and schedules for every job before any job runs.

    Returns the prepared jobs and the chat users known at preparation time. Any
    failure is a ConfigurationError.
    """
    log = log or logger

    try:
        log.info("Getting Slack users")
        users = chat.list_users()
        log.info("Getting Slack user groups")
        groups = chat.list_user_groups()
        channels: List[Channel] = []
        if any(job.channel is not None for job in jobs):
            log.info("Getting Slack channels")
            channels = chat.list_channels()
    except SyncError as e:
        raise ConfigurationError(f"failed to load Slack data: {e}") from e

    aggregator = ScheduleAggregator(provider, groups, log=log)
    prepared: List[PreparedJob] = []
    for job in jobs:
        channel = None
        try:
            if job.channel is not None:
                channel = resolve_channel(job.channel, channels)
                log.info("Slack sync %s: found Slack channel %r (ID %s)", job.name, channel.name, channel.id)
            schedules = aggregator.aggregate(job)
        except (NotFoundError, ApiError) as e:
            raise ConfigurationError(f"failed to create slack sync {job.name!r}: {e}") from e

        prepared.append(PreparedJob(
            name=job.name,
            schedules=schedules,
            channel=channel,
            template=job.template,
            dry_run=job.dry_run,
            pretend_users=job.pretend_users,
        ))

    log.info("Found %d distinct PagerDuty schedule(s) across %d Slack sync(s)",
             len(aggregator.all_schedules), len(prepared))
    return prepared, users


class Syncer:
    def __init__(
        self,
        provider: OnCallProvider,
        chat: ChatPlatform,
        known_users: Sequence[ChatUser],
        log: Optional[logging.Logger] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.chat = chat
        self.log = log or logger
        self.cancel_event = cancel_event or threading.Event()
        self.reconciler = Reconciler(provider, chat, known_users, log=self.log)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def run(self, jobs: Sequence[PreparedJob], fail_fast: bool = False) -> RunReport:
        """Run every job in order.

        Raises JobError when a job fails and either fail_fast is set or the run has
        been cancelled; otherwise failures are logged and recorded in the report.
        """
        report = RunReport(results=[JobResult(name=job.name, dry_run=job.dry_run) for job in jobs])

        for i, job in enumerate(jobs):
            result = report.results[i]
            if self.cancelled:
                self.log.warning("Run cancelled, not starting Slack sync %s", job.name)
                report.cancelled = True
                _mark_skipped(report.results[i:])
                break

            try:
                self.run_job(job, result)
            except SyncError as e:
                err = JobError(job.name, e)
                result.state = JobState.FAILED
                result.error = str(e)
                if fail_fast or self.cancelled:
                    report.cancelled = self.cancelled
                    _mark_skipped(report.results[i + 1:])
                    raise err from e

                msg = str(err)
                self.log.error("%s", msg[0].upper() + msg[1:])

        return report

    def run_job(self, job: PreparedJob, result: Optional[JobResult] = None) -> JobResult:
        result = result or JobResult(name=job.name, dry_run=job.dry_run)

        result.state = JobState.JOINING_CHANNEL
        self.join_channel(job)

        result.state = JobState.UPDATING_MEMBERSHIP
        snapshot = self.reconciler.collect_on_call(job)
        self.reconciler.update_membership(job, snapshot.membership)
        result.groups_updated = len(snapshot.membership)

        result.state = JobState.UPDATING_TOPIC
        result.topic = self.reconciler.update_topic(job, snapshot)

        result.state = JobState.DONE
        return result

    def join_channel(self, job: PreparedJob) -> None:
        if job.dry_run:
            return

        if job.channel is None:
            self.log.info("No channel for %s slack sync, so skip joining", job.name)
            return

        channel_id = job.channel.id
        try:
            joined = self.chat.join_channel(channel_id)
        except MissingPermissionError:
            self.log.warning(
                'Cannot automatically join channel with ID %s because of missing scope "channels:join" '
                "-- please add the scope or join pdsync manually",
                channel_id,
            )
            return
        except ApiError as e:
            raise ApiError(f"failed to join channel with ID {channel_id}: {e}") from e

        if joined:
            self.log.info("Joined channel with ID %s", channel_id)


def _mark_skipped(results: List[JobResult]) -> None:
    for r in results:
        if r.state == JobState.PENDING:
            r.state = JobState.SKIPPED
