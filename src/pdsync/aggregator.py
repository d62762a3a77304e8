from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from .config import SyncJobConfig
from .errors import ApiError, NotFoundError
from .models import Schedule, ScheduleReference, ScheduleSet, UserGroup
from .resolver import resolve_group

logger = logging.getLogger(__name__)


class ScheduleProvider(Protocol):
    def get_schedule(self, schedule_id: str = "", name: str = "") -> Optional[Schedule]: ...


class ScheduleAggregator:
    """Turns configured schedule entries into deduplicated, group-annotated schedules.

    Provider lookups are cached for the lifetime of the aggregator (one run), and
    every aggregated schedule is also folded into ``all_schedules``, the run-wide set.
    """

    def __init__(
        self,
        provider: ScheduleProvider,
        known_groups: Sequence[UserGroup],
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.provider = provider
        self.known_groups = list(known_groups)
        self.log = log or logger
        self.all_schedules = ScheduleSet()
        self._lookups: Dict[Tuple[str, str], Schedule] = {}

    def lookup(self, ref: ScheduleReference) -> Schedule:
        key = (ref.id, ref.name)
        cached = self._lookups.get(key)
        if cached is not None:
            return cached

        try:
            found = self.provider.get_schedule(schedule_id=ref.id, name=ref.name)
        except ApiError as e:
            raise ApiError(f"failed to get schedule {ref}: {e}") from e
        if found is None:
            raise NotFoundError(f"schedule {ref} not found")

        self._lookups[key] = found
        return found

    def aggregate(self, job: SyncJobConfig) -> ScheduleSet:
        schedules = ScheduleSet()
        self.log.info("Slack sync %s: Getting PagerDuty schedules", job.name)

        for ref in job.schedules:
            provider_schedule = self.lookup(ref)

            groups: List[UserGroup] = []
            for group_ref in ref.user_groups:
                ug = resolve_group(group_ref, self.known_groups)
                self.log.info(
                    "Slack sync %s: assigning user group %s to schedule %s", job.name, ug, provider_schedule
                )
                groups.append(ug)

            entry = Schedule(id=provider_schedule.id, name=provider_schedule.name, user_groups=groups)
            schedules.ensure(entry)
            self.all_schedules.ensure(entry)

        self.log.info("Slack sync %s: found %d PagerDuty schedule(s)", job.name, len(schedules))
        return schedules
