from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError, TemplateError
from .models import ChannelReference, GroupReference, ScheduleReference
from .topic import TopicTemplate

logger = logging.getLogger(__name__)

DEFAULT_SYNC_NAME = "default"
DEFAULT_DAEMON_UPDATE_FREQUENCY = 300


@dataclass
class SyncJobConfig:
    name: str
    schedules: List[ScheduleReference] = field(default_factory=list)
    channel: Optional[ChannelReference] = None
    template_source: Optional[str] = None
    template: Optional[TopicTemplate] = None  # set by validate_config
    pretend_users: bool = False
    dry_run: bool = False


@dataclass
class Params:
    """Raw command line parameters."""
    config: Optional[str] = None
    schedules: List[str] = field(default_factory=list)
    channel_id: str = ""
    channel_name: str = ""
    template: str = ""
    template_file: str = ""
    dry_run: Optional[bool] = None
    pretend_users: Optional[bool] = None
    fail_fast: bool = False
    daemon: bool = False
    daemon_update_frequency: int = DEFAULT_DAEMON_UPDATE_FREQUENCY


@dataclass
class Config:
    pagerduty_token: str
    slack_token: str
    jobs: List[SyncJobConfig]
    fail_fast: bool = False
    daemon: bool = False
    daemon_update_frequency: int = DEFAULT_DAEMON_UPDATE_FREQUENCY


def load_tokens() -> Dict[str, str]:
    """Load API tokens from environment variables / .env file."""

    load_dotenv()

    tokens: Dict[str, str] = {}
    for env_name in ("PAGERDUTY_TOKEN", "SLACK_TOKEN"):
        value = os.getenv(env_name)
        if not value:
            raise ConfigurationError(f"{env_name} must be set in environment or .env file.")
        tokens[env_name] = value
    return tokens


def load_config(params: Params) -> Config:
    tokens = load_tokens()
    jobs = generate_jobs(params)
    validate_config(jobs)

    if params.daemon_update_frequency <= 0:
        raise ConfigurationError("daemon update frequency must be positive")

    return Config(
        pagerduty_token=tokens["PAGERDUTY_TOKEN"],
        slack_token=tokens["SLACK_TOKEN"],
        jobs=jobs,
        fail_fast=params.fail_fast,
        daemon=params.daemon,
        daemon_update_frequency=params.daemon_update_frequency,
    )


def generate_jobs(params: Params) -> List[SyncJobConfig]:
    """Build job configurations from a config file or from single-sync flags."""
    if params.config:
        jobs = read_config_file(params.config)
    else:
        template = params.template
        if params.template_file:
            try:
                with open(params.template_file, "r", encoding="utf-8") as f:
                    template = f.read()
            except OSError as e:
                raise ConfigurationError(f"failed to read template file {params.template_file}: {e}") from e
        jobs = [single_slack_sync(params.schedules, params.channel_id, params.channel_name, template)]

    # Globally defined parameters override per-sync ones.
    apply_overrides(jobs, dry_run=params.dry_run, pretend_users=params.pretend_users)
    return jobs


def apply_overrides(
    jobs: List[SyncJobConfig],
    dry_run: Optional[bool] = None,
    pretend_users: Optional[bool] = None,
) -> None:
    for job in jobs:
        if pretend_users is not None:
            job.pretend_users = pretend_users
        if dry_run is not None:
            job.dry_run = dry_run


def read_config_file(path: str) -> List[SyncJobConfig]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"failed to read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"failed to parse config file {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping at the top level")

    raw_syncs = data.get("slackSyncs") or []
    if not isinstance(raw_syncs, list):
        raise ConfigurationError(f"config file {path}: slackSyncs must be a list")

    return [_job_from_dict(raw) for raw in raw_syncs]


def _job_from_dict(raw: Any) -> SyncJobConfig:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"slack sync entry {raw!r} must be a mapping")

    name = str(raw.get("name") or "")

    schedules: List[ScheduleReference] = []
    for raw_schedule in raw.get("schedules") or []:
        if not isinstance(raw_schedule, dict):
            raise ConfigurationError(f"slack sync {name!r}: schedule entry {raw_schedule!r} must be a mapping")
        groups = []
        for raw_group in raw_schedule.get("userGroups") or []:
            if not isinstance(raw_group, dict):
                raise ConfigurationError(f"slack sync {name!r}: user group entry {raw_group!r} must be a mapping")
            unexpected = set(raw_group) - {"id", "name", "handle"}
            if unexpected:
                raise ConfigurationError(
                    f"slack sync {name!r}: user group {raw_group!r} has unexpected key {sorted(unexpected)[0]!r}"
                )
            groups.append(GroupReference(
                id=_str(raw_group.get("id")),
                name=_str(raw_group.get("name")),
                handle=_str(raw_group.get("handle")),
            ))
        schedules.append(ScheduleReference(
            id=_str(raw_schedule.get("id")),
            name=_str(raw_schedule.get("name")),
            user_groups=tuple(groups),
        ))

    channel = None
    raw_channel = raw.get("channel")
    if raw_channel is not None:
        if not isinstance(raw_channel, dict):
            raise ConfigurationError(f"slack sync {name!r}: channel must be a mapping with id or name")
        channel = ChannelReference(id=_str(raw_channel.get("id")), name=_str(raw_channel.get("name")))

    template = raw.get("template")
    if template is not None and not isinstance(template, str):
        raise ConfigurationError(f"slack sync {name!r}: template must be a string, got {template!r}")

    return SyncJobConfig(
        name=name,
        schedules=schedules,
        channel=channel,
        template_source=template or None,
        pretend_users=_flag(raw, "pretendUsers", name),
        dry_run=_flag(raw, "dryRun", name),
    )


def _str(value: Any) -> str:
    return "" if value is None else str(value)


def _flag(raw: Dict[str, Any], key: str, sync_name: str) -> bool:
    value = raw.get(key)
    if value is None:
        return False
    # quoted "false" would otherwise be truthy
    if not isinstance(value, bool):
        raise ConfigurationError(f"slack sync {sync_name!r}: {key} must be true or false, got {value!r}")
    return value


def single_slack_sync(
    schedules: List[str],
    channel_id: str = "",
    channel_name: str = "",
    template: str = "",
) -> SyncJobConfig:
    job = SyncJobConfig(name=DEFAULT_SYNC_NAME)

    if channel_id or channel_name:
        job.channel = ChannelReference(id=channel_id, name=channel_name)
    if template:
        job.template_source = template

    for schedule in schedules:
        job.schedules.append(parse_schedule(schedule))

    return job


def parse_schedule(schedule: str) -> ScheduleReference:
    """Parse a schedule specifier like ``id=P123;userGroup=handle=team-oncall``."""
    kvs: Dict[str, List[str]] = {}
    for elem in schedule.split(";"):
        key, sep, value = elem.partition("=")
        if not sep:
            raise ConfigurationError(f"missing separator on element {elem!r}")
        kvs.setdefault(key, []).append(value)

    schedule_id = ""
    ids = kvs.pop("id", [])
    if len(ids) > 1:
        raise ConfigurationError('multiple values for key "id" not allowed')
    if ids:
        schedule_id = ids[0]

    name = ""
    names = kvs.pop("name", [])
    if len(names) > 1:
        raise ConfigurationError('multiple values for key "name" not allowed')
    if names:
        name = names[0]

    if schedule_id and name:
        raise ConfigurationError('"id" and "name" cannot be specified simultaneously')

    groups: List[GroupReference] = []
    for user_group in kvs.pop("userGroup", []):
        kv = user_group.split("=")
        if len(kv) != 2:
            raise ConfigurationError(f"user group {user_group} does not follow key=value pattern")
        ug_key, ug_value = kv
        if ug_key not in ("id", "name", "handle"):
            raise ConfigurationError(f"user group {user_group} has unexpected key {ug_key!r}")
        groups.append(GroupReference(**{ug_key: ug_value}))

    if kvs:
        left = ", ".join(f"{k}={v}" for k, vals in kvs.items() for v in vals)
        raise ConfigurationError(f"unsupported key/value pairs left: {left}")

    return ScheduleReference(id=schedule_id, name=name, user_groups=tuple(groups))


def validate_config(jobs: List[SyncJobConfig]) -> None:
    """Check every job definition and parse its topic template.

    Runs before any API call; the first problem found raises ConfigurationError.
    """
    found_names = set()
    for job in jobs:
        if not job.name:
            raise ConfigurationError("slack sync invalid: name must not be empty")
        if job.name in found_names:
            raise ConfigurationError(f"slack sync name {job.name!r} already used")
        found_names.add(job.name)

        for schedule in job.schedules:
            if not schedule.id and not schedule.name:
                raise ConfigurationError(
                    f"slack sync {job.name!r} invalid: must specify either schedule ID or schedule name"
                )
            if schedule.id and schedule.name:
                raise ConfigurationError(
                    f"slack sync {job.name!r} schedule {schedule} invalid: "
                    '"id" and "name" cannot be specified simultaneously'
                )
            for group in schedule.user_groups:
                given = group.discriminants()
                if not given:
                    raise ConfigurationError(
                        f"slack sync {job.name!r} user group {group} invalid: must specify either "
                        "user group ID or user group name or user group handle"
                    )
                if len(given) > 1:
                    raise ConfigurationError(
                        f"slack sync {job.name!r} user group {group} invalid: "
                        f"only one of {', '.join(repr(g) for g in given)} may be specified"
                    )

        if job.channel is not None:
            if not job.channel.id and not job.channel.name:
                raise ConfigurationError(
                    f"slack sync {job.name!r} invalid: channel must specify either channel ID or channel name"
                )
            if job.channel.id and job.channel.name:
                raise ConfigurationError(
                    f"slack sync {job.name!r} channel {job.channel} invalid: "
                    '"id" and "name" cannot be specified simultaneously'
                )

        channel_given = job.channel is not None
        if job.template_source:
            if not channel_given:
                raise ConfigurationError(
                    f"slack sync {job.name!r} invalid: must specify either channel ID or channel name "
                    "when topic is given"
                )
            try:
                job.template = TopicTemplate(job.template_source)
            except TemplateError as e:
                raise ConfigurationError(f"slack sync {job.name!r} invalid: {e}") from e
        elif channel_given:
            raise ConfigurationError(
                f"slack sync {job.name!r} invalid: must specify template when either channel ID "
                "or channel name is given"
            )
        else:
            logger.info("Slack sync %s: skipping topic handling because template is undefined", job.name)
