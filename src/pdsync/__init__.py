"""Sync PagerDuty on-call schedules to Slack user groups and channel topics."""

from .config import Config, SyncJobConfig, load_config, parse_schedule, validate_config
from .errors import (
    ApiError,
    ConfigurationError,
    JobError,
    MissingPermissionError,
    MutationError,
    NotFoundError,
    SyncError,
    TemplateError,
)
from .pagerduty_client import PagerDutyClient
from .slack_client import SlackAPI
from .syncer import RunReport, Syncer, prepare_jobs

__all__ = [
    "Config",
    "SyncJobConfig",
    "load_config",
    "parse_schedule",
    "validate_config",
    "ApiError",
    "ConfigurationError",
    "JobError",
    "MissingPermissionError",
    "MutationError",
    "NotFoundError",
    "SyncError",
    "TemplateError",
    "PagerDutyClient",
    "SlackAPI",
    "RunReport",
    "Syncer",
    "prepare_jobs",
]
