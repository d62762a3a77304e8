from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError, SlackClientError

from .errors import ApiError, MissingPermissionError, MutationError
from .models import Channel, ChatUser, DesiredGroupMembership, UserGroup

logger = logging.getLogger(__name__)


def _error_code(e: Exception) -> str:
    if isinstance(e, SlackApiError):
        return e.response.get("error", "") if e.response is not None else ""
    # connection failures and other client-side errors carry no API error code
    return f"{type(e).__name__}: {e}"


class SlackAPI:
    """Thin wrapper over Slack WebClient for the operations pdsync needs."""

    def __init__(self, token: str, client: Optional[WebClient] = None) -> None:
        self.client = client or WebClient(token=token)

    def _paginate(self, method: str, key: str, **kwargs) -> Iterable[Dict]:
        cursor: Optional[str] = None
        while True:
            try:
                resp = getattr(self.client, method)(cursor=cursor, **kwargs)
            except (SlackClientError, OSError) as e:
                raise ApiError(f"{method} failed: {_error_code(e)}") from e

            for item in resp.get(key, []):
                yield item

            cursor = resp.get("response_metadata", {}).get("next_cursor") or None
            if not cursor:
                break

    def list_users(self) -> List[ChatUser]:
        users: List[ChatUser] = []
        for member in self._paginate("users_list", "members", limit=200):
            if member.get("deleted") or member.get("is_bot") or not member.get("id"):
                continue
            profile = member.get("profile", {})
            users.append(ChatUser(
                id=member["id"],
                name=profile.get("real_name") or member.get("name", ""),
                email=profile.get("email", ""),
            ))
        return users

    def list_user_groups(self) -> List[UserGroup]:
        try:
            resp = self.client.usergroups_list(include_disabled=False)
        except (SlackClientError, OSError) as e:
            raise ApiError(f"failed to list user groups: {_error_code(e)}") from e

        return [
            UserGroup(id=ug["id"], name=ug.get("name", ""), handle=ug.get("handle", ""))
            for ug in resp.get("usergroups", [])
            if ug.get("id")
        ]

    def list_channels(self) -> List[Channel]:
        return [
            Channel(id=ch["id"], name=ch.get("name", ""))
            for ch in self._paginate(
                "conversations_list",
                "channels",
                types="public_channel,private_channel",
                exclude_archived=True,
                limit=1000,
            )
            if ch.get("id")
        ]

    def join_channel(self, channel_id: str) -> bool:
        """Join a channel. Returns False if we were already a member."""
        try:
            resp = self.client.conversations_join(channel=channel_id)
        except (SlackClientError, OSError) as e:
            error_code = _error_code(e)
            if isinstance(e, SlackApiError) and error_code == "missing_scope":
                raise MissingPermissionError(f"failed to join channel {channel_id}: {error_code}") from e
            raise ApiError(f"failed to join channel {channel_id}: {error_code}") from e

        warning = resp.get("warning", "")
        return "already_in_channel" not in warning

    def get_group_members(self, group_id: str) -> List[str]:
        try:
            resp = self.client.usergroups_users_list(usergroup=group_id)
        except (SlackClientError, OSError) as e:
            raise ApiError(f"failed to get members of user group {group_id}: {_error_code(e)}") from e
        return list(resp.get("users", []))

    def update_group_membership(self, membership: DesiredGroupMembership, dry_run: bool) -> None:
        """Set each group's members to exactly the desired set.

        Groups already holding the desired members are left untouched.
        """
        for group, desired in membership.items():
            current = set(self.get_group_members(group.id))
            if current == desired:
                logger.info("User group %s is up to date with members %s", group, sorted(desired))
                continue

            if dry_run:
                logger.info(
                    "[DRY RUN] Would update user group %s members from %s to %s",
                    group, sorted(current), sorted(desired),
                )
                continue

            logger.info("Updating user group %s members from %s to %s", group, sorted(current), sorted(desired))
            try:
                self.client.usergroups_users_update(usergroup=group.id, users=",".join(sorted(desired)))
            except (SlackClientError, OSError) as e:
                raise MutationError(f"failed to update user group {group}: {_error_code(e)}") from e

    def get_topic(self, channel_id: str) -> str:
        try:
            resp = self.client.conversations_info(channel=channel_id)
        except (SlackClientError, OSError) as e:
            raise ApiError(f"failed to get channel info for {channel_id}: {_error_code(e)}") from e
        return resp.get("channel", {}).get("topic", {}).get("value", "")

    def update_topic(self, channel_id: str, text: str, dry_run: bool) -> None:
        current = self.get_topic(channel_id)
        if current == text:
            logger.info("Topic of channel %s is up to date", channel_id)
            return

        if dry_run:
            logger.info("[DRY RUN] Would update topic of channel %s to %r", channel_id, text)
            return

        logger.info("Updating topic of channel %s to %r", channel_id, text)
        try:
            self.client.conversations_setTopic(channel=channel_id, topic=text)
        except (SlackClientError, OSError) as e:
            raise MutationError(f"failed to set topic of channel {channel_id}: {_error_code(e)}") from e
