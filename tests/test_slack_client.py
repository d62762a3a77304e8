from unittest.mock import MagicMock
from urllib.error import URLError

import pytest
from slack_sdk.errors import SlackApiError, SlackRequestError

from pdsync.errors import ApiError, MissingPermissionError, MutationError
from pdsync.models import DesiredGroupMembership, UserGroup
from pdsync.slack_client import SlackAPI

GROUP = UserGroup(id="G1", name="Team A On-Call", handle="team-a-oncall")


def _slack_error(code):
    return SlackApiError(message=code, response={"ok": False, "error": code})


@pytest.fixture
def web_client():
    return MagicMock()


@pytest.fixture
def api(web_client):
    return SlackAPI(token="xoxb-test", client=web_client)


def _membership(*user_ids):
    m = DesiredGroupMembership()
    for uid in user_ids:
        m.ensure_member(GROUP, uid)
    return m


class TestJoinChannel:
    def test_joined(self, api, web_client):
        web_client.conversations_join.return_value = {"ok": True, "channel": {"id": "C1"}}
        assert api.join_channel("C1") is True
        web_client.conversations_join.assert_called_once_with(channel="C1")

    def test_already_in_channel(self, api, web_client):
        web_client.conversations_join.return_value = {"ok": True, "warning": "already_in_channel"}
        assert api.join_channel("C1") is False

    def test_missing_scope(self, api, web_client):
        web_client.conversations_join.side_effect = _slack_error("missing_scope")
        with pytest.raises(MissingPermissionError):
            api.join_channel("C1")

    def test_other_error(self, api, web_client):
        web_client.conversations_join.side_effect = _slack_error("channel_not_found")
        with pytest.raises(ApiError, match="channel_not_found"):
            api.join_channel("C1")


class TestUpdateGroupMembership:
    def test_updates_when_members_differ(self, api, web_client):
        web_client.usergroups_users_list.return_value = {"users": ["U9"]}

        api.update_group_membership(_membership("U2", "U1"), dry_run=False)

        web_client.usergroups_users_update.assert_called_once_with(usergroup="G1", users="U1,U2")

    def test_skips_when_up_to_date(self, api, web_client):
        web_client.usergroups_users_list.return_value = {"users": ["U2", "U1"]}

        api.update_group_membership(_membership("U1", "U2"), dry_run=False)

        web_client.usergroups_users_update.assert_not_called()

    def test_dry_run_does_not_mutate(self, api, web_client, caplog):
        web_client.usergroups_users_list.return_value = {"users": ["U9"]}

        with caplog.at_level("INFO"):
            api.update_group_membership(_membership("U1"), dry_run=True)

        web_client.usergroups_users_update.assert_not_called()
        assert "[DRY RUN] Would update user group" in caplog.text

    def test_update_failure(self, api, web_client):
        web_client.usergroups_users_list.return_value = {"users": []}
        web_client.usergroups_users_update.side_effect = _slack_error("invalid_users")
        with pytest.raises(MutationError, match="invalid_users"):
            api.update_group_membership(_membership("U1"), dry_run=False)


class TestUpdateTopic:
    def test_sets_changed_topic(self, api, web_client):
        web_client.conversations_info.return_value = {"channel": {"topic": {"value": "old"}}}
        api.update_topic("C1", "new", dry_run=False)
        web_client.conversations_setTopic.assert_called_once_with(channel="C1", topic="new")

    def test_unchanged_topic_is_not_set(self, api, web_client):
        web_client.conversations_info.return_value = {"channel": {"topic": {"value": "same"}}}
        api.update_topic("C1", "same", dry_run=False)
        web_client.conversations_setTopic.assert_not_called()

    def test_dry_run(self, api, web_client):
        web_client.conversations_info.return_value = {"channel": {"topic": {"value": "old"}}}
        api.update_topic("C1", "new", dry_run=True)
        web_client.conversations_setTopic.assert_not_called()

    def test_set_topic_failure(self, api, web_client):
        web_client.conversations_info.return_value = {"channel": {"topic": {"value": "old"}}}
        web_client.conversations_setTopic.side_effect = _slack_error("not_in_channel")
        with pytest.raises(MutationError, match="not_in_channel"):
            api.update_topic("C1", "new", dry_run=False)


class TestListing:
    def test_list_users_paginates_and_skips_bots(self, api, web_client):
        web_client.users_list.side_effect = [
            {
                "members": [
                    {"id": "U1", "name": "alice", "profile": {"real_name": "Alice", "email": "alice@example.com"}},
                    {"id": "B1", "name": "bot", "is_bot": True, "profile": {}},
                ],
                "response_metadata": {"next_cursor": "abc"},
            },
            {
                "members": [{"id": "U2", "name": "bob", "deleted": True, "profile": {}}],
                "response_metadata": {"next_cursor": ""},
            },
        ]

        users = api.list_users()

        assert [(u.id, u.name, u.email) for u in users] == [("U1", "Alice", "alice@example.com")]
        assert web_client.users_list.call_args_list[1].kwargs["cursor"] == "abc"

    def test_list_user_groups(self, api, web_client):
        web_client.usergroups_list.return_value = {
            "usergroups": [{"id": "G1", "name": "Team A On-Call", "handle": "team-a-oncall"}]
        }
        assert api.list_user_groups() == [GROUP]

    def test_list_channels(self, api, web_client):
        web_client.conversations_list.return_value = {"channels": [{"id": "C1", "name": "team-a"}]}
        channels = api.list_channels()
        assert [(c.id, c.name) for c in channels] == [("C1", "team-a")]

    def test_listing_error(self, api, web_client):
        web_client.users_list.side_effect = _slack_error("invalid_auth")
        with pytest.raises(ApiError, match="invalid_auth"):
            api.list_users()


class TestTransportFailures:
    def test_connection_error_while_reading_members_is_api_error(self, api, web_client):
        web_client.usergroups_users_list.side_effect = URLError("connection reset")
        with pytest.raises(ApiError, match="connection reset"):
            api.update_group_membership(_membership("U1"), dry_run=False)

    def test_client_error_while_updating_members_is_mutation_error(self, api, web_client):
        web_client.usergroups_users_list.return_value = {"users": []}
        web_client.usergroups_users_update.side_effect = SlackRequestError("bad request")
        with pytest.raises(MutationError, match="bad request"):
            api.update_group_membership(_membership("U1"), dry_run=False)

    def test_timeout_while_joining_is_not_a_missing_permission(self, api, web_client):
        web_client.conversations_join.side_effect = TimeoutError("timed out")
        with pytest.raises(ApiError, match="timed out") as exc:
            api.join_channel("C1")
        assert not isinstance(exc.value, MissingPermissionError)

    def test_connection_error_while_listing_users(self, api, web_client):
        web_client.users_list.side_effect = ConnectionResetError("reset by peer")
        with pytest.raises(ApiError, match="reset by peer"):
            api.list_users()
