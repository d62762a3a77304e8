"""Map configured references and provider identities onto chat platform objects."""

from __future__ import annotations

from typing import Iterable, Optional

from .errors import NotFoundError
from .models import (
    Channel,
    ChannelReference,
    ChatUser,
    GroupReference,
    ProviderUser,
    UserGroup,
)


def find_group(ref: GroupReference, known_groups: Iterable[UserGroup]) -> Optional[UserGroup]:
    """Exact match on whichever discriminant is set: id, else name, else handle."""
    for ug in known_groups:
        if ref.id:
            if ug.id == ref.id:
                return ug
        elif ref.name:
            if ug.name == ref.name:
                return ug
        elif ref.handle:
            if ug.handle == ref.handle:
                return ug
    return None


def resolve_group(ref: GroupReference, known_groups: Iterable[UserGroup]) -> UserGroup:
    ug = find_group(ref, known_groups)
    if ug is None:
        raise NotFoundError(f"user group {ref} not found")
    return ug


def find_user(provider_user: ProviderUser, known_users: Iterable[ChatUser]) -> Optional[ChatUser]:
    """Match a provider user to a chat user by email address, case-insensitively."""
    if not provider_user.email:
        return None
    email = provider_user.email.lower()
    for user in known_users:
        if user.email and user.email.lower() == email:
            return user
    return None


def resolve_user(provider_user: ProviderUser, known_users: Iterable[ChatUser]) -> ChatUser:
    user = find_user(provider_user, known_users)
    if user is None:
        raise NotFoundError(f"failed to find Slack user for PD user {provider_user}")
    return user


def find_channel(ref: ChannelReference, known_channels: Iterable[Channel]) -> Optional[Channel]:
    for channel in known_channels:
        if ref.id:
            if channel.id == ref.id:
                return channel
        elif channel.name == ref.name:
            return channel
    return None


def resolve_channel(ref: ChannelReference, known_channels: Iterable[Channel]) -> Channel:
    channel = find_channel(ref, known_channels)
    if channel is None:
        raise NotFoundError(f"failed to find configured Slack channel {ref}")
    return channel
