from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import text

from webstatus_db.errors import InternalQueryFailureError, MissingRequiredRoleError
from webstatus_db.notification_channels import (
    CreateNotificationChannelRequest,
    EmailConfig,
    UpdateNotificationChannelRequest,
    create_notification_channel,
    delete_notification_channel,
    get_notification_channel,
    list_notification_channels,
    update_notification_channel,
)
from webstatus_db.optional import OptionallySet
from webstatus_db.saved_search_subscriptions import (
    CreateSavedSearchSubscriptionRequest,
    create_saved_search_subscription,
)
from webstatus_db.saved_searches import CreateUserSavedSearchRequest, create_new_user_saved_search


def _channel(client, user_id: str = "alice", name: str = "work", address: str = "alice@example.com") -> str:
    return create_notification_channel(
        client,
        CreateNotificationChannelRequest(user_id=user_id, name=name, email_config=EmailConfig(address=address)),
    )


def test_create_and_get(client, clock) -> None:
    channel_id = _channel(client)
    channel = get_notification_channel(client, channel_id, "alice")
    assert channel.name == "work"
    assert channel.type == "email"
    assert channel.email_config == EmailConfig(address="alice@example.com")
    assert channel.created_at == clock.now


def test_other_user_cannot_read(client) -> None:
    channel_id = _channel(client)
    with pytest.raises(MissingRequiredRoleError):
        get_notification_channel(client, channel_id, "bob")


def test_unreadable_config_is_an_internal_failure(client, engine) -> None:
    channel_id = _channel(client)
    with engine.begin() as conn:
        conn.execute(text("UPDATE notification_channels SET config = 'not json' WHERE id = :id"), {"id": channel_id})
    with pytest.raises(InternalQueryFailureError):
        get_notification_channel(client, channel_id, "alice")


def test_list_pages_most_recently_updated_first(client, clock) -> None:
    older = _channel(client, name="older")
    clock.advance(timedelta(minutes=5))
    newer = _channel(client, name="newer")
    _channel(client, user_id="bob")

    page, token = list_notification_channels(client, "alice", page_size=1)
    assert [c.id for c in page] == [newer]
    assert token is not None

    page, token = list_notification_channels(client, "alice", page_size=1, page_token=token)
    assert [c.id for c in page] == [older]

    page, token = list_notification_channels(client, "alice", page_size=1, page_token=token)
    assert page == []
    assert token is None


def test_update_name_and_keep_config(client, clock) -> None:
    channel_id = _channel(client)
    clock.advance(timedelta(minutes=1))

    updated = update_notification_channel(
        client,
        UpdateNotificationChannelRequest(
            id=channel_id,
            user_id="alice",
            name=OptionallySet.of("personal"),
            email_config=OptionallySet.of(None),
        ),
    )

    assert updated.name == "personal"
    assert updated.email_config == EmailConfig(address="alice@example.com")
    assert updated.updated_at == clock.now


def test_update_config(client) -> None:
    channel_id = _channel(client)
    update_notification_channel(
        client,
        UpdateNotificationChannelRequest(
            id=channel_id,
            user_id="alice",
            email_config=OptionallySet.of(EmailConfig(address="new@example.com", is_verified=True)),
        ),
    )
    channel = get_notification_channel(client, channel_id, "alice")
    assert channel.email_config.address == "new@example.com"
    assert channel.email_config.is_verified is True


def test_other_user_cannot_update_or_delete(client) -> None:
    channel_id = _channel(client)
    with pytest.raises(MissingRequiredRoleError):
        update_notification_channel(
            client, UpdateNotificationChannelRequest(id=channel_id, user_id="bob", name=OptionallySet.of("x"))
        )
    with pytest.raises(MissingRequiredRoleError):
        delete_notification_channel(client, channel_id, "bob")


def test_delete_removes_subscriptions(client, count_rows) -> None:
    channel_id = _channel(client)
    search_id = create_new_user_saved_search(
        client, CreateUserSavedSearchRequest(name="s", query="q", owner_user_id="alice")
    )
    create_saved_search_subscription(
        client,
        CreateSavedSearchSubscriptionRequest(
            user_id="alice", channel_id=channel_id, saved_search_id=search_id, triggers=[], frequency="IMMEDIATE"
        ),
    )

    delete_notification_channel(client, channel_id, "alice")

    assert count_rows("notification_channels") == 0
    assert count_rows("saved_search_subscriptions") == 0
