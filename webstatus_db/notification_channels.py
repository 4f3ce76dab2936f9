from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, ValidationError

from .cursor import NotificationChannelCursor, decode_cursor, encode_cursor
from .db import models
from .db.helpers import wrap_db_errors
from .db.session import DbSession
from .db.statement import Statement
from .db.types import UTCDateTime
from .entity import BaseMapper, EntityCreator, EntityLister, EntityReader, EntityRemover, EntityWriter
from .errors import InternalQueryFailureError, MissingRequiredRoleError
from .optional import UNSET, OptionallySet

if TYPE_CHECKING:
    from .client import Client

logger = logging.getLogger(__name__)

NOTIFICATION_CHANNELS_TABLE = "notification_channels"


class NotificationChannelType(str, Enum):
    EMAIL = "email"


class EmailConfig(BaseModel):
    address: str = ""
    is_verified: bool = False
    verification_token: Optional[str] = None


@dataclass
class NotificationChannel:
    id: str
    user_id: str
    name: str
    type: str
    created_at: datetime
    updated_at: datetime
    email_config: Optional[EmailConfig] = None


@dataclass
class StoredNotificationChannel:
    """Column shape of notification_channels; ``config`` holds the JSON text."""

    id: str
    user_id: str
    name: str
    type: str
    config: Optional[str]
    created_at: datetime
    updated_at: datetime

    def to_public(self) -> NotificationChannel:
        email_config = None
        if self.config is not None:
            try:
                email_config = EmailConfig.model_validate_json(self.config)
            except ValidationError as exc:
                raise InternalQueryFailureError(f"channel {self.id} has an unreadable config: {exc}") from exc
        return NotificationChannel(
            id=self.id,
            user_id=self.user_id,
            name=self.name,
            type=self.type,
            created_at=self.created_at,
            updated_at=self.updated_at,
            email_config=email_config,
        )


def _dump_config(config: Optional[EmailConfig]) -> Optional[str]:
    if config is None:
        return None
    return config.model_dump_json(exclude_none=True)


@dataclass
class CreateNotificationChannelRequest:
    user_id: str
    name: str
    type: str = NotificationChannelType.EMAIL.value
    email_config: Optional[EmailConfig] = None


@dataclass
class UpdateNotificationChannelRequest:
    id: str
    user_id: str
    name: OptionallySet[str] = field(default_factory=lambda: UNSET)
    email_config: OptionallySet[EmailConfig] = field(default_factory=lambda: UNSET)


@dataclass
class ListNotificationChannelsRequest:
    user_id: str
    page_size: int
    page_token: Optional[str] = None


_COLUMNS = "id, user_id, name, type, config, created_at, updated_at"
_RESULT_TYPES = {"created_at": UTCDateTime(), "updated_at": UTCDateTime()}


class NotificationChannelMapper(BaseMapper[Any, StoredNotificationChannel, str]):
    table_name = NOTIFICATION_CHANNELS_TABLE
    stored_type = StoredNotificationChannel
    primary_key = ("id",)

    def __init__(self, now: Optional[datetime] = None) -> None:
        self.now = now

    def select_one(self, key: str) -> Statement:
        return Statement(
            f"SELECT {_COLUMNS} FROM notification_channels WHERE id = :id LIMIT 1",
            {"id": key},
            _RESULT_TYPES,
        )

    def get_key_from_external(self, external: Any) -> str:
        if isinstance(external, str):
            return external
        return external.id

    def delete_key(self, key: str) -> dict[str, Any]:
        return {"id": key}

    def new_entity(self, id: str, request: CreateNotificationChannelRequest) -> StoredNotificationChannel:
        return StoredNotificationChannel(
            id=id,
            user_id=request.user_id,
            name=request.name,
            type=request.type,
            config=_dump_config(request.email_config),
            created_at=self.now,
            updated_at=self.now,
        )

    def merge(
        self, request: UpdateNotificationChannelRequest, existing: StoredNotificationChannel
    ) -> StoredNotificationChannel:
        merged = replace(existing, updated_at=self.now)
        if request.name.is_set:
            merged.name = request.name.value
        # A None config leaves the stored config alone.
        if request.email_config.is_set and request.email_config.value is not None:
            merged.config = _dump_config(request.email_config.value)
        return merged

    def select_list(self, request: ListNotificationChannelsRequest) -> Statement:
        params: dict[str, Any] = {"user_id": request.user_id, "page_size": request.page_size}
        page_filter = ""
        if request.page_token is not None:
            cursor = decode_cursor(request.page_token, NotificationChannelCursor)
            params["last_id"] = cursor.last_id
            params["last_updated_at"] = cursor.last_updated_at
            page_filter = (
                "AND (updated_at < :last_updated_at OR (updated_at = :last_updated_at AND id > :last_id))"
            )
        return Statement(
            f"""
            SELECT {_COLUMNS}
            FROM notification_channels
            WHERE user_id = :user_id {page_filter}
            ORDER BY updated_at DESC, id ASC
            LIMIT :page_size
            """,
            params,
            _RESULT_TYPES,
        )

    def encode_page_token(self, item: StoredNotificationChannel) -> str:
        return encode_cursor(NotificationChannelCursor(last_id=item.id, last_updated_at=item.updated_at))


def check_notification_channel_ownership(txn: DbSession, channel_id: str, user_id: str) -> None:
    """
    Raises:
        MissingRequiredRoleError: If the channel does not exist or belongs to another user
    """
    stmt = Statement(
        "SELECT id FROM notification_channels WHERE id = :channel_id AND user_id = :user_id",
        {"channel_id": channel_id, "user_id": user_id},
    )
    with wrap_db_errors("checking notification channel ownership"):
        found = txn.execute_scalar(stmt)
    if found is None:
        raise MissingRequiredRoleError(f"user {user_id} does not own notification channel {channel_id}")


def create_notification_channel(client: "Client", request: CreateNotificationChannelRequest) -> str:
    return EntityCreator(client, NotificationChannelMapper(now=client.time_now())).create(request)


def get_notification_channel(client: "Client", channel_id: str, user_id: str) -> NotificationChannel:
    reader = EntityReader(client, NotificationChannelMapper())
    with client.read_only_transaction() as txn:
        check_notification_channel_ownership(txn, channel_id, user_id)
        stored = reader.read_row_by_key_with_transaction(channel_id, txn)
    return stored.to_public()


def list_notification_channels(
    client: "Client",
    user_id: str,
    page_size: int,
    page_token: Optional[str] = None,
) -> tuple[list[NotificationChannel], Optional[str]]:
    """Page through a user's channels, most recently updated first."""
    request = ListNotificationChannelsRequest(user_id=user_id, page_size=page_size, page_token=page_token)
    items, token = EntityLister(client, NotificationChannelMapper()).list(request)
    return [item.to_public() for item in items], token


def update_notification_channel(client: "Client", request: UpdateNotificationChannelRequest) -> NotificationChannel:
    writer = EntityWriter(client, NotificationChannelMapper(now=client.time_now()))
    with wrap_db_errors("updating notification channel"):
        with client.read_write_transaction() as txn:
            check_notification_channel_ownership(txn, request.id, request.user_id)
            stored = writer.update_with_transaction(request, txn)
    return stored.to_public()


def delete_notification_channel(client: "Client", channel_id: str, user_id: str) -> None:
    """Delete a channel and the subscriptions that deliver to it."""
    with wrap_db_errors("deleting notification channel"):
        with client.read_write_transaction() as txn:
            check_notification_channel_ownership(txn, channel_id, user_id)
            rows = txn.query(
                Statement(
                    "SELECT id FROM saved_search_subscriptions WHERE channel_id = :channel_id",
                    {"channel_id": channel_id},
                )
            )
            mutations = [models.delete("saved_search_subscriptions", {"id": row["id"]}) for row in rows]
            txn.buffer_write(mutations)
            EntityRemover(client, NotificationChannelMapper()).remove_with_transaction(channel_id, txn)
    logger.debug("deleted notification channel %s with %d subscriptions", channel_id, len(rows))
