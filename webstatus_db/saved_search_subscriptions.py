from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from .cursor import SubscriptionCursor, decode_cursor, encode_cursor
from .db.helpers import wrap_db_errors
from .db.session import DbSession
from .db.statement import Statement
from .db.types import UTCDateTime
from .entity import BaseMapper, EntityCreator, EntityLister, EntityReader, EntityRemover, EntityWriter
from .errors import LimitExceededError, MissingRequiredRoleError
from .notification_channels import check_notification_channel_ownership
from .optional import UNSET, OptionallySet
from .saved_search_state import SavedSearchSnapshotType

if TYPE_CHECKING:
    from .client import Client

SAVED_SEARCH_SUBSCRIPTIONS_TABLE = "saved_search_subscriptions"


class SubscriptionTrigger(str, Enum):
    BROWSER_IMPLEMENTATION_ANY_COMPLETE = "feature.browser_implementation.any_complete"
    BASELINE_PROMOTE_TO_NEWLY = "feature.baseline.promote_to_newly"
    BASELINE_PROMOTE_TO_WIDELY = "feature.baseline.promote_to_widely"
    BASELINE_REGRESSION_TO_LIMITED = "feature.baseline.regression_to_limited"
    UNKNOWN = "unknown"


@dataclass
class SavedSearchSubscription:
    id: str
    channel_id: str
    saved_search_id: str
    triggers: list[str]
    frequency: str
    created_at: datetime
    updated_at: datetime


@dataclass
class CreateSavedSearchSubscriptionRequest:
    user_id: str
    channel_id: str
    saved_search_id: str
    triggers: list[str]
    frequency: str


@dataclass
class UpdateSavedSearchSubscriptionRequest:
    id: str
    user_id: str
    triggers: OptionallySet[list[str]] = field(default_factory=lambda: UNSET)
    frequency: OptionallySet[str] = field(default_factory=lambda: UNSET)


@dataclass
class ListSavedSearchSubscriptionsRequest:
    user_id: str
    page_size: int
    page_token: Optional[str] = None


_COLUMNS = "sc.id, sc.channel_id, sc.saved_search_id, sc.triggers, sc.frequency, sc.created_at, sc.updated_at"
_RESULT_TYPES = {"created_at": UTCDateTime(), "updated_at": UTCDateTime()}


class SavedSearchSubscriptionMapper(BaseMapper[Any, SavedSearchSubscription, str]):
    table_name = SAVED_SEARCH_SUBSCRIPTIONS_TABLE
    stored_type = SavedSearchSubscription
    primary_key = ("id",)

    def __init__(self, now: Optional[datetime] = None) -> None:
        self.now = now

    # triggers are stored as a JSON array in a text column
    def to_row(self, stored: SavedSearchSubscription) -> dict[str, Any]:
        row = super().to_row(stored)
        row["triggers"] = json.dumps(list(stored.triggers))
        return row

    def from_row(self, row) -> SavedSearchSubscription:
        stored = super().from_row(row)
        stored.triggers = json.loads(stored.triggers) if stored.triggers else []
        return stored

    def select_one(self, key: str) -> Statement:
        return Statement(
            f"SELECT {_COLUMNS} FROM saved_search_subscriptions sc WHERE sc.id = :id LIMIT 1",
            {"id": key},
            _RESULT_TYPES,
        )

    def get_key_from_external(self, external: Any) -> str:
        if isinstance(external, str):
            return external
        return external.id

    def delete_key(self, key: str) -> dict[str, Any]:
        return {"id": key}

    def new_entity(self, id: str, request: CreateSavedSearchSubscriptionRequest) -> SavedSearchSubscription:
        return SavedSearchSubscription(
            id=id,
            channel_id=request.channel_id,
            saved_search_id=request.saved_search_id,
            triggers=list(request.triggers),
            frequency=request.frequency,
            created_at=self.now,
            updated_at=self.now,
        )

    def merge(
        self, request: UpdateSavedSearchSubscriptionRequest, existing: SavedSearchSubscription
    ) -> SavedSearchSubscription:
        merged = replace(existing, updated_at=self.now)
        if request.triggers.is_set:
            merged.triggers = list(request.triggers.value or [])
        if request.frequency.is_set:
            merged.frequency = request.frequency.value
        return merged

    def select_list(self, request: ListSavedSearchSubscriptionsRequest) -> Statement:
        params: dict[str, Any] = {"user_id": request.user_id, "page_size": request.page_size}
        page_filter = ""
        if request.page_token is not None:
            cursor = decode_cursor(request.page_token, SubscriptionCursor)
            params["last_id"] = cursor.last_id
            params["last_updated_at"] = cursor.last_updated_at
            page_filter = (
                "AND (sc.updated_at < :last_updated_at "
                "OR (sc.updated_at = :last_updated_at AND sc.id > :last_id))"
            )
        return Statement(
            f"""
            SELECT {_COLUMNS}
            FROM saved_search_subscriptions sc
            JOIN notification_channels nc ON sc.channel_id = nc.id
            WHERE nc.user_id = :user_id {page_filter}
            ORDER BY sc.updated_at DESC, sc.id ASC
            LIMIT :page_size
            """,
            params,
            _RESULT_TYPES,
        )

    def encode_page_token(self, item: SavedSearchSubscription) -> str:
        return encode_cursor(SubscriptionCursor(last_id=item.id, last_updated_at=item.updated_at))


def _check_ownership_by_subscription(txn: DbSession, subscription_id: str, user_id: str) -> None:
    stmt = Statement(
        """
        SELECT sc.id
        FROM saved_search_subscriptions sc
        JOIN notification_channels nc ON sc.channel_id = nc.id
        WHERE sc.id = :subscription_id AND nc.user_id = :user_id
        LIMIT 1
        """,
        {"subscription_id": subscription_id, "user_id": user_id},
    )
    with wrap_db_errors("checking subscription ownership"):
        found = txn.execute_scalar(stmt)
    if found is None:
        raise MissingRequiredRoleError(f"user {user_id} does not own subscription {subscription_id}")


def create_saved_search_subscription(
    client: "Client",
    request: CreateSavedSearchSubscriptionRequest,
    subscription_id: Optional[str] = None,
) -> str:
    """
    Subscribe one of the user's channels to a saved search.

    Raises:
        LimitExceededError: If the user already has ``max_subscriptions_per_user``
            subscriptions
        MissingRequiredRoleError: If the channel belongs to another user
    """
    limit = client.config.search.max_subscriptions_per_user
    creator = EntityCreator(client, SavedSearchSubscriptionMapper(now=client.time_now()))
    with wrap_db_errors("creating subscription"):
        with client.read_write_transaction() as txn:
            count = txn.execute_scalar(
                Statement(
                    """
                    SELECT COUNT(*)
                    FROM saved_search_subscriptions sc
                    JOIN notification_channels nc ON sc.channel_id = nc.id
                    WHERE nc.user_id = :user_id
                    """,
                    {"user_id": request.user_id},
                )
            )
            if int(count or 0) >= limit:
                raise LimitExceededError(f"user {request.user_id} already has {limit} subscriptions")
            check_notification_channel_ownership(txn, request.channel_id, request.user_id)
            return creator.create_with_transaction(request, txn, id=subscription_id)


def get_saved_search_subscription(client: "Client", subscription_id: str, user_id: str) -> SavedSearchSubscription:
    reader = EntityReader(client, SavedSearchSubscriptionMapper())
    with client.read_only_transaction() as txn:
        _check_ownership_by_subscription(txn, subscription_id, user_id)
        return reader.read_row_by_key_with_transaction(subscription_id, txn)


def update_saved_search_subscription(
    client: "Client", request: UpdateSavedSearchSubscriptionRequest
) -> SavedSearchSubscription:
    writer = EntityWriter(client, SavedSearchSubscriptionMapper(now=client.time_now()))
    with wrap_db_errors("updating subscription"):
        with client.read_write_transaction() as txn:
            _check_ownership_by_subscription(txn, request.id, request.user_id)
            return writer.update_with_transaction(request, txn)


def delete_saved_search_subscription(client: "Client", subscription_id: str, user_id: str) -> None:
    remover = EntityRemover(client, SavedSearchSubscriptionMapper())
    with wrap_db_errors("deleting subscription"):
        with client.read_write_transaction() as txn:
            _check_ownership_by_subscription(txn, subscription_id, user_id)
            remover.remove_with_transaction(subscription_id, txn)


def list_saved_search_subscriptions(
    client: "Client",
    user_id: str,
    page_size: int,
    page_token: Optional[str] = None,
) -> tuple[list[SavedSearchSubscription], Optional[str]]:
    """Page through the subscriptions on the user's channels, most recently updated first."""
    request = ListSavedSearchSubscriptionsRequest(user_id=user_id, page_size=page_size, page_token=page_token)
    return EntityLister(client, SavedSearchSubscriptionMapper()).list(request)
