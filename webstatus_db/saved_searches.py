"""
User saved searches.

Every saved search is one saved_searches row. Searches created by a user
also get an OWNER row in saved_search_user_roles and a bookmark for the
owner; system-managed searches (one per web feature) have neither.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy.types import Boolean

from .cursor import UserSavedSearchesCursor, decode_cursor, encode_cursor
from .db import models
from .db.helpers import wrap_db_errors
from .db.session import DbSession
from .db.statement import Statement
from .db.types import UTCDateTime
from .entity import BaseMapper, EntityLister, EntityReader, EntityWriter
from .errors import (
    InvalidInputError,
    MissingRequiredRoleError,
    OwnerSavedSearchLimitExceededError,
    QueryReturnedNoResultsError,
)
from .optional import UNSET, OptionallySet

if TYPE_CHECKING:
    from .client import Client

logger = logging.getLogger(__name__)

SAVED_SEARCHES_TABLE = "saved_searches"
SAVED_SEARCH_USER_ROLES_TABLE = "saved_search_user_roles"
USER_SAVED_SEARCH_BOOKMARKS_TABLE = "user_saved_search_bookmarks"

SYSTEM_AUTHOR_ID = "system"


class SavedSearchScope(str, Enum):
    USER_PUBLIC = "USER_PUBLIC"
    SYSTEM_MANAGED = "SYSTEM_MANAGED"


class SavedSearchRole(str, Enum):
    OWNER = "OWNER"


@dataclass
class SavedSearch:
    id: str
    name: str
    query: str
    scope: str
    author_id: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None


@dataclass
class UserSavedSearch:
    """A saved search plus the requesting user's relationship to it."""

    saved_search: SavedSearch
    # Both are None when no user was given.
    role: Optional[str] = None
    is_bookmarked: Optional[bool] = None


@dataclass
class CreateUserSavedSearchRequest:
    name: str
    query: str
    owner_user_id: str
    description: Optional[str] = None


@dataclass
class UpdateSavedSearchRequest:
    id: str
    author_id: str
    name: OptionallySet[str] = field(default_factory=lambda: UNSET)
    description: OptionallySet[str] = field(default_factory=lambda: UNSET)
    query: OptionallySet[str] = field(default_factory=lambda: UNSET)


@dataclass
class ListUserSavedSearchesRequest:
    user_id: str
    page_size: int
    page_token: Optional[str] = None


_COLUMNS = "s.id, s.name, s.description, s.query, s.scope, s.author_id, s.created_at, s.updated_at"
_RESULT_TYPES = {"created_at": UTCDateTime(), "updated_at": UTCDateTime()}


class SavedSearchMapper(BaseMapper[SavedSearch, SavedSearch, str]):
    """Reads any saved search by id, whatever its scope."""

    table_name = SAVED_SEARCHES_TABLE
    stored_type = SavedSearch
    primary_key = ("id",)

    def select_one(self, key: str) -> Statement:
        return Statement(
            f"SELECT {_COLUMNS} FROM saved_searches s WHERE s.id = :id LIMIT 1",
            {"id": key},
            _RESULT_TYPES,
        )


class UpdateSavedSearchMapper(SavedSearchMapper):
    def __init__(self, now: datetime) -> None:
        self.now = now

    def get_key_from_external(self, request: UpdateSavedSearchRequest) -> str:
        return request.id

    def merge(self, request: UpdateSavedSearchRequest, existing: SavedSearch) -> SavedSearch:
        return replace(
            existing,
            name=request.name.apply(existing.name),
            description=request.description.apply(existing.description),
            query=request.query.apply(existing.query),
            updated_at=self.now,
        )


class UserSavedSearchListMapper(BaseMapper[ListUserSavedSearchesRequest, UserSavedSearch, str]):
    table_name = SAVED_SEARCHES_TABLE

    def select_list(self, request: ListUserSavedSearchesRequest) -> Statement:
        params: dict = {
            "user_id": request.user_id,
            "scope": SavedSearchScope.USER_PUBLIC.value,
            "page_size": request.page_size,
        }
        page_filter = ""
        if request.page_token is not None:
            cursor = decode_cursor(request.page_token, UserSavedSearchesCursor)
            page_filter = "AND (s.name > :last_name OR (s.name = :last_name AND s.id > :last_id))"
            params["last_name"] = cursor.last_name
            params["last_id"] = cursor.last_id
        sql = f"""
            SELECT {_COLUMNS},
                r.user_role AS role,
                CASE WHEN b.user_id IS NOT NULL THEN 1 ELSE 0 END AS is_bookmarked
            FROM saved_searches s
            LEFT JOIN saved_search_user_roles r ON s.id = r.saved_search_id AND r.user_id = :user_id
            JOIN user_saved_search_bookmarks b ON s.id = b.saved_search_id AND b.user_id = :user_id
            WHERE s.scope = :scope
            {page_filter}
            ORDER BY s.name ASC, s.id ASC
            LIMIT :page_size
        """
        return Statement(sql, params, {**_RESULT_TYPES, "is_bookmarked": Boolean()})

    def from_row(self, row) -> UserSavedSearch:
        return _user_saved_search_from_row(row)

    def encode_page_token(self, item: UserSavedSearch) -> str:
        return encode_cursor(
            UserSavedSearchesCursor(last_id=item.saved_search.id, last_name=item.saved_search.name)
        )


def _user_saved_search_from_row(row) -> UserSavedSearch:
    search = SavedSearchMapper().from_row(row)
    return UserSavedSearch(saved_search=search, role=row.get("role"), is_bookmarked=row.get("is_bookmarked"))


def _owned_search_count(txn: DbSession, user_id: str) -> int:
    stmt = Statement(
        "SELECT COUNT(*) FROM saved_search_user_roles WHERE user_id = :user_id AND user_role = :role",
        {"user_id": user_id, "role": SavedSearchRole.OWNER.value},
    )
    return int(txn.execute_scalar(stmt) or 0)


def get_user_role(txn: DbSession, saved_search_id: str, user_id: str) -> Optional[str]:
    """The user's role on the search, or None."""
    stmt = Statement(
        "SELECT user_role FROM saved_search_user_roles WHERE saved_search_id = :saved_search_id AND user_id = :user_id",
        {"saved_search_id": saved_search_id, "user_id": user_id},
    )
    with wrap_db_errors("reading saved search role"):
        return txn.execute_scalar(stmt)


def _require_owner(txn: DbSession, saved_search_id: str, user_id: str) -> None:
    if get_user_role(txn, saved_search_id, user_id) != SavedSearchRole.OWNER.value:
        raise MissingRequiredRoleError(f"user {user_id} does not own saved search {saved_search_id}")


def create_new_user_saved_search(client: "Client", request: CreateUserSavedSearchRequest) -> str:
    """
    Create a user-owned saved search and return its id.

    The owner gets the OWNER role and a bookmark on the new search.

    Raises:
        OwnerSavedSearchLimitExceededError: If the user already owns
            ``max_owned_searches_per_user`` searches
    """
    limit = client.config.search.max_owned_searches_per_user
    new_id = str(uuid.uuid4())
    now = client.time_now()
    with wrap_db_errors("creating saved search"):
        with client.read_write_transaction() as txn:
            if _owned_search_count(txn, request.owner_user_id) >= limit:
                raise OwnerSavedSearchLimitExceededError(
                    f"user {request.owner_user_id} already owns {limit} saved searches"
                )
            search = SavedSearch(
                id=new_id,
                name=request.name,
                query=request.query,
                scope=SavedSearchScope.USER_PUBLIC.value,
                author_id=request.owner_user_id,
                created_at=now,
                updated_at=now,
                description=request.description,
            )
            mapper = SavedSearchMapper()
            txn.buffer_write(
                [
                    models.insert(SAVED_SEARCHES_TABLE, mapper.to_row(search), mapper.primary_key),
                    models.insert(
                        SAVED_SEARCH_USER_ROLES_TABLE,
                        {
                            "saved_search_id": new_id,
                            "user_id": request.owner_user_id,
                            "user_role": SavedSearchRole.OWNER.value,
                        },
                    ),
                    models.insert(
                        USER_SAVED_SEARCH_BOOKMARKS_TABLE,
                        {"user_id": request.owner_user_id, "saved_search_id": new_id},
                    ),
                ]
            )
    logger.debug("created saved search %s for %s", new_id, request.owner_user_id)
    return new_id


def get_saved_search(client: "Client", saved_search_id: str) -> SavedSearch:
    """Read a saved search of any scope. Raises QueryReturnedNoResultsError when absent."""
    return EntityReader(client, SavedSearchMapper()).read_row_by_key(saved_search_id)


def get_user_saved_search(
    client: "Client",
    saved_search_id: str,
    authenticated_user_id: Optional[str] = None,
) -> UserSavedSearch:
    """
    Read a saved search for a (possibly anonymous) user.

    Without a user only public and system-managed searches are visible and
    ``role``/``is_bookmarked`` are None. With a user, both are filled in for
    public searches.

    Raises:
        QueryReturnedNoResultsError: If the search does not exist or is not
            visible
    """
    reader = EntityReader(client, SavedSearchMapper())
    with client.read_only_transaction() as txn:
        search = reader.read_row_by_key_with_transaction(saved_search_id, txn)
        if authenticated_user_id is None:
            if search.scope not in (SavedSearchScope.USER_PUBLIC.value, SavedSearchScope.SYSTEM_MANAGED.value):
                raise QueryReturnedNoResultsError(f"saved search {saved_search_id} is not visible")
            return UserSavedSearch(saved_search=search)

        stmt = Statement(
            """
            SELECT r.user_role AS role,
                CASE WHEN b.user_id IS NOT NULL THEN 1 ELSE 0 END AS is_bookmarked
            FROM saved_searches s
            LEFT JOIN saved_search_user_roles r ON s.id = r.saved_search_id AND r.user_id = :user_id
            LEFT JOIN user_saved_search_bookmarks b ON s.id = b.saved_search_id AND b.user_id = :user_id
            WHERE s.id = :id AND s.scope = :scope
            LIMIT 1
            """,
            {"id": saved_search_id, "user_id": authenticated_user_id, "scope": SavedSearchScope.USER_PUBLIC.value},
            {"is_bookmarked": Boolean()},
        )
        with wrap_db_errors("reading saved search user details"):
            row = txn.query_one(stmt)
    if row is None:
        return UserSavedSearch(saved_search=search)
    return UserSavedSearch(saved_search=search, role=row["role"], is_bookmarked=row["is_bookmarked"])


def update_user_saved_search(client: "Client", request: UpdateSavedSearchRequest) -> SavedSearch:
    """
    Apply the set fields of ``request``. Only the owner may update.

    Raises:
        InvalidInputError: If name or query is set to None
        MissingRequiredRoleError: If ``request.author_id`` is not the owner
    """
    if (request.name.is_set and request.name.value is None) or (
        request.query.is_set and request.query.value is None
    ):
        raise InvalidInputError("name and query cannot be cleared")
    writer = EntityWriter(client, UpdateSavedSearchMapper(now=client.time_now()))
    with wrap_db_errors("updating saved search"):
        with client.read_write_transaction() as txn:
            _require_owner(txn, request.id, request.author_id)
            return writer.update_with_transaction(request, txn)


def delete_user_saved_search(client: "Client", saved_search_id: str, requesting_user_id: str) -> None:
    """
    Delete a saved search with its roles, bookmarks, subscriptions and state.

    Raises:
        QueryReturnedNoResultsError: If the search does not exist
        MissingRequiredRoleError: If the user is not the owner
    """
    reader = EntityReader(client, SavedSearchMapper())
    with wrap_db_errors("deleting saved search"):
        with client.read_write_transaction() as txn:
            reader.read_row_by_key_with_transaction(saved_search_id, txn)
            _require_owner(txn, saved_search_id, requesting_user_id)
            txn.buffer_write(saved_search_delete_mutations(txn, saved_search_id))


def saved_search_delete_mutations(txn: DbSession, saved_search_id: str) -> list[models.Mutation]:
    """Deletes for a saved search row and every row that hangs off it."""
    mutations: list[models.Mutation] = []
    children = [
        ("saved_search_subscriptions", ("id",)),
        ("saved_search_state", ("saved_search_id", "snapshot_type")),
        (USER_SAVED_SEARCH_BOOKMARKS_TABLE, ("user_id", "saved_search_id")),
        (SAVED_SEARCH_USER_ROLES_TABLE, ("saved_search_id", "user_id")),
    ]
    for table, key_columns in children:
        cols = ", ".join(key_columns)
        stmt = Statement(
            f"SELECT {cols} FROM {table} WHERE saved_search_id = :saved_search_id",
            {"saved_search_id": saved_search_id},
        )
        rows = txn.query(stmt)
        mutations.extend(models.delete(table, {c: row[c] for c in key_columns}) for row in rows)
    mutations.append(models.delete(SAVED_SEARCHES_TABLE, {"id": saved_search_id}))
    return mutations


def list_user_saved_searches(
    client: "Client",
    user_id: str,
    page_size: int,
    page_token: Optional[str] = None,
) -> tuple[list[UserSavedSearch], Optional[str]]:
    """
    Page through the public searches bookmarked by ``user_id``, by name then id.

    Raises:
        InvalidCursorFormatError: If ``page_token`` cannot be decoded
    """
    request = ListUserSavedSearchesRequest(user_id=user_id, page_size=page_size, page_token=page_token)
    return EntityLister(client, UserSavedSearchListMapper()).list(request)
