from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .db.helpers import wrap_db_errors
from .db.session import DbSession
from .db.statement import Statement
from .entity import BaseMapper, EntityRemover, EntityUniqueWriter
from .errors import (
    OwnerCannotDeleteBookmarkError,
    QueryReturnedNoResultsError,
    UserSearchBookmarkLimitExceededError,
)
from .saved_searches import USER_SAVED_SEARCH_BOOKMARKS_TABLE, SavedSearchRole, SavedSearchScope, get_user_role

if TYPE_CHECKING:
    from .client import Client


@dataclass(frozen=True)
class UserSavedSearchBookmark:
    user_id: str
    saved_search_id: str


class UserSavedSearchBookmarkMapper(
    BaseMapper[UserSavedSearchBookmark, UserSavedSearchBookmark, UserSavedSearchBookmark]
):
    table_name = USER_SAVED_SEARCH_BOOKMARKS_TABLE
    stored_type = UserSavedSearchBookmark
    primary_key = ("user_id", "saved_search_id")

    def get_key_from_external(self, bookmark: UserSavedSearchBookmark) -> UserSavedSearchBookmark:
        return bookmark

    def select_one(self, key: UserSavedSearchBookmark) -> Statement:
        return Statement(
            """
            SELECT user_id, saved_search_id
            FROM user_saved_search_bookmarks
            WHERE user_id = :user_id AND saved_search_id = :saved_search_id
            LIMIT 1
            """,
            {"user_id": key.user_id, "saved_search_id": key.saved_search_id},
        )

    def delete_key(self, key: UserSavedSearchBookmark) -> dict[str, Any]:
        return {"user_id": key.user_id, "saved_search_id": key.saved_search_id}


def _require_public_search(txn: DbSession, saved_search_id: str) -> None:
    stmt = Statement(
        "SELECT id FROM saved_searches WHERE id = :id AND scope = :scope",
        {"id": saved_search_id, "scope": SavedSearchScope.USER_PUBLIC.value},
    )
    with wrap_db_errors("reading saved search"):
        found = txn.execute_scalar(stmt)
    if found is None:
        raise QueryReturnedNoResultsError(f"saved search {saved_search_id} does not exist")


def add_user_search_bookmark(client: "Client", bookmark: UserSavedSearchBookmark) -> None:
    """
    Bookmark a public saved search for a user.

    Bookmarks on searches the user owns do not count toward the limit.

    Raises:
        QueryReturnedNoResultsError: If the saved search does not exist
        UserSearchBookmarkLimitExceededError: If the user already has
            ``max_bookmarks_per_user`` bookmarks on searches they do not own
    """
    limit = client.config.search.max_bookmarks_per_user
    writer = EntityUniqueWriter(client, UserSavedSearchBookmarkMapper())
    with wrap_db_errors("adding bookmark"):
        with client.read_write_transaction() as txn:
            _require_public_search(txn, bookmark.saved_search_id)
            count = txn.execute_scalar(
                Statement(
                    """
                    SELECT COUNT(us.saved_search_id)
                    FROM user_saved_search_bookmarks us
                    LEFT JOIN saved_search_user_roles sr
                        ON us.saved_search_id = sr.saved_search_id AND us.user_id = sr.user_id
                    WHERE us.user_id = :user_id AND (sr.user_role != :role OR sr.user_role IS NULL)
                    """,
                    {"user_id": bookmark.user_id, "role": SavedSearchRole.OWNER.value},
                )
            )
            if int(count or 0) >= limit:
                raise UserSearchBookmarkLimitExceededError(
                    f"user {bookmark.user_id} already has {limit} bookmarks"
                )
            writer.upsert_with_transaction(bookmark, txn)


def delete_user_search_bookmark(client: "Client", bookmark: UserSavedSearchBookmark) -> None:
    """
    Raises:
        QueryReturnedNoResultsError: If the search or the bookmark does not exist
        OwnerCannotDeleteBookmarkError: If the user owns the search
    """
    remover = EntityRemover(client, UserSavedSearchBookmarkMapper())
    with wrap_db_errors("deleting bookmark"):
        with client.read_write_transaction() as txn:
            _require_public_search(txn, bookmark.saved_search_id)
            if get_user_role(txn, bookmark.saved_search_id, bookmark.user_id) == SavedSearchRole.OWNER.value:
                raise OwnerCannotDeleteBookmarkError()
            remover.remove_with_transaction(bookmark, txn)
