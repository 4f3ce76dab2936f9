from __future__ import annotations

import pytest

from webstatus_db.config import ClientConfig, SearchConfig
from webstatus_db.errors import (
    OwnerCannotDeleteBookmarkError,
    QueryReturnedNoResultsError,
    UserSearchBookmarkLimitExceededError,
)
from webstatus_db.saved_searches import (
    CreateUserSavedSearchRequest,
    create_new_user_saved_search,
    get_user_saved_search,
    list_user_saved_searches,
)
from webstatus_db.user_search_bookmarks import (
    UserSavedSearchBookmark,
    add_user_search_bookmark,
    delete_user_search_bookmark,
)


def _search(client, owner: str, name: str = "s") -> str:
    return create_new_user_saved_search(
        client, CreateUserSavedSearchRequest(name=name, query="q", owner_user_id=owner)
    )


def test_bookmark_shows_up_for_the_user(client) -> None:
    search_id = _search(client, "alice")
    add_user_search_bookmark(client, UserSavedSearchBookmark("bob", search_id))

    result = get_user_saved_search(client, search_id, "bob")
    assert result.is_bookmarked is True
    assert result.role is None
    page, _ = list_user_saved_searches(client, "bob", page_size=10)
    assert [s.saved_search.id for s in page] == [search_id]


def test_adding_twice_keeps_one_row(client, count_rows) -> None:
    search_id = _search(client, "alice")
    bookmark = UserSavedSearchBookmark("bob", search_id)
    add_user_search_bookmark(client, bookmark)
    add_user_search_bookmark(client, bookmark)
    # the owner's bookmark plus bob's
    assert count_rows("user_saved_search_bookmarks") == 2


def test_unknown_search(client) -> None:
    with pytest.raises(QueryReturnedNoResultsError):
        add_user_search_bookmark(client, UserSavedSearchBookmark("bob", "missing"))


def test_limit_ignores_bookmarks_on_owned_searches(client_factory) -> None:
    client = client_factory(ClientConfig(search=SearchConfig(max_bookmarks_per_user=1)))
    # bob owns two searches, which bookmarks them for him
    _search(client, "bob", "mine 1")
    _search(client, "bob", "mine 2")
    first = _search(client, "alice", "a1")
    second = _search(client, "alice", "a2")

    add_user_search_bookmark(client, UserSavedSearchBookmark("bob", first))
    with pytest.raises(UserSearchBookmarkLimitExceededError):
        add_user_search_bookmark(client, UserSavedSearchBookmark("bob", second))


def test_delete_bookmark(client) -> None:
    search_id = _search(client, "alice")
    add_user_search_bookmark(client, UserSavedSearchBookmark("bob", search_id))
    delete_user_search_bookmark(client, UserSavedSearchBookmark("bob", search_id))
    assert get_user_saved_search(client, search_id, "bob").is_bookmarked is False


def test_owner_cannot_delete_own_bookmark(client) -> None:
    search_id = _search(client, "alice")
    with pytest.raises(OwnerCannotDeleteBookmarkError):
        delete_user_search_bookmark(client, UserSavedSearchBookmark("alice", search_id))


def test_delete_missing_bookmark(client) -> None:
    search_id = _search(client, "alice")
    with pytest.raises(QueryReturnedNoResultsError):
        delete_user_search_bookmark(client, UserSavedSearchBookmark("bob", search_id))
